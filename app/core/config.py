from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Agent Loop Service"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    api_v1_prefix: str = "/api/v1"

    database_url: str = "sqlite:///./agent_loop.db"
    allowed_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:3000"]
    )
    db_pool_pre_ping: bool = True
    db_pool_recycle_seconds: int = 300

    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_max_output_tokens: int = 1024
    gemini_temperature: float = 0.2
    gemini_timeout_seconds: int = 60
    planner_temperature: float = 0.1
    reflection_temperature: float = 0.1
    answer_temperature: float = 0.3

    # Gemini text-embedding-004 produces 768-dimensional vectors
    embedding_model_name: str = "text-embedding-004"
    embedding_timeout_seconds: float = 60.0

    # External collaborators
    capability_runtime_url: str = "http://localhost:3004"
    capability_timeout_seconds: float = 30.0
    retrieval_service_url: str = "http://localhost:3005"
    retrieval_timeout_seconds: float = 30.0

    # Loop governor
    agent_step_budget: int = 6
    agent_working_memory_window: int = 3
    agent_repetition_window: int = 5
    agent_max_total_failures: int = 4
    agent_min_useful_evidence_chars: int = 50
    agent_force_answer_on_pure_failure: bool = False
    agent_late_budget_remaining: int = 2
    agent_late_budget_top_k: int = 5
    observation_preview_items: int = 3
    observation_snippet_chars: int = 220
    observation_summary_chars: int = 500

    # Retrieval refinement
    corag_max_iterations: int = 5
    corag_adequacy_threshold: float = 0.7
    corag_top_k: int = 10
    corag_rerank_enabled: bool = True

    # Reranker: "lexical" or "embedding"
    reranker_model: str = "lexical"
    reranker_semantic_weight: float = 0.6
    reranker_contextual_weight: float = 0.3
    reranker_freshness_weight: float = 0.1
    reranker_top_k: int = 10

    # Query decomposition
    decomposer_max_sub_queries: int = 5
    decomposer_complexity_threshold: float = 1.5
    decomposer_min_sub_query_length: int = 10
    decomposer_dependency_analysis: bool = True

    # Routing
    max_clarification_attempts: int = 2

    # Response validation
    validation_enabled: bool = True
    validation_min_quality_score: float = 0.7
    validation_fact_checking: bool = True
    validation_tone_analysis: bool = True
    validation_security_scan: bool = True
    validation_completeness_check: bool = True

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
