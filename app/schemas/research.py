from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProfileInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    expertise_level: str = Field(default="intermediate", alias="expertiseLevel")
    technical_background: list[str] = Field(default_factory=list, alias="technicalBackground")
    preferred_language: str = Field(default="en", alias="preferredLanguage")


class ResearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(min_length=1, max_length=4000)
    profile: ProfileInput | None = None
    history: list[str] = Field(default_factory=list)
    filters: dict[str, Any] | None = None
    max_iterations: int | None = Field(default=None, gt=0, le=20, alias="maxIterations")
    adequacy_threshold: float | None = Field(default=None, ge=0.0, le=1.0, alias="adequacyThreshold")
    top_k: int | None = Field(default=None, gt=0, le=100, alias="topK")
    rerank_enabled: bool | None = Field(default=None, alias="rerankEnabled")
    decompose: bool = False


class ResearchResponse(BaseModel):
    query: str
    decomposition: dict[str, Any] | None = None
    iterations: list[dict[str, Any]]
    documents: list[dict[str, Any]]
    adequacy: float = Field(
        description="Final adequacy score. For decomposed queries this is the lowest sub-query adequacy."
    )
    sub_query_adequacy: list[float] | None = Field(
        default=None,
        description="Final adequacy of each sub-query run, in sub-query order; only set for decomposed queries.",
    )
