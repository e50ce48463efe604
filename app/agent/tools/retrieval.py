"""
KnowledgeSearchCapability — one retrieval pass plus reranking.

Stateless apart from its collaborators, so one instance serves every
task; the asking user's profile can be passed per call through the
execution context.
"""

from __future__ import annotations

import logging
from typing import Any

from app.agent.tools.base import BaseCapability, CapabilityResult
from app.core.config import settings
from app.services.corag_service import DocumentSearch
from app.services.reranker_service import RerankConfig, UserProfile, rerank_documents
from app.services.retrieval_service import KnowledgeRetrievalClient

logger = logging.getLogger(__name__)


def profile_from_context(context: dict[str, Any]) -> UserProfile:
    raw = context.get("profile") or {}
    if not isinstance(raw, dict):
        return UserProfile()
    return UserProfile(
        expertise_level=raw.get("expertise_level") or raw.get("expertiseLevel") or "intermediate",
        technical_background=list(raw.get("technical_background") or raw.get("technicalBackground") or []),
        preferred_language=raw.get("preferred_language") or raw.get("preferredLanguage") or "en",
    )


class KnowledgeSearchCapability(BaseCapability):
    description = "Search the knowledge base and return the most relevant passages."

    def __init__(
        self,
        retriever: DocumentSearch | None = None,
        rerank_config: RerankConfig | None = None,
    ) -> None:
        self._retriever = retriever or KnowledgeRetrievalClient()
        self._rerank_config = rerank_config

    @property
    def name(self) -> str:
        return "knowledge_search"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "top_k": {"type": "integer", "minimum": 1},
                "filters": {"type": "object"},
            },
            "required": ["query"],
        }

    def invoke(self, args: dict[str, Any], context: dict[str, Any]) -> CapabilityResult:
        query = str(args["query"])
        top_k = int(args.get("top_k") or settings.reranker_top_k)
        documents = self._retriever.search(query, args.get("filters"), top_k=top_k)

        config = self._rerank_config or RerankConfig.from_settings()
        config = RerankConfig(
            semantic_weight=config.semantic_weight,
            contextual_weight=config.contextual_weight,
            freshness_weight=config.freshness_weight,
            top_k=top_k,
            model=config.model,
        )
        ranked = rerank_documents(
            query,
            documents,
            profile=profile_from_context(context),
            history=context.get("history") or (),
            config=config,
        )
        logger.debug("KnowledgeSearch: query=%r → %d results", query, len(ranked))
        return CapabilityResult(
            success=True,
            payload={
                "results": [
                    {
                        "id": item.document.id,
                        "title": item.document.source,
                        "content": item.document.content,
                        "category": item.document.category,
                        "score": round(item.final_score, 4),
                        "rationale": item.rationale,
                    }
                    for item in ranked
                ]
            },
        )
