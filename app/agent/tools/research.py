"""DeepResearchCapability — the retrieval-refinement engine exposed as an action."""

from __future__ import annotations

import logging
from typing import Any

from app.agent.tools.base import BaseCapability, CapabilityResult
from app.agent.tools.retrieval import profile_from_context
from app.services.corag_service import CoragConfig, RetrievalRefinementEngine

logger = logging.getLogger(__name__)


class DeepResearchCapability(BaseCapability):
    description = (
        "Iteratively search the knowledge base, refining the query until the "
        "retrieved material adequately covers the question."
    )

    def __init__(self, engine: RetrievalRefinementEngine | None = None) -> None:
        self._engine = engine or RetrievalRefinementEngine()

    @property
    def name(self) -> str:
        return "deep_research"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "max_iterations": {"type": "integer", "minimum": 1},
                "top_k": {"type": "integer", "minimum": 1},
                "decompose": {"type": "boolean"},
                "filters": {"type": "object"},
            },
            "required": ["query"],
        }

    def invoke(self, args: dict[str, Any], context: dict[str, Any]) -> CapabilityResult:
        base = self._engine.config
        config = CoragConfig(
            max_iterations=int(args.get("max_iterations") or base.max_iterations),
            adequacy_threshold=base.adequacy_threshold,
            top_k=int(args.get("top_k") or base.top_k),
            rerank_enabled=base.rerank_enabled,
        )
        query = str(args["query"])
        profile = profile_from_context(context)
        history = context.get("history") or ()

        if args.get("decompose"):
            research = self._engine.research(
                query, profile=profile, history=history, filters=args.get("filters"), config=config
            )
            documents = research.documents
            iterations = sum(len(result.iterations) for result in research.results)
            # weakest sub-query decides
            adequacy = research.final_adequacy
            per_query = [round(result.final_adequacy, 4) for result in research.results]
        else:
            result = self._engine.run(
                query, profile=profile, history=history, filters=args.get("filters"), config=config
            )
            documents = result.documents
            iterations = len(result.iterations)
            adequacy = result.final_adequacy
            per_query = None

        logger.info(
            "DeepResearch: query=%r iterations=%d documents=%d adequacy=%.3f",
            query,
            iterations,
            len(documents),
            adequacy,
        )
        return CapabilityResult(
            success=True,
            payload={
                "documents": [
                    {"id": doc.id, "title": doc.source, "content": doc.content, "category": doc.category}
                    for doc in documents
                ],
                "iterations": iterations,
                "adequacy": round(adequacy, 4),
                "sub_query_adequacy": per_query,
            },
        )
