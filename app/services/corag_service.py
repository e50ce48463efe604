"""
Iterative retrieval refinement (chain-of-retrieval).

Each pass retrieves for the current query, reranks, scores adequacy
against the *original* query and, while adequacy stays under the
threshold and passes remain, derives the next query from the first
information gap.  Every pass is recorded as a ``RetrievalIteration``;
the history is never pruned.

``research()`` runs the same loop once per decomposed sub-query, in
priority order, and merges the documents.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.core.config import settings
from app.services.query_intelligence_service import Decomposition, decompose_query
from app.services.reranker_service import RerankConfig, RerankedDocument, UserProfile, rerank_documents
from app.services.retrieval_service import KnowledgeRetrievalClient, RetrievedDocument

logger = logging.getLogger(__name__)

GAP_NOT_ENOUGH_DOCUMENTS = "Not enough documents for complete answer"
GAP_CATEGORIES = "Need information from different documentation categories"
GAP_MISSING_PREFIX = "Missing information about: "


class DocumentSearch(Protocol):
    def search(
        self, query: str, filters: dict[str, Any] | None = None, top_k: int = 10
    ) -> list[RetrievedDocument]: ...


Reranker = Callable[..., list[RerankedDocument]]


@dataclass(slots=True)
class CoragConfig:
    max_iterations: int = 5
    adequacy_threshold: float = 0.7
    top_k: int = 10
    rerank_enabled: bool = True

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if not 0.0 <= self.adequacy_threshold <= 1.0:
            raise ValueError("adequacy_threshold must be within [0, 1]")
        if self.top_k < 1:
            raise ValueError("top_k must be at least 1")

    @classmethod
    def from_settings(cls) -> CoragConfig:
        return cls(
            max_iterations=settings.corag_max_iterations,
            adequacy_threshold=settings.corag_adequacy_threshold,
            top_k=settings.corag_top_k,
            rerank_enabled=settings.corag_rerank_enabled,
        )


@dataclass(frozen=True, slots=True)
class RetrievalIteration:
    index: int
    query: str
    documents: tuple[RerankedDocument, ...]
    adequacy: float
    gaps: tuple[str, ...]
    rationale: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "query": self.query,
            "documents": [doc.to_dict() for doc in self.documents],
            "adequacy": round(self.adequacy, 4),
            "gaps": list(self.gaps),
            "rationale": self.rationale,
        }


@dataclass(slots=True)
class AdequacyAssessment:
    score: float
    gaps: list[str]
    missing_keywords: list[str]
    rationale: str


@dataclass(slots=True)
class RefinementResult:
    query: str
    iterations: list[RetrievalIteration]
    documents: list[RetrievedDocument]

    @property
    def final_adequacy(self) -> float:
        return self.iterations[-1].adequacy if self.iterations else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "total_iterations": len(self.iterations),
            "final_adequacy": round(self.final_adequacy, 4),
            "iterations": [item.to_dict() for item in self.iterations],
            "documents": [doc.to_dict() for doc in self.documents],
        }


@dataclass(slots=True)
class ResearchResult:
    query: str
    decomposition: Decomposition
    results: list[RefinementResult] = field(default_factory=list)
    documents: list[RetrievedDocument] = field(default_factory=list)

    @property
    def final_adequacy(self) -> float:
        """Lowest adequacy across the sub-query runs."""
        return min((result.final_adequacy for result in self.results), default=0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "strategy": self.decomposition.strategy,
            "complexity": round(self.decomposition.complexity, 4),
            "sub_queries": [item.to_dict() for item in self.decomposition.sub_queries],
            "results": [item.to_dict() for item in self.results],
            "final_adequacy": round(self.final_adequacy, 4),
            "documents": [doc.to_dict() for doc in self.documents],
        }


# ──────────────────────────────────────────────
# Adequacy + next query
# ──────────────────────────────────────────────

def _document_score(doc: RerankedDocument) -> float:
    return doc.final_score or doc.original_score or 0.5


def assess_adequacy(
    original_query: str,
    documents: Sequence[RerankedDocument],
    iteration_index: int,
) -> AdequacyAssessment:
    """
    adequacy = clamp(min(n/3, 1) + 0.3 * avg score - 0.1 * (iteration - 1), 0, 1)
    """
    count = len(documents)
    avg_score = sum(_document_score(doc) for doc in documents) / count if count else 0.0
    raw = min(count / 3, 1.0) + 0.3 * avg_score - 0.1 * (iteration_index - 1)
    score = max(0.0, min(1.0, raw))

    gaps: list[str] = []
    if count < 2:
        gaps.append(GAP_NOT_ENOUGH_DOCUMENTS)

    categories = {doc.document.category for doc in documents}
    if len(categories) < 2:
        gaps.append(GAP_CATEGORIES)

    keywords = [word for word in original_query.lower().split() if len(word) > 3]
    corpus = " ".join(doc.document.content.lower() for doc in documents)
    missing = [word for word in dict.fromkeys(keywords) if word not in corpus]
    if missing:
        gaps.append(GAP_MISSING_PREFIX + ", ".join(missing))

    if score >= 0.7:
        rationale = "Information appears adequate"
    elif gaps:
        rationale = f"Need to search for: {gaps[0]}"
    else:
        rationale = "Need more comprehensive information"

    return AdequacyAssessment(score=score, gaps=gaps, missing_keywords=missing, rationale=rationale)


def next_query(original_query: str, assessment: AdequacyAssessment) -> str:
    if not assessment.gaps:
        return f"{original_query} detailed guide"
    primary = assessment.gaps[0]
    if primary == GAP_CATEGORIES:
        return f"{original_query} examples troubleshooting"
    if primary == GAP_NOT_ENOUGH_DOCUMENTS:
        return f"{original_query} configuration setup"
    if primary.startswith(GAP_MISSING_PREFIX):
        return f"{original_query} {' '.join(assessment.missing_keywords)}"
    return f"{original_query} detailed guide"


def merge_unique(documents: Sequence[RetrievedDocument]) -> list[RetrievedDocument]:
    seen: set[str] = set()
    unique: list[RetrievedDocument] = []
    for doc in documents:
        key = doc.dedup_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(doc)
    return unique


# ──────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────

class RetrievalRefinementEngine:
    """Bounded retrieve → rerank → assess → refine loop."""

    def __init__(
        self,
        retriever: DocumentSearch | None = None,
        reranker: Reranker | None = None,
        rerank_config: RerankConfig | None = None,
        config: CoragConfig | None = None,
    ) -> None:
        self._retriever = retriever or KnowledgeRetrievalClient()
        self._rerank = reranker or rerank_documents
        self._rerank_config = rerank_config
        self._config = config or CoragConfig.from_settings()

    @property
    def config(self) -> CoragConfig:
        return self._config

    def run(
        self,
        query: str,
        profile: UserProfile | None = None,
        history: Sequence[Any] = (),
        filters: dict[str, Any] | None = None,
        config: CoragConfig | None = None,
    ) -> RefinementResult:
        """
        Refine retrieval for *query* until adequate or out of passes.

        Parameters
        ----------
        query : str
            Original query; adequacy is always judged against it.
        profile : UserProfile | None
            Passed to the reranker for contextual scoring.
        history : Sequence[Any]
            Recent conversation messages for the reranker.
        filters : dict | None
            Forwarded unchanged to the retrieval service.
        config : CoragConfig | None
            Per-call override of the engine's configuration.

        Returns
        -------
        RefinementResult
            Full iteration history plus the de-duplicated union of every
            document retrieved.  A failed retrieval ends the loop after
            recording an empty iteration with adequacy 0.
        """
        config = config or self._config
        iterations: list[RetrievalIteration] = []
        collected: list[RetrievedDocument] = []
        current_query = query
        adequacy = 0.0
        index = 0

        logger.info("CoRAG: start query=%r max_iterations=%d", query, config.max_iterations)

        while index < config.max_iterations and adequacy < config.adequacy_threshold:
            index += 1
            try:
                retrieved = self._retriever.search(current_query, filters, top_k=config.top_k)
                ranked = self._rank(current_query, retrieved, profile, history, config)
            except Exception as exc:
                logger.warning("CoRAG: iteration %d failed (%s), stopping", index, exc)
                iterations.append(
                    RetrievalIteration(
                        index=index,
                        query=current_query,
                        documents=(),
                        adequacy=0.0,
                        gaps=(f"Iteration failed: {exc}",),
                        rationale="Error occurred during processing",
                    )
                )
                break

            assessment = assess_adequacy(query, ranked, index)
            adequacy = assessment.score
            iterations.append(
                RetrievalIteration(
                    index=index,
                    query=current_query,
                    documents=tuple(ranked),
                    adequacy=adequacy,
                    gaps=tuple(assessment.gaps),
                    rationale=assessment.rationale,
                )
            )
            collected.extend(doc.document for doc in ranked)
            logger.info(
                "CoRAG: iteration %d query=%r docs=%d adequacy=%.3f gaps=%d",
                index,
                current_query,
                len(ranked),
                adequacy,
                len(assessment.gaps),
            )

            if adequacy < config.adequacy_threshold and index < config.max_iterations:
                current_query = next_query(query, assessment)

        unique = merge_unique(collected)
        logger.info(
            "CoRAG: done iterations=%d unique_documents=%d adequacy=%.3f",
            len(iterations),
            len(unique),
            adequacy,
        )
        return RefinementResult(query=query, iterations=iterations, documents=unique)

    def research(
        self,
        query: str,
        profile: UserProfile | None = None,
        history: Sequence[Any] = (),
        filters: dict[str, Any] | None = None,
        config: CoragConfig | None = None,
        decomposition: Decomposition | None = None,
    ) -> ResearchResult:
        """Decompose *query*, refine each sub-query in priority order, merge documents."""
        profile = profile or UserProfile()
        decomposition = decomposition or decompose_query(query, expertise_level=profile.expertise_level)

        outcome = ResearchResult(query=query, decomposition=decomposition)
        merged: list[RetrievedDocument] = []
        for sub_query in sorted(decomposition.sub_queries, key=lambda item: item.priority):
            result = self.run(sub_query.sub_query, profile=profile, history=history, filters=filters, config=config)
            outcome.results.append(result)
            merged.extend(result.documents)

        outcome.documents = merge_unique(merged)
        return outcome

    def _rank(
        self,
        query: str,
        documents: list[RetrievedDocument],
        profile: UserProfile | None,
        history: Sequence[Any],
        config: CoragConfig,
    ) -> list[RerankedDocument]:
        if not config.rerank_enabled:
            return [RerankedDocument.passthrough(doc, "Reranking disabled: retrieval order") for doc in documents]
        rerank_config = self._rerank_config or RerankConfig.from_settings()
        return self._rerank(query, documents, profile=profile, history=history, config=rerank_config)
