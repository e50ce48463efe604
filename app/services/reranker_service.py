"""
Document reranking by semantic, contextual and freshness signals.

finalScore = w_s * semantic + w_c * contextual + w_f * freshness, clamped
to [0, 1].  Semantic relevance is a lexical overlap heuristic unless the
embedding model is configured, in which case it is the cosine similarity
of Gemini embeddings (falling back to the lexical score if the embedding
call fails).
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.core.config import settings
from app.services.embedding_service import EmbeddingServiceError, embed_query, embed_texts
from app.services.retrieval_service import RetrievedDocument

logger = logging.getLogger(__name__)

_SYNONYM_PAIRS: tuple[tuple[str, str], ...] = (
    ("configuration", "setup"),
    ("error", "problem"),
    ("guide", "manual"),
    ("api", "interface"),
)

_CYRILLIC = re.compile(r"[а-яё]", re.IGNORECASE)

# (age limit in days, score); anything older scores 0.2
_FRESHNESS_STEPS: tuple[tuple[int, float], ...] = ((30, 1.0), (90, 0.8), (180, 0.6), (365, 0.4))


@dataclass(slots=True)
class UserProfile:
    expertise_level: str = "intermediate"
    technical_background: list[str] = field(default_factory=list)
    preferred_language: str = "en"


@dataclass(slots=True)
class RerankConfig:
    semantic_weight: float = 0.6
    contextual_weight: float = 0.3
    freshness_weight: float = 0.1
    top_k: int = 10
    model: str = "lexical"

    @classmethod
    def from_settings(cls) -> RerankConfig:
        return cls(
            semantic_weight=settings.reranker_semantic_weight,
            contextual_weight=settings.reranker_contextual_weight,
            freshness_weight=settings.reranker_freshness_weight,
            top_k=settings.reranker_top_k,
            model=settings.reranker_model,
        )


@dataclass(frozen=True, slots=True)
class RerankedDocument:
    document: RetrievedDocument
    original_score: float
    semantic_score: float
    contextual_score: float
    freshness_score: float
    final_score: float
    rationale: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "document": self.document.to_dict(),
            "original_score": self.original_score,
            "semantic_score": round(self.semantic_score, 4),
            "contextual_score": round(self.contextual_score, 4),
            "freshness_score": round(self.freshness_score, 4),
            "final_score": round(self.final_score, 4),
            "rationale": self.rationale,
        }

    @classmethod
    def passthrough(
        cls,
        document: RetrievedDocument,
        rationale: str = "Fallback: reranking failed, using original score",
    ) -> RerankedDocument:
        score = _clamp(document.score)
        return cls(
            document=document,
            original_score=document.score,
            semantic_score=score,
            contextual_score=0.5,
            freshness_score=0.5,
            final_score=score,
            rationale=rationale,
        )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _cosine_similarity(vec_a: list[float], vec_b: list[float]) -> float:
    dot = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


# ──────────────────────────────────────────────
# Component scores
# ──────────────────────────────────────────────

def lexical_semantic_score(query: str, content: str) -> float:
    query_low = query.lower()
    content_low = content.lower()
    terms = query_low.split()
    if not terms:
        return 0.0

    matches = sum(1 for term in terms if term in content_low)
    score = matches / len(terms)

    if query_low.strip() and query_low.strip() in content_low:
        score += 0.3

    for first, second in _SYNONYM_PAIRS:
        if (first in query_low and second in content_low) or (
            second in query_low and first in content_low
        ):
            score += 0.1

    return min(score, 1.0)


def _expertise_bonus(document: RetrievedDocument, level: str) -> float:
    category = (document.category or "").lower()
    if level == "beginner":
        return 0.2 if ("tutorial" in category or "basic" in category) else 0.0
    if level == "expert":
        return 0.2 if ("advanced" in category or "api" in category) else -0.1
    return 0.1


def _background_bonus(document: RetrievedDocument, background: Sequence[str]) -> float:
    content = document.content.lower()
    source = document.source.lower()
    bonus = 0.0
    for skill in background:
        skill_low = skill.lower()
        if skill_low and (skill_low in content or skill_low in source):
            bonus += 0.05
    return min(bonus, 0.2)


def _language_bonus(document: RetrievedDocument, language: str) -> float:
    if not document.content:
        return 0.0
    cyrillic_ratio = len(_CYRILLIC.findall(document.content)) / len(document.content)
    if language == "ru" and cyrillic_ratio > 0.1:
        return 0.1
    if language == "en" and cyrillic_ratio < 0.05:
        return 0.1
    return 0.0


def _message_text(message: Any) -> str:
    if isinstance(message, dict):
        return str(message.get("content") or "")
    return str(message or "")


def _conversation_bonus(document: RetrievedDocument, history: Sequence[Any]) -> float:
    if not history:
        return 0.0
    recent = " ".join(_message_text(msg).lower() for msg in list(history)[-3:])
    topics = [word for word in recent.split() if len(word) > 3]
    content = document.content.lower()
    matches = sum(1 for topic in topics if topic in content)
    return min(matches * 0.02, 0.15)


def _authority_bonus(document: RetrievedDocument) -> float:
    source = document.source.lower()
    if "official" in source or "documentation" in source:
        return 0.15
    if "api" in source or "reference" in source:
        return 0.1
    if "community" in source or "forum" in source:
        return -0.05
    return 0.0


def contextual_score(
    document: RetrievedDocument,
    profile: UserProfile,
    history: Sequence[Any] = (),
) -> float:
    score = 0.5
    score += _expertise_bonus(document, profile.expertise_level)
    score += _background_bonus(document, profile.technical_background)
    score += _language_bonus(document, profile.preferred_language)
    score += _conversation_bonus(document, history)
    score += _authority_bonus(document)
    return _clamp(score)


def freshness_score(document: RetrievedDocument, now: datetime | None = None) -> float:
    if document.last_updated is None:
        return 0.5
    now = now or datetime.now(timezone.utc)
    updated = document.last_updated
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=timezone.utc)
    age_days = (now - updated).total_seconds() / 86400
    for limit, score in _FRESHNESS_STEPS:
        if age_days <= limit:
            return score
    return 0.2


def composite_score(semantic: float, contextual: float, freshness: float, config: RerankConfig) -> float:
    return _clamp(
        semantic * config.semantic_weight
        + contextual * config.contextual_weight
        + freshness * config.freshness_weight
    )


def ranking_rationale(
    semantic: float,
    contextual: float,
    freshness: float,
    final: float,
    document: RetrievedDocument,
) -> str:
    parts: list[str] = []
    if semantic > 0.8:
        parts.append("high semantic relevance")
    elif semantic > 0.6:
        parts.append("good semantic relevance")
    if contextual > 0.7:
        parts.append("matches user context")
    if freshness > 0.8:
        parts.append("up-to-date information")
    elif freshness < 0.3:
        parts.append("outdated information")
    if "official" in document.source.lower():
        parts.append("official source")

    if parts:
        return f"High rating: {', '.join(parts)}"
    return f"Rating {final:.2f}: basic query match"


# ──────────────────────────────────────────────
# Public entry point
# ──────────────────────────────────────────────

def _semantic_scores(
    query: str,
    documents: Sequence[RetrievedDocument],
    model: str,
    embedder: Callable[[str, list[str]], tuple[list[float], list[list[float]]]] | None,
) -> list[float]:
    lexical = [lexical_semantic_score(query, doc.content) for doc in documents]
    if model != "embedding":
        return lexical

    try:
        if embedder is not None:
            query_vector, doc_vectors = embedder(query, [doc.content for doc in documents])
        else:
            query_vector = embed_query(query)
            doc_vectors = embed_texts([doc.content for doc in documents])
    except EmbeddingServiceError as exc:
        logger.warning("Reranker: embedding scoring failed (%s), lexical fallback", exc)
        return lexical

    if len(doc_vectors) != len(documents):
        return lexical
    return [_clamp(_cosine_similarity(query_vector, vec)) for vec in doc_vectors]


def rerank_documents(
    query: str,
    documents: Sequence[RetrievedDocument],
    profile: UserProfile | None = None,
    history: Sequence[Any] = (),
    config: RerankConfig | None = None,
    now: datetime | None = None,
    embedder: Callable[[str, list[str]], tuple[list[float], list[list[float]]]] | None = None,
) -> list[RerankedDocument]:
    """
    Score, sort and truncate *documents* for *query*.

    Parameters
    ----------
    query : str
        The search query the documents were retrieved for.
    documents : Sequence[RetrievedDocument]
        Candidates in retrieval order.
    profile : UserProfile | None
        Expertise, background and language of the asking user.
    history : Sequence[Any]
        Recent conversation messages (dicts with ``content`` or plain strings).
    config : RerankConfig | None
        Weights, model and top-K; defaults come from settings.
    now : datetime | None
        Reference time for freshness; injectable for tests.

    Returns
    -------
    list[RerankedDocument]
        Sorted descending by ``final_score``, at most ``config.top_k`` items.
        If scoring raises, documents pass through with their original score.
    """
    if not documents:
        return []

    config = config or RerankConfig.from_settings()
    profile = profile or UserProfile()

    try:
        semantic = _semantic_scores(query, documents, config.model, embedder)
        reranked: list[RerankedDocument] = []
        for doc, sem in zip(documents, semantic):
            ctx = contextual_score(doc, profile, history)
            fresh = freshness_score(doc, now=now)
            final = composite_score(sem, ctx, fresh, config)
            reranked.append(
                RerankedDocument(
                    document=doc,
                    original_score=doc.score,
                    semantic_score=sem,
                    contextual_score=ctx,
                    freshness_score=fresh,
                    final_score=final,
                    rationale=ranking_rationale(sem, ctx, fresh, final, doc),
                )
            )
    except Exception as exc:
        logger.warning("Reranker: scoring failed (%s), passing original scores through", exc)
        return [RerankedDocument.passthrough(doc) for doc in documents][: config.top_k]

    reranked.sort(key=lambda item: item.final_score, reverse=True)
    top = reranked[: config.top_k]
    logger.debug("Reranker: %d → %d documents, top=%.3f", len(documents), len(top), top[0].final_score)
    return top
