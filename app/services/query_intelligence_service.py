from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from app.core.config import settings

logger = logging.getLogger(__name__)

_COMPLEXITY_INDICATORS = (
    "how to configure",
    "step by step",
    "in detail",
    "difference between",
    "compare",
    "which is better",
    "problem with",
    "not working",
    "integration",
    "configure",
    "troubleshoot",
)

# Checked in order; first hit wins.
_MAIN_INTENTS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("configure", "set up"), "configuration"),
    (("problem", "error", "issue"), "troubleshooting"),
    (("how",), "howto"),
    (("what is", "define"), "definition"),
    (("compare", "vs"), "comparison"),
    (("install", "setup"), "installation"),
)

_SECONDARY_INTENTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"also|additionally|furthermore"), "additional"),
    (re.compile(r"example|sample|demo"), "example"),
    (re.compile(r"recommend|suggestion|advice"), "recommendation"),
    (re.compile(r"security|safety|protection"), "security"),
    (re.compile(r"performance|speed|optimization"), "performance"),
)

_ENTITY_TYPES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"api|endpoint|interface"), "api"),
    (re.compile(r"database|db|storage"), "database"),
    (re.compile(r"authentication|auth|login"), "auth"),
    (re.compile(r"configuration|config|settings"), "config"),
    (re.compile(r"payment|billing|transaction"), "payment"),
    (re.compile(r"user|account|profile"), "user"),
    (re.compile(r"service|microservice|component"), "service"),
)

_INTENT_HINTS: dict[str, tuple[str, ...]] = {
    "configuration": ("setup", "config", "settings"),
    "troubleshooting": ("error", "fix", "solution"),
    "howto": ("tutorial", "guide", "instruction"),
    "definition": ("documentation", "reference", "overview"),
}

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


@dataclass(slots=True)
class QueryAnalysis:
    cleaned_query: str
    complexity_score: float
    main_intent: str
    secondary_intents: list[str]
    entity_types: list[str]

    @property
    def requires_decomposition(self) -> bool:
        return (
            self.complexity_score > 1.5
            or len(self.secondary_intents) > 1
            or len(self.entity_types) > 2
        )


@dataclass(slots=True)
class DecomposerConfig:
    max_sub_queries: int = 5
    complexity_threshold: float = 1.5
    enable_dependency_analysis: bool = True
    min_sub_query_length: int = 10

    @classmethod
    def from_settings(cls) -> DecomposerConfig:
        return cls(
            max_sub_queries=settings.decomposer_max_sub_queries,
            complexity_threshold=settings.decomposer_complexity_threshold,
            enable_dependency_analysis=settings.decomposer_dependency_analysis,
            min_sub_query_length=settings.decomposer_min_sub_query_length,
        )


@dataclass(frozen=True, slots=True)
class DecomposedQuery:
    id: str
    original_query: str
    sub_query: str
    intent: str
    priority: int
    dependencies: tuple[str, ...] = ()
    strategy: str = "simple"
    search_hints: tuple[str, ...] = ()
    expected_result_type: str = "direct_answer"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "original_query": self.original_query,
            "sub_query": self.sub_query,
            "intent": self.intent,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "strategy": self.strategy,
            "search_hints": list(self.search_hints),
            "expected_result_type": self.expected_result_type,
        }


@dataclass(slots=True)
class Decomposition:
    sub_queries: list[DecomposedQuery]
    strategy: str
    complexity: float
    analysis: QueryAnalysis | None = field(default=None, repr=False)


# ──────────────────────────────────────────────
# Analysis
# ──────────────────────────────────────────────

def _sentences(text: str) -> list[str]:
    return [part for part in _SENTENCE_SPLIT.split(text) if part.strip()]


def complexity_score(query: str) -> float:
    low = query.lower()
    words = [word for word in query.split() if len(word) > 2]
    score = min(len(words) * 0.1, 2.0)
    score += min(len(_sentences(query)) * 0.3, 1.5)
    score += 0.5 * sum(1 for indicator in _COMPLEXITY_INDICATORS if indicator in low)
    return score


def main_intent(query: str) -> str:
    low = query.lower()
    for needles, intent in _MAIN_INTENTS:
        if any(needle in low for needle in needles):
            return intent
    return "general"


def secondary_intents(query: str) -> list[str]:
    low = query.lower()
    return [intent for pattern, intent in _SECONDARY_INTENTS if pattern.search(low)]


def entity_types(query: str) -> list[str]:
    low = query.lower()
    return [kind for pattern, kind in _ENTITY_TYPES if pattern.search(low)]


def analyze_query(query: str) -> QueryAnalysis:
    cleaned = " ".join(query.split()).strip()
    return QueryAnalysis(
        cleaned_query=cleaned,
        complexity_score=complexity_score(cleaned),
        main_intent=main_intent(cleaned),
        secondary_intents=secondary_intents(cleaned),
        entity_types=entity_types(cleaned),
    )


# ──────────────────────────────────────────────
# Sub-query construction
# ──────────────────────────────────────────────

def reformulate_for_intent(query: str, intent: str) -> str:
    if intent == "configuration":
        return f"configure {query}"
    if intent == "troubleshooting":
        return f"troubleshoot {query}"
    if intent == "howto":
        return f"how to use {query}"
    if intent == "example":
        return f"examples of {query}"
    return query


def search_hints(analysis: QueryAnalysis, intent: str | None = None) -> list[str]:
    hints = list(_INTENT_HINTS.get(intent or analysis.main_intent, ()))
    hints.extend(analysis.entity_types)
    deduped = list(dict.fromkeys(hints))
    return deduped[:5]


def infer_result_type(query: str, intent: str | None = None) -> str:
    if intent in ("howto", "configuration"):
        return "tutorial"
    if intent == "troubleshooting":
        return "troubleshooting"
    if intent == "definition":
        return "documentation"
    if "example" in query or "sample" in query:
        return "code_example"
    if "compare" in query or "versus" in query or "vs" in query:
        return "comparison"
    return "direct_answer"


@dataclass(slots=True)
class _Draft:
    sub_query: str
    intent: str
    priority: int
    hints: list[str]
    result_type: str
    dependencies: list[int] = field(default_factory=list)


def _split(analysis: QueryAnalysis, config: DecomposerConfig) -> tuple[list[_Draft], str]:
    query = analysis.cleaned_query
    drafts: list[_Draft] = []

    if analysis.secondary_intents:
        drafts.append(
            _Draft(
                sub_query=reformulate_for_intent(query, analysis.main_intent),
                intent=analysis.main_intent,
                priority=1,
                hints=search_hints(analysis),
                result_type=infer_result_type(query, analysis.main_intent),
            )
        )
        for index, intent in enumerate(analysis.secondary_intents):
            if len(drafts) >= config.max_sub_queries:
                break
            drafts.append(
                _Draft(
                    sub_query=reformulate_for_intent(query, intent),
                    intent=intent,
                    priority=index + 2,
                    hints=search_hints(analysis, intent),
                    result_type=infer_result_type(query, intent),
                )
            )
        return drafts, "parallel"

    if len(analysis.entity_types) > 1:
        for index, entity in enumerate(analysis.entity_types[: config.max_sub_queries]):
            drafts.append(
                _Draft(
                    sub_query=f"{query} {entity}",
                    intent=analysis.main_intent,
                    priority=index + 1,
                    hints=list(dict.fromkeys([entity, *search_hints(analysis)]))[:5],
                    result_type=infer_result_type(query, analysis.main_intent),
                )
            )
        return drafts, "parallel"

    sentences = [
        sentence.strip()
        for sentence in _sentences(query)
        if len(sentence.strip()) > config.min_sub_query_length
    ]
    for index, sentence in enumerate(sentences[: config.max_sub_queries]):
        drafts.append(
            _Draft(
                sub_query=sentence,
                intent=analysis.main_intent,
                priority=index + 1,
                hints=search_hints(analysis),
                result_type=infer_result_type(sentence),
            )
        )
    return drafts, "sequential"


def _link_dependencies(drafts: list[_Draft]) -> None:
    """Two sub-queries sharing more than one word longer than 3 characters depend on each other."""
    words = [draft.sub_query.lower().split() for draft in drafts]
    for i, draft in enumerate(drafts):
        for j, other in enumerate(words):
            if i == j:
                continue
            common = [word for word in words[i] if len(word) > 3 and word in other]
            if len(common) > 1:
                draft.dependencies.append(j)


def _priority_score(draft: _Draft, expertise_level: str | None) -> int:
    score = 0
    if draft.intent in ("configuration", "troubleshooting"):
        score += 2
    if expertise_level == "beginner" and ("tutorial" in draft.sub_query or "basic" in draft.sub_query):
        score += 1
    return score + (10 - draft.priority)


def _single(analysis: QueryAnalysis, original: str) -> Decomposition:
    only = DecomposedQuery(
        id="sq-1",
        original_query=original,
        sub_query=original,
        intent=analysis.main_intent,
        priority=1,
        strategy="simple",
        search_hints=tuple(search_hints(analysis)),
        expected_result_type=infer_result_type(original),
    )
    return Decomposition(sub_queries=[only], strategy="simple", complexity=analysis.complexity_score, analysis=analysis)


def decompose_query(
    query: str,
    expertise_level: str | None = None,
    config: DecomposerConfig | None = None,
) -> Decomposition:
    """
    Split *query* into prioritised sub-queries with a search strategy.

    Parameters
    ----------
    query : str
        The user's original question.
    expertise_level : str | None
        ``beginner`` boosts sub-queries that mention tutorials/basics.
    config : DecomposerConfig | None
        Limits and thresholds; defaults come from settings.

    Returns
    -------
    Decomposition
        ``sub_queries`` ordered by priority (1 = first).  A query below the
        complexity threshold yields a single ``simple`` sub-query equal to
        the original.
    """
    config = config or DecomposerConfig.from_settings()
    analysis = analyze_query(query)

    if not analysis.requires_decomposition or analysis.complexity_score < config.complexity_threshold:
        logger.debug("Decomposer: query is simple (complexity=%.2f)", analysis.complexity_score)
        return _single(analysis, query)

    drafts, split_strategy = _split(analysis, config)
    if not drafts:
        return _single(analysis, query)

    if config.enable_dependency_analysis:
        _link_dependencies(drafts)

    ids = [f"sq-{index + 1}" for index in range(len(drafts))]
    order = sorted(
        range(len(drafts)),
        key=lambda index: _priority_score(drafts[index], expertise_level),
        reverse=True,
    )

    has_dependencies = any(draft.dependencies for draft in drafts)
    if has_dependencies:
        strategy = "sequential"
    elif len(drafts) == 1:
        strategy = "simple"
    elif split_strategy == "parallel" and len(drafts) > 3:
        strategy = "hybrid"
    else:
        strategy = split_strategy

    sub_queries = [
        DecomposedQuery(
            id=ids[index],
            original_query=query,
            sub_query=drafts[index].sub_query,
            intent=drafts[index].intent,
            priority=rank + 1,
            dependencies=tuple(ids[dep] for dep in drafts[index].dependencies),
            strategy=strategy,
            search_hints=tuple(drafts[index].hints),
            expected_result_type=drafts[index].result_type,
        )
        for rank, index in enumerate(order)
    ]
    logger.info(
        "Decomposer: %d sub-queries, strategy=%s, complexity=%.2f",
        len(sub_queries),
        strategy,
        analysis.complexity_score,
    )
    return Decomposition(
        sub_queries=sub_queries,
        strategy=strategy,
        complexity=analysis.complexity_score,
        analysis=analysis,
    )