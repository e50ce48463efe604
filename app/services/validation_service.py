"""
Response quality validation.

Six heuristic checks (completeness, accuracy, relevance, clarity, tone,
security) each produce a score in [0, 1] and a list of issues.  The
overall score is a fixed weighted sum.  Validation is advisory: any
failure inside the validator yields a passing result with score 0.7.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.core.config import settings

logger = logging.getLogger(__name__)

WEIGHTS: dict[str, float] = {
    "completeness": 0.25,
    "accuracy": 0.25,
    "relevance": 0.20,
    "clarity": 0.15,
    "tone": 0.10,
    "security": 0.05,
}

# Score used when a check is disabled or raises
_CHECK_FALLBACK: dict[str, float] = {
    "completeness": 0.7,
    "accuracy": 0.7,
    "relevance": 0.7,
    "clarity": 0.7,
    "tone": 0.8,
    "security": 0.9,
}

_QUESTION_WORDS = {"how", "what", "where", "when", "why"}
_EXAMPLE_INDICATORS = ("example", "such as", "like", "including", "e.g.")
_CLAIM_MARKERS = re.compile(r"\b(is|means|equals)\b")
_WORD_ONLY = re.compile(r"^\w+$")
_TECHNICAL_TERMS = (
    re.compile(r"api|endpoint", re.IGNORECASE),
    re.compile(r"database|sql", re.IGNORECASE),
    re.compile(r"authentication|authorization", re.IGNORECASE),
    re.compile(r"configuration|config", re.IGNORECASE),
    re.compile(r"json|xml|yaml", re.IGNORECASE),
)
_FORMAL_WORDS = ("should", "must", "recommended", "necessary")
_INFORMAL_WORDS = ("can", "just", "easy", "simply")
_SUPPORTIVE_PHRASES = ("will help", "can help", "glad to help", "happy to help")
_NEGATIVE_PHRASES = ("impossible", "cannot", "won't work", "bad idea", "useless")

_SENSITIVE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"password", re.IGNORECASE), "password"),
    (re.compile(r"api[_\s]*key", re.IGNORECASE), "api_key"),
    (re.compile(r"token", re.IGNORECASE), "token"),
    (re.compile(r"secret", re.IGNORECASE), "secret"),
    (re.compile(r"\b\d{16,19}\b"), "credit_card"),
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "ssn"),
)
_UNSAFE_PATTERNS = (
    re.compile(r"disable\s+(ssl|tls|https)", re.IGNORECASE),
    re.compile(r"turn\s+off\s+(firewall|security)", re.IGNORECASE),
    re.compile(r"chmod\s+777", re.IGNORECASE),
    re.compile(r"sudo\s+rm\s+-rf", re.IGNORECASE),
)
_MALICIOUS_PATTERNS = (
    re.compile(r"download\s+from\s+unknown", re.IGNORECASE),
    re.compile(r"ignore\s+(certificate|ssl)\s+errors", re.IGNORECASE),
    re.compile(r"bypass\s+security", re.IGNORECASE),
)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    category: str
    severity: Severity
    message: str
    suggested_fix: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "severity": self.severity.value,
            "message": self.message,
            "suggested_fix": self.suggested_fix,
        }


@dataclass(slots=True)
class ValidationResult:
    passed: bool
    quality_score: float
    scores: dict[str, float]
    issues: list[ValidationIssue] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "quality_score": round(self.quality_score, 4),
            "scores": {name: round(value, 4) for name, value in self.scores.items()},
            "issues": [issue.to_dict() for issue in self.issues],
            "improvements": list(self.improvements),
            "summary": self.summary,
        }


@dataclass(slots=True)
class ValidatorConfig:
    min_quality_score: float = 0.7
    fact_checking: bool = True
    tone_analysis: bool = True
    security_scan: bool = True
    completeness_check: bool = True

    @classmethod
    def from_settings(cls) -> ValidatorConfig:
        return cls(
            min_quality_score=settings.validation_min_quality_score,
            fact_checking=settings.validation_fact_checking,
            tone_analysis=settings.validation_tone_analysis,
            security_scan=settings.validation_security_scan,
            completeness_check=settings.validation_completeness_check,
        )


CheckResult = tuple[float, list[ValidationIssue]]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _source_text(source: Any) -> str:
    if isinstance(source, str):
        return source
    if isinstance(source, dict):
        return str(source.get("content") or "")
    return str(getattr(source, "content", "") or "")


def _sentences(text: str) -> list[str]:
    return [part for part in re.split(r"[.!?]+", text) if part.strip()]


def _keywords(text: str) -> list[str]:
    words = [word for word in text.lower().split() if len(word) > 3 and _WORD_ONLY.match(word)]
    return words[:20]


# ──────────────────────────────────────────────
# Individual checks
# ──────────────────────────────────────────────

def check_completeness(query: str, response: str) -> CheckResult:
    issues: list[ValidationIssue] = []
    response_low = response.lower()
    aspects = [
        word for word in query.lower().split() if len(word) > 3 and word not in _QUESTION_WORDS
    ][:5]

    addressed = 0
    for aspect in aspects:
        if aspect in response_low:
            addressed += 1
        else:
            issues.append(
                ValidationIssue(
                    "completeness",
                    Severity.MEDIUM,
                    f"Response doesn't address: {aspect}",
                    f"Add information about {aspect}",
                )
            )
    score = addressed / len(aspects) if aspects else 0.8

    if len(response) < 50:
        issues.append(
            ValidationIssue(
                "completeness",
                Severity.HIGH,
                "Response is too short to be complete",
                "Provide more detailed explanation",
            )
        )
        score = min(score, 0.3)

    if "example" in query.lower() and not any(marker in response_low for marker in _EXAMPLE_INDICATORS):
        issues.append(
            ValidationIssue(
                "completeness",
                Severity.MEDIUM,
                "User requested examples but response lacks concrete examples",
                "Add specific examples to illustrate the concepts",
            )
        )
        score *= 0.8

    return score, issues


def check_accuracy(response: str, sources: Sequence[Any]) -> CheckResult:
    if not sources:
        return 0.7, []

    issues: list[ValidationIssue] = []
    corpus = [_source_text(source).lower() for source in sources]
    claims = [
        sentence.strip()
        for sentence in _sentences(response)
        if len(sentence.strip()) > 10 and _CLAIM_MARKERS.search(sentence.lower())
    ][:10]
    if not claims:
        return 0.8, issues

    supported = 0
    for claim in claims:
        if any(claim.lower() in text for text in corpus):
            supported += 1
        else:
            issues.append(
                ValidationIssue(
                    "accuracy",
                    Severity.MEDIUM,
                    f'Claim not supported by sources: "{claim}"',
                    "Verify this information or remove if unsubstantiated",
                )
            )
    return supported / len(claims), issues


def check_relevance(query: str, response: str) -> CheckResult:
    issues: list[ValidationIssue] = []
    query_keywords = _keywords(query)
    response_keywords = set(_keywords(response))

    score = 0.5
    if query_keywords:
        common = [word for word in query_keywords if word in response_keywords]
        score = len(common) / len(query_keywords)

    prefix = query.lower()[:20]
    if prefix and prefix in response.lower():
        score = min(score * 1.2, 1.0)

    if len(response) > 2000 and score < 0.6:
        issues.append(
            ValidationIssue(
                "relevance",
                Severity.LOW,
                "Response may be too verbose for the specific query",
                "Focus more directly on the specific question asked",
            )
        )
        score *= 0.9

    if score < 0.3:
        issues.append(
            ValidationIssue(
                "relevance",
                Severity.CRITICAL,
                "Response appears to be off-topic or not addressing the query",
                "Revise response to directly address the user question",
            )
        )
    return score, issues


def _has_structure(response: str) -> bool:
    has_lists = bool(re.search(r"^\s*[-*]\s+", response, re.MULTILINE)) or bool(
        re.search(r"^\s*\d+\.\s+", response, re.MULTILINE)
    )
    has_headings = bool(re.search(r"^#+\s+", response, re.MULTILINE))
    has_paragraphs = len(response.split("\n\n")) > 1
    return has_lists or has_headings or has_paragraphs


def check_clarity(response: str, expertise_level: str | None = None) -> CheckResult:
    issues: list[ValidationIssue] = []
    score = 0.7

    sentences = _sentences(response)
    avg_length = len(response.split()) / len(sentences) if sentences else 0
    if avg_length > 25:
        issues.append(
            ValidationIssue(
                "clarity",
                Severity.LOW,
                "Some sentences may be too long for easy reading",
                "Break down long sentences into shorter, clearer ones",
            )
        )
        score *= 0.9

    if not _has_structure(response):
        issues.append(
            ValidationIssue(
                "clarity",
                Severity.LOW,
                "Response could benefit from better structure (headings, lists, etc.)",
                "Add headings, bullet points, or numbered lists for better organization",
            )
        )
        score *= 0.9

    if expertise_level == "beginner":
        technical_terms = sum(len(pattern.findall(response)) for pattern in _TECHNICAL_TERMS)
        if technical_terms > 5:
            issues.append(
                ValidationIssue(
                    "clarity",
                    Severity.MEDIUM,
                    "Response may be too technical for beginner user",
                    "Simplify technical language or add explanations for technical terms",
                )
            )
            score *= 0.8

    potential_errors = int(bool(re.search(r"\s{2,}", response))) + int(
        bool(re.search(r"[.!?][^\s]", response))
    )
    if potential_errors:
        issues.append(
            ValidationIssue(
                "clarity",
                Severity.MEDIUM,
                f"Potential spelling or grammar issues detected ({potential_errors})",
                "Review and correct spelling and grammar",
            )
        )
        score *= 0.85

    return score, issues


def _formality(response: str) -> float:
    low = response.lower()
    level = 0.5
    level += 0.1 * sum(1 for word in _FORMAL_WORDS if word in low)
    level -= 0.1 * sum(1 for word in _INFORMAL_WORDS if word in low)
    return _clamp(level)


def _expected_formality(expertise_level: str | None) -> float:
    expected = 0.6
    if expertise_level == "expert":
        expected += 0.2
    elif expertise_level == "beginner":
        expected -= 0.2
    return _clamp(expected)


def check_tone(response: str, expertise_level: str | None = None) -> CheckResult:
    issues: list[ValidationIssue] = []
    score = 0.8
    low = response.lower()

    formality = _formality(response)
    expected = _expected_formality(expertise_level)
    if abs(formality - expected) > 0.3:
        direction = "too formal" if formality > expected else "too casual"
        issues.append(
            ValidationIssue(
                "tone",
                Severity.LOW,
                f"Response tone may be {direction} for this context",
                "Adjust tone to be more "
                + ("conversational" if formality > expected else "professional"),
            )
        )
        score *= 0.9

    if not any(phrase in low for phrase in _SUPPORTIVE_PHRASES):
        issues.append(
            ValidationIssue(
                "tone",
                Severity.LOW,
                "Response could be more supportive and encouraging",
                "Add more supportive language and positive reinforcement",
            )
        )
        score *= 0.95

    if any(phrase in low for phrase in _NEGATIVE_PHRASES):
        issues.append(
            ValidationIssue(
                "tone",
                Severity.MEDIUM,
                "Response contains potentially negative language",
                "Reframe negative statements in a more constructive way",
            )
        )
        score *= 0.8

    return score, issues


def check_security(response: str) -> CheckResult:
    issues: list[ValidationIssue] = []
    score = 1.0

    for pattern, kind in _SENSITIVE_PATTERNS:
        if pattern.search(response):
            issues.append(
                ValidationIssue(
                    "security",
                    Severity.CRITICAL,
                    f"Potential sensitive information leak detected: {kind}",
                    f"Remove or mask {kind} information",
                )
            )
            score *= 0.5

    for pattern in _UNSAFE_PATTERNS:
        if pattern.search(response):
            issues.append(
                ValidationIssue(
                    "security",
                    Severity.HIGH,
                    "Response contains potentially unsafe security recommendations",
                    "Review and provide secure alternatives",
                )
            )
            score *= 0.7

    for pattern in _MALICIOUS_PATTERNS:
        if pattern.search(response):
            issues.append(
                ValidationIssue(
                    "security",
                    Severity.MEDIUM,
                    "Response may encourage unsafe practices",
                    "Emphasize security best practices",
                )
            )
            score *= 0.8

    return score, issues


# ──────────────────────────────────────────────
# Aggregation
# ──────────────────────────────────────────────

def overall_score(scores: dict[str, float]) -> float:
    return _clamp(sum(scores.get(name, 0.0) * weight for name, weight in WEIGHTS.items()))


def improvement_suggestions(issues: Sequence[ValidationIssue], scores: dict[str, float]) -> list[str]:
    suggestions: list[str] = []
    by_category: dict[str, list[ValidationIssue]] = {}
    for issue in issues:
        by_category.setdefault(issue.category, []).append(issue)

    for category, category_issues in by_category.items():
        critical = sum(1 for issue in category_issues if issue.severity is Severity.CRITICAL)
        high = sum(1 for issue in category_issues if issue.severity is Severity.HIGH)
        if critical:
            suggestions.append(f"CRITICAL: Fix {category} issues - {critical} critical problems detected")
        elif high:
            suggestions.append(f"HIGH: Address {category} issues - {high} high priority problems")

    if scores.get("completeness", 1.0) < 0.6:
        suggestions.append("Expand response to address all aspects of the user's question")
    if scores.get("accuracy", 1.0) < 0.7:
        suggestions.append("Verify factual claims against reliable sources")
    if scores.get("relevance", 1.0) < 0.6:
        suggestions.append("Focus more directly on the specific question asked")
    if scores.get("clarity", 1.0) < 0.7:
        suggestions.append("Improve clarity with better structure and simpler language")
    return suggestions


def validation_summary(overall: float, issues: Sequence[ValidationIssue]) -> str:
    critical = sum(1 for issue in issues if issue.severity is Severity.CRITICAL)
    high = sum(1 for issue in issues if issue.severity is Severity.HIGH)
    percent = f"{overall * 100:.0f}%"
    if critical:
        return f"Response has {critical} critical issues and needs immediate revision"
    if high:
        return f"Response has {high} high priority issues that should be addressed"
    if overall > 0.8:
        return f"Response quality is excellent ({percent})"
    if overall > 0.6:
        return f"Response quality is good ({percent}) with room for improvement"
    return f"Response quality is below average ({percent}) and needs improvement"


def fail_open_result(reason: str) -> ValidationResult:
    scores = dict(_CHECK_FALLBACK)
    return ValidationResult(
        passed=True,
        quality_score=0.7,
        scores=scores,
        issues=[],
        improvements=["Manual review recommended due to validation error"],
        summary=f"Validation incomplete due to error: {reason}",
    )


class ResponseQualityValidator:
    """Scores a final answer on six dimensions; never blocks output on its own failure."""

    def __init__(self, config: ValidatorConfig | None = None) -> None:
        self._config = config or ValidatorConfig.from_settings()

    def _run_check(self, name: str, enabled: bool, check: Callable[[], CheckResult]) -> CheckResult:
        if not enabled:
            return _CHECK_FALLBACK[name], []
        try:
            score, issues = check()
        except Exception as exc:
            logger.warning("Validator: %s check failed (%s), using %.2f", name, exc, _CHECK_FALLBACK[name])
            return _CHECK_FALLBACK[name], []
        return _clamp(score), issues

    def validate(
        self,
        query: str,
        response: str,
        sources: Sequence[Any] = (),
        expertise_level: str | None = None,
    ) -> ValidationResult:
        """
        Score *response* against *query* and the retrieved *sources*.

        Parameters
        ----------
        query : str
            The user's original question.
        response : str
            The final answer text.
        sources : Sequence[Any]
            Retrieved documents (objects or dicts with ``content``) used to
            check factual claims.
        expertise_level : str | None
            ``beginner`` / ``expert`` adjust the clarity and tone checks.

        Returns
        -------
        ValidationResult
            ``passed`` is true when the weighted score reaches the configured
            minimum and no issue is critical.
        """
        config = self._config
        try:
            checks: dict[str, CheckResult] = {
                "completeness": self._run_check(
                    "completeness", config.completeness_check, lambda: check_completeness(query, response)
                ),
                "accuracy": self._run_check(
                    "accuracy", config.fact_checking, lambda: check_accuracy(response, sources)
                ),
                "relevance": self._run_check("relevance", True, lambda: check_relevance(query, response)),
                "clarity": self._run_check(
                    "clarity", True, lambda: check_clarity(response, expertise_level)
                ),
                "tone": self._run_check(
                    "tone", config.tone_analysis, lambda: check_tone(response, expertise_level)
                ),
                "security": self._run_check("security", config.security_scan, lambda: check_security(response)),
            }
            scores = {name: result[0] for name, result in checks.items()}
            issues = [issue for _, found in checks.values() for issue in found]
            overall = overall_score(scores)
            has_critical = any(issue.severity is Severity.CRITICAL for issue in issues)
            result = ValidationResult(
                passed=overall >= config.min_quality_score and not has_critical,
                quality_score=overall,
                scores=scores,
                issues=issues,
                improvements=improvement_suggestions(issues, scores),
                summary=validation_summary(overall, issues),
            )
        except Exception as exc:
            logger.warning("Validator: validation failed (%s), failing open", exc)
            return fail_open_result(str(exc))

        logger.info(
            "Validator: score=%.2f issues=%d passed=%s",
            result.quality_score,
            len(result.issues),
            result.passed,
        )
        return result
