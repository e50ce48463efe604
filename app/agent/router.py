"""Confidence router: answer, ask for clarification, or escalate."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

CONFIDENCE_THRESHOLD = 0.7


class Route(str, Enum):
    RESPONSE = "response"
    CLARIFY = "clarify"
    ESCALATE = "escalate"


@dataclass(frozen=True, slots=True)
class RoutingDecision:
    route: Route
    attempts: int
    reason: str


def route_by_confidence(confidence: float, attempts: int, max_attempts: int) -> RoutingDecision:
    """
    Route a produced result by its confidence alone.

    ``attempts`` is the number of clarifications already requested; the
    returned decision carries the updated count (incremented only when the
    route is ``clarify``).
    """
    if confidence >= CONFIDENCE_THRESHOLD:
        return RoutingDecision(Route.RESPONSE, attempts, f"confidence {confidence:.2f} meets threshold")
    if attempts < max_attempts:
        return RoutingDecision(
            Route.CLARIFY,
            attempts + 1,
            f"confidence {confidence:.2f} below threshold, clarification {attempts + 1} of {max_attempts}",
        )
    return RoutingDecision(
        Route.ESCALATE,
        attempts,
        f"confidence {confidence:.2f} below threshold after {attempts} clarification attempt(s)",
    )
