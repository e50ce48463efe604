"""
Task pipeline: governor → confidence router → quality validator → task output.

Every request ends as one of three kinds: ``answer``, ``clarification`` or
``escalation``.  Anything unexpected raised while the governor runs is
turned into an escalation carrying the error in its diagnostics; internal
errors are never surfaced as such to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Generator, Iterable
from dataclasses import dataclass, field
from typing import Any

from app.agent.governor import AgentEvent, GovernorOutcome, LoopGovernor
from app.agent.router import Route, RoutingDecision, route_by_confidence
from app.agent.state import AllowedAction, GovernorState, Task
from app.agent.tools.registry import CapabilityRegistry
from app.core.config import settings
from app.services.validation_service import ResponseQualityValidator, ValidationResult

logger = logging.getLogger(__name__)

KIND_ANSWER = "answer"
KIND_CLARIFICATION = "clarification"
KIND_ESCALATION = "escalation"

LOW_CONFIDENCE_QUESTION = (
    "I am not confident I understood your request. "
    "Could you add more detail about what you need?"
)

AllowedActionInput = str | dict[str, Any] | AllowedAction


@dataclass(slots=True)
class TaskResult:
    task_id: str
    kind: str
    text: str
    confidence: float | None
    diagnostics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "kind": self.kind,
            "text": self.text,
            "confidence": self.confidence,
            "diagnostics": self.diagnostics,
        }


def normalize_allowed_actions(
    items: Iterable[AllowedActionInput] | None,
    available: Iterable[str],
) -> list[AllowedAction]:
    """Plain names become enabled entries; ``None`` allows every available capability."""
    if items is None:
        return [AllowedAction(name=name) for name in available]
    normalized: list[AllowedAction] = []
    for item in items:
        if isinstance(item, AllowedAction):
            normalized.append(item)
        elif isinstance(item, str):
            normalized.append(AllowedAction(name=item))
        else:
            normalized.append(
                AllowedAction(
                    name=str(item["name"]),
                    enabled=bool(item.get("enabled", True)),
                    config=dict(item.get("config") or {}),
                )
            )
    return normalized


def collect_sources(task: Task) -> list[dict[str, Any]]:
    """Documents returned by successful actions, for the accuracy check."""
    sources: list[dict[str, Any]] = []
    for obs in task.working_memory:
        if not obs.success or not isinstance(obs.payload, dict):
            continue
        for key in ("chunks", "results", "documents"):
            items = obs.payload.get(key)
            if isinstance(items, list):
                sources.extend(item for item in items if isinstance(item, dict))
    return sources


def escalation_text(attempts: int) -> str:
    return (
        f"I could not reach a confident answer after {attempts} clarification attempt(s). "
        "Your request has been escalated for human review."
    )


class TaskService:
    """Runs Tasks end to end; one instance may serve many concurrent requests."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        governor: LoopGovernor | None = None,
        validator: ResponseQualityValidator | None = None,
        max_clarification_attempts: int | None = None,
        validation_enabled: bool | None = None,
        default_step_budget: int | None = None,
    ) -> None:
        self._registry = registry
        self._governor = governor or LoopGovernor(registry)
        self._validator = validator or ResponseQualityValidator()
        self._max_attempts = (
            settings.max_clarification_attempts
            if max_clarification_attempts is None
            else max_clarification_attempts
        )
        self._validation_enabled = (
            settings.validation_enabled if validation_enabled is None else validation_enabled
        )
        self._default_budget = default_step_budget or settings.agent_step_budget

    def create_task(
        self,
        query: str,
        step_budget: int | None = None,
        allowed_actions: Iterable[AllowedActionInput] | None = None,
        clarification_attempts: int = 0,
    ) -> Task:
        available = [meta.name for meta in self._registry.list_capabilities()]
        return Task(
            query=query,
            step_budget=step_budget or self._default_budget,
            allowed_actions=normalize_allowed_actions(allowed_actions, available),
            clarification_attempts=clarification_attempts,
        )

    # ──────────────────────────────────────────
    # Public entry points
    # ──────────────────────────────────────────

    def run_task(self, task: Task) -> TaskResult:
        """Run *task* to completion and return the routed result."""
        result: TaskResult | None = None
        for event in self.stream_task(task):
            if event["type"] == "final":
                result = event["result"]
        if result is None:
            raise RuntimeError("task stream ended without a final event")
        return result

    def stream_task(self, task: Task) -> Generator[AgentEvent, None, None]:
        """
        Yield governor events followed by exactly one ``final`` event.

        The ``final`` event carries the TaskResult under ``result`` (and its
        dict form under ``data``).  An unexpected failure yields an ``error``
        event before the escalation result.
        """
        try:
            outcome = yield from self._governor.run(task)
            result = self._finish(outcome)
        except Exception as exc:
            logger.exception("TaskService: task %s failed: %s", task.task_id, exc)
            task.last_error = str(exc) or exc.__class__.__name__
            yield {"type": "error", "data": {"message": task.last_error, "taskId": task.task_id}}
            result = TaskResult(
                task_id=task.task_id,
                kind=KIND_ESCALATION,
                text=escalation_text(task.clarification_attempts),
                confidence=None,
                diagnostics=self._diagnostics(task),
            )
        yield {"type": "final", "data": result.to_dict(), "result": result}

    # ──────────────────────────────────────────
    # Routing
    # ──────────────────────────────────────────

    def _finish(self, outcome: GovernorOutcome) -> TaskResult:
        task = outcome.task
        if outcome.state is GovernorState.CLARIFY:
            # governor clarifications count against the same attempt limit
            decision = route_by_confidence(0.0, task.clarification_attempts, self._max_attempts)
        else:
            decision = route_by_confidence(outcome.confidence, task.clarification_attempts, self._max_attempts)
        task.clarification_attempts = decision.attempts
        logger.info(
            "TaskService: task %s routed to %s (%s)",
            task.task_id,
            decision.route.value,
            decision.reason,
        )

        diagnostics = self._diagnostics(task, decision)
        if decision.route is Route.ESCALATE:
            return TaskResult(
                task_id=task.task_id,
                kind=KIND_ESCALATION,
                text=escalation_text(decision.attempts),
                confidence=outcome.confidence,
                diagnostics=diagnostics,
            )
        if decision.route is Route.CLARIFY:
            text = outcome.text if outcome.state is GovernorState.CLARIFY else LOW_CONFIDENCE_QUESTION
            return TaskResult(
                task_id=task.task_id,
                kind=KIND_CLARIFICATION,
                text=text,
                confidence=outcome.confidence,
                diagnostics=diagnostics,
            )

        validation = self._validate(task, outcome.text)
        if validation is not None:
            diagnostics["validation"] = validation.to_dict()
        return TaskResult(
            task_id=task.task_id,
            kind=KIND_ANSWER,
            text=outcome.text,
            confidence=outcome.confidence,
            diagnostics=diagnostics,
        )

    def _validate(self, task: Task, text: str) -> ValidationResult | None:
        if not self._validation_enabled:
            return None
        result = self._validator.validate(task.query, text, sources=collect_sources(task))
        if not result.passed:
            logger.info("TaskService: task %s answer below quality bar: %s", task.task_id, result.summary)
        return result

    @staticmethod
    def _diagnostics(task: Task, decision: RoutingDecision | None = None) -> dict[str, Any]:
        diagnostics: dict[str, Any] = {
            "iterations": task.step,
            "duplicateCalls": task.duplicate_calls,
            "exhaustedBudget": task.exhausted_budget,
            "lastError": task.last_error,
            "forcedReason": task.forced_reason,
            "clarificationAttempts": task.clarification_attempts,
        }
        if decision is not None:
            diagnostics["route"] = decision.route.value
        return diagnostics
