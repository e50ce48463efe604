"""
LoopGovernor — the budgeted PLAN → EXECUTE → REFLECT state machine.

Flow per tick
-------------
1. ``route`` picks the next state from the Task alone (guards first, then
   pending work, then the current plan, then re-planning).
2. PLAN asks the planner for a new plan and advances the step counter.
3. EXECUTE runs the pending batch and always reflects afterwards.
4. ANSWER / CLARIFY end the loop with the final text.

A snapshot of the Task is saved after every tick.  Progress is yielded as
event dicts (``transition``, ``plan``, ``execute``, ``reflect``) so the API
layer can stream it; the generator's return value is the GovernorOutcome.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from dataclasses import dataclass
from typing import Any

from app.agent.executor import ActionExecutor
from app.agent.planner import ActionPlanner
from app.agent.reflection import Reflector
from app.agent.state import (
    ActionPlan,
    AnswerPlan,
    ClarifyPlan,
    GovernorState,
    Task,
    plan_to_dict,
)
from app.agent.synthesizer import AnswerSynthesizer
from app.agent.tools.registry import CapabilityRegistry
from app.core.config import settings
from app.core.errors import InvariantViolation
from app.services.checkpoint_service import CheckpointStore, InMemoryCheckpointStore

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────
# Event type literals
# ──────────────────────────────────────────────
EVT_TRANSITION = "transition"
EVT_PLAN = "plan"
EVT_EXECUTE = "execute"
EVT_REFLECT = "reflect"

AgentEvent = dict[str, Any]

FORCED_ANSWER_CONFIDENCE = 0.4
DEFAULT_CLARIFY_QUESTION = "Could you clarify the specific detail you need?"


@dataclass(slots=True)
class GovernorConfig:
    repetition_window: int = 5
    same_action_failures: int = 3
    window_failures: int = 3
    max_total_failures: int = 4
    min_useful_evidence_chars: int = 50
    force_answer_on_pure_failure: bool = False

    @classmethod
    def from_settings(cls) -> GovernorConfig:
        return cls(
            repetition_window=settings.agent_repetition_window,
            max_total_failures=settings.agent_max_total_failures,
            min_useful_evidence_chars=settings.agent_min_useful_evidence_chars,
            force_answer_on_pure_failure=settings.agent_force_answer_on_pure_failure,
        )


@dataclass(slots=True)
class Transition:
    state: GovernorState
    reason: str
    forced: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state.value, "reason": self.reason, "forced": self.forced}


@dataclass(slots=True)
class GovernorOutcome:
    task: Task
    state: GovernorState
    text: str
    confidence: float

    @property
    def iterations(self) -> int:
        return self.task.step


def check_invariants(task: Task) -> None:
    if not task.query or not task.query.strip():
        raise InvariantViolation("task query is empty")
    if task.step_budget <= 0:
        raise InvariantViolation(f"step budget must be positive, got {task.step_budget}")
    if task.step < 0:
        raise InvariantViolation(f"step counter is negative: {task.step}")


class LoopGovernor:
    """
    Drives one Task to a terminal state.

    Parameters
    ----------
    registry : CapabilityRegistry
        Capabilities available to the planner and executor.
    planner, executor, reflector, synthesizer
        Stage collaborators; defaults talk to the configured model.
    store : CheckpointStore | None
        Receives a snapshot after every tick.
    config : GovernorConfig | None
        Guard thresholds; defaults come from settings.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        planner: ActionPlanner | None = None,
        executor: ActionExecutor | None = None,
        reflector: Reflector | None = None,
        synthesizer: AnswerSynthesizer | None = None,
        store: CheckpointStore | None = None,
        config: GovernorConfig | None = None,
    ) -> None:
        self._registry = registry
        self._planner = planner or ActionPlanner()
        self._executor = executor or ActionExecutor(registry)
        self._reflector = reflector or Reflector()
        self._synthesizer = synthesizer or AnswerSynthesizer()
        self._store = store if store is not None else InMemoryCheckpointStore()
        self._config = config or GovernorConfig.from_settings()

    # ──────────────────────────────────────────
    # Routing
    # ──────────────────────────────────────────

    def route(self, task: Task) -> Transition:
        """Pick the next state; forced transitions record their reason on the task."""
        # a PLAN tick that produced nothing to do leaves the task in PLAN with step > 0
        after_planner = task.state is GovernorState.PLAN and task.step > 0
        transition = self._route(task)
        if transition.state is GovernorState.PLAN:
            if after_planner:
                task.consecutive_plan_routes += 1
            if task.consecutive_plan_routes >= task.step_budget:
                task.consecutive_plan_routes = 0
                transition = Transition(
                    GovernorState.ANSWER, "planner kept declining to act or conclude", forced=True
                )
        else:
            task.consecutive_plan_routes = 0

        if transition.forced:
            task.forced_reason = transition.reason
            logger.info("Governor: task %s forced %s (%s)", task.task_id, transition.state.value, transition.reason)
        return transition

    def _route(self, task: Task) -> Transition:
        try:
            check_invariants(task)
        except InvariantViolation as exc:
            return Transition(GovernorState.ANSWER, f"invalid task state: {exc}", forced=True)

        if task.cancel_requested:
            task.exhausted_budget = True
            return Transition(GovernorState.ANSWER, "cancelled", forced=True)
        if task.step > task.step_budget:
            return self._budget_exhausted(task)

        reason = self._repetition_reason(task)
        if reason:
            return Transition(GovernorState.ANSWER, reason, forced=True)
        reason = self._aggregate_failure_reason(task)
        if reason:
            return Transition(GovernorState.ANSWER, reason, forced=True)

        if task.pending_actions:
            return Transition(GovernorState.EXECUTE, "pending actions")
        if not task.enabled_actions():
            return Transition(GovernorState.ANSWER, "no actions available", forced=True)

        if isinstance(task.plan, ActionPlan):
            return Transition(GovernorState.EXECUTE, "action plan")
        if isinstance(task.plan, AnswerPlan):
            return Transition(GovernorState.ANSWER, "answer plan")
        if isinstance(task.plan, ClarifyPlan):
            return Transition(GovernorState.CLARIFY, "clarify plan")
        # the plan produced on the last step is still honored above
        if task.step >= task.step_budget:
            return self._budget_exhausted(task)
        return Transition(GovernorState.PLAN, "no plan")

    @staticmethod
    def _budget_exhausted(task: Task) -> Transition:
        task.exhausted_budget = True
        return Transition(GovernorState.ANSWER, "step budget exhausted", forced=True)

    def _repetition_reason(self, task: Task) -> str | None:
        recent = task.working_memory[-self._config.repetition_window:]
        tail = recent[-self._config.same_action_failures:]
        if (
            len(tail) == self._config.same_action_failures
            and len({obs.action_name for obs in tail}) == 1
            and not any(obs.success for obs in tail)
        ):
            return f"{tail[0].action_name} failed {len(tail)} times in a row"
        failures = sum(1 for obs in recent if not obs.success)
        if failures >= self._config.window_failures:
            return f"{failures} of the last {len(recent)} actions failed"
        return None

    def _aggregate_failure_reason(self, task: Task) -> str | None:
        failures = task.failure_count
        if failures < self._config.max_total_failures:
            return None
        useful = len(task.evidence.strip()) >= self._config.min_useful_evidence_chars or task.has_success
        if useful or self._config.force_answer_on_pure_failure:
            return f"{failures} failed actions in total"
        return None

    # ──────────────────────────────────────────
    # Public entry point
    # ──────────────────────────────────────────

    def run(self, task: Task) -> Generator[AgentEvent, None, GovernorOutcome]:
        """
        Tick the state machine until it reaches ANSWER or CLARIFY.

        Yields
        ------
        AgentEvent
            Dicts with ``type`` and ``data`` keys ready for SSE serialisation.

        Returns
        -------
        GovernorOutcome
            Terminal state, final text and confidence; the task carries the
            diagnostics.
        """
        logger.info(
            "Governor: starting task %s | query=%r | budget=%d",
            task.task_id,
            task.query,
            task.step_budget,
        )

        while True:
            transition = self.route(task)
            task.state = transition.state
            yield self._evt(EVT_TRANSITION, {"step": task.step, **transition.to_dict()})

            if transition.state is GovernorState.PLAN:
                task.step += 1
                capabilities = [
                    meta
                    for meta in self._registry.list_capabilities()
                    if task.allowed_action(meta.name) is not None
                ]
                plan = self._planner.plan(task, capabilities)
                yield self._evt(EVT_PLAN, {"step": task.step, "plan": plan_to_dict(plan)})

            elif transition.state is GovernorState.EXECUTE:
                observations = self._executor.execute(task)
                yield self._evt(EVT_EXECUTE, {
                    "step": task.step,
                    "observations": [
                        {
                            "action": obs.action_name,
                            "success": obs.success,
                            "summary": obs.summary,
                            "error": obs.error,
                        }
                        for obs in observations
                    ],
                })

                task.state = GovernorState.REFLECT
                decision = self._reflector.reflect(task)
                yield self._evt(EVT_REFLECT, {"step": task.step, **decision.to_dict()})

            else:
                outcome = self._conclude(task)
                self._checkpoint(task)
                logger.info(
                    "Governor: task %s done | state=%s | steps=%d | duplicates=%d",
                    task.task_id,
                    outcome.state.value,
                    task.step,
                    task.duplicate_calls,
                )
                return outcome

            self._checkpoint(task)

    # ──────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────

    def _conclude(self, task: Task) -> GovernorOutcome:
        # a terminal task holds exactly one concluding plan and no queued work
        task.pending_actions = []
        if task.state is GovernorState.CLARIFY:
            question = task.plan.question if isinstance(task.plan, ClarifyPlan) else ""
            text = question or DEFAULT_CLARIFY_QUESTION
            task.final_answer = text
            return GovernorOutcome(task=task, state=GovernorState.CLARIFY, text=text, confidence=0.0)

        if isinstance(task.plan, AnswerPlan):
            confidence = task.plan.confidence
        elif task.reflection is not None:
            confidence = task.reflection.confidence
        else:
            confidence = FORCED_ANSWER_CONFIDENCE
        if not isinstance(task.plan, AnswerPlan):
            task.plan = AnswerPlan(content="", confidence=confidence, rationale=task.forced_reason or "")

        text = self._synthesizer.compose(task)
        task.final_answer = text
        return GovernorOutcome(task=task, state=GovernorState.ANSWER, text=text, confidence=confidence)

    def _checkpoint(self, task: Task) -> None:
        try:
            self._store.save(task.to_snapshot())
        except Exception as exc:
            logger.warning("Governor: checkpoint for task %s failed (%s)", task.task_id, exc)

    @staticmethod
    def _evt(event_type: str, data: dict[str, Any]) -> AgentEvent:
        return {"type": event_type, "data": data}
