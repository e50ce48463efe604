"""
ActionPlanner — asks the model for the next Plan of a Task.

The model answers with one JSON object:

    {"type": "action", "actions": [{"name": ..., "args": {...}}], "rationale": ...}
    {"type": "answer", "content": ..., "confidence": 0.0-1.0, "rationale": ...}
    {"type": "clarify", "question": ..., "rationale": ...}

A single-action shorthand ``{"type": "action", "name": ..., "args": ...}`` is
accepted too.  Malformed output yields no plan (the governor re-plans); a
failed model call yields a low-confidence answer plan so the task can
still conclude.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from app.agent.schema_aligner import normalize_arguments
from app.agent.state import Action, ActionPlan, AnswerPlan, ClarifyPlan, Plan, Task
from app.agent.tools.base import CapabilityMetadata
from app.core.config import settings
from app.services import llm_service

logger = logging.getLogger(__name__)

DecideFn = Callable[..., str]

DEFAULT_ANSWER_CONFIDENCE = 0.35
FAILED_PLANNER_CONFIDENCE = 0.3
DEFAULT_CLARIFY_QUESTION = "Could you clarify the specific detail you need?"

_SYSTEM_PROMPT = """\
You are the planning stage of a tool-using assistant.
Decide the single best next step for the user's query: call one or more tools,
answer directly, or ask the user a clarifying question.

Rules:
- Only use tools from the provided list, with arguments matching their input schema.
- Do not repeat a tool call that already appears in the observations with the same arguments.
- Answer once the evidence is sufficient or the remaining budget is low.
- Ask a clarifying question only if the query is ambiguous and no tool can resolve it.

Respond ONLY with valid JSON in one of these shapes:
{"type": "action", "actions": [{"name": "tool_name", "args": {}}], "rationale": "..."}
{"type": "answer", "content": "answer outline", "confidence": 0.0, "rationale": "..."}
{"type": "clarify", "question": "...", "rationale": "..."}
"""

_USER_PROMPT = """\
Query: {query}

Available tools:
{tools}

Evidence so far:
{evidence}

Recent observations:
{observations}

Step {step} of {budget} (remaining: {remaining}).
"""


def _format_tools(capabilities: list[CapabilityMetadata]) -> str:
    if not capabilities:
        return "(none)"
    return "\n".join(
        f"- {cap.name}: {cap.description or 'no description'}\n"
        f"  input schema: {json.dumps(cap.input_schema, ensure_ascii=False)}"
        for cap in capabilities
    )


def _format_observations(task: Task, window: int) -> str:
    recent = task.working_memory[-window:] if window else []
    if not recent:
        return "(none)"
    return "\n".join(
        f"- {obs.action_name} {json.dumps(obs.arguments, ensure_ascii=False, default=str)} "
        f"({'success' if obs.success else 'failure'}) -> {obs.detail}"
        for obs in recent
    )


def parse_plan(data: dict[str, Any], step: int) -> Plan | None:
    """Turn a decoded model reply into a Plan; ``None`` when it is unusable."""
    kind = str(data.get("type") or "").strip().lower()
    rationale = str(data.get("rationale") or "")

    if kind == "action":
        raw_actions = data.get("actions")
        if not isinstance(raw_actions, list):
            raw_actions = [data] if data.get("name") else []
        actions = [
            Action(
                id=f"act-{step}-{index}",
                name=str(item["name"]),
                args=normalize_arguments(item.get("args", item.get("arguments"))),
            )
            for index, item in enumerate(raw_actions)
            if isinstance(item, dict) and item.get("name")
        ]
        return ActionPlan(actions=actions, rationale=rationale) if actions else None

    if kind == "answer":
        confidence = data.get("confidence")
        if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
            confidence = DEFAULT_ANSWER_CONFIDENCE
        return AnswerPlan(content=str(data.get("content") or ""), confidence=confidence, rationale=rationale)

    if kind == "clarify":
        question = str(data.get("question") or "").strip() or DEFAULT_CLARIFY_QUESTION
        return ClarifyPlan(question=question, rationale=rationale)

    return None


class ActionPlanner:
    """Produces the next Plan for a Task from the model's structured decision."""

    def __init__(
        self,
        decide: DecideFn | None = None,
        temperature: float | None = None,
        observation_window: int | None = None,
    ) -> None:
        self._decide = decide or llm_service.decide
        self._temperature = settings.planner_temperature if temperature is None else temperature
        self._window = settings.agent_repetition_window if observation_window is None else observation_window

    def plan(self, task: Task, capabilities: list[CapabilityMetadata]) -> Plan | None:
        """
        Request a Plan for *task* and install it.

        Parameters
        ----------
        task : Task
            Current task.  ``plan`` and ``pending_actions`` are replaced;
            ``last_error`` is set when the model call fails.
        capabilities : list[CapabilityMetadata]
            Capabilities the task is allowed to use.

        Returns
        -------
        Plan | None
            The new plan, or ``None`` when the reply was malformed.
        """
        prompt = _USER_PROMPT.format(
            query=task.query,
            tools=_format_tools(capabilities),
            evidence=task.evidence or "(none)",
            observations=_format_observations(task, self._window),
            step=task.step,
            budget=task.step_budget,
            remaining=task.remaining_budget,
        )

        try:
            raw = self._decide(_SYSTEM_PROMPT, prompt, temperature=self._temperature)
        except Exception as exc:
            logger.warning("Planner: model call failed (%s), answering with gathered evidence", exc)
            task.last_error = str(exc)
            plan: Plan | None = AnswerPlan(
                content="",
                confidence=FAILED_PLANNER_CONFIDENCE,
                rationale="Planner unavailable",
            )
        else:
            try:
                plan = parse_plan(llm_service.extract_json_object(raw), task.step)
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Planner: unusable model output (%s)", exc)
                plan = None

        task.plan = plan
        task.pending_actions = list(plan.actions) if isinstance(plan, ActionPlan) else []
        logger.info(
            "Planner: task %s step %d → %s",
            task.task_id,
            task.step,
            type(plan).__name__ if plan is not None else "no plan",
        )
        return plan
