"""
ActionExecutor — runs every pending Action of a Task and records Observations.

Per action, in submission order:

1. resolve the capability (it must be allowed for the Task and known to the registry)
2. merge the allowed-action config under the planner's arguments, normalize, align to the schema
3. clamp result-size arguments when the budget is nearly spent
4. suppress duplicates (hashes seen earlier in the Task or in this batch)
5. invoke and summarize the result

Every outcome, refusals included, becomes an Observation appended to the
Task's working memory.  Nothing raised by a capability escapes ``execute``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from app.agent.dedup import invocation_hash
from app.agent.schema_aligner import align_arguments, normalize_arguments
from app.agent.state import Action, ActionPlan, Observation, Task
from app.agent.tools.registry import CapabilityRegistry
from app.core.config import settings
from app.core.errors import (
    CapabilityUnavailable,
    DuplicateInvocationSuppressed,
    ExternalCallFailure,
    SchemaValidationError,
)

logger = logging.getLogger(__name__)

RESULT_SIZE_ARGUMENTS = ("top_k", "topK")
RESULT_LIST_KEYS = ("chunks", "results", "documents")
_WHITESPACE = re.compile(r"\s+")


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(limit - 1, 0)].rstrip() + "…"


def _item_preview(item: Any, snippet_chars: int) -> str:
    if isinstance(item, dict):
        title = item.get("title") or item.get("source") or item.get("name") or ""
        body = item.get("content") or item.get("snippet") or item.get("text")
        if body is None:
            body = json.dumps(item, ensure_ascii=False, default=str)
    else:
        title, body = "", str(item)
    snippet = _truncate(_WHITESPACE.sub(" ", str(body)).strip(), snippet_chars)
    return f"- {title}: {snippet}" if title else f"- {snippet}"


def summarize_payload(
    name: str,
    payload: Any,
    preview_items: int = 3,
    snippet_chars: int = 220,
    summary_chars: int = 500,
) -> str | None:
    """Bounded human-readable summary of a capability result."""
    if payload is None:
        return None
    if isinstance(payload, dict):
        for key in RESULT_LIST_KEYS:
            items = payload.get(key)
            if isinstance(items, list):
                lines = [f"{name} returned {len(items)} item(s)"]
                lines.extend(_item_preview(item, snippet_chars) for item in items[:preview_items])
                return "\n".join(lines)
    if isinstance(payload, str):
        return _truncate(payload, summary_chars)
    return _truncate(json.dumps(payload, ensure_ascii=False, default=str), summary_chars)


def clamp_result_size(args: dict[str, Any], limit: int) -> dict[str, Any]:
    clamped = dict(args)
    for key in RESULT_SIZE_ARGUMENTS:
        value = clamped.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > limit:
            clamped[key] = limit
    return clamped


class ActionExecutor:
    """Executes a Task's pending Actions one at a time against the registry."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        late_budget_remaining: int | None = None,
        late_budget_top_k: int | None = None,
        preview_items: int | None = None,
        snippet_chars: int | None = None,
        summary_chars: int | None = None,
    ) -> None:
        self._registry = registry
        self._late_remaining = (
            settings.agent_late_budget_remaining if late_budget_remaining is None else late_budget_remaining
        )
        self._late_top_k = settings.agent_late_budget_top_k if late_budget_top_k is None else late_budget_top_k
        self._preview_items = settings.observation_preview_items if preview_items is None else preview_items
        self._snippet_chars = settings.observation_snippet_chars if snippet_chars is None else snippet_chars
        self._summary_chars = settings.observation_summary_chars if summary_chars is None else summary_chars

    def execute(self, task: Task) -> list[Observation]:
        """
        Run the pending batch and append one Observation per Action.

        Parameters
        ----------
        task : Task
            The task whose ``pending_actions`` (or current action plan) are run.
            Working memory, seen hashes, the duplicate counter and
            ``last_error`` are updated in place.

        Returns
        -------
        list[Observation]
            Observations of this batch, in submission order.  The pending
            queue and the consumed plan are cleared afterwards.
        """
        actions = list(task.pending_actions)
        if not actions and isinstance(task.plan, ActionPlan):
            actions = list(task.plan.actions)

        batch_hashes: set[str] = set()
        observations: list[Observation] = []
        for action in actions:
            observation = self._execute_one(task, action, batch_hashes)
            task.record(observation)
            observations.append(observation)
            if not observation.success:
                task.last_error = observation.error

        task.pending_actions = []
        task.plan = None

        logger.info(
            "Executor: task %s batch of %d → %d ok, %d failed",
            task.task_id,
            len(observations),
            sum(1 for obs in observations if obs.success),
            sum(1 for obs in observations if not obs.success),
        )
        return observations

    # ──────────────────────────────────────────
    # Single action
    # ──────────────────────────────────────────

    def _execute_one(self, task: Task, action: Action, batch_hashes: set[str]) -> Observation:
        allowed = task.allowed_action(action.name)
        metadata = self._registry.resolve(action.name) if allowed is not None else None
        if allowed is None or metadata is None:
            return self._failed(action, action.args, CapabilityUnavailable(action.name))

        merged = {**allowed.config, **normalize_arguments(action.args)}
        alignment = align_arguments(metadata.input_schema, merged)
        if not alignment.ok:
            return self._failed(action, alignment.args, SchemaValidationError(alignment.issues))

        args = alignment.args
        if task.remaining_budget < self._late_remaining:
            args = clamp_result_size(args, self._late_top_k)

        key = invocation_hash(action.name, args)
        if key in task.seen_hashes or key in batch_hashes:
            task.duplicate_calls += 1
            logger.info("Executor: duplicate %s suppressed for task %s", action.name, task.task_id)
            return self._failed(action, args, DuplicateInvocationSuppressed(key))
        batch_hashes.add(key)

        context = {"taskId": task.task_id, **allowed.config}
        try:
            result = self._registry.invoke(action.name, args, context)
        except ExternalCallFailure as exc:
            logger.warning("Executor: %s call failed (%s)", action.name, exc)
            return self._failed(action, args, exc)

        if not result.success:
            return Observation(
                action_id=action.id,
                action_name=action.name,
                arguments=args,
                success=False,
                error=result.error or "Tool execution failed",
            )

        task.seen_hashes.add(key)
        return Observation(
            action_id=action.id,
            action_name=action.name,
            arguments=args,
            success=True,
            payload=result.payload,
            summary=summarize_payload(
                action.name,
                result.payload,
                preview_items=self._preview_items,
                snippet_chars=self._snippet_chars,
                summary_chars=self._summary_chars,
            ),
        )

    @staticmethod
    def _failed(action: Action, args: Any, exc: Exception) -> Observation:
        logger.debug("Executor: %s refused: %s", action.name, exc)
        return Observation(
            action_id=action.id,
            action_name=action.name,
            arguments=args if isinstance(args, dict) else {"value": args},
            success=False,
            error=str(exc),
        )
