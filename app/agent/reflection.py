"""
Reflector — condenses the evidence and decides continue / answer / clarify.

The decision becomes the Task's next Plan: ``continue`` clears the plan so
the governor asks the planner again, ``answer`` and ``clarify`` install the
matching terminal plan.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from app.agent.state import (
    AnswerPlan,
    ClarifyPlan,
    Decision,
    Observation,
    Plan,
    ReflectionDecision,
    Task,
)
from app.core.config import settings
from app.services import llm_service

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.4
FALLBACK_RATIONALE = "Fallback because reflection failed"
FALLBACK_OUTLINE = "Summarise the gathered evidence and note any missing context for the user."
DEFAULT_OUTLINE = "Provide a structured answer with citations from gathered evidence."
DEFAULT_QUESTION = "What specific detail should I clarify before continuing?"

_SYSTEM_PROMPT = """\
You are the reflection stage of a tool-using assistant.
Update the evidence with what the latest observations add, then decide:
- "continue" if another tool call is likely to close a concrete gap,
- "answer" if the evidence is sufficient or the budget is nearly spent,
- "clarify" if the query is ambiguous and only the user can resolve it.

Respond ONLY with valid JSON:
{"decision": "continue|answer|clarify", "updated_evidence": "...", "confidence": 0.0,
 "rationale": "...", "question": "only for clarify", "answer_outline": "only for answer"}
"""

_USER_PROMPT = """\
Query: {query}

Current evidence:
{evidence}

Latest observation:
{latest}

Working memory:
{memory}

Remaining budget: {remaining} step(s).
"""


def format_working_memory(observations: Sequence[Observation]) -> str:
    return "\n".join(
        f"- {obs.action_name} ({'success' if obs.success else 'failure'}) -> {obs.detail}"
        for obs in observations
    )


def fallback_decision() -> ReflectionDecision:
    return ReflectionDecision(
        decision=Decision.ANSWER,
        confidence=FALLBACK_CONFIDENCE,
        rationale=FALLBACK_RATIONALE,
        answer_outline=FALLBACK_OUTLINE,
    )


def parse_decision(data: dict) -> ReflectionDecision:
    """Raises ``ValueError`` for an unknown decision."""
    confidence = data.get("confidence", 0.5)
    if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
        confidence = 0.5
    return ReflectionDecision(
        decision=Decision(str(data.get("decision", "")).strip().lower()),
        updated_evidence=str(data.get("updated_evidence") or data.get("updatedEvidence") or ""),
        confidence=confidence,
        rationale=str(data.get("rationale") or ""),
        question=data.get("question") or None,
        answer_outline=data.get("answer_outline") or data.get("answerOutline") or None,
    )


def plan_for_decision(decision: ReflectionDecision) -> Plan | None:
    if decision.decision is Decision.CLARIFY:
        return ClarifyPlan(question=decision.question or DEFAULT_QUESTION, rationale=decision.rationale)
    if decision.decision is Decision.ANSWER:
        return AnswerPlan(
            content=decision.answer_outline or DEFAULT_OUTLINE,
            confidence=decision.confidence,
            rationale=decision.rationale,
        )
    return None


def apply_decision(task: Task, decision: ReflectionDecision) -> None:
    """Install the decision on the task; evidence is never cleared to empty."""
    task.reflection = decision
    if decision.updated_evidence.strip():
        task.evidence = decision.updated_evidence
    task.plan = plan_for_decision(decision)
    task.pending_actions = []


class Reflector:
    def __init__(
        self,
        decide: Callable[..., str] | None = None,
        temperature: float | None = None,
        window: int | None = None,
    ) -> None:
        self._decide = decide or llm_service.decide
        self._temperature = settings.reflection_temperature if temperature is None else temperature
        self._window = settings.agent_working_memory_window if window is None else window

    def reflect(self, task: Task) -> ReflectionDecision:
        """
        Decide how the task proceeds after an execution batch.

        The decision is applied to *task* (evidence, plan, reflection) and
        returned.  Model failures and malformed replies fall back to a
        low-confidence ``answer`` decision.
        """
        latest = task.last_observation
        recent = task.working_memory[-self._window:] if self._window else []
        prompt = _USER_PROMPT.format(
            query=task.query,
            evidence=task.evidence or "(none)",
            latest=format_working_memory([latest]) if latest else "(none)",
            memory=format_working_memory(recent) or "(none)",
            remaining=task.remaining_budget,
        )

        try:
            raw = self._decide(_SYSTEM_PROMPT, prompt, temperature=self._temperature)
            decision = parse_decision(llm_service.extract_json_object(raw))
        except Exception as exc:
            logger.warning("Reflection: decision failed (%s), answering with fallback", exc)
            decision = fallback_decision()

        apply_decision(task, decision)
        logger.info(
            "Reflection: task %s → %s (confidence=%.2f)",
            task.task_id,
            decision.decision.value,
            decision.confidence,
        )
        return decision
