import pytest

from app.agent.planner import (
    DEFAULT_ANSWER_CONFIDENCE,
    DEFAULT_CLARIFY_QUESTION,
    FAILED_PLANNER_CONFIDENCE,
    ActionPlanner,
)
from app.agent.reflection import (
    DEFAULT_OUTLINE,
    DEFAULT_QUESTION,
    FALLBACK_OUTLINE,
    FALLBACK_RATIONALE,
    Reflector,
    format_working_memory,
)
from app.agent.state import ActionPlan, AnswerPlan, ClarifyPlan, Decision, Observation
from app.services.llm_service import LLMServiceError
from tests.conftest import ScriptedLLM, make_task


def _reflect(reply, evidence: str = ""):
    task = make_task()
    task.evidence = evidence
    decision = Reflector(decide=ScriptedLLM(reply), temperature=0.1, window=3).reflect(task)
    return task, decision


def test_model_failure_falls_back_to_low_confidence_answer():
    task, decision = _reflect(LLMServiceError("timeout"), evidence="kept")

    assert decision.decision is Decision.ANSWER
    assert decision.confidence == pytest.approx(0.4)
    assert decision.rationale == FALLBACK_RATIONALE
    assert isinstance(task.plan, AnswerPlan)
    assert task.plan.content == FALLBACK_OUTLINE
    assert task.evidence == "kept"


def test_malformed_reply_falls_back():
    _, decision = _reflect('{"decision": "maybe"}')

    assert decision.rationale == FALLBACK_RATIONALE


def test_empty_updated_evidence_keeps_previous_evidence():
    task, _ = _reflect({"decision": "continue", "updated_evidence": "  "}, evidence="OAuth2 uses tokens.")

    assert task.evidence == "OAuth2 uses tokens."
    assert task.plan is None


def test_non_empty_updated_evidence_replaces_previous():
    task, _ = _reflect({"decision": "continue", "updated_evidence": "Refined."}, evidence="old")

    assert task.evidence == "Refined."


def test_clarify_and_answer_decisions_install_defaults():
    task, _ = _reflect({"decision": "clarify"})
    assert task.plan == ClarifyPlan(question=DEFAULT_QUESTION, rationale="")

    task, _ = _reflect({"decision": "answer", "confidence": 1.7})
    assert isinstance(task.plan, AnswerPlan)
    assert task.plan.content == DEFAULT_OUTLINE
    assert task.plan.confidence == 1.0


def test_reflection_prompt_uses_trailing_window():
    task = make_task()
    task.working_memory = [
        Observation(action_id=str(i), action_name=f"tool{i}", arguments={}, success=True, summary=f"r{i}")
        for i in range(5)
    ]
    llm = ScriptedLLM({"decision": "continue"})

    Reflector(decide=llm, temperature=0.1, window=3).reflect(task)

    assert "tool0 (success)" not in llm.calls[0]
    assert "- tool4 (success) -> r4" in llm.calls[0]


def test_format_working_memory_marks_failures():
    observations = [
        Observation(action_id="1", action_name="search", arguments={}, success=False, error="timeout"),
        Observation(action_id="2", action_name="search", arguments={}, success=True),
    ]

    assert format_working_memory(observations) == (
        "- search (failure) -> timeout\n- search (success) -> (empty result)"
    )


# ──────────────────────────────────────────────
# Planner
# ──────────────────────────────────────────────

def _plan(reply):
    task = make_task()
    plan = ActionPlanner(decide=ScriptedLLM(reply), temperature=0.1, observation_window=5).plan(task, [])
    return task, plan


def test_action_reply_becomes_pending_actions():
    task, plan = _plan({
        "type": "action",
        "actions": [{"name": "knowledge_search", "args": '{"query": "sso"}'}, {"name": "web", "args": "raw"}],
    })

    assert isinstance(plan, ActionPlan)
    assert [action.args for action in task.pending_actions] == [{"query": "sso"}, {"input": "raw"}]
    assert task.pending_actions[0].id != task.pending_actions[1].id


def test_single_action_shorthand_is_accepted():
    _, plan = _plan({"type": "action", "name": "knowledge_search", "args": {"query": "x"}})

    assert isinstance(plan, ActionPlan)
    assert plan.actions[0].name == "knowledge_search"


def test_answer_and_clarify_replies_get_defaults():
    _, answer = _plan({"type": "answer", "content": "draft"})
    _, clarify = _plan({"type": "clarify"})

    assert answer.confidence == pytest.approx(DEFAULT_ANSWER_CONFIDENCE)
    assert clarify.question == DEFAULT_CLARIFY_QUESTION


def test_malformed_planner_reply_yields_no_plan():
    task, plan = _plan("I think we should search")

    assert plan is None
    assert task.plan is None
    assert task.pending_actions == []


def test_planner_failure_yields_low_confidence_answer():
    task, plan = _plan(LLMServiceError("quota exceeded"))

    assert isinstance(plan, AnswerPlan)
    assert plan.confidence == pytest.approx(FAILED_PLANNER_CONFIDENCE)
    assert task.last_error == "quota exceeded"
