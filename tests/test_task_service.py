import pytest

from app.agent.executor import ActionExecutor
from app.agent.governor import GovernorConfig, LoopGovernor
from app.agent.planner import ActionPlanner
from app.agent.reflection import Reflector
from app.agent.state import AllowedAction
from app.agent.synthesizer import AnswerSynthesizer
from app.services.task_service import (
    KIND_ANSWER,
    KIND_CLARIFICATION,
    KIND_ESCALATION,
    LOW_CONFIDENCE_QUESTION,
    TaskService,
    normalize_allowed_actions,
)
from app.services.validation_service import ResponseQualityValidator, ValidatorConfig
from tests.conftest import ScriptedLLM

ANSWER_TEXT = (
    "You can configure OAuth2 by registering a client in the admin console.\n"
    "- Create the client credentials.\n"
    "- Add the redirect address.\n"
    "I am glad to help with the remaining steps."
)


def _service(registry, planner_reply, max_attempts: int = 2, memory_store=None) -> TaskService:
    governor = LoopGovernor(
        registry,
        planner=ActionPlanner(decide=ScriptedLLM(planner_reply), temperature=0.1, observation_window=5),
        executor=ActionExecutor(registry),
        reflector=Reflector(decide=ScriptedLLM({"decision": "continue"}), temperature=0.1, window=3),
        synthesizer=AnswerSynthesizer(generate=ScriptedLLM(ANSWER_TEXT), temperature=0.3),
        store=memory_store,
        config=GovernorConfig(),
    )
    return TaskService(
        registry,
        governor=governor,
        validator=ResponseQualityValidator(ValidatorConfig()),
        max_clarification_attempts=max_attempts,
        validation_enabled=True,
        default_step_budget=4,
    )


class ExplodingGovernor:
    def run(self, task):
        yield {"type": "transition", "data": {"state": "plan"}}
        raise RuntimeError("registry exploded")


def test_confident_answer_is_validated(registry, memory_store):
    service = _service(registry, {"type": "answer", "content": "outline", "confidence": 0.9}, memory_store=memory_store)
    task = service.create_task("How to configure OAuth2")

    result = service.run_task(task)

    assert result.kind == KIND_ANSWER
    assert result.text == ANSWER_TEXT
    assert result.confidence == pytest.approx(0.9)
    assert "validation" in result.diagnostics
    assert result.diagnostics["route"] == "response"
    assert memory_store.load(task.task_id)["final_answer"] == ANSWER_TEXT


def test_low_confidence_answer_asks_for_clarification(registry):
    service = _service(registry, {"type": "answer", "content": "outline", "confidence": 0.5})
    task = service.create_task("How to configure OAuth2")

    result = service.run_task(task)

    assert result.kind == KIND_CLARIFICATION
    assert result.text == LOW_CONFIDENCE_QUESTION
    assert result.diagnostics["clarificationAttempts"] == 1
    assert "validation" not in result.diagnostics


def test_low_confidence_after_max_attempts_escalates(registry):
    service = _service(registry, {"type": "answer", "content": "outline", "confidence": 0.5}, max_attempts=2)
    task = service.create_task("How to configure OAuth2", clarification_attempts=2)

    result = service.run_task(task)

    assert result.kind == KIND_ESCALATION
    assert "escalated" in result.text
    assert result.diagnostics["route"] == "escalate"


def test_governor_clarification_returns_its_question(registry):
    service = _service(registry, {"type": "clarify", "question": "Which identity provider do you use?"})
    task = service.create_task("Set it up")

    result = service.run_task(task)

    assert result.kind == KIND_CLARIFICATION
    assert result.text == "Which identity provider do you use?"
    assert result.diagnostics["clarificationAttempts"] == 1


def test_unexpected_failure_becomes_escalation(registry):
    service = TaskService(
        registry,
        governor=ExplodingGovernor(),
        validator=ResponseQualityValidator(ValidatorConfig()),
        max_clarification_attempts=2,
        validation_enabled=True,
        default_step_budget=4,
    )
    task = service.create_task("How to configure OAuth2")

    events = list(service.stream_task(task))

    assert [event["type"] for event in events] == ["transition", "error", "final"]
    assert events[1]["data"]["message"] == "registry exploded"
    final = events[-1]["result"]
    assert final.kind == KIND_ESCALATION
    assert final.diagnostics["lastError"] == "registry exploded"
    assert events[-1]["data"]["taskId"] == task.task_id


def test_stream_ends_with_exactly_one_final_event(registry):
    service = _service(registry, {"type": "answer", "content": "outline", "confidence": 0.9})
    task = service.create_task("How to configure OAuth2")

    events = list(service.stream_task(task))

    assert [event["type"] for event in events].count("final") == 1
    assert events[-1]["type"] == "final"
    assert events[0]["type"] == "transition"


def test_create_task_uses_defaults(registry):
    service = _service(registry, {"type": "answer", "content": "x", "confidence": 0.9})

    task = service.create_task("q")

    assert task.step_budget == 4
    assert [item.name for item in task.allowed_actions] == ["knowledge_search"]


def test_normalize_allowed_actions_accepts_names_and_configs():
    items = ["knowledge_search", {"name": "deep_research", "enabled": False, "config": {"top_k": 3}}]

    normalized = normalize_allowed_actions(items, available=["ignored"])

    assert normalized == [
        AllowedAction(name="knowledge_search"),
        AllowedAction(name="deep_research", enabled=False, config={"top_k": 3}),
    ]
    assert normalize_allowed_actions(None, ["a", "b"]) == [AllowedAction("a"), AllowedAction("b")]
