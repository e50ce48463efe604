import pytest

from app.agent.executor import ActionExecutor
from app.agent.governor import GovernorConfig, LoopGovernor
from app.agent.planner import ActionPlanner
from app.agent.reflection import Reflector
from app.agent.state import (
    Action,
    ActionPlan,
    AnswerPlan,
    ClarifyPlan,
    GovernorState,
    Observation,
    Task,
)
from app.agent.synthesizer import FALLBACK_PREFIX, AnswerSynthesizer
from app.agent.tools.registry import CapabilityRegistry
from app.services.llm_service import LLMServiceError
from tests.conftest import FakeCapability, ScriptedLLM, make_task


def drain(generator):
    events = []
    while True:
        try:
            events.append(next(generator))
        except StopIteration as stop:
            return events, stop.value


def _obs(name: str, success: bool) -> Observation:
    return Observation(
        action_id=f"{name}-id",
        action_name=name,
        arguments={},
        success=success,
        error=None if success else "failed",
        summary="ok" if success else None,
    )


def _governor(registry, planner_llm, reflection_llm, answer_llm, store=None, config=None) -> LoopGovernor:
    return LoopGovernor(
        registry,
        planner=ActionPlanner(decide=planner_llm, temperature=0.1, observation_window=5),
        executor=ActionExecutor(registry),
        reflector=Reflector(decide=reflection_llm, temperature=0.1, window=3),
        synthesizer=AnswerSynthesizer(generate=answer_llm, temperature=0.3),
        store=store,
        config=config or GovernorConfig(),
    )


def _distinct_search(call: int) -> dict:
    return {
        "type": "action",
        "actions": [{"name": "knowledge_search", "args": {"query": f"oauth2 part {call}"}}],
    }


# ──────────────────────────────────────────────
# Routing
# ──────────────────────────────────────────────

@pytest.fixture
def governor(registry):
    return _governor(registry, ScriptedLLM(), ScriptedLLM(), ScriptedLLM())


def test_budget_guard_forces_answer(governor):
    task = make_task(step_budget=3)
    task.step = 3

    transition = governor.route(task)

    assert transition.state is GovernorState.ANSWER
    assert transition.forced
    assert task.exhausted_budget is True
    assert task.forced_reason == "step budget exhausted"


def test_batch_planned_on_last_step_still_executes(governor):
    task = make_task(step_budget=3)
    task.step = 3
    task.pending_actions = [Action(id="a", name="knowledge_search", args={"query": "q"})]

    transition = governor.route(task)

    assert transition.state is GovernorState.EXECUTE
    assert task.exhausted_budget is False


def test_answer_planned_on_last_step_is_not_budget_exhaustion(governor):
    task = make_task(step_budget=3)
    task.step = 3
    task.plan = AnswerPlan(content="outline", confidence=0.9)

    transition = governor.route(task)

    assert transition.state is GovernorState.ANSWER
    assert not transition.forced
    assert task.exhausted_budget is False


def test_step_past_budget_always_forces_answer(governor):
    task = make_task(step_budget=3)
    task.step = 4
    task.pending_actions = [Action(id="a", name="knowledge_search", args={"query": "q"})]

    assert governor.route(task).state is GovernorState.ANSWER
    assert task.exhausted_budget is True


def test_cancellation_counts_as_budget_exhaustion(governor):
    task = make_task()
    task.request_cancel()

    transition = governor.route(task)

    assert transition.state is GovernorState.ANSWER
    assert task.exhausted_budget is True


def test_three_consecutive_failures_of_same_action_force_answer(governor):
    task = make_task()
    task.working_memory = [_obs("search", False) for _ in range(3)]

    transition = governor.route(task)

    assert transition.state is GovernorState.ANSWER
    assert transition.reason == "search failed 3 times in a row"
    assert task.exhausted_budget is False


def test_three_failures_in_last_five_force_answer(governor):
    task = make_task()
    task.working_memory = [
        _obs("a", False),
        _obs("b", True),
        _obs("c", False),
        _obs("d", True),
        _obs("e", False),
    ]

    assert governor.route(task).state is GovernorState.ANSWER


def test_aggregate_failures_with_prior_success_force_answer(governor):
    task = make_task()
    task.working_memory = [
        _obs("a", False),
        _obs("b", False),
        _obs("c", True),
        _obs("d", True),
        _obs("e", True),
        _obs("f", False),
        _obs("g", True),
        _obs("h", False),
        _obs("i", True),
    ]

    transition = governor.route(task)

    assert transition.state is GovernorState.ANSWER
    assert transition.reason == "4 failed actions in total"


def test_pure_failure_without_evidence_falls_through_by_default(registry):
    relaxed = GovernorConfig(same_action_failures=10, window_failures=10)
    governor = _governor(registry, ScriptedLLM(), ScriptedLLM(), ScriptedLLM(), config=relaxed)
    task = make_task()
    task.working_memory = [_obs(name, False) for name in "abcd"]

    assert governor.route(task).state is GovernorState.PLAN


def test_pure_failure_policy_switch_forces_answer(registry):
    strict = GovernorConfig(same_action_failures=10, window_failures=10, force_answer_on_pure_failure=True)
    governor = _governor(registry, ScriptedLLM(), ScriptedLLM(), ScriptedLLM(), config=strict)
    task = make_task()
    task.working_memory = [_obs(name, False) for name in "abcd"]

    assert governor.route(task).state is GovernorState.ANSWER


def test_useful_evidence_enables_aggregate_guard(registry):
    relaxed = GovernorConfig(same_action_failures=10, window_failures=10)
    governor = _governor(registry, ScriptedLLM(), ScriptedLLM(), ScriptedLLM(), config=relaxed)
    task = make_task()
    task.evidence = "OAuth2 requires a registered client and an authorization server endpoint."
    task.working_memory = [_obs(name, False) for name in "abcd"]

    assert governor.route(task).state is GovernorState.ANSWER


def test_pending_actions_route_to_execute(governor):
    task = make_task()
    task.pending_actions = [Action(id="a", name="knowledge_search", args={"query": "q"})]

    assert governor.route(task).state is GovernorState.EXECUTE


def test_no_enabled_actions_forces_answer(governor):
    task = make_task(actions=())

    transition = governor.route(task)

    assert transition.state is GovernorState.ANSWER
    assert transition.reason == "no actions available"


@pytest.mark.parametrize(
    "plan, expected",
    [
        (ActionPlan(actions=[Action(id="a", name="knowledge_search")]), GovernorState.EXECUTE),
        (AnswerPlan(content="outline", confidence=0.8), GovernorState.ANSWER),
        (ClarifyPlan(question="Which provider?"), GovernorState.CLARIFY),
        (None, GovernorState.PLAN),
    ],
)
def test_current_plan_variant_decides_route(governor, plan, expected):
    task = make_task()
    task.plan = plan

    assert governor.route(task).state is expected


def test_repeated_plan_routing_is_bounded_per_task(governor):
    task = make_task(step_budget=3)
    task.step = 1
    other = make_task(step_budget=3)
    other.step = 1

    states = [governor.route(task).state for _ in range(3)]
    governor.route(other)

    assert states == [GovernorState.PLAN, GovernorState.PLAN, GovernorState.ANSWER]
    assert task.consecutive_plan_routes == 0
    assert other.consecutive_plan_routes == 1


def test_initial_plan_route_is_not_counted(governor):
    task = make_task(step_budget=1)

    transition = governor.route(task)

    assert transition.state is GovernorState.PLAN
    assert task.consecutive_plan_routes == 0


def test_invalid_task_state_forces_answer(governor):
    task = Task(query="   ")

    transition = governor.route(task)

    assert transition.state is GovernorState.ANSWER
    assert transition.reason.startswith("invalid task state")


# ──────────────────────────────────────────────
# Full runs
# ──────────────────────────────────────────────

def test_oauth_scenario_answers_after_one_search(registry, capability, memory_store):
    planner_llm = ScriptedLLM({
        "type": "action",
        "actions": [{"name": "knowledge_search", "args": {"query": "configure OAuth2"}}],
        "rationale": "search the docs",
    })
    reflection_llm = ScriptedLLM({
        "decision": "answer",
        "updated_evidence": "OAuth2 needs a registered client.",
        "confidence": 0.85,
        "answer_outline": "Explain client registration.",
    })
    answer_llm = ScriptedLLM("Register a client, then configure the redirect URI.")
    governor = _governor(registry, planner_llm, reflection_llm, answer_llm, store=memory_store)
    task = make_task("How to configure OAuth2?")

    events, outcome = drain(governor.run(task))

    assert [event["type"] for event in events] == [
        "transition", "plan", "transition", "execute", "reflect", "transition",
    ]
    assert outcome.state is GovernorState.ANSWER
    assert outcome.text == "Register a client, then configure the redirect URI."
    assert outcome.confidence == pytest.approx(0.85)
    assert task.step == 1
    assert task.exhausted_budget is False
    assert task.evidence == "OAuth2 needs a registered client."
    assert capability.calls[0][0] == {"query": "configure OAuth2"}
    assert memory_store.load(task.task_id)["state"] == "answer"


def test_budget_exhaustion_yields_fallback_answer(registry, capability):
    governor = _governor(
        registry,
        ScriptedLLM(_distinct_search),
        ScriptedLLM({"decision": "continue", "confidence": 0.5}),
        ScriptedLLM(LLMServiceError("model offline")),
    )
    task = make_task(step_budget=3)

    _, outcome = drain(governor.run(task))

    assert outcome.state is GovernorState.ANSWER
    assert outcome.text.startswith(FALLBACK_PREFIX)
    assert outcome.confidence == pytest.approx(0.5)
    assert task.step == 3
    assert task.exhausted_budget is True
    assert len(capability.calls) == 3


def test_single_step_budget_still_calls_the_planner(registry, capability):
    planner_llm = ScriptedLLM(_distinct_search)
    governor = _governor(
        registry,
        planner_llm,
        ScriptedLLM({"decision": "continue", "confidence": 0.6}),
        ScriptedLLM("One search was enough."),
    )
    task = make_task(step_budget=1)

    _, outcome = drain(governor.run(task))

    assert len(planner_llm.calls) == 1
    assert len(capability.calls) == 1
    assert outcome.state is GovernorState.ANSWER
    assert outcome.confidence == pytest.approx(0.6)
    assert task.step == 1
    assert task.exhausted_budget is True


def test_answer_planned_on_last_step_is_honored(registry, capability):
    governor = _governor(
        registry,
        ScriptedLLM(_distinct_search(1), {"type": "answer", "content": "outline", "confidence": 0.9}),
        ScriptedLLM({"decision": "continue", "confidence": 0.5}),
        ScriptedLLM("Register a client."),
    )
    task = make_task(step_budget=2)

    _, outcome = drain(governor.run(task))

    assert outcome.state is GovernorState.ANSWER
    assert outcome.confidence == pytest.approx(0.9)
    assert task.step == 2
    assert task.exhausted_budget is False
    assert task.forced_reason is None
    assert len(capability.calls) == 1


def test_forced_conclusion_leaves_answer_plan_and_no_pending_work(registry, capability, memory_store):
    governor = _governor(
        registry,
        ScriptedLLM(_distinct_search),
        ScriptedLLM({"decision": "continue", "confidence": 0.45}),
        ScriptedLLM("Partial answer."),
        store=memory_store,
    )
    task = make_task(step_budget=2)

    _, outcome = drain(governor.run(task))

    assert task.exhausted_budget is True
    assert isinstance(task.plan, AnswerPlan)
    assert task.plan.confidence == pytest.approx(0.45)
    assert task.plan.rationale == "step budget exhausted"
    assert task.pending_actions == []
    assert outcome.confidence == pytest.approx(0.45)
    snapshot = memory_store.load(task.task_id)
    assert snapshot["plan"]["type"] == "answer"
    assert snapshot["pending_actions"] == []
    assert len(capability.calls) == 2


def test_repeated_failures_stop_before_budget():
    failing = FakeCapability(error="timeout")
    registry = CapabilityRegistry(local=[failing])
    governor = _governor(
        registry,
        ScriptedLLM(_distinct_search),
        ScriptedLLM({"decision": "continue", "confidence": 0.5}),
        ScriptedLLM("Nothing could be retrieved."),
    )
    task = make_task(step_budget=6)

    _, outcome = drain(governor.run(task))

    assert outcome.state is GovernorState.ANSWER
    assert task.step == 3
    assert task.exhausted_budget is False
    assert task.forced_reason == "knowledge_search failed 3 times in a row"
    assert task.last_error == "timeout"


def test_planner_that_never_plans_is_cut_off(registry):
    governor = _governor(registry, ScriptedLLM("not json at all"), ScriptedLLM(), ScriptedLLM("Best effort."))
    task = make_task(step_budget=3)

    _, outcome = drain(governor.run(task))

    assert outcome.state is GovernorState.ANSWER
    assert task.step == 3
    assert task.exhausted_budget is True
    assert task.forced_reason == "step budget exhausted"


def test_clarify_plan_ends_with_question(registry):
    answer_llm = ScriptedLLM("unused")
    governor = _governor(
        registry,
        ScriptedLLM({"type": "clarify", "question": "Which identity provider do you use?"}),
        ScriptedLLM(),
        answer_llm,
    )

    _, outcome = drain(governor.run(make_task()))

    assert outcome.state is GovernorState.CLARIFY
    assert outcome.text == "Which identity provider do you use?"
    assert answer_llm.calls == []


def test_checkpoint_failures_do_not_interrupt_the_loop(registry):
    class BrokenStore:
        def save(self, snapshot):
            raise OSError("disk full")

        def load(self, task_id):
            return None

    governor = _governor(
        registry,
        ScriptedLLM({"type": "answer", "content": "outline", "confidence": 0.9}),
        ScriptedLLM(),
        ScriptedLLM("Done."),
        store=BrokenStore(),
    )

    _, outcome = drain(governor.run(make_task()))

    assert outcome.text == "Done."


def test_resumed_task_continues_from_snapshot(registry, capability, memory_store):
    task = make_task()
    task.step = 1
    task.state = GovernorState.EXECUTE
    task.pending_actions = [Action(id="a", name="knowledge_search", args={"query": "resume me"})]
    memory_store.save(task.to_snapshot())

    restored = Task.from_snapshot(memory_store.load(task.task_id))
    governor = _governor(
        registry,
        ScriptedLLM(),
        ScriptedLLM({"decision": "answer", "confidence": 0.9}),
        ScriptedLLM("Resumed answer."),
        store=memory_store,
    )

    events, outcome = drain(governor.run(restored))

    assert events[0]["data"]["state"] == "execute"
    assert capability.calls[0][0] == {"query": "resume me"}
    assert outcome.text == "Resumed answer."
