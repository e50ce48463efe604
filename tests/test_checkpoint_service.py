import pytest

from app.agent.state import Action, ActionPlan, GovernorState, Observation
from app.db.base import Base
from app.db.session import build_engine, build_session_factory
from app.models.task_checkpoint import TaskCheckpoint
from app.services.checkpoint_service import InMemoryCheckpointStore, SqlCheckpointStore
from tests.conftest import make_task


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield build_session_factory(engine)
    engine.dispose()


def _task_with_history():
    task = make_task()
    task.step = 2
    task.evidence = "OAuth2 needs a client id."
    task.seen_hashes.add("abc123")
    task.state = GovernorState.EXECUTE
    task.working_memory.append(
        Observation(
            action_id="act-1-1",
            action_name="knowledge_search",
            arguments={"query": "oauth"},
            success=True,
            payload={"results": []},
            summary="knowledge_search returned 0 result(s)",
        )
    )
    action = Action(id="act-2-1", name="knowledge_search", args={"query": "client id"})
    task.plan = ActionPlan(actions=[action])
    task.pending_actions = [action]
    return task


def test_in_memory_store_returns_independent_copies(memory_store):
    task = make_task()
    memory_store.save(task.to_snapshot())

    loaded = memory_store.load(task.task_id)
    loaded["query"] = "changed"

    assert memory_store.load(task.task_id)["query"] == task.query
    assert memory_store.load("missing") is None
    assert len(memory_store) == 1


def test_snapshot_round_trip_restores_task():
    task = _task_with_history()

    restored = type(task).from_snapshot(task.to_snapshot())

    assert restored.task_id == task.task_id
    assert restored.state is GovernorState.EXECUTE
    assert restored.seen_hashes == {"abc123"}
    assert restored.working_memory == task.working_memory
    assert restored.pending_actions[0].args == {"query": "client id"}
    assert isinstance(restored.plan, ActionPlan)


def test_sql_store_upserts_one_row_per_task(session_factory):
    store = SqlCheckpointStore(session_factory)
    task = _task_with_history()

    store.save(task.to_snapshot())
    task.step = 3
    task.state = GovernorState.ANSWER
    store.save(task.to_snapshot())

    with session_factory() as db:
        rows = db.query(TaskCheckpoint).all()
    assert len(rows) == 1
    assert rows[0].step == 3
    assert rows[0].state == "answer"

    loaded = store.load(task.task_id)
    assert loaded["step"] == 3
    assert loaded["evidence"] == task.evidence


def test_sql_store_returns_none_for_unknown_task(session_factory):
    assert SqlCheckpointStore(session_factory).load("unknown") is None
