from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

from sqlalchemy.orm import Session

from app.models.task_checkpoint import TaskCheckpoint

logger = logging.getLogger(__name__)

Snapshot = dict[str, Any]


class CheckpointStore(Protocol):
    def save(self, snapshot: Snapshot) -> None: ...

    def load(self, task_id: str) -> Snapshot | None: ...


def _encode(snapshot: Snapshot) -> str:
    return json.dumps(snapshot, ensure_ascii=False, default=str)


class InMemoryCheckpointStore:
    """Process-local store; snapshots are copied through JSON on the way in."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._lock = threading.Lock()

    def save(self, snapshot: Snapshot) -> None:
        encoded = _encode(snapshot)
        with self._lock:
            self._items[snapshot["task_id"]] = encoded

    def load(self, task_id: str) -> Snapshot | None:
        with self._lock:
            encoded = self._items.get(task_id)
        return json.loads(encoded) if encoded is not None else None

    def __len__(self) -> int:
        return len(self._items)


class SqlCheckpointStore:
    """Upserts one ``TaskCheckpoint`` row per task through SQLAlchemy."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def save(self, snapshot: Snapshot) -> None:
        with self._session_factory() as db:
            row = db.get(TaskCheckpoint, snapshot["task_id"])
            if row is None:
                row = TaskCheckpoint(task_id=snapshot["task_id"], query=snapshot["query"])
                db.add(row)
            row.state = snapshot.get("state", "plan")
            row.step = snapshot.get("step", 0)
            row.snapshot_json = _encode(snapshot)
            db.commit()

    def load(self, task_id: str) -> Snapshot | None:
        with self._session_factory() as db:
            row = db.get(TaskCheckpoint, task_id)
            if row is None:
                return None
            return json.loads(row.snapshot_json)
