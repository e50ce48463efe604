"""
Agent API endpoints.

POST /agent             — Run a task to completion and return the routed result.
POST /agent/stream      — Same task, progress streamed via SSE.
GET  /agent/{task_id}   — Latest checkpoint snapshot of a task.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from app.api.deps import get_checkpoint_store, get_task_service
from app.schemas.agent import CheckpointRead, TaskRequest, TaskResponse
from app.services.checkpoint_service import CheckpointStore
from app.services.task_service import TaskService

router = APIRouter(prefix="/agent", tags=["agent"])
logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def _sse_line(event_type: str, data: dict[str, Any]) -> str:
    """Format a single SSE message; a blank line terminates the event."""
    payload = json.dumps({"type": event_type, "data": data}, ensure_ascii=False, default=str)
    return f"event: {event_type}\ndata: {payload}\n\n"


# ──────────────────────────────────────────────────────────────────────────────
# POST /agent — blocking endpoint
# ──────────────────────────────────────────────────────────────────────────────

@router.post("", response_model=TaskResponse)
def run_task(
    request: TaskRequest,
    service: TaskService = Depends(get_task_service),
):
    task = service.create_task(
        query=request.query,
        step_budget=request.step_budget,
        allowed_actions=request.allowed_action_inputs(),
        clarification_attempts=request.clarification_attempts,
    )
    return service.run_task(task).to_dict()


# ──────────────────────────────────────────────────────────────────────────────
# POST /agent/stream — streaming endpoint
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/stream")
def stream_task(
    request: TaskRequest,
    service: TaskService = Depends(get_task_service),
) -> StreamingResponse:
    """
    Run a task and stream progress events via Server-Sent Events.

    Event types:
    - ``transition`` — the governor picked its next state
    - ``plan``       — the planner produced a plan
    - ``execute``    — a batch of actions ran (one entry per observation)
    - ``reflect``    — the reflection decision after a batch
    - ``final``      — the routed task result (last event)
    - ``error``      — emitted before an escalation caused by an unexpected failure
    """
    task = service.create_task(
        query=request.query,
        step_budget=request.step_budget,
        allowed_actions=request.allowed_action_inputs(),
        clarification_attempts=request.clarification_attempts,
    )

    def event_stream():
        for event in service.stream_task(task):
            yield _sse_line(event["type"], event["data"])

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",    # disable nginx buffering
            "X-Task-Id": task.task_id,
        },
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /agent/{task_id} — checkpoint snapshot
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/{task_id}", response_model=CheckpointRead)
def get_task_checkpoint(
    task_id: str,
    store: CheckpointStore = Depends(get_checkpoint_store),
):
    """Latest snapshot saved for a task (for replay/debug or resume)."""
    snapshot = store.load(task_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return CheckpointRead(
        task_id=snapshot["task_id"],
        query=snapshot["query"],
        state=snapshot.get("state", "plan"),
        step=snapshot.get("step", 0),
        step_budget=snapshot.get("step_budget", 0),
        snapshot=snapshot,
    )
