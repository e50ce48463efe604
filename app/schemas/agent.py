"""Pydantic schemas for the agent API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ──────────────────────────────────────────────
# Request
# ──────────────────────────────────────────────


class AllowedActionConfig(BaseModel):
    name: str = Field(min_length=1)
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class TaskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(min_length=1, max_length=4000, description="The user's question")
    step_budget: int = Field(default=6, gt=0, le=50, alias="stepBudget")
    allowed_actions: list[str | AllowedActionConfig] | None = Field(
        default=None,
        alias="allowedActions",
        description="Capabilities the task may use; every registered capability when omitted",
    )
    clarification_attempts: int = Field(default=0, ge=0, alias="clarificationAttempts")

    def allowed_action_inputs(self) -> list[str | dict[str, Any]] | None:
        if self.allowed_actions is None:
            return None
        return [item if isinstance(item, str) else item.model_dump() for item in self.allowed_actions]


# ──────────────────────────────────────────────
# Response
# ──────────────────────────────────────────────


class TaskDiagnostics(BaseModel):
    model_config = ConfigDict(extra="allow")

    iterations: int
    duplicateCalls: int
    exhaustedBudget: bool
    lastError: str | None = None
    forcedReason: str | None = None
    clarificationAttempts: int = 0
    route: str | None = None
    validation: dict[str, Any] | None = None


class TaskResponse(BaseModel):
    taskId: str
    kind: Literal["answer", "clarification", "escalation"]
    text: str
    confidence: float | None = None
    diagnostics: TaskDiagnostics


# ──────────────────────────────────────────────
# SSE stream events
# ──────────────────────────────────────────────


class AgentStreamEvent(BaseModel):
    """
    Every Server-Sent Event the stream endpoint emits follows this shape.

    transition → {step, state, reason, forced}
    plan       → {step, plan}
    execute    → {step, observations: [{action, success, summary, error}]}
    reflect    → {step, decision, updated_evidence, confidence, rationale, ...}
    final      → TaskResponse body
    error      → {message, taskId}
    """

    type: Literal["transition", "plan", "execute", "reflect", "final", "error"]
    data: dict[str, Any]


# ──────────────────────────────────────────────
# Stored checkpoint (GET /agent/{task_id})
# ──────────────────────────────────────────────


class CheckpointRead(BaseModel):
    task_id: str
    query: str
    state: str
    step: int
    step_budget: int
    snapshot: dict[str, Any]
