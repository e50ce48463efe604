"""
Agent state dataclasses.

These are plain Python dataclasses (no ORM, no Pydantic) so they can be
passed around cheaply between the planner, executor, reflector and
governor without any serialization overhead at runtime.  ``Task`` is the
only mutable object: it is an append-only log of Observations plus a
small set of scalar counters, and ``to_snapshot()`` turns it into plain
JSON-safe data for the checkpoint store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union
from uuid import uuid4


class GovernorState(str, Enum):
    PLAN = "plan"
    EXECUTE = "execute"
    REFLECT = "reflect"
    ANSWER = "answer"
    CLARIFY = "clarify"
    STOP = "stop"


TERMINAL_STATES = frozenset({GovernorState.ANSWER, GovernorState.CLARIFY, GovernorState.STOP})


class Decision(str, Enum):
    CONTINUE = "continue"
    ANSWER = "answer"
    CLARIFY = "clarify"


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass(slots=True)
class Action:
    """One requested capability invocation produced by the Planner."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "args": dict(self.args)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Action:
        return cls(id=data["id"], name=data["name"], args=dict(data.get("args") or {}))


@dataclass(frozen=True, slots=True)
class Observation:
    """Result of executing (or refusing to execute) one Action."""

    action_id: str
    action_name: str
    arguments: dict[str, Any]
    success: bool
    payload: Any = None
    error: str | None = None
    summary: str | None = None

    @property
    def detail(self) -> str:
        if self.success:
            return self.summary or "(empty result)"
        return self.error or "unknown error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_id": self.action_id,
            "action_name": self.action_name,
            "arguments": dict(self.arguments),
            "success": self.success,
            "payload": self.payload,
            "error": self.error,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Observation:
        return cls(
            action_id=data["action_id"],
            action_name=data["action_name"],
            arguments=dict(data.get("arguments") or {}),
            success=bool(data["success"]),
            payload=data.get("payload"),
            error=data.get("error"),
            summary=data.get("summary"),
        )


# ──────────────────────────────────────────────
# Plan: exactly one variant is active at a time
# ──────────────────────────────────────────────

@dataclass(slots=True)
class ActionPlan:
    actions: list[Action]
    rationale: str = ""


@dataclass(slots=True)
class AnswerPlan:
    content: str
    confidence: float = 0.5
    rationale: str = ""

    def __post_init__(self) -> None:
        self.confidence = clamp_unit(self.confidence)


@dataclass(slots=True)
class ClarifyPlan:
    question: str
    rationale: str = ""


Plan = Union[ActionPlan, AnswerPlan, ClarifyPlan]


def plan_to_dict(plan: Plan | None) -> dict[str, Any] | None:
    if plan is None:
        return None
    if isinstance(plan, ActionPlan):
        return {
            "type": "action",
            "actions": [action.to_dict() for action in plan.actions],
            "rationale": plan.rationale,
        }
    if isinstance(plan, AnswerPlan):
        return {
            "type": "answer",
            "content": plan.content,
            "confidence": plan.confidence,
            "rationale": plan.rationale,
        }
    if isinstance(plan, ClarifyPlan):
        return {"type": "clarify", "question": plan.question, "rationale": plan.rationale}
    raise TypeError(f"Unknown plan variant: {type(plan).__name__}")


def plan_from_dict(data: dict[str, Any] | None) -> Plan | None:
    if not data:
        return None
    kind = data.get("type")
    if kind == "action":
        return ActionPlan(
            actions=[Action.from_dict(item) for item in data.get("actions") or []],
            rationale=data.get("rationale", ""),
        )
    if kind == "answer":
        return AnswerPlan(
            content=data.get("content", ""),
            confidence=data.get("confidence", 0.5),
            rationale=data.get("rationale", ""),
        )
    if kind == "clarify":
        return ClarifyPlan(question=data.get("question", ""), rationale=data.get("rationale", ""))
    raise ValueError(f"Unknown plan type: {kind!r}")


@dataclass(slots=True)
class ReflectionDecision:
    decision: Decision
    updated_evidence: str = ""
    confidence: float = 0.5
    rationale: str = ""
    question: str | None = None
    answer_outline: str | None = None

    def __post_init__(self) -> None:
        self.confidence = clamp_unit(self.confidence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.value,
            "updated_evidence": self.updated_evidence,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "question": self.question,
            "answer_outline": self.answer_outline,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReflectionDecision:
        return cls(
            decision=Decision(data["decision"]),
            updated_evidence=data.get("updated_evidence", ""),
            confidence=data.get("confidence", 0.5),
            rationale=data.get("rationale", ""),
            question=data.get("question"),
            answer_outline=data.get("answer_outline"),
        )


@dataclass(slots=True)
class AllowedAction:
    """A capability the Task may use, with default arguments merged under the planner's."""

    name: str
    enabled: bool = True
    config: dict[str, Any] = field(default_factory=dict)


@dataclass
class Task:
    """Full mutable state for one user query; threaded through the governor."""

    query: str
    step_budget: int = 6
    task_id: str = field(default_factory=lambda: uuid4().hex)
    step: int = 0
    evidence: str = ""
    seen_hashes: set[str] = field(default_factory=set)
    clarification_attempts: int = 0
    working_memory: list[Observation] = field(default_factory=list)
    pending_actions: list[Action] = field(default_factory=list)
    plan: Plan | None = None
    reflection: ReflectionDecision | None = None
    allowed_actions: list[AllowedAction] = field(default_factory=list)
    state: GovernorState = GovernorState.PLAN
    consecutive_plan_routes: int = 0
    duplicate_calls: int = 0
    exhausted_budget: bool = False
    forced_reason: str | None = None
    last_error: str | None = None
    cancel_requested: bool = False
    final_answer: str | None = None

    # ──────────────────────────────────────────
    # Derived views
    # ──────────────────────────────────────────

    @property
    def remaining_budget(self) -> int:
        return max(self.step_budget - self.step, 0)

    @property
    def failure_count(self) -> int:
        return sum(1 for obs in self.working_memory if not obs.success)

    @property
    def has_success(self) -> bool:
        return any(obs.success for obs in self.working_memory)

    @property
    def last_observation(self) -> Observation | None:
        return self.working_memory[-1] if self.working_memory else None

    def enabled_actions(self) -> list[AllowedAction]:
        return [item for item in self.allowed_actions if item.enabled]

    def allowed_action(self, name: str) -> AllowedAction | None:
        for item in self.enabled_actions():
            if item.name == name:
                return item
        return None

    def record(self, observation: Observation) -> None:
        self.working_memory.append(observation)

    def request_cancel(self) -> None:
        self.cancel_requested = True

    # ──────────────────────────────────────────
    # Checkpoint snapshot
    # ──────────────────────────────────────────

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "query": self.query,
            "step_budget": self.step_budget,
            "step": self.step,
            "evidence": self.evidence,
            "seen_hashes": sorted(self.seen_hashes),
            "clarification_attempts": self.clarification_attempts,
            "working_memory": [obs.to_dict() for obs in self.working_memory],
            "pending_actions": [action.to_dict() for action in self.pending_actions],
            "plan": plan_to_dict(self.plan),
            "reflection": self.reflection.to_dict() if self.reflection else None,
            "allowed_actions": [
                {"name": item.name, "enabled": item.enabled, "config": dict(item.config)}
                for item in self.allowed_actions
            ],
            "state": self.state.value,
            "consecutive_plan_routes": self.consecutive_plan_routes,
            "duplicate_calls": self.duplicate_calls,
            "exhausted_budget": self.exhausted_budget,
            "forced_reason": self.forced_reason,
            "last_error": self.last_error,
            "cancel_requested": self.cancel_requested,
            "final_answer": self.final_answer,
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> Task:
        reflection = data.get("reflection")
        return cls(
            task_id=data["task_id"],
            query=data["query"],
            step_budget=data.get("step_budget", 6),
            step=data.get("step", 0),
            evidence=data.get("evidence", ""),
            seen_hashes=set(data.get("seen_hashes") or []),
            clarification_attempts=data.get("clarification_attempts", 0),
            working_memory=[Observation.from_dict(item) for item in data.get("working_memory") or []],
            pending_actions=[Action.from_dict(item) for item in data.get("pending_actions") or []],
            plan=plan_from_dict(data.get("plan")),
            reflection=ReflectionDecision.from_dict(reflection) if reflection else None,
            allowed_actions=[
                AllowedAction(
                    name=item["name"],
                    enabled=item.get("enabled", True),
                    config=dict(item.get("config") or {}),
                )
                for item in data.get("allowed_actions") or []
            ],
            state=GovernorState(data.get("state", GovernorState.PLAN.value)),
            consecutive_plan_routes=data.get("consecutive_plan_routes", 0),
            duplicate_calls=data.get("duplicate_calls", 0),
            exhausted_budget=data.get("exhausted_budget", False),
            forced_reason=data.get("forced_reason"),
            last_error=data.get("last_error"),
            cancel_requested=data.get("cancel_requested", False),
            final_answer=data.get("final_answer"),
        )
