"""
Error taxonomy for the agent loop.

Everything raised by collaborators is caught at the call site inside the
loop and turned into a failed Observation or a fallback decision; these
classes exist so call sites can tell the cases apart.
"""

from __future__ import annotations


class AgentError(RuntimeError):
    pass


class SchemaValidationError(AgentError):
    """Arguments could not be aligned to a capability's input schema."""

    def __init__(self, issues: list[str]) -> None:
        self.issues = list(issues)
        super().__init__("Invalid tool arguments: " + "; ".join(self.issues))


class CapabilityUnavailable(AgentError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} unavailable")


class DuplicateInvocationSuppressed(AgentError):
    def __init__(self, invocation_hash: str) -> None:
        self.invocation_hash = invocation_hash
        super().__init__("Duplicate invocation suppressed")


class ExternalCallFailure(AgentError):
    """An LLM, capability or retrieval call failed or timed out."""


class InvariantViolation(AgentError):
    """Task state is malformed; the governor forces a terminal answer."""
