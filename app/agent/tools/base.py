"""Abstract base class that every locally hosted capability must implement."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class CapabilityResult:
    success: bool
    payload: Any = None
    error: str | None = None


@dataclass(slots=True)
class CapabilityMetadata:
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    local: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class BaseCapability(ABC):
    """
    Minimal interface for in-process capabilities.

    Each capability encapsulates one action the planner can request, so the
    registry can serve local and remote capabilities through the same
    ``invoke`` contract.
    """

    description: str = ""

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier the planner uses to request this capability."""

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON schema of the accepted arguments."""

    @abstractmethod
    def invoke(self, args: dict[str, Any], context: dict[str, Any]) -> CapabilityResult:
        """
        Execute the capability synchronously.

        Parameters
        ----------
        args : dict
            Arguments already aligned to ``input_schema``.
        context : dict
            Execution context: the task id plus the allowed-action config.

        Returns
        -------
        CapabilityResult
            ``success`` with a JSON-safe payload, or an error string.
        """

    def metadata(self) -> CapabilityMetadata:
        return CapabilityMetadata(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
            local=True,
        )
