from app.schemas.agent import (
    AgentStreamEvent,
    AllowedActionConfig,
    CheckpointRead,
    TaskDiagnostics,
    TaskRequest,
    TaskResponse,
)
from app.schemas.research import ProfileInput, ResearchRequest, ResearchResponse

__all__ = [
    "AllowedActionConfig",
    "TaskRequest",
    "TaskDiagnostics",
    "TaskResponse",
    "AgentStreamEvent",
    "CheckpointRead",
    "ProfileInput",
    "ResearchRequest",
    "ResearchResponse",
]
