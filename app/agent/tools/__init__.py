# Capabilities the agent can invoke
from app.agent.tools.base import BaseCapability, CapabilityMetadata, CapabilityResult
from app.agent.tools.registry import CapabilityRegistry
from app.agent.tools.research import DeepResearchCapability
from app.agent.tools.retrieval import KnowledgeSearchCapability

__all__ = [
    "BaseCapability",
    "CapabilityMetadata",
    "CapabilityResult",
    "CapabilityRegistry",
    "DeepResearchCapability",
    "KnowledgeSearchCapability",
]
