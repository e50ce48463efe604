"""
Shared FastAPI dependencies.

Collaborators are built once per process and reused across requests; tests
replace them through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from app.agent.governor import LoopGovernor
from app.agent.tools.registry import CapabilityRegistry
from app.agent.tools.research import DeepResearchCapability
from app.agent.tools.retrieval import KnowledgeSearchCapability
from app.db.session import SessionLocal
from app.services.capability_service import CapabilityRuntimeClient
from app.services.checkpoint_service import CheckpointStore, SqlCheckpointStore
from app.services.corag_service import RetrievalRefinementEngine
from app.services.retrieval_service import KnowledgeRetrievalClient
from app.services.task_service import TaskService


@lru_cache
def get_checkpoint_store() -> CheckpointStore:
    return SqlCheckpointStore(SessionLocal)


@lru_cache
def get_research_engine() -> RetrievalRefinementEngine:
    return RetrievalRefinementEngine(retriever=KnowledgeRetrievalClient())


@lru_cache
def get_capability_registry() -> CapabilityRegistry:
    retriever = KnowledgeRetrievalClient()
    return CapabilityRegistry(
        local=[
            KnowledgeSearchCapability(retriever=retriever),
            DeepResearchCapability(engine=get_research_engine()),
        ],
        runtime=CapabilityRuntimeClient(),
    )


@lru_cache
def get_task_service() -> TaskService:
    registry = get_capability_registry()
    governor = LoopGovernor(registry, store=get_checkpoint_store())
    return TaskService(registry, governor=governor)
