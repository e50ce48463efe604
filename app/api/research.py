from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from app.api.deps import get_research_engine
from app.schemas.research import ResearchRequest, ResearchResponse
from app.services.corag_service import CoragConfig, RetrievalRefinementEngine
from app.services.reranker_service import UserProfile

router = APIRouter(prefix="/research", tags=["research"])
logger = logging.getLogger(__name__)


def _config_for(request: ResearchRequest, base: CoragConfig) -> CoragConfig:
    return CoragConfig(
        max_iterations=request.max_iterations or base.max_iterations,
        adequacy_threshold=(
            base.adequacy_threshold if request.adequacy_threshold is None else request.adequacy_threshold
        ),
        top_k=request.top_k or base.top_k,
        rerank_enabled=base.rerank_enabled if request.rerank_enabled is None else request.rerank_enabled,
    )


@router.post("", response_model=ResearchResponse)
def run_research(
    request: ResearchRequest,
    engine: RetrievalRefinementEngine = Depends(get_research_engine),
):
    config = _config_for(request, engine.config)
    profile = UserProfile(**request.profile.model_dump()) if request.profile else UserProfile()

    if request.decompose:
        research = engine.research(
            request.query,
            profile=profile,
            history=request.history,
            filters=request.filters,
            config=config,
        )
        data = research.to_dict()
        return ResearchResponse(
            query=request.query,
            decomposition={
                "strategy": data["strategy"],
                "complexity": data["complexity"],
                "sub_queries": data["sub_queries"],
            },
            iterations=[item for result in data["results"] for item in result["iterations"]],
            documents=data["documents"],
            adequacy=research.final_adequacy,
            sub_query_adequacy=[result["final_adequacy"] for result in data["results"]],
        )

    result = engine.run(
        request.query,
        profile=profile,
        history=request.history,
        filters=request.filters,
        config=config,
    )
    data = result.to_dict()
    return ResearchResponse(
        query=request.query,
        iterations=data["iterations"],
        documents=data["documents"],
        adequacy=result.final_adequacy,
    )
