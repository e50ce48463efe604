import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import models  # noqa: F401
from app.api import agent, health, research
from app.core.config import settings
from app.core.logging import configure_logging
from app.db.base import Base
from app.db.session import engine

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    # checkpoint table only
    Base.metadata.create_all(bind=engine)
    logger.info("Startup: checkpoint store ready (%s)", engine.url.get_backend_name())
    yield


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in (health.router, agent.router, research.router):
    app.include_router(router, prefix=settings.api_v1_prefix)


@app.get("/", tags=["root"])
def root():
    return {"message": f"{settings.app_name} is running", "environment": settings.app_env}
