from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """SQLite gets thread sharing (and a single shared connection when in-memory); others get pool hygiene."""
    engine_kwargs: dict = {"echo": echo}
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_pre_ping"] = settings.db_pool_pre_ping
        engine_kwargs["pool_recycle"] = settings.db_pool_recycle_seconds
    return create_engine(database_url, **engine_kwargs)


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, class_=Session, autoflush=False, autocommit=False)


engine = build_engine(settings.database_url, echo=settings.debug)

SessionLocal = build_session_factory(engine)
