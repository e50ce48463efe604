from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import ExternalCallFailure

logger = logging.getLogger(__name__)


class RetrievalServiceError(ExternalCallFailure):
    pass


@dataclass(slots=True)
class RetrievedDocument:
    content: str
    source: str = ""
    score: float = 0.0
    id: str | None = None
    category: str | None = None
    last_updated: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> str:
        return self.id or f"{self.source}:{self.content[:100]}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "source": self.source,
            "score": self.score,
            "category": self.category,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "metadata": dict(self.metadata),
        }


def _parse_date(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def document_from_dict(data: dict[str, Any]) -> RetrievedDocument:
    metadata = dict(data.get("metadata") or {})
    raw_id = data.get("id")
    return RetrievedDocument(
        id=str(raw_id) if raw_id is not None else None,
        content=str(data.get("content") or ""),
        source=str(data.get("source") or ""),
        score=float(data.get("score") or 0.0),
        category=metadata.get("category"),
        last_updated=_parse_date(metadata.get("lastUpdated") or metadata.get("last_updated")),
        metadata=metadata,
    )


class KnowledgeRetrievalClient:
    """Thin client over the knowledge retrieval service's ``POST /search``."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.retrieval_service_url).rstrip("/")
        self._timeout = timeout or settings.retrieval_timeout_seconds
        self._transport = transport

    def search(
        self,
        query: str,
        filters: dict[str, Any] | None = None,
        top_k: int = 10,
    ) -> list[RetrievedDocument]:
        payload = {"query": query, "filters": filters or {}, "topK": top_k}
        try:
            with httpx.Client(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = client.post("/search", json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RetrievalServiceError(
                f"Retrieval failed with status {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RetrievalServiceError(f"Retrieval failed: {exc}") from exc

        data = response.json()
        items = data.get("documents", []) if isinstance(data, dict) else data
        documents = [document_from_dict(item) for item in items or [] if isinstance(item, dict)]
        logger.debug("Retrieval: query=%r → %d documents", query, len(documents))
        return documents[:top_k]
