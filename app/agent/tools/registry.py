"""
CapabilityRegistry — one lookup for local and remote capabilities.

Local capabilities shadow remote ones of the same name.  The remote
catalogue is fetched from the capability runtime on first use and cached
for the registry's lifetime; a listing failure leaves it empty.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from app.agent.tools.base import BaseCapability, CapabilityMetadata, CapabilityResult
from app.services.capability_service import CapabilityRuntimeClient

logger = logging.getLogger(__name__)


def _remote_metadata(item: dict[str, Any]) -> CapabilityMetadata | None:
    name = item.get("name")
    if not name:
        return None
    schema = item.get("inputSchema") or item.get("input_schema") or {}
    return CapabilityMetadata(
        name=str(name),
        description=str(item.get("description") or ""),
        input_schema=schema if isinstance(schema, dict) else {},
    )


def _remote_result(data: dict[str, Any]) -> CapabilityResult:
    success = bool(data.get("success"))
    payload = data.get("result")
    if payload is None:
        payload = data.get("payload", data.get("data"))
    error = data.get("error")
    if not success and not error:
        error = "Tool execution failed"
    return CapabilityResult(success=success, payload=payload, error=str(error) if error else None)


class CapabilityRegistry:
    def __init__(
        self,
        local: Iterable[BaseCapability] = (),
        runtime: CapabilityRuntimeClient | None = None,
    ) -> None:
        self._local: dict[str, BaseCapability] = {cap.name: cap for cap in local}
        self._runtime = runtime
        self._remote: dict[str, CapabilityMetadata] | None = None

    def _remote_catalogue(self) -> dict[str, CapabilityMetadata]:
        if self._remote is not None:
            return self._remote
        catalogue: dict[str, CapabilityMetadata] = {}
        if self._runtime is not None:
            try:
                for item in self._runtime.list_capabilities():
                    meta = _remote_metadata(item) if isinstance(item, dict) else None
                    if meta is not None:
                        catalogue[meta.name] = meta
            except Exception as exc:
                logger.warning("Registry: capability listing failed (%s), remote catalogue empty", exc)
        self._remote = catalogue
        return catalogue

    def list_capabilities(self) -> list[CapabilityMetadata]:
        merged = {name: cap.metadata() for name, cap in self._local.items()}
        for name, meta in self._remote_catalogue().items():
            merged.setdefault(name, meta)
        return list(merged.values())

    def resolve(self, name: str) -> CapabilityMetadata | None:
        local = self._local.get(name)
        if local is not None:
            return local.metadata()
        return self._remote_catalogue().get(name)

    def invoke(self, name: str, args: dict[str, Any], context: dict[str, Any]) -> CapabilityResult:
        local = self._local.get(name)
        if local is not None:
            try:
                return local.invoke(args, context)
            except Exception as exc:
                logger.warning("Registry: local capability %s raised (%s)", name, exc)
                return CapabilityResult(success=False, error=str(exc) or exc.__class__.__name__)

        if self._runtime is None or name not in self._remote_catalogue():
            return CapabilityResult(success=False, error=f"{name} unavailable")
        return _remote_result(self._runtime.invoke(name, args, context))
