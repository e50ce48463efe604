"""
HTTP client for the capability runtime.

The runtime owns the actual tools.  It exposes two endpoints:

GET  /tools/list     → [{name, description, inputSchema}]
POST /tools/execute  → {success, result?, error?}
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import ExternalCallFailure

logger = logging.getLogger(__name__)


class CapabilityServiceError(ExternalCallFailure):
    pass


class CapabilityRuntimeClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.capability_runtime_url).rstrip("/")
        self._timeout = timeout or settings.capability_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self._base_url, timeout=self._timeout, transport=self._transport)

    def list_capabilities(self) -> list[dict[str, Any]]:
        try:
            with self._client() as client:
                response = client.get("/tools/list")
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise CapabilityServiceError(
                f"Capability listing failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise CapabilityServiceError(f"Capability listing failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise CapabilityServiceError(f"Capability listing returned an invalid body: {exc}") from exc
        tools = data if isinstance(data, list) else []
        logger.info("CapabilityRuntime: %d capabilities listed", len(tools))
        return tools

    def invoke(
        self,
        name: str,
        arguments: dict[str, Any],
        context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Execute one capability remotely.

        Transport errors, HTTP errors and non-JSON bodies are folded into ``{"success": False,
        "error": ...}`` so the executor handles them as ordinary failures.
        """
        body: dict[str, Any] = {"name": name, "arguments": arguments or {}}
        if context:
            body["context"] = context

        try:
            with self._client() as client:
                response = client.post("/tools/execute", json=body)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = "Tool execution failed"
            try:
                detail = exc.response.json()
                if isinstance(detail, dict):
                    message = detail.get("message") or detail.get("error") or message
            except ValueError:
                pass
            logger.warning("CapabilityRuntime: %s failed with status %d", name, exc.response.status_code)
            return {"success": False, "error": message}
        except httpx.HTTPError as exc:
            logger.warning("CapabilityRuntime: %s failed (%s)", name, exc)
            return {"success": False, "error": str(exc) or "Unknown error occurred"}

        try:
            data = response.json()
        except ValueError as exc:
            logger.warning("CapabilityRuntime: %s returned an invalid body (%s)", name, exc)
            return {"success": False, "error": f"Invalid response from capability runtime: {exc}"}
        if not isinstance(data, dict):
            return {"success": True, "result": data}
        return data
