import json
import re
from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import ExternalCallFailure

_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class LLMServiceError(ExternalCallFailure):
    pass


def _extract_text(response_data: dict) -> str:
    candidates = response_data.get("candidates") or []
    if not candidates:
        raise LLMServiceError("Gemini returned no candidates")

    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    text_parts = [part.get("text", "") for part in parts if part.get("text")]
    if not text_parts:
        raise LLMServiceError("Gemini response contained no text")
    return "\n".join(text_parts).strip()


def generate_text(
    system_prompt: str,
    user_prompt: str,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
    json_mode: bool = False,
) -> str:
    if not settings.gemini_api_key:
        raise LLMServiceError("GEMINI_API_KEY is not set")

    url = _GEMINI_URL.format(model=settings.gemini_model)
    generation_config: dict[str, Any] = {
        "temperature": settings.gemini_temperature if temperature is None else temperature,
        "maxOutputTokens": max_output_tokens or settings.gemini_max_output_tokens,
    }
    if json_mode:
        generation_config["responseMimeType"] = "application/json"

    payload = {
        "systemInstruction": {"parts": [{"text": system_prompt}]},
        "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
        "generationConfig": generation_config,
    }

    try:
        with httpx.Client(timeout=settings.gemini_timeout_seconds) as client:
            response = client.post(url, params={"key": settings.gemini_api_key}, json=payload)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise LLMServiceError(
            f"Gemini request failed with status {exc.response.status_code}: {exc.response.text}"
        ) from exc
    except httpx.HTTPError as exc:
        raise LLMServiceError(f"Gemini request failed: {exc}") from exc

    return _extract_text(response.json())


def decide(system_prompt: str, user_prompt: str, temperature: float | None = None) -> str:
    """Structured-decision call: same transport, JSON response mode."""
    return generate_text(system_prompt, user_prompt, temperature=temperature, json_mode=True)


def extract_json_object(raw: str) -> dict[str, Any]:
    """
    Pull the first JSON object out of a model reply.

    Strips markdown code fences and any prose around the object.  Raises
    ``ValueError`` when no object can be decoded.
    """
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        cleaned = "\n".join(
            line for line in cleaned.splitlines() if not line.startswith("```")
        ).strip()

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(cleaned)
        if not match:
            raise ValueError("No JSON object found in model output") from None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Malformed JSON in model output: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError("Model output is not a JSON object")
    return data
