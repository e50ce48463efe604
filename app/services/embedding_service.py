import httpx

from app.core.config import settings
from app.core.errors import ExternalCallFailure

# Gemini Embedding REST endpoints
_GEMINI_EMBED_URL = (
    "https://generativelanguage.googleapis.com/v1beta/models/"
    "{model}:embedContent"
)
_GEMINI_BATCH_URL = (
    "https://generativelanguage.googleapis.com/v1beta/models/"
    "{model}:batchEmbedContents"
)


class EmbeddingServiceError(ExternalCallFailure):
    pass


def _api_key() -> str:
    key = settings.gemini_api_key
    if not key:
        raise EmbeddingServiceError("GEMINI_API_KEY is not set")
    return key


def _post(url: str, payload: dict) -> dict:
    try:
        response = httpx.post(
            url,
            json=payload,
            headers={"x-goog-api-key": _api_key()},
            timeout=settings.embedding_timeout_seconds,
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise EmbeddingServiceError(
            f"Gemini embedding API error {exc.response.status_code}: {exc.response.text}"
        ) from exc
    except httpx.HTTPError as exc:
        raise EmbeddingServiceError(f"Failed to call Gemini embedding API: {exc}") from exc
    return response.json()


def embed_texts(texts: list[str]) -> list[list[float]]:
    """Embed document contents in one batchEmbedContents call."""
    if not texts:
        return []

    model = settings.embedding_model_name
    data = _post(
        _GEMINI_BATCH_URL.format(model=model),
        {
            "requests": [
                {"model": f"models/{model}", "content": {"parts": [{"text": t}]}}
                for t in texts
            ]
        },
    )
    embeddings = data.get("embeddings", [])
    if len(embeddings) != len(texts):
        raise EmbeddingServiceError(
            f"Gemini returned {len(embeddings)} embeddings for {len(texts)} texts"
        )
    return [item["values"] for item in embeddings]


def embed_query(query: str) -> list[float]:
    cleaned = query.strip()
    if not cleaned:
        raise EmbeddingServiceError("Query text is empty")

    model = settings.embedding_model_name
    data = _post(
        _GEMINI_EMBED_URL.format(model=model),
        {"model": f"models/{model}", "content": {"parts": [{"text": cleaned}]}},
    )
    values = data.get("embedding", {}).get("values")
    if not values:
        raise EmbeddingServiceError("Gemini returned empty embedding values")
    return values
