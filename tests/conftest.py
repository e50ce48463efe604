import json
from typing import Any

import pytest

from app.agent.state import AllowedAction, Task
from app.agent.tools.base import BaseCapability, CapabilityResult
from app.agent.tools.registry import CapabilityRegistry
from app.services.checkpoint_service import InMemoryCheckpointStore
from app.services.llm_service import LLMServiceError
from app.services.retrieval_service import RetrievedDocument

DEFAULT_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string"},
        "top_k": {"type": "integer"},
    },
    "required": ["query"],
}


class ScriptedLLM:
    """
    Stand-in for the model calls.

    Replies are served in order and the last one repeats.  A reply may be a
    string, a dict (sent as JSON), an exception (raised) or a callable taking
    the 1-based call number.
    """

    def __init__(self, *replies: Any) -> None:
        self.replies = list(replies)
        self.calls: list[str] = []

    def __call__(self, system_prompt: str, user_prompt: str, temperature: float | None = None, **_: Any) -> str:
        self.calls.append(user_prompt)
        if not self.replies:
            raise LLMServiceError("no scripted reply")
        reply = self.replies[min(len(self.calls), len(self.replies)) - 1]
        if callable(reply) and not isinstance(reply, type):
            reply = reply(len(self.calls))
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


class FakeCapability(BaseCapability):
    def __init__(
        self,
        name: str = "knowledge_search",
        schema: dict[str, Any] | None = None,
        payload: Any = None,
        error: str | None = None,
        raises: Exception | None = None,
    ) -> None:
        self._name = name
        self._schema = schema if schema is not None else DEFAULT_SCHEMA
        self._payload = payload
        self._error = error
        self._raises = raises
        self.calls: list[tuple[dict[str, Any], dict[str, Any]]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._schema

    def invoke(self, args: dict[str, Any], context: dict[str, Any]) -> CapabilityResult:
        self.calls.append((args, context))
        if self._raises is not None:
            raise self._raises
        if self._error is not None:
            return CapabilityResult(success=False, error=self._error)
        payload = self._payload
        if payload is None:
            payload = {
                "results": [
                    {
                        "title": "OAuth2 guide",
                        "content": f"Configure OAuth2 by registering a client for {args.get('query')}.",
                    }
                ]
            }
        return CapabilityResult(success=True, payload=payload)


class FakeRetriever:
    def __init__(self, documents: Any = ()) -> None:
        self._documents = documents
        self.queries: list[str] = []

    def search(self, query: str, filters: dict[str, Any] | None = None, top_k: int = 10) -> list[RetrievedDocument]:
        self.queries.append(query)
        if isinstance(self._documents, Exception):
            raise self._documents
        docs = self._documents(query) if callable(self._documents) else self._documents
        return list(docs)[:top_k]


def make_task(query: str = "How to configure OAuth2", step_budget: int = 6, actions=("knowledge_search",)) -> Task:
    return Task(
        query=query,
        step_budget=step_budget,
        allowed_actions=[AllowedAction(name=name) for name in actions],
    )


@pytest.fixture
def capability() -> FakeCapability:
    return FakeCapability()


@pytest.fixture
def registry(capability: FakeCapability) -> CapabilityRegistry:
    return CapabilityRegistry(local=[capability])


@pytest.fixture
def memory_store() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore()
