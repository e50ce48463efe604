from app.agent.tools.registry import CapabilityRegistry
from app.agent.tools.research import DeepResearchCapability
from app.agent.tools.retrieval import KnowledgeSearchCapability, profile_from_context
from app.services.corag_service import CoragConfig, RetrievalRefinementEngine
from app.services.reranker_service import RerankConfig
from app.services.retrieval_service import RetrievedDocument
from tests.conftest import FakeCapability, FakeRetriever


class FakeRuntime:
    def __init__(self, catalogue=None, reply=None, list_error=None):
        self.catalogue = catalogue or []
        self.reply = reply or {"success": True, "result": {"ok": True}}
        self.list_error = list_error
        self.list_calls = 0
        self.invocations = []

    def list_capabilities(self):
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return self.catalogue

    def invoke(self, name, args, context):
        self.invocations.append((name, args, context))
        return self.reply


REMOTE_SEARCH = {"name": "knowledge_search", "description": "remote", "inputSchema": {"type": "object"}}
REMOTE_WEB = {"name": "web_search", "description": "Search the web", "inputSchema": {"type": "object"}}


def test_local_capabilities_shadow_remote_ones():
    runtime = FakeRuntime(catalogue=[REMOTE_SEARCH, REMOTE_WEB])
    registry = CapabilityRegistry(local=[FakeCapability()], runtime=runtime)

    listed = {meta.name: meta for meta in registry.list_capabilities()}

    assert set(listed) == {"knowledge_search", "web_search"}
    assert listed["knowledge_search"].local is True
    assert listed["web_search"].to_dict()["inputSchema"] == {"type": "object"}


def test_remote_catalogue_is_fetched_once():
    runtime = FakeRuntime(catalogue=[REMOTE_WEB])
    registry = CapabilityRegistry(runtime=runtime)

    registry.list_capabilities()
    registry.resolve("web_search")

    assert runtime.list_calls == 1


def test_listing_failure_leaves_remote_catalogue_empty():
    registry = CapabilityRegistry(local=[FakeCapability()], runtime=FakeRuntime(list_error=RuntimeError("down")))

    assert [meta.name for meta in registry.list_capabilities()] == ["knowledge_search"]
    assert registry.resolve("web_search") is None


def test_remote_invocation_maps_runtime_reply():
    runtime = FakeRuntime(catalogue=[REMOTE_WEB], reply={"success": False})
    registry = CapabilityRegistry(runtime=runtime)

    result = registry.invoke("web_search", {"query": "x"}, {"taskId": "t"})

    assert result.success is False
    assert result.error == "Tool execution failed"
    assert runtime.invocations == [("web_search", {"query": "x"}, {"taskId": "t"})]


def test_unknown_capability_is_unavailable():
    result = CapabilityRegistry().invoke("missing", {}, {})

    assert result.success is False
    assert result.error == "missing unavailable"


def test_raising_local_capability_becomes_failed_result():
    registry = CapabilityRegistry(local=[FakeCapability(raises=ValueError("bad input"))])

    result = registry.invoke("knowledge_search", {"query": "x"}, {})

    assert result.success is False
    assert result.error == "bad input"


def test_profile_accepts_camel_case_keys():
    profile = profile_from_context({"profile": {"expertiseLevel": "expert", "technicalBackground": ["go"]}})

    assert profile.expertise_level == "expert"
    assert profile.technical_background == ["go"]


def test_knowledge_search_reranks_results():
    docs = [
        RetrievedDocument(id="a", content="billing overview", source="billing.md"),
        RetrievedDocument(id="b", content="webhook retries explained", source="webhooks.md"),
    ]
    capability = KnowledgeSearchCapability(retriever=FakeRetriever(docs), rerank_config=RerankConfig())

    result = capability.invoke({"query": "webhook retries", "top_k": 2}, {"taskId": "t"})

    assert result.success
    results = result.payload["results"]
    assert [item["id"] for item in results] == ["b", "a"]
    assert results[0]["title"] == "webhooks.md"


def test_deep_research_reports_iterations_and_adequacy():
    docs = [
        RetrievedDocument(id="1", content="webhook retries policy", source="a.md", category="guides"),
        RetrievedDocument(id="2", content="webhook retries limits", source="b.md", category="reference"),
        RetrievedDocument(id="3", content="webhook retries faq", source="c.md", category="faq"),
    ]
    engine = RetrievalRefinementEngine(
        retriever=FakeRetriever(docs),
        config=CoragConfig(max_iterations=3, adequacy_threshold=0.7, top_k=5, rerank_enabled=False),
    )

    result = DeepResearchCapability(engine=engine).invoke({"query": "webhook retries"}, {})

    assert result.success
    assert result.payload["iterations"] == 1
    assert result.payload["adequacy"] == 1.0
    assert [doc["id"] for doc in result.payload["documents"]] == ["1", "2", "3"]
