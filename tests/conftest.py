"""
Pytest fixtures and configuration for tests.
"""

from typing import Any, Optional

import pytest

from chatflow_engine.config import Environment, Settings
from chatflow_engine.config.settings import ExecutorSettings
from chatflow_engine.executors import NodeDispatcher, default_registry
from chatflow_engine.services import InMemoryStore, Services


# ==================== Service Fakes ====================


class RecordingHttpClient:
    """
    HttpClient fake.

    Every call is recorded. Queued responses are returned in order (an
    exception in the queue is raised instead); once the queue is empty the
    default response is returned.
    """

    def __init__(self, responses: Optional[list[Any]] = None, default: Any = None):
        self.calls: list[dict[str, Any]] = []
        self.responses = list(responses or [])
        self.default = {"ok": True} if default is None else default

    async def get(self, url: str, **options: Any) -> Any:
        return await self.request("GET", url, **options)

    async def post(self, url: str, body: Any = None, **options: Any) -> Any:
        method = options.pop("method", "POST")
        return await self.request(method, url, body, **options)

    async def request(self, method: str, url: str, body: Any = None, **options: Any) -> Any:
        self.calls.append({"method": method, "url": url, "body": body, **options})
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return self.default


class FakeLlm:
    """LlmClient fake answering with queued contents."""

    def __init__(self, contents: Optional[list[Any]] = None, model: str = "test-model"):
        self.calls: list[dict[str, Any]] = []
        self.contents = list(contents or [])
        self.model = model

    async def chat(self, messages: list[dict[str, str]], **options: Any) -> dict[str, Any]:
        self.calls.append({"messages": messages, **options})
        content = self.contents.pop(0) if self.contents else "ok"
        if isinstance(content, Exception):
            raise content
        return {
            "content": content,
            "model": options.get("model") or self.model,
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
            "finish_reason": "stop",
        }


class RecordingSender:
    """ChatSender fake keeping every message it was asked to deliver."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []

    async def send(self, channel: str, to: str, body: str, **options: Any) -> Any:
        self.sent.append({"channel": channel, "to": to, "body": body, **options})
        return {"delivered": True}


# ==================== Settings and Services ====================


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        environment=Environment.TEST,
        log_level="DEBUG",
        executor=ExecutorSettings(timeout=2.0, retry_count=0, retry_backoff=0.0),
    )


@pytest.fixture
def http_client() -> RecordingHttpClient:
    return RecordingHttpClient()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def llm() -> FakeLlm:
    return FakeLlm()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def services(http_client, store, llm, sender) -> Services:
    """Services bag wired with the fakes above."""
    return Services(http=http_client, storage=store, llm=llm, sender=sender)


@pytest.fixture
def dispatcher(services, test_settings) -> NodeDispatcher:
    return NodeDispatcher(registry=default_registry, services=services, settings=test_settings)


@pytest.fixture
def make_context(dispatcher):
    """Factory for execution contexts sharing the fake services."""

    def _make(**kwargs: Any):
        kwargs.setdefault("execution_id", "exec-1")
        kwargs.setdefault("workflow_id", "wf-1")
        return dispatcher.build_context(**kwargs)

    return _make


# ==================== Sample Graphs ====================


@pytest.fixture
def age_survey_graph() -> dict:
    """start -> ask age -> branch muda/tua -> greeting -> end."""
    return {
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "ask_age", "type": "ask", "data": {"prompt": "umur?", "fieldKey": "umur"}},
            {"id": "branch", "type": "condition", "data": {"label": "Kategori umur?"}},
            {"id": "greet_young", "type": "send", "data": {"text": "Halo {{nama}}"}},
            {"id": "greet_old", "type": "send", "data": {"text": "Selamat datang {{nama}}"}},
            {"id": "finish", "type": "end"},
        ],
        "edges": [
            {"source": "start", "target": "ask_age"},
            {"source": "ask_age", "target": "branch"},
            {"source": "branch", "target": "greet_young", "label": "muda"},
            {"source": "branch", "target": "greet_old", "label": "tua"},
            {"source": "greet_young", "target": "finish"},
            {"source": "greet_old", "target": "finish"},
        ],
    }


@pytest.fixture
def registration_graph() -> dict:
    """Linear intake: ask name, greet with a catalog template, end."""
    return {
        "nodes": [
            {"id": "s", "type": "start"},
            {"id": "q", "type": "input", "data": {"label": "Nama Farm", "prompt": "Nama farm?"}},
            {"id": "o", "type": "output", "data": {"text": "Terima kasih {{nama_farm}}"}},
            {"id": "e", "type": "end"},
        ],
        "edges": [
            {"source": "s", "target": "q"},
            {"source": "q", "target": "o"},
            {"source": "o", "target": "e"},
        ],
    }


@pytest.fixture
def cyclic_graph() -> dict:
    """Two silent process nodes pointing at each other behind a start node."""
    return {
        "nodes": [
            {"id": "s", "type": "start"},
            {"id": "p1", "type": "process", "data": {"label": "Hitung A"}},
            {"id": "p2", "type": "process", "data": {"label": "Hitung B"}},
        ],
        "edges": [
            {"source": "s", "target": "p1"},
            {"source": "p1", "target": "p2"},
            {"source": "p2", "target": "p1"},
        ],
    }
