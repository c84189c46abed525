"""Pytest configuration and fixtures."""

from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage, AIMessageChunk, SystemMessage

from insightbridge.graph.schema import create_empty_request
from insightbridge.services import llm
from insightbridge.services.insights import InMemoryInsightStore
from insightbridge.services.sessions import SessionRegistry


# ---------------------------------------------------------------------------
# Scripted Claude
# ---------------------------------------------------------------------------

class FakeAPIError(Exception):
    """Carries an HTTP status like the Anthropic SDK errors do."""

    def __init__(self, status_code: int, message: str = "fake API error"):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ClaudeCall:
    kwargs: dict
    messages: list

    @property
    def system(self) -> str:
        first = self.messages[0] if self.messages else None
        return first.content if isinstance(first, SystemMessage) else ""

    @property
    def conversation(self) -> list:
        return [m for m in self.messages if not isinstance(m, SystemMessage)]


class ScriptedClaude:
    """
    Replaces ChatAnthropic. Each call pops the next scripted reply: a string,
    an exception to raise, or a callable taking the messages.
    """

    def __init__(self) -> None:
        self.replies: list = []
        self.calls: list[ClaudeCall] = []

    def queue(self, *replies) -> None:
        self.replies.extend(replies)

    def _next(self, kwargs: dict, messages: list) -> str:
        self.calls.append(ClaudeCall(kwargs=kwargs, messages=list(messages)))
        if not self.replies:
            raise AssertionError("Unexpected Claude call: no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(messages)
        return reply

    def __call__(self, **kwargs) -> "_FakeChat":
        return _FakeChat(self, kwargs)


class _FakeChat:
    def __init__(self, script: ScriptedClaude, kwargs: dict) -> None:
        self._script = script
        self._kwargs = kwargs

    async def ainvoke(self, messages):
        text = self._script._next(self._kwargs, messages)
        return AIMessage(
            content=text,
            usage_metadata={"input_tokens": 120, "output_tokens": 40, "total_tokens": 160},
        )

    async def astream(self, messages):
        text = self._script._next(self._kwargs, messages)
        for word in text.split(" "):
            yield AIMessageChunk(content=word + " ")


@pytest.fixture
def claude(monkeypatch) -> ScriptedClaude:
    script = ScriptedClaude()
    monkeypatch.setattr(llm, "ChatAnthropic", script)
    monkeypatch.setattr(llm, "_RETRY_DELAY_SECONDS", 0)
    return script


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@pytest.fixture
def insight_factory():
    """Factory for submitted-insight records."""

    def create_insight(company="Acme Corp", tier="Enterprise", arr=150000, **overrides):
        record = create_empty_request()
        record["customer"].update({"companyName": company, "tier": tier, "arr": arr})
        record["request"].update({
            "title": "Bulk export",
            "description": "Export many reports at once",
            "priority": "high",
            "category": "Export",
        })
        record["impact"].update({"revenueAtRisk": 50000, "churnRisk": "medium"})
        for section, values in overrides.items():
            record[section].update(values)
        return record

    return create_insight


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

@pytest.fixture
def store() -> InMemoryInsightStore:
    return InMemoryInsightStore()


@pytest.fixture
def api_client(store, monkeypatch):
    from sse_starlette import sse

    from insightbridge.main import create_app

    # sse-starlette keeps a module-level exit event bound to the first event loop
    if hasattr(sse.AppStatus, "should_exit_event"):
        monkeypatch.setattr(sse.AppStatus, "should_exit_event", None)

    app = create_app(store=store, registry=SessionRegistry(), run_sweeper=False)
    with TestClient(app) as client:
        yield client
