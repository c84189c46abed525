import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from insightbridge.services import llm
from tests.conftest import FakeAPIError


def test_build_message_validates_role_and_content():
    assert llm.build_message("user", "hi") == {"role": "user", "content": "hi"}
    with pytest.raises(ValueError):
        llm.build_message("system", "hi")
    with pytest.raises(ValueError):
        llm.build_message("assistant", "")


def test_extract_text_content_joins_text_blocks():
    response = {"content": [
        {"type": "text", "text": "Hello "},
        {"type": "tool_use", "id": "x"},
        {"type": "text", "text": "world"},
    ]}
    assert llm.extract_text_content(response) == "Hello world"
    assert llm.extract_text_content({}) == ""


@pytest.mark.asyncio
async def test_send_message_rejects_empty_list(claude):
    with pytest.raises(ValueError):
        await llm.send_message([])
    assert claude.calls == []


@pytest.mark.asyncio
async def test_send_message_shape_and_framing(claude):
    claude.queue("Hi there")

    result = await llm.send_message(
        [{"role": "user", "content": "Hello"}, {"role": "assistant", "content": "Hi"}, {"role": "user", "content": "?"}],
        system="Be brief",
        max_tokens=256,
    )

    assert result == {
        "content": [{"type": "text", "text": "Hi there"}],
        "usage": {"input_tokens": 120, "output_tokens": 40},
    }
    call = claude.calls[0]
    assert [type(m) for m in call.messages] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
    assert call.kwargs["max_tokens"] == 256
    # retries are ours, not the SDK's
    assert call.kwargs["max_retries"] == 0


@pytest.mark.asyncio
async def test_server_errors_are_retried(claude):
    claude.queue(FakeAPIError(529, "overloaded"), ConnectionError("reset"), "Recovered")

    result = await llm.send_message([{"role": "user", "content": "Hello"}])

    assert llm.extract_text_content(result) == "Recovered"
    assert len(claude.calls) == 3


@pytest.mark.asyncio
async def test_retries_are_bounded(claude, monkeypatch):
    monkeypatch.setattr(llm, "_MAX_RETRIES", 2)
    claude.queue(FakeAPIError(500, "first"), FakeAPIError(503, "second"))

    with pytest.raises(FakeAPIError, match="second"):
        await llm.send_message([{"role": "user", "content": "Hello"}])
    assert len(claude.calls) == 2


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(claude):
    claude.queue(FakeAPIError(400, "bad request"), "never used")

    with pytest.raises(FakeAPIError, match="bad request"):
        await llm.send_message([{"role": "user", "content": "Hello"}])
    assert len(claude.calls) == 1


@pytest.mark.asyncio
async def test_stream_message_yields_text(claude):
    claude.queue("one two three")

    chunks = [c async for c in llm.stream_message([{"role": "user", "content": "Count"}])]

    assert "".join(chunks).split() == ["one", "two", "three"]
