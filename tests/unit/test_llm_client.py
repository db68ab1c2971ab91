import asyncio

import pytest
from langchain_core.messages import AIMessage

from ai_responder.llm.client import LLMClient
from ai_responder.llm.errors import LLMInvalidRequest, LLMTimeout
from ai_responder.llm.rate_limit import ConcurrencyLimiter
from ai_responder.llm.types import LLMCallContext, LLMConfig
from ai_responder.tools.handlers import build_default_registry


class FakeChat:
    """Minimal chat-model double: scripted replies, records messages and bound tools."""

    def __init__(self, script, *, delay_s=0.0):
        self.script = list(script)
        self.delay_s = delay_s
        self.kwargs = []
        self.seen = []
        self.bound = []

    def factory(self, **kwargs):
        self.kwargs.append(kwargs)
        return self

    def bind_tools(self, tools, **kwargs):
        self.bound.append([t.name for t in tools])
        return self

    async def ainvoke(self, messages):
        self.seen.append(messages)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(chat):
    return LLMClient(default_model="m1", limiter=ConcurrencyLimiter(max_inflight=1), chat_factory=chat.factory)


@pytest.mark.asyncio
async def test_invoke_text_maps_roles_and_records_usage():
    chat = FakeChat(
        [AIMessage(content="ok", response_metadata={"token_usage": {"prompt_tokens": 7, "completion_tokens": 2, "total_tokens": 9}})]
    )
    metrics = []
    text = await _client(chat).invoke_text(
        [{"role": "system", "content": "s"}, {"role": "user", "content": "hola"}],
        config=LLMConfig(temperature=0.1, max_tokens=10),
        context=LLMCallContext(trace_id="tr", node="specialist", task="direct_answer", metrics=metrics),
    )
    assert text == "ok"
    assert [type(m).__name__ for m in chat.seen[0]] == ["SystemMessage", "HumanMessage"]
    assert chat.kwargs[0]["model"] == "m1"
    assert metrics[0]["usage"] == {"prompt_tokens": 7, "completion_tokens": 2, "total_tokens": 9, "estimated": False}
    assert metrics[0]["node"] == "specialist"


@pytest.mark.asyncio
async def test_usage_is_estimated_without_provider_metadata():
    chat = FakeChat([AIMessage(content="respuesta")])
    metrics = []
    await _client(chat).invoke_text(
        [{"role": "user", "content": "hola"}],
        config=LLMConfig(),
        context=LLMCallContext(trace_id=None, metrics=metrics),
    )
    assert metrics[0]["usage"]["estimated"] is True
    assert metrics[0]["usage"]["total_tokens"] > 0


@pytest.mark.asyncio
async def test_invoke_tool_calls_binds_registry_tools():
    registry = build_default_registry()
    call = {"name": "list_services", "args": {}, "id": "c1", "type": "tool_call"}
    chat = FakeChat([AIMessage(content="", tool_calls=[call])])
    out = await _client(chat).invoke_tool_calls(
        [{"role": "user", "content": "¿qué servicios tienen?"}],
        tools=registry.list(["list_services", "get_faq_answer"]),
        config=LLMConfig(),
    )
    assert sorted(chat.bound[0]) == ["get_faq_answer", "list_services"]
    assert out["tool_calls"][0]["name"] == "list_services"
    assert out["tool_calls"][0]["id"] == "c1"


@pytest.mark.asyncio
async def test_retryable_provider_error_is_retried():
    chat = FakeChat([RuntimeError("503 service unavailable"), AIMessage(content="ok")])
    text = await _client(chat).invoke_text([{"role": "user", "content": "hola"}], config=LLMConfig(retries=1))
    assert text == "ok"
    assert len(chat.seen) == 2


@pytest.mark.asyncio
async def test_invalid_request_is_not_retried():
    chat = FakeChat([RuntimeError("400 invalid request"), AIMessage(content="ok")])
    with pytest.raises(LLMInvalidRequest):
        await _client(chat).invoke_text([{"role": "user", "content": "hola"}], config=LLMConfig(retries=2))
    assert len(chat.seen) == 1


@pytest.mark.asyncio
async def test_timeout_raises_llm_timeout():
    chat = FakeChat([AIMessage(content="tarde")], delay_s=0.5)
    with pytest.raises(LLMTimeout):
        await _client(chat).invoke_text(
            [{"role": "user", "content": "hola"}], config=LLMConfig(timeout_s=0.01, retries=0)
        )


def test_unknown_role_is_rejected():
    with pytest.raises(ValueError):
        LLMClient()._to_langchain_messages([{"role": "robot", "content": "x"}])
