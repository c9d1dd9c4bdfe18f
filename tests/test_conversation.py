"""
Conversation 全量测试 — 模拟 LLM 响应来验证单轮工具解析与回退策略。
"""

import http.client
import json
from typing import Optional

import pytest

from llm_functions.conversation.orchestrator import Conversation, ConversationResult, flatten_tools
from llm_functions.core.config import ProviderConfig
from llm_functions.core.errors import DecodeError, RemoteStatusError, TransportError
from llm_functions.core.types import ChatReply
from llm_functions.tools.registry import ToolRegistry
from llm_functions.transport.client import HTTPChatTransport, InProcessChatTransport


# ══════════════════════════════════════════════
# Fake LLM helpers
# ══════════════════════════════════════════════


def make_final_response(content: str):
    """Simulate a reply with only text (no tool calls)."""
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def make_tool_call_response(calls: list, content: str = ""):
    """Simulate a reply that requests tool calls."""
    tool_calls = []
    for i, (name, args) in enumerate(calls):
        tool_calls.append({
            "id": f"call_{i}",
            "type": "function",
            "function": {"name": name, "arguments": json.dumps(args)},
        })
    return {"choices": [{"message": {"role": "assistant", "content": content, "tool_calls": tool_calls}}]}


def scripted(*replies):
    """Handler answering each request with the next reply; exceptions are raised."""
    remaining = list(replies)

    def handler(payload):
        reply = remaining.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    return handler


EMPTY = {"choices": []}


# ══════════════════════════════════════════════
# Test fixtures
# ══════════════════════════════════════════════


@pytest.fixture
def calls():
    return []


@pytest.fixture
def registry(calls):
    r = ToolRegistry()

    def say_hi(name: str) -> str:
        calls.append(("sayHi", name))
        return f"Hello there {name}"

    def get_weather(lat: float, lon: float) -> str:
        calls.append(("getWeather", lat, lon))
        return f"Clear sky at ({lat}, {lon})"

    def broken() -> str:
        raise RuntimeError("sensor offline")

    r.register("sayHi", "Say hi to the user by first name", say_hi)
    r.register("getWeather", "Weather at a coordinate", get_weather)
    r.register("broken", "Always fails", broken)
    return r


def conversation(registry, *replies, **kwargs):
    transport = InProcessChatTransport(scripted(*replies))
    kwargs.setdefault("tools", ["sayHi", "getWeather", "broken"])
    return Conversation(transport=transport, registry=registry, **kwargs), transport


# ══════════════════════════════════════════════
# Core behavior
# ══════════════════════════════════════════════


class TestConversationBasic:

    def test_direct_answer(self, registry):
        conv, transport = conversation(registry, make_final_response("Plain answer"))
        result = conv.run("question")

        assert isinstance(result, ConversationResult)
        assert result.final_output == "Plain answer"
        assert result.transport_calls == 1
        assert result.tool_calls_count == 0
        assert result.stopped_reason == "completed"
        assert len(transport.requests) == 1

    def test_say_hi_end_to_end(self, registry, calls):
        conv, transport = conversation(
            registry,
            make_tool_call_response([("sayHi", {"name": "John"})]),
            make_final_response("Hello there John"),
            system_message="You are a helpful assistant.",
        )
        result = conv.run("Say hi to the current user, John")

        assert result.final_output == "Hello there John"
        assert result.transport_calls == 2
        assert len(transport.requests) == 2
        assert calls == [("sayHi", "John")]

        followup = transport.requests[1]["messages"]
        assert [m["role"] for m in followup] == ["system", "user", "assistant", "tool"]
        assert followup[2]["tool_calls"][0]["id"] == "call_0"
        assert followup[2]["tool_calls"][0]["function"]["name"] == "sayHi"
        assert followup[3] == {"role": "tool", "content": "Hello there John", "tool_call_id": "call_0"}

    def test_tools_offered_only_on_initial_request(self, registry):
        conv, transport = conversation(
            registry,
            make_tool_call_response([("sayHi", {"name": "Ann"})]),
            make_final_response("done"),
        )
        conv.run("hi")

        first, second = transport.requests
        assert first["tool_choice"] == "auto"
        assert [t["function"]["name"] for t in first["tools"]] == ["sayHi", "getWeather", "broken"]
        assert "tools" not in second
        assert "tool_choice" not in second

    def test_no_tools_configured(self, registry):
        conv, transport = conversation(registry, make_final_response("ok"), tools=())
        conv.run("hi")
        assert "tools" not in transport.requests[0]

    def test_unregistered_tool_name_not_offered(self, registry):
        conv, transport = conversation(registry, make_final_response("ok"), tools=["sayHi", "ghost"])
        conv.run("hi")
        assert [t["function"]["name"] for t in transport.requests[0]["tools"]] == ["sayHi"]

    def test_initial_messages(self, registry):
        conv, transport = conversation(registry, make_final_response("ok"), system_message="Be brief.")
        conv.run("hello")
        assert transport.requests[0]["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hello"},
        ]

    def test_no_system_message(self, registry):
        conv, transport = conversation(registry, make_final_response("ok"))
        conv.run("hello")
        assert transport.requests[0]["messages"] == [{"role": "user", "content": "hello"}]


# ══════════════════════════════════════════════
# Tool rounds
# ══════════════════════════════════════════════


class TestToolRound:

    def test_multiple_calls_in_order(self, registry, calls):
        conv, transport = conversation(
            registry,
            make_tool_call_response([
                ("getWeather", {"lat": 37.7749, "lon": -122.4194}),
                ("sayHi", {"name": "John"}),
            ]),
            make_final_response("It is clear, John."),
        )
        result = conv.run("weather and greeting")

        assert result.tool_calls_count == 2
        assert calls == [("getWeather", 37.7749, -122.4194), ("sayHi", "John")]
        msgs = transport.requests[1]["messages"]
        assert [m["role"] for m in msgs] == ["user", "assistant", "tool", "assistant", "tool"]

    def test_unconvertible_argument_is_dropped(self, calls):
        r = ToolRegistry()

        def repeat(word: str, n: int) -> str:
            calls.append(("repeat", word, n))
            return word * n

        r.register("repeat", "Repeat a word n times", repeat)
        conv, transport = conversation(
            r,
            make_tool_call_response([("repeat", {"word": "ha", "n": float("inf")})]),
            make_final_response("done"),
            tools=["repeat"],
        )
        result = conv.run("laugh")

        assert result.final_output == "done"
        assert result.tool_calls_count == 0
        assert calls == []
        assert [m["role"] for m in transport.requests[1]["messages"]] == ["user"]

    def test_unserializable_result_is_dropped(self):
        r = ToolRegistry()
        r.register("lookup", "Look something up", lambda key: {"value": object()})
        conv, _ = conversation(
            r,
            make_tool_call_response([("lookup", {"key": "k"})]),
            make_final_response("done"),
            tools=["lookup"],
        )
        result = conv.run("look")
        assert result.final_output == "done"
        assert result.tool_calls_count == 0

    def test_null_for_optional_argument(self):
        r = ToolRegistry()

        def greet(name: str, title: Optional[str] = None) -> str:
            return f"Hello {title} {name}" if title else f"Hello {name}"

        r.register("greet", "Greet someone", greet)
        conv, transport = conversation(
            r,
            make_tool_call_response([("greet", {"name": "John", "title": None})]),
            make_final_response("Hello John"),
            tools=["greet"],
        )
        result = conv.run("greet John")

        assert result.tool_calls_count == 1
        assert transport.requests[1]["messages"][-1]["content"] == "Hello John"

    def test_every_call_answered_once(self, registry):
        conv, transport = conversation(
            registry,
            make_tool_call_response([("sayHi", {"name": "A"}), ("sayHi", {"name": "B"})]),
            make_final_response("done"),
        )
        conv.run("greet both")

        msgs = transport.requests[1]["messages"]
        requested = [tc["id"] for m in msgs if m["role"] == "assistant" for tc in m["tool_calls"]]
        answered = [m["tool_call_id"] for m in msgs if m["role"] == "tool"]
        assert requested == ["call_0", "call_1"]
        assert answered == requested
        # Each assistant message carries exactly one call, followed by its result
        for i, m in enumerate(msgs):
            if m["role"] == "assistant":
                assert len(m["tool_calls"]) == 1
                assert msgs[i + 1]["tool_call_id"] == m["tool_calls"][0]["id"]

    def test_failed_tool_is_skipped(self, registry, calls):
        conv, transport = conversation(
            registry,
            make_tool_call_response([
                ("broken", {}),
                ("missing_tool", {}),
                ("sayHi", {"name": "John"}),
                ("sayHi", {}),
            ]),
            make_final_response("Hello there John"),
        )
        result = conv.run("hi")

        assert result.final_output == "Hello there John"
        assert result.tool_calls_count == 1
        msgs = transport.requests[1]["messages"]
        assert [m["role"] for m in msgs] == ["user", "assistant", "tool"]
        assert msgs[2]["tool_call_id"] == "call_2"

    def test_all_tools_fail_still_follows_up(self, registry):
        conv, transport = conversation(
            registry,
            make_tool_call_response([("broken", {})]),
            make_final_response("Sorry, no data."),
        )
        result = conv.run("weather?")
        assert result.final_output == "Sorry, no data."
        assert result.transport_calls == 2
        assert transport.requests[1]["messages"] == [{"role": "user", "content": "weather?"}]

    def test_malformed_arguments_skipped(self, registry):
        bad = make_tool_call_response([("sayHi", {})])
        bad["choices"][0]["message"]["tool_calls"][0]["function"]["arguments"] = "{oops"
        conv, _ = conversation(registry, bad, make_final_response("fine"))
        result = conv.run("hi")
        assert result.tool_calls_count == 0
        assert result.final_output == "fine"

    def test_single_round_only(self, registry, calls):
        conv, transport = conversation(
            registry,
            make_tool_call_response([("sayHi", {"name": "John"})]),
            make_tool_call_response([("sayHi", {"name": "John"})], content="Greeted John."),
        )
        result = conv.run("hi")

        assert result.final_output == "Greeted John."
        assert result.transport_calls == 2
        assert calls == [("sayHi", "John")]
        assert len(transport.requests) == 2


# ══════════════════════════════════════════════
# Fallbacks
# ══════════════════════════════════════════════


class TestFallback:

    def test_empty_initial_reply(self, registry):
        conv, _ = conversation(registry, EMPTY)
        result = conv.run("original text")
        assert result.final_output == "original text"
        assert result.fell_back is True
        assert result.transport_calls == 1

    @pytest.mark.parametrize("error", [
        TransportError("transport: connection refused"),
        RemoteStatusError(503, "unavailable"),
        DecodeError("decode: bad body"),
    ])
    def test_initial_transport_errors(self, registry, error):
        conv, _ = conversation(registry, error)
        result = conv.run("original text")
        assert result.final_output == "original text"
        assert result.stopped_reason == "fallback"

    def test_followup_error(self, registry):
        conv, _ = conversation(
            registry,
            make_tool_call_response([("sayHi", {"name": "John"})]),
            TransportError("transport: reset"),
        )
        result = conv.run("original text")
        assert result.final_output == "original text"
        assert result.fell_back is True
        assert result.tool_calls_count == 1

    def test_followup_empty(self, registry):
        conv, _ = conversation(
            registry,
            make_tool_call_response([("sayHi", {"name": "John"})]),
            EMPTY,
        )
        assert conv.run("original text").final_output == "original text"

    def test_reply_object_passthrough(self, registry):
        conv, _ = conversation(registry, ChatReply.from_dict(make_final_response("typed")))
        assert conv.run("x").final_output == "typed"

    def test_content_parts_reply(self, registry):
        parts = {"choices": [{"message": {"role": "assistant", "content": [{"type": "text", "text": "hi"}]}}]}
        conv, _ = conversation(registry, parts)
        result = conv.run("original text")
        assert result.final_output == "original text"
        assert result.fell_back is True

    @pytest.mark.parametrize("failure", [
        http.client.IncompleteRead(b'{"choi'),
        http.client.BadStatusLine("garbage"),
    ])
    def test_broken_http_response(self, registry, failure):
        class Broken:
            status = 200

            def read(self, n=-1):
                raise failure

            def close(self):
                pass

        def opener(req):
            if isinstance(failure, http.client.BadStatusLine):
                raise failure
            return Broken()

        config = ProviderConfig(api_key="sk-test")
        conv = Conversation(transport=HTTPChatTransport(config, opener=opener), registry=registry)
        result = conv.run("original")
        assert result.final_output == "original"
        assert result.fell_back is True


# ══════════════════════════════════════════════
# Async / streaming
# ══════════════════════════════════════════════


class TestAsync:

    @pytest.mark.asyncio
    async def test_arun(self, registry):
        conv, _ = conversation(
            registry,
            make_tool_call_response([("sayHi", {"name": "John"})]),
            make_final_response("Hello there John"),
        )
        result = await conv.arun("hi")
        assert result.final_output == "Hello there John"

    @pytest.mark.asyncio
    async def test_astream(self, registry):
        sse = [
            'data: {"choices": [{"delta": {"content": "Hello "}}]}',
            'data: {"choices": [{"delta": {"content": "John"}}]}',
            "data: [DONE]",
        ]
        transport = InProcessChatTransport(stream_handler=lambda p: sse)
        conv = Conversation(transport=transport, registry=registry, system_message="Be kind.")

        fragments = [f async for f in conv.astream("greet John")]

        assert fragments == ["Hello ", "John"]
        payload = transport.requests[0]
        assert payload["stream"] is True
        assert "tools" not in payload
        assert payload["messages"][0] == {"role": "system", "content": "Be kind."}

    @pytest.mark.asyncio
    async def test_astream_error_falls_back(self, registry):
        def failing(payload):
            raise RemoteStatusError(500, "boom")

        conv = Conversation(transport=InProcessChatTransport(stream_handler=failing), registry=registry)
        assert [f async for f in conv.astream("original")] == ["original"]

    @pytest.mark.asyncio
    async def test_astream_partial_then_error(self, registry):
        def partial(payload):
            yield 'data: {"choices": [{"delta": {"content": "Hel"}}]}'
            raise TransportError("transport: reset")

        conv = Conversation(transport=InProcessChatTransport(stream_handler=partial), registry=registry)
        assert [f async for f in conv.astream("original")] == ["Hel"]

    @pytest.mark.asyncio
    async def test_astream_malformed_chunk(self, registry):
        conv = Conversation(
            transport=InProcessChatTransport(stream_handler=lambda p: ["data: {nope"]),
            registry=registry,
        )
        assert [f async for f in conv.astream("original")] == ["original"]

    @pytest.mark.asyncio
    async def test_astream_consumer_stops_early(self, registry):
        closed = []

        def endless(payload):
            try:
                while True:
                    yield 'data: {"choices": [{"delta": {"content": "ha"}}]}'
            finally:
                closed.append(True)

        streams = []

        class RecordingTransport(InProcessChatTransport):
            def stream(self, messages, options=None):
                streams.append(super().stream(messages, options))
                return streams[-1]

        conv = Conversation(transport=RecordingTransport(stream_handler=endless), registry=registry)
        fragments = conv.astream("laugh")
        assert await fragments.__anext__() == "ha"
        await fragments.aclose()

        assert streams[0]._task.done()
        assert closed == [True]


class TestFlattenTools:

    def test_nesting(self, registry):
        spec = registry.get("sayHi").spec
        assert flatten_tools(None) == []
        assert flatten_tools(spec) == [spec]
        assert flatten_tools("sayHi") == ["sayHi"]
        assert flatten_tools([spec, ["getWeather", ("broken",)]]) == [spec, "getWeather", "broken"]
