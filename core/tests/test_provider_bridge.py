"""
Tests for the provider bridge: settling the callback API into one awaitable,
cancellation, and the LiteLLM adapter's streaming tool loop.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from flowengine.llm.litellm import LiteLLMAdapter
from flowengine.llm.provider import LLMResponse, ProviderAdapter, Tool, stream_completion
from flowengine.runtime.cancellation import CancellationToken, FlowCancelledError


class CallbackProvider(ProviderAdapter):
    """Hands the callbacks to the test so it can drive them by hand."""

    def __init__(self):
        self.callbacks = None
        self.cancelled = 0

    def agent_stream(self, **kwargs):
        self.callbacks = kwargs
        provider = self

        class _Handle:
            def cancel(self):
                provider.cancelled += 1

        return _Handle()


async def started(provider: CallbackProvider) -> dict:
    for _ in range(20):
        if provider.callbacks is not None:
            return provider.callbacks
        await asyncio.sleep(0)
    raise AssertionError("agent_stream was never called")


class TestStreamCompletion:
    @pytest.mark.asyncio
    async def test_done_resolves(self):
        provider = CallbackProvider()
        chunks = []
        task = asyncio.create_task(
            stream_completion(provider, messages=[], model="m", on_chunk=chunks.append)
        )
        callbacks = await started(provider)
        callbacks["on_chunk"]("Hel")
        callbacks["on_chunk"]("lo")
        callbacks["on_done"](LLMResponse(content="Hello", input_tokens=3))

        response = await task

        assert response.content == "Hello"
        assert chunks == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_error_raises(self):
        provider = CallbackProvider()
        task = asyncio.create_task(stream_completion(provider, messages=[], model="m"))
        callbacks = await started(provider)
        callbacks["on_error"](RuntimeError("overloaded"))

        with pytest.raises(RuntimeError, match="overloaded"):
            await task

    @pytest.mark.asyncio
    async def test_first_settlement_wins_and_late_chunks_dropped(self):
        provider = CallbackProvider()
        chunks = []
        task = asyncio.create_task(
            stream_completion(provider, messages=[], model="m", on_chunk=chunks.append)
        )
        callbacks = await started(provider)
        callbacks["on_done"](LLMResponse(content="first"))
        callbacks["on_error"](RuntimeError("too late"))
        callbacks["on_chunk"]("late")

        response = await task

        assert response.content == "first"
        assert chunks == []

    @pytest.mark.asyncio
    async def test_cancel_via_token(self):
        provider = CallbackProvider()
        token = CancellationToken()
        task = asyncio.create_task(
            stream_completion(provider, messages=[], model="m", token=token)
        )
        await started(provider)
        token.cancel()

        with pytest.raises(FlowCancelledError):
            await task
        assert provider.cancelled == 1

    @pytest.mark.asyncio
    async def test_already_cancelled_token_never_starts(self):
        provider = CallbackProvider()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(FlowCancelledError):
            await stream_completion(provider, messages=[], model="m", token=token)
        assert provider.callbacks is None


class TestCancellationToken:
    @pytest.mark.asyncio
    async def test_sleep_returns_when_not_cancelled(self):
        await CancellationToken().sleep(0)

    @pytest.mark.asyncio
    async def test_sleep_interrupted(self):
        token = CancellationToken()
        sleeper = asyncio.create_task(token.sleep(10))
        await asyncio.sleep(0)
        token.cancel("stop")

        with pytest.raises(FlowCancelledError):
            await sleeper
        assert token.reason == "stop"

    def test_cancel_is_one_shot(self):
        token = CancellationToken()
        fired = []
        remove = token.add_callback(lambda: fired.append(1))
        assert token.cancel() is True
        assert token.cancel() is False
        remove()
        assert fired == [1]

    def test_removed_callback_not_called(self):
        token = CancellationToken()
        fired = []
        remove = token.add_callback(lambda: fired.append(1))
        remove()
        token.cancel()
        assert fired == []


def _chunk(content=None, tool_calls=None, finish_reason=None, usage=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)], usage=usage
    )


def _tool_call(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(
        index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments)
    )


def _stream(*chunks):
    async def generate():
        for chunk in chunks:
            yield chunk

    return generate()


class TestLiteLLMAdapter:
    @pytest.mark.asyncio
    async def test_streams_text(self):
        adapter = LiteLLMAdapter(api_key="sk-test")
        completion = AsyncMock(
            return_value=_stream(
                _chunk("Hi "),
                _chunk("there", finish_reason="stop"),
                SimpleNamespace(choices=[], usage=SimpleNamespace(prompt_tokens=7, completion_tokens=2)),
            )
        )
        chunks = []

        with patch("flowengine.llm.litellm.litellm.acompletion", completion):
            response = await stream_completion(
                adapter,
                messages=[{"role": "user", "content": "hello"}],
                model="gpt-4o",
                provider_name="openai",
                system="Be nice.",
                on_chunk=chunks.append,
            )

        assert response.content == "Hi there"
        assert (response.input_tokens, response.output_tokens) == (7, 2)
        assert response.stop_reason == "stop"
        assert chunks == ["Hi ", "there"]
        kwargs = completion.await_args.kwargs
        assert kwargs["model"] == "openai/gpt-4o"
        assert kwargs["messages"][0] == {"role": "system", "content": "Be nice."}
        assert kwargs["api_key"] == "sk-test"
        assert "tools" not in kwargs

    @pytest.mark.asyncio
    async def test_runs_tool_loop(self):
        async def lookup(args, meta):
            return {"temperature": 21, "city": args["city"]}

        tool = Tool(
            name="weather",
            description="Current weather",
            parameters={"type": "object", "properties": {"city": {"type": "string"}}},
            run=lookup,
        )
        completion = AsyncMock(
            side_effect=[
                _stream(
                    _chunk(tool_calls=[_tool_call(0, "call-1", "weather", '{"ci')]),
                    _chunk(tool_calls=[_tool_call(0, arguments='ty": "Oslo"}')], finish_reason="tool_calls"),
                ),
                _stream(_chunk("It is 21 degrees.", finish_reason="stop")),
            ]
        )
        started, ended = [], []

        with patch("flowengine.llm.litellm.litellm.acompletion", completion):
            response = await stream_completion(
                LiteLLMAdapter(),
                messages=[{"role": "user", "content": "weather in Oslo?"}],
                tools=[tool],
                model="gpt-4o",
                on_tool_start=started.append,
                on_tool_end=ended.append,
            )

        assert response.content == "It is 21 degrees."
        assert started[0].input == {"city": "Oslo"}
        assert not ended[0].is_error
        second_call = completion.await_args_list[1].kwargs["messages"]
        assert second_call[-1]["role"] == "tool"
        assert second_call[-1]["tool_call_id"] == "call-1"
        assert '"city": "Oslo"' in second_call[-1]["content"]
        assert completion.await_args_list[0].kwargs["tools"][0]["function"]["name"] == "weather"

    @pytest.mark.asyncio
    async def test_unknown_tool_reports_error_result(self):
        completion = AsyncMock(
            side_effect=[
                _stream(_chunk(tool_calls=[_tool_call(0, "call-9", "missing", "{}")])),
                _stream(_chunk("Sorry.")),
            ]
        )
        ended = []

        with patch("flowengine.llm.litellm.litellm.acompletion", completion):
            response = await stream_completion(
                LiteLLMAdapter(), messages=[], model="gpt-4o", on_tool_end=ended.append
            )

        assert response.content == "Sorry."
        assert ended[0].is_error
        assert "Unknown tool" in ended[0].content

    @pytest.mark.asyncio
    async def test_provider_failure_reaches_on_error(self):
        completion = AsyncMock(side_effect=RuntimeError("401 unauthorized"))

        with patch("flowengine.llm.litellm.litellm.acompletion", completion):
            with pytest.raises(RuntimeError, match="401"):
                await stream_completion(LiteLLMAdapter(), messages=[], model="gpt-4o")
