"""Tests for famly.core.llm — provider routing, error wrapping and argument decoding."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from famly.core import llm
from famly.core.errors import CompletionError
from famly.core.llm import CompletionResult, ToolCall, _decode_arguments, _gemini_schema, _to_plain


@pytest.fixture(autouse=True)
def reset_provider(monkeypatch):
    """Each test selects its provider afresh."""
    monkeypatch.setattr(llm, "_provider_fn", None)


class TestCompleteWithTools:
    @pytest.mark.asyncio
    async def test_routes_to_selected_provider(self):
        expected = CompletionResult(text="hi", tool_calls=[ToolCall(name="addEvent", arguments={"title": "Swim"})])
        provider = AsyncMock(return_value=expected)
        with patch("famly.core.llm._select_provider", return_value=(provider, "m-1", "key")):
            result = await llm.complete_with_tools("system", "user", [{"name": "addEvent"}], max_tokens=64)
        assert result is expected
        provider.assert_awaited_once_with("key", "m-1", "system", "user", [{"name": "addEvent"}], 64)

    @pytest.mark.asyncio
    async def test_provider_failure_is_wrapped(self):
        provider = AsyncMock(side_effect=RuntimeError("503 upstream"))
        with patch("famly.core.llm._select_provider", return_value=(provider, "m-1", "key")):
            with pytest.raises(CompletionError, match="503 upstream"):
                await llm.complete_with_tools("system", "user", [])

    @pytest.mark.asyncio
    async def test_provider_selected_once(self):
        provider = AsyncMock(return_value=CompletionResult())
        with patch("famly.core.llm._select_provider", return_value=(provider, "m-1", "key")) as select:
            await llm.complete_with_tools("s", "u", [])
            await llm.complete_with_tools("s", "u", [])
        select.assert_called_once()


class TestSelectProvider:
    def test_unknown_provider(self, monkeypatch):
        from famly.config import settings
        monkeypatch.setattr(settings, "LLM_PROVIDER", "palm")
        with pytest.raises(ValueError, match="Unknown LLM_PROVIDER"):
            llm._select_provider()

    def test_default_model(self, monkeypatch):
        from famly.config import settings
        monkeypatch.setattr(settings, "LLM_PROVIDER", "OpenAI")
        monkeypatch.setattr(settings, "LLM_MODEL", "")
        fn, model, _ = llm._select_provider()
        assert fn is llm._complete_openai
        assert model == "gpt-4o-mini"


class TestOpenAIResponse:
    @pytest.mark.asyncio
    async def test_tool_calls_decoded(self):
        message = SimpleNamespace(
            content=None,
            tool_calls=[
                SimpleNamespace(function=SimpleNamespace(name="deleteEvent", arguments='{"id": "e1"}')),
                SimpleNamespace(function=SimpleNamespace(name="addEvent", arguments="{not json")),
            ],
        )
        client = SimpleNamespace(
            chat=SimpleNamespace(
                completions=SimpleNamespace(
                    create=AsyncMock(return_value=SimpleNamespace(choices=[SimpleNamespace(message=message)]))
                )
            )
        )
        with patch("openai.AsyncOpenAI", return_value=client):
            result = await llm._complete_openai("key", "gpt-4o-mini", "sys", "hi", [{"name": "deleteEvent"}], 32)
        assert result.text == ""
        assert result.tool_calls == [
            ToolCall(name="deleteEvent", arguments={"id": "e1"}),
            ToolCall(name="addEvent", arguments={}),
        ]
        sent_tools = client.chat.completions.create.await_args.kwargs["tools"]
        assert sent_tools == [{"type": "function", "function": {"name": "deleteEvent"}}]


class TestHelpers:
    def test_decode_arguments(self):
        assert _decode_arguments('{"title": "Swim"}', "addEvent") == {"title": "Swim"}
        assert _decode_arguments("", "addEvent") == {}
        assert _decode_arguments("[1, 2]", "addEvent") == {}
        assert _decode_arguments("{oops", "addEvent") == {}

    def test_gemini_schema_uppercases_types(self):
        schema = {
            "type": "object",
            "properties": {"names": {"type": "array", "items": {"type": "string"}}},
            "required": ["names"],
        }
        assert _gemini_schema(schema) == {
            "type": "OBJECT",
            "properties": {"names": {"type": "ARRAY", "items": {"type": "STRING"}}},
            "required": ["names"],
        }

    def test_to_plain(self):
        assert _to_plain({"a": ("x", "y"), "b": {"c": 1}}) == {"a": ["x", "y"], "b": {"c": 1}}
