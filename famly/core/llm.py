"""
fam.ly — LLM Provider Abstraction.

Single public coroutine `complete_with_tools()` that routes to the configured
provider and returns the reply text together with any structured tool calls.
Provider is selected at first use via the LLM_PROVIDER env var.
Supports: gemini (default), anthropic, openai, cohere.

Tool schemas are passed in provider-neutral JSON-schema form:
    {"name": str, "description": str, "parameters": {"type": "object", ...}}
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from famly.core.errors import CompletionError

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """One structured function call returned by the model."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class CompletionResult:
    """Reply text plus zero or more tool calls, in the order the model produced them."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


# Type alias for provider implementations
_ProviderFn = Callable[[str, str, str, str, list[dict], int], Awaitable[CompletionResult]]


def _to_plain(value: Any) -> Any:
    """Recursively turn provider map/list wrappers into dicts and lists."""
    if isinstance(value, Mapping):
        return {str(k): _to_plain(v) for k, v in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return [_to_plain(v) for v in value]
    return value


def _decode_arguments(raw: str | None, tool_name: str) -> dict[str, Any]:
    """Decode a JSON-encoded argument string; malformed input yields {}."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Tool call %s has malformed arguments (%s): %r", tool_name, exc, raw[:120])
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


def _gemini_schema(schema: Any) -> Any:
    """Gemini expects upper-case OpenAPI type names."""
    if isinstance(schema, dict):
        return {
            k: (v.upper() if k == "type" and isinstance(v, str) else _gemini_schema(v))
            for k, v in schema.items()
        }
    if isinstance(schema, list):
        return [_gemini_schema(v) for v in schema]
    return schema


async def _complete_gemini(
    api_key: str, model: str, system: str, user_message: str, tools: list[dict], max_tokens: int,
) -> CompletionResult:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
        tools=[{"function_declarations": [_gemini_schema(t) for t in tools]}] if tools else None,
    )
    response = await gm.generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )

    result = CompletionResult()
    texts: list[str] = []
    for part in response.candidates[0].content.parts:
        fc = part.function_call
        if fc and fc.name:
            result.tool_calls.append(ToolCall(name=fc.name, arguments=_to_plain(fc.args)))
        elif part.text:
            texts.append(part.text)
    result.text = "".join(texts)
    return result


async def _complete_anthropic(
    api_key: str, model: str, system: str, user_message: str, tools: list[dict], max_tokens: int,
) -> CompletionResult:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": user_message}],
        tools=[
            {"name": t["name"], "description": t["description"], "input_schema": t["parameters"]}
            for t in tools
        ],
    )

    result = CompletionResult()
    texts: list[str] = []
    for block in response.content:
        if block.type == "text":
            texts.append(block.text)
        elif block.type == "tool_use":
            result.tool_calls.append(ToolCall(name=block.name, arguments=_to_plain(block.input)))
    result.text = "".join(texts)
    return result


def _function_tools(tools: list[dict]) -> list[dict]:
    return [{"type": "function", "function": t} for t in tools]


async def _complete_openai(
    api_key: str, model: str, system: str, user_message: str, tools: list[dict], max_tokens: int,
) -> CompletionResult:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
        tools=_function_tools(tools),
    )

    message = response.choices[0].message
    return CompletionResult(
        text=message.content or "",
        tool_calls=[
            ToolCall(name=tc.function.name, arguments=_decode_arguments(tc.function.arguments, tc.function.name))
            for tc in message.tool_calls or []
        ],
    )


async def _complete_cohere(
    api_key: str, model: str, system: str, user_message: str, tools: list[dict], max_tokens: int,
) -> CompletionResult:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
        tools=_function_tools(tools),
    )

    message = response.message
    texts = [item.text for item in message.content or [] if getattr(item, "text", None)]
    return CompletionResult(
        text="".join(texts),
        tool_calls=[
            ToolCall(name=tc.function.name, arguments=_decode_arguments(tc.function.arguments, tc.function.name))
            for tc in message.tool_calls or []
        ],
    )


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "cohere":    (_complete_cohere,    "command-a-03-2025"),
}


def _select_provider() -> tuple[_ProviderFn, str, str]:
    """Read settings and return (provider_fn, model, api_key)."""
    from famly.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model
    api_key = settings.LLM_API_KEY

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, api_key


# Lazy singleton, populated on first call to complete_with_tools()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete_with_tools(
    system: str, user_message: str, tools: list[dict], max_tokens: int = 1024,
) -> CompletionResult:
    """Send a prompt plus tool schema to the configured provider.

    Raises:
        CompletionError: on any provider or transport failure.
    """
    global _provider_fn, _model, _api_key

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()

    try:
        result = await _provider_fn(_api_key, _model, system, user_message, tools, max_tokens)
    except Exception as exc:
        logger.error("LLM call failed (%s): %s", _model, exc)
        raise CompletionError(f"Completion request failed: {exc}") from exc

    logger.debug(
        "LLM replied with %d chars and %d tool calls",
        len(result.text), len(result.tool_calls),
    )
    return result
