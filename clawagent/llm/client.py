"""Async LLM chat clients implementing the ``LLMClient`` contract.

Two backends:

- ``AnthropicChatClient`` — Claude via the Anthropic Messages API (default).
- ``OpenAICompatibleClient`` — any ``/chat/completions`` endpoint with
  function calling (Ollama, llama.cpp server, OpenAI, ...).

Both turn configuration and transport problems into a text-only
``ChatResponse`` instead of raising, so a dead endpoint ends the agent
turn with an explanation rather than an exception.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import anthropic
import httpx

from clawagent.config import Settings, settings
from clawagent.llm.base import ChatMessage, ChatResponse, LLMClient, ToolCall, spec_to_json_schema
from clawagent.llm.models import friendly, resolve_model
from clawagent.llm.prompt import build_system_prompt

if TYPE_CHECKING:
    from clawagent.tools.base import ToolSpec

logger = logging.getLogger(__name__)


def _merge_turns(messages: list[ChatMessage]) -> list[dict[str, str]]:
    """Convert to role/content dicts, merging consecutive same-role messages.

    Empty messages are dropped and leading assistant messages are skipped,
    since chat APIs expect the conversation to open with the user.
    """
    merged: list[dict[str, str]] = []
    for msg in messages:
        if not msg.content.strip():
            continue
        role = "user" if msg.is_user else "assistant"
        if not merged and role == "assistant":
            continue
        if merged and merged[-1]["role"] == role:
            merged[-1]["content"] += f"\n\n{msg.content}"
        else:
            merged.append({"role": role, "content": msg.content})
    return merged


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicChatClient:
    """Claude chat backend."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        system_prompt: str | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.anthropic_api_key
        self._model = resolve_model(model or settings.chat_model)
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._system_prompt = system_prompt or build_system_prompt(settings.system_prompt_path)
        self._client = client

    @property
    def model(self) -> str:
        return self._model

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Lazily initialize the Anthropic client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def chat(self, messages: list[ChatMessage], tools: list[ToolSpec]) -> ChatResponse:
        if self._client is None and not self._api_key:
            return ChatResponse(
                text="No Anthropic API key is configured. Set ANTHROPIC_API_KEY and try again."
            )

        payload = _merge_turns(messages)
        if not payload:
            return ChatResponse(text="There is nothing to respond to yet.")

        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": self._system_prompt,
            "messages": payload,
        }
        if tools:
            kwargs["tools"] = [
                {
                    "name": spec.name,
                    "description": spec.description,
                    "input_schema": spec_to_json_schema(spec),
                }
                for spec in tools
            ]

        try:
            response = await self._get_client().messages.create(**kwargs)
        except anthropic.APIStatusError as exc:
            logger.warning("Anthropic API error %s: %s", exc.status_code, exc.message)
            return ChatResponse(text=f"The model request failed ({exc.status_code}): {exc.message}")
        except anthropic.APIError as exc:
            logger.warning("Anthropic request failed: %s", exc)
            return ChatResponse(text=f"The model could not be reached: {exc}")

        text = "".join(b.text for b in response.content if b.type == "text")
        tool_calls = [
            ToolCall(tool_name=b.name, params=dict(b.input or {}))
            for b in response.content
            if b.type == "tool_use"
        ]
        logger.debug(
            "%s replied with %d chars, %d tool call(s)",
            friendly(self._model),
            len(text),
            len(tool_calls),
        )
        return ChatResponse(text=text, tool_calls=tool_calls)


# ---------------------------------------------------------------------------
# OpenAI-compatible endpoints
# ---------------------------------------------------------------------------


class OpenAICompatibleClient:
    """Chat backend for ``/chat/completions`` servers with function calling."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
        system_prompt: str | None = None,
    ) -> None:
        self._base_url = (base_url or settings.openai_base_url).rstrip("/")
        self._model = model or settings.openai_model
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._timeout = timeout or settings.openai_timeout_seconds
        self._system_prompt = system_prompt or build_system_prompt(settings.system_prompt_path)

    @property
    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def chat(self, messages: list[ChatMessage], tools: list[ToolSpec]) -> ChatResponse:
        body: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": [{"role": "system", "content": self._system_prompt}, *_merge_turns(messages)],
        }
        if tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": spec.name,
                        "description": spec.description,
                        "parameters": spec_to_json_schema(spec),
                    },
                }
                for spec in tools
            ]

        url = f"{self._base_url}/chat/completions"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, headers=self._headers, json=body)
        except httpx.TimeoutException:
            return ChatResponse(text=f"The model endpoint timed out ({url}).")
        except httpx.HTTPError as exc:
            logger.warning("Request to %s failed: %s", url, exc)
            return ChatResponse(text=f"The model endpoint could not be reached: {exc}")

        if resp.status_code != 200:
            return ChatResponse(
                text=f"The model endpoint returned HTTP {resp.status_code}: {resp.text[:200]}"
            )

        try:
            message = resp.json()["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Unexpected response from %s: %s", url, resp.text[:200])
            return ChatResponse(text="The model endpoint returned an unexpected response.")

        return ChatResponse(
            text=message.get("content") or "",
            tool_calls=[_parse_tool_call(tc) for tc in message.get("tool_calls") or []],
        )


def _parse_tool_call(raw: dict[str, Any]) -> ToolCall:
    function = raw.get("function", {})
    arguments = function.get("arguments") or {}
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError:
            logger.warning("Unparseable tool arguments for %s: %s", function.get("name"), arguments)
            arguments = {}
    if not isinstance(arguments, dict):
        logger.warning("Tool arguments for %s are not an object: %r", function.get("name"), arguments)
        arguments = {}
    return ToolCall(tool_name=function.get("name", ""), params=arguments)


def create_llm_client(config: Settings | None = None) -> LLMClient:
    """Build the chat backend selected by ``llm_provider``."""
    config = config or settings
    system_prompt = build_system_prompt(config.system_prompt_path)
    if config.llm_provider == "openai_compatible":
        logger.info("LLM: OpenAI-compatible endpoint %s (%s)", config.openai_base_url, config.openai_model)
        return OpenAICompatibleClient(
            base_url=config.openai_base_url,
            model=config.openai_model,
            api_key=config.openai_api_key,
            max_tokens=config.llm_max_tokens,
            timeout=config.openai_timeout_seconds,
            system_prompt=system_prompt,
        )
    if config.llm_provider != "anthropic":
        logger.warning("Unknown llm_provider %r, falling back to anthropic", config.llm_provider)
    client = AnthropicChatClient(
        api_key=config.anthropic_api_key,
        model=config.chat_model,
        max_tokens=config.llm_max_tokens,
        system_prompt=system_prompt,
    )
    logger.info("LLM: Anthropic %s", friendly(client.model))
    return client
