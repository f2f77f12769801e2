"""Tests for the chat backends."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx

from clawagent.config import Settings
from clawagent.llm.base import ChatMessage, LLMClient
from clawagent.llm.client import (
    AnthropicChatClient,
    OpenAICompatibleClient,
    _merge_turns,
    create_llm_client,
)
from clawagent.tools.base import ToolParameter, ToolSpec

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@dataclass
class _FakeBlock:
    type: str
    text: str = ""
    id: str = ""
    name: str = ""
    input: dict[str, Any] | None = None


def _anthropic_client(blocks: list[_FakeBlock]) -> MagicMock:
    client = MagicMock()
    message = MagicMock()
    message.content = blocks
    client.messages.create = AsyncMock(return_value=message)
    return client


TAP_SPEC = ToolSpec(
    name="tap",
    description="Tap at a point",
    parameters={
        "x": ToolParameter(type="integer", description="X", required=True),
        "y": ToolParameter(type="integer", description="Y", required=True),
    },
)

HELLO = [ChatMessage(content="hello", is_user=True)]


def _mock_httpx_client(mock_client_cls: MagicMock, response: httpx.Response) -> AsyncMock:
    """Wire up an AsyncClient context-manager mock that returns *response*."""
    mock_client = AsyncMock()
    mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


def _completion(message: dict, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        json={"choices": [{"message": message}]},
        request=httpx.Request("POST", "http://localhost:11434/v1/chat/completions"),
    )


# ---------------------------------------------------------------------------
# _merge_turns
# ---------------------------------------------------------------------------


class TestMergeTurns:
    def test_merges_consecutive_roles(self):
        msgs = [
            ChatMessage("a", True),
            ChatMessage("b", True),
            ChatMessage("c", False),
            ChatMessage("d", False),
        ]
        assert _merge_turns(msgs) == [
            {"role": "user", "content": "a\n\nb"},
            {"role": "assistant", "content": "c\n\nd"},
        ]

    def test_drops_empty_and_leading_assistant(self):
        msgs = [ChatMessage("hi there", False), ChatMessage("  ", True), ChatMessage("q", True)]
        assert _merge_turns(msgs) == [{"role": "user", "content": "q"}]


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class TestAnthropicChatClient:
    async def test_text_and_tool_calls(self):
        client = _anthropic_client([
            _FakeBlock(type="text", text="Tapping now"),
            _FakeBlock(type="tool_use", id="t1", name="tap", input={"x": 10, "y": 20}),
        ])
        llm = AnthropicChatClient(api_key="k", model="haiku", system_prompt="sys", client=client)

        response = await llm.chat(HELLO, [TAP_SPEC])

        assert response.text == "Tapping now"
        assert len(response.tool_calls) == 1
        assert response.tool_calls[0].tool_name == "tap"
        assert response.tool_calls[0].params == {"x": 10, "y": 20}

        kwargs = client.messages.create.await_args.kwargs
        assert kwargs["model"] == "claude-haiku-4-5-20251001"
        assert kwargs["system"] == "sys"
        assert kwargs["messages"] == [{"role": "user", "content": "hello"}]
        tool = kwargs["tools"][0]
        assert tool["name"] == "tap"
        assert tool["input_schema"]["required"] == ["x", "y"]

    async def test_no_tools_omits_tools_key(self):
        client = _anthropic_client([_FakeBlock(type="text", text="hi")])
        llm = AnthropicChatClient(api_key="k", system_prompt="sys", client=client)

        await llm.chat(HELLO, [])
        assert "tools" not in client.messages.create.await_args.kwargs

    async def test_missing_api_key(self):
        llm = AnthropicChatClient(api_key="", system_prompt="sys")
        response = await llm.chat(HELLO, [])
        assert "ANTHROPIC_API_KEY" in response.text
        assert response.tool_calls == []

    async def test_api_status_error_becomes_text(self):
        client = MagicMock()
        client.messages.create = AsyncMock(
            side_effect=anthropic.APIStatusError(
                message="Overloaded",
                response=MagicMock(status_code=529, headers={}),
                body=None,
            )
        )
        llm = AnthropicChatClient(api_key="k", system_prompt="sys", client=client)

        response = await llm.chat(HELLO, [])
        assert "529" in response.text
        assert "Overloaded" in response.text
        assert response.tool_calls == []

    async def test_connection_error_becomes_text(self):
        client = MagicMock()
        client.messages.create = AsyncMock(
            side_effect=anthropic.APIConnectionError(
                request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
            )
        )
        llm = AnthropicChatClient(api_key="k", system_prompt="sys", client=client)

        response = await llm.chat(HELLO, [])
        assert response.text.startswith("The model could not be reached")


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


class TestOpenAICompatibleClient:
    def _client(self, **kwargs) -> OpenAICompatibleClient:
        return OpenAICompatibleClient(
            base_url="http://localhost:11434/v1/",
            model="llama3.1",
            api_key=kwargs.pop("api_key", ""),
            system_prompt="sys",
            **kwargs,
        )

    async def test_parses_tool_calls(self):
        message = {
            "content": None,
            "tool_calls": [
                {"function": {"name": "tap", "arguments": json.dumps({"x": 1, "y": 2})}},
                {"function": {"name": "wait", "arguments": {"seconds": 3}}},
            ],
        }
        with patch("clawagent.llm.client.httpx.AsyncClient") as mock_cls:
            mock_client = _mock_httpx_client(mock_cls, _completion(message))
            response = await self._client().chat(HELLO, [TAP_SPEC])

        assert response.text == ""
        assert [c.tool_name for c in response.tool_calls] == ["tap", "wait"]
        assert response.tool_calls[0].params == {"x": 1, "y": 2}
        assert response.tool_calls[1].params == {"seconds": 3}

        url = mock_client.post.await_args.args[0]
        body = mock_client.post.await_args.kwargs["json"]
        assert url == "http://localhost:11434/v1/chat/completions"
        assert body["messages"][0] == {"role": "system", "content": "sys"}
        assert body["tools"][0]["function"]["name"] == "tap"

    async def test_text_reply(self):
        with patch("clawagent.llm.client.httpx.AsyncClient") as mock_cls:
            _mock_httpx_client(mock_cls, _completion({"content": "Hi!"}))
            response = await self._client().chat(HELLO, [])

        assert response.text == "Hi!"
        assert response.tool_calls == []

    async def test_bad_arguments_become_empty(self):
        message = {"content": "", "tool_calls": [{"function": {"name": "tap", "arguments": "{oops"}}]}
        with patch("clawagent.llm.client.httpx.AsyncClient") as mock_cls:
            _mock_httpx_client(mock_cls, _completion(message))
            response = await self._client().chat(HELLO, [])

        assert response.tool_calls[0].params == {}

    async def test_non_object_arguments_become_empty(self):
        message = {
            "content": "",
            "tool_calls": [
                {"function": {"name": "tap", "arguments": "[1, 2]"}},
                {"function": {"name": "wait", "arguments": 3}},
            ],
        }
        with patch("clawagent.llm.client.httpx.AsyncClient") as mock_cls:
            _mock_httpx_client(mock_cls, _completion(message))
            response = await self._client().chat(HELLO, [])

        assert [c.params for c in response.tool_calls] == [{}, {}]

    async def test_sends_bearer_token(self):
        with patch("clawagent.llm.client.httpx.AsyncClient") as mock_cls:
            mock_client = _mock_httpx_client(mock_cls, _completion({"content": "ok"}))
            await self._client(api_key="secret").chat(HELLO, [])

        headers = mock_client.post.await_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret"

    async def test_http_error_status(self):
        resp = httpx.Response(
            status_code=500,
            text="internal error",
            request=httpx.Request("POST", "http://localhost:11434/v1/chat/completions"),
        )
        with patch("clawagent.llm.client.httpx.AsyncClient") as mock_cls:
            _mock_httpx_client(mock_cls, resp)
            response = await self._client().chat(HELLO, [])

        assert "HTTP 500" in response.text

    async def test_unreachable(self):
        with patch("clawagent.llm.client.httpx.AsyncClient") as mock_cls:
            mock_client = _mock_httpx_client(mock_cls, _completion({}))
            mock_client.post.side_effect = httpx.ConnectError("refused")
            response = await self._client().chat(HELLO, [])

        assert "could not be reached" in response.text

    async def test_timeout(self):
        with patch("clawagent.llm.client.httpx.AsyncClient") as mock_cls:
            mock_client = _mock_httpx_client(mock_cls, _completion({}))
            mock_client.post.side_effect = httpx.ReadTimeout("slow")
            response = await self._client().chat(HELLO, [])

        assert "timed out" in response.text

    async def test_malformed_body(self):
        resp = httpx.Response(
            status_code=200,
            json={"unexpected": True},
            request=httpx.Request("POST", "http://localhost:11434/v1/chat/completions"),
        )
        with patch("clawagent.llm.client.httpx.AsyncClient") as mock_cls:
            _mock_httpx_client(mock_cls, resp)
            response = await self._client().chat(HELLO, [])

        assert "unexpected response" in response.text


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def test_create_anthropic_client():
    llm = create_llm_client(Settings(llm_provider="anthropic", chat_model="opus"))
    assert isinstance(llm, AnthropicChatClient)
    assert isinstance(llm, LLMClient)
    assert llm.model == "claude-opus-4-1-20250805"


def test_create_openai_compatible_client():
    llm = create_llm_client(Settings(llm_provider="openai_compatible"))
    assert isinstance(llm, OpenAICompatibleClient)


def test_unknown_provider_falls_back():
    llm = create_llm_client(Settings(llm_provider="mystery"))
    assert isinstance(llm, AnthropicChatClient)
