"""Web reading tool — fetch a page, extract readable text, remember it."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import httpx
import trafilatura
from bs4 import BeautifulSoup
from pydantic import Field

from clawagent.config import settings
from clawagent.tools.base import BaseTool, ToolParams, ToolResult

if TYPE_CHECKING:
    from clawagent.memory.store import MemoryStore

logger = logging.getLogger(__name__)

MAX_DOWNLOAD_BYTES = 5 * 1024 * 1024  # 5 MB


class ReadWebpageParams(ToolParams):
    url: str = Field(description="URL of the webpage to read (http or https)")
    max_chars: int = Field(
        default=4000,
        description="Maximum characters of content to return (100-8000)",
        ge=100,
        le=8000,
    )


def _is_html(content_type: str) -> bool:
    """Check if a Content-Type header value indicates HTML."""
    ct = content_type.lower().split(";")[0].strip()
    return ct in ("text/html", "application/xhtml+xml")


def _fallback_extract(html: str) -> tuple[str, str]:
    """Title and visible body text when trafilatura finds no main content."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "nav", "footer", "header", "aside"]):
        tag.decompose()
    title = soup.title.get_text(strip=True) if soup.title else ""
    body = soup.body or soup
    text = "\n".join(line.strip() for line in body.get_text("\n").splitlines() if line.strip())
    return title, text


class ReadWebpageTool(BaseTool):
    """Reads a page and stores it as browsing memory for later recall."""

    name = "read_webpage"
    description = (
        "Fetch a web page and return its main readable text. Strips navigation, "
        "ads and boilerplate. Pages read are remembered for future questions."
    )
    category = "research"
    params_model = ReadWebpageParams

    def __init__(
        self,
        store: MemoryStore,
        user_agent: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._store = store
        self._user_agent = user_agent or settings.web_user_agent
        self._timeout = timeout or settings.web_timeout_seconds

    async def execute(self, url: str, max_chars: int = 4000) -> ToolResult:
        if not url.startswith(("http://", "https://")):
            return ToolResult(error="Invalid URL: must start with http:// or https://")

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                headers={"User-Agent": self._user_agent},
                max_redirects=5,
            ) as client:
                resp = await client.get(url)

            if resp.status_code != 200:
                return ToolResult(error=f"HTTP {resp.status_code} fetching {url}")

            content_type = resp.headers.get("content-type", "")
            if not _is_html(content_type):
                return ToolResult(error=f"Not an HTML page (Content-Type: {content_type})")

            if len(resp.content) > MAX_DOWNLOAD_BYTES:
                return ToolResult(
                    error=f"Page too large ({len(resp.content)} bytes, max {MAX_DOWNLOAD_BYTES})"
                )

            html = resp.text

        except httpx.TimeoutException:
            return ToolResult(error=f"Timeout fetching {url}")
        except httpx.HTTPError as exc:
            logger.exception("Failed to fetch webpage")
            return ToolResult(error=f"Failed to fetch webpage: {exc}")

        # trafilatura is CPU-bound and synchronous
        content = await asyncio.to_thread(trafilatura.extract, html)
        metadata = await asyncio.to_thread(trafilatura.extract_metadata, html)
        title = metadata.title if metadata and metadata.title else ""

        if not content:
            fallback_title, content = _fallback_extract(html)
            title = title or fallback_title
        if not content:
            return ToolResult(error=f"Could not extract content from {url}")

        try:
            await self._store.store_browsing_memory(url=url, title=title or url, content=content)
        except Exception:
            logger.exception("Failed to store browsing memory for %s", url)

        truncated = len(content) > max_chars
        if truncated:
            content = content[:max_chars]

        return ToolResult(data={
            "title": title,
            "url": url,
            "content": content + (" [Content truncated]" if truncated else ""),
            "length": len(content),
        })
