"""System prompt for the device agent."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = """\
You are an automation agent running on the user's phone. You carry out \
instructions by calling the tools you are given, one careful step at a time.

- Prefer tools over guessing. After an action, check its result before the next one.
- Tool results from earlier rounds appear in your previous messages.
- Context from past experiences and learned skills may precede the request; \
use it when relevant and ignore it otherwise.
- When the task is done, or cannot be done, answer in plain text without calling tools.
"""


def build_system_prompt(override_path: Path | None = None) -> str:
    """Return the system prompt, read from *override_path* when it exists."""
    if override_path is not None:
        if override_path.exists():
            return override_path.read_text(encoding="utf-8")
        logger.warning("System prompt file not found: %s (using default)", override_path)
    return DEFAULT_SYSTEM_PROMPT
