"""Interactive console front end for the agent."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clawagent.app import AgentApp

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /good     mark the last answer as helpful
  /bad      mark the last answer as unhelpful
  /clear    forget the visible conversation
  /improve  run the self-improvement loop now
  /stats    show memory table sizes
  /quit     exit"""


class Console:
    """Line-oriented chat loop over an ``AgentApp``.

    Tracks the id of the last recorded turn so feedback commands know
    what they refer to.
    """

    def __init__(self, app: AgentApp) -> None:
        self._app = app
        self._last_turn_id: int | None = None

    async def handle_line(self, line: str) -> str | None:
        """Process one input line. Returns the text to print, or None to exit."""
        text = line.strip()
        if not text:
            return ""
        if text.startswith("/"):
            return await self._handle_command(text.lower())

        reply = await self._app.agent.send_message(text)
        if reply is None:
            return "Still working on the previous request."
        self._last_turn_id = reply.turn_id
        return reply.text

    async def _handle_command(self, command: str) -> str | None:
        store = self._app.store
        if command in ("/quit", "/exit"):
            return None
        if command == "/help":
            return HELP_TEXT
        if command in ("/good", "/bad"):
            if self._last_turn_id is None:
                return "Nothing to rate yet."
            if command == "/good":
                store.give_positive_feedback(self._last_turn_id)
            else:
                store.give_negative_feedback(self._last_turn_id)
            return "Thanks for the feedback."
        if command == "/clear":
            count = len(self._app.agent.history)
            self._app.agent.clear_history()
            self._last_turn_id = None
            return f"Cleared {count} messages. Starting fresh."
        if command == "/improve":
            summary = await self._app.improvement.run()
            return summary.render()
        if command == "/stats":
            counts = await store.counts()
            return "\n".join(f"{table}: {n}" for table, n in counts.items())
        return f"Unknown command: {command}\n{HELP_TEXT}"

    async def run(self) -> None:
        print("Agent ready. Type /help for commands.")
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            output = await self.handle_line(line)
            if output is None:
                break
            if output:
                print(output)


async def run_console(app: AgentApp) -> None:
    """Start *app*, run the console until the user quits, then shut down."""
    await app.start()
    try:
        await Console(app).run()
    finally:
        await app.stop()
