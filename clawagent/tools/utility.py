"""Built-in utility tools."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import Field

from clawagent.tools.base import ToolParams, ToolResult

if TYPE_CHECKING:
    from clawagent.tools.registry import ToolRegistry

MAX_WAIT_SECONDS = 60.0


async def get_current_datetime() -> ToolResult:
    now = datetime.now(UTC)
    return ToolResult(
        data={
            "datetime": now.isoformat(),
            "date": now.strftime("%Y-%m-%d"),
            "time": now.strftime("%H:%M:%S"),
            "day_of_week": now.strftime("%A"),
            "timezone": "UTC",
        }
    )


class WaitParams(ToolParams):
    seconds: float = Field(description="Seconds to wait (0-60), e.g. for an app to load")


async def wait(seconds: float) -> ToolResult:
    if seconds < 0 or seconds > MAX_WAIT_SECONDS:
        return ToolResult(error="Wait duration must be between 0 and 60 seconds")
    await asyncio.sleep(seconds)
    return ToolResult(data=f"Waited {seconds:g}s")


def register(registry: ToolRegistry) -> None:
    """Add the utility tools to *registry*."""
    registry.tool(
        name="get_current_datetime",
        description="Get the current date, time, and day of the week in UTC.",
        category="utility",
    )(get_current_datetime)
    registry.tool(
        name="wait",
        description=(
            "Pause before the next action, e.g. while an app launches or a page loads."
        ),
        category="utility",
        params_model=WaitParams,
    )(wait)
