"""Agent entry point."""

import asyncio
import logging

from clawagent.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Start the agent console."""
    from clawagent.app import create_app
    from clawagent.console import run_console

    logger.info("Starting agent (provider=%s, db=%s)", settings.llm_provider, settings.database_path)
    app = create_app()
    try:
        asyncio.run(run_console(app))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
