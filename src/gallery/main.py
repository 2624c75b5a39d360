"""Application entry point."""

import asyncio
import logging
import sys

from pydantic import ValidationError

from gallery.config import get_config
from gallery.db import close_pool, get_pool
from gallery.payments.server import install_signal_handlers, run_server

logger = logging.getLogger(__name__)


async def boot() -> None:
    """
    Boot sequence: initialize pool → serve until signalled → shutdown.

    Configuration has already been validated by main(), so a missing
    secret never reaches the first request.

    Raises:
        SystemExit: On database errors during startup
    """
    config = get_config()
    logger.info(f"Configuration loaded: env={config.env}")

    try:
        await get_pool()
    except Exception as e:
        logger.error(f"Boot sequence failed: {e}")
        raise SystemExit(1) from e

    shutdown_event = asyncio.Event()
    install_signal_handlers(shutdown_event)

    try:
        await run_server(shutdown_event)
    finally:
        await close_pool()
        logger.info("Application shutdown complete")


def main() -> None:
    """Main entry point with logging configuration."""
    try:
        config = get_config()
    except ValidationError as e:
        logging.basicConfig(level=logging.ERROR)
        logging.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        asyncio.run(boot())
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(0)
    except SystemExit:
        raise
    except Exception as e:
        logging.error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
