"""Logging configuration for the CLI."""

import logging
import os


def setup_logging(level: int = logging.INFO) -> None:
    """Setup basic logging. ``AUTO_OPENAPI_DEBUG=true`` forces DEBUG."""
    if os.environ.get("AUTO_OPENAPI_DEBUG", "").lower() in ("1", "true", "yes"):
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Suppress noisy event loop logs at DEBUG
    logging.getLogger("asyncio").setLevel(logging.WARNING)
