"""Logging hooks for the caller-owned broker connection."""

import logging
from typing import Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


def status_callbacks() -> Dict[str, Callable[..., Awaitable[None]]]:
    """
    Connection status callbacks for `nats.connect`.

    Example:
        nc = await nats.connect(servers, **status_callbacks())
    """

    async def error_cb(exc: Exception) -> None:
        logger.error(f"NATS connection error: {exc!r}")

    async def disconnected_cb() -> None:
        logger.warning("NATS connection disconnected")

    async def reconnected_cb() -> None:
        logger.info("NATS connection reconnected")

    async def closed_cb() -> None:
        logger.info("NATS connection closed")

    return {
        "error_cb": error_cb,
        "disconnected_cb": disconnected_cb,
        "reconnected_cb": reconnected_cb,
        "closed_cb": closed_cb,
    }
