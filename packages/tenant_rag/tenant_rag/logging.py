"""Logging helpers."""
import logging
import os


def configure_logging(service_name: str) -> None:
    """Configure structured logging for a service."""

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format=f"%(asctime)s | {service_name} | %(levelname)s | %(name)s | %(message)s",
    )
    # httpx logs every provider request at INFO, including full URLs.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def truncate_for_log(text: str, limit: int = 100) -> str:
    """Shorten user supplied text before it reaches a log line."""

    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."
