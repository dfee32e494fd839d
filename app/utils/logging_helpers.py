"""
Structured logging helpers for consistent log formatting.

Provides utilities for structured, clean logging of provider fan-outs
without leaking credentials into log files.
"""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from app.services.fetch_types import AdapterOutcome


_SECRET_PARAM_RE = re.compile(r"(?i)([?&](?:api_key|access_token|token)=)[^&]*")


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials from URL for safe logging."""
    url = _SECRET_PARAM_RE.sub(r"\1***", url)
    if "://" not in url:
        return url
    try:
        protocol, rest = url.split("://", 1)
        if "@" in rest:
            rest = rest.split("@", 1)[1]
            return f"{protocol}://***:***@{rest}"
        return url
    except (ValueError, IndexError):
        return url


def log_fanout_start(logger: logging.Logger, operation: str, providers: Sequence[str]) -> None:
    """
    Log the start of a provider fan-out.

    Args:
        logger: Logger instance
        operation: Cache key of the operation being fetched
        providers: Provider names in priority order
    """
    logger.info(f"Fetching {operation} from {len(providers)} provider(s): {', '.join(providers) or 'none'}")


def log_fanout_summary(
    logger: logging.Logger,
    operation: str,
    outcomes: Sequence["AdapterOutcome"],
    merged_count: int
) -> None:
    """
    Log fan-out summary.

    Args:
        logger: Logger instance
        operation: Cache key of the operation
        outcomes: Per-provider outcomes in priority order
        merged_count: Number of items after merging
    """
    succeeded = sum(1 for outcome in outcomes if outcome.succeeded)
    details = ", ".join(
        f"{outcome.provider}={outcome.status}({len(outcome.items)})" for outcome in outcomes
    )
    logger.info(
        f"Fan-out summary for {operation} - {succeeded}/{len(outcomes)} succeeded, "
        f"{merged_count} merged item(s) [{details}]"
    )
