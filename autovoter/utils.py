"""
Utility functions for the auto-voter.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Optional

from config.settings import EPOCH_ORIGIN, WEEK

NOISY_LOGGERS = ("web3", "urllib3", "asyncio")


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure root logging for the CLI and the long-running loops.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        log_file: Also append records to this file when set
    """
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    level = getattr(logging, log_level.upper())
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )
    # RPC client chatter drowns the scanner and sniper lines
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def async_retry(max_attempts: int = 3, delay: float = 1.0, backoff: float = 1.0):
    """
    Retry an async RPC or HTTP call a bounded number of times.

    Args:
        max_attempts: Total attempts including the first
        delay: Seconds to wait after a failed attempt
        backoff: Delay multiplier per failure (1.0 keeps it fixed)

    The last exception is re-raised once attempts run out.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            wait = delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if attempt == max_attempts:
                        logging.error(f"{func.__name__} gave up after {max_attempts} attempts: {e}")
                        raise
                    logging.warning(f"{func.__name__} attempt {attempt}/{max_attempts} failed: {e}")
                    await asyncio.sleep(wait)
                    wait *= backoff

        return wrapper

    return decorator


def epoch_id(close_timestamp: int) -> int:
    """
    Deterministic epoch number for an epoch-close (or any) timestamp.

    Args:
        close_timestamp: Unix timestamp

    Returns:
        Number of whole epochs elapsed since the protocol origin
    """
    return (int(close_timestamp) - EPOCH_ORIGIN) // WEEK


def epoch_start(timestamp: int) -> int:
    """Start of the week-aligned epoch containing `timestamp`."""
    return (int(timestamp) // WEEK) * WEEK


def format_token_amount(amount: int, decimals: int = 18) -> float:
    """Raw integer units to a float token amount."""
    return amount / 10**decimals


def format_usd(amount: float) -> str:
    return f"${amount:,.2f}"


def format_percentage(value: float) -> str:
    return f"{value:.1f}%"


def epoch_to_datetime(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" + ("" if count == 1 else "s")


def time_until(target_timestamp: int, now: Optional[float] = None) -> str:
    """
    Countdown to an epoch boundary, e.g. "3 days, 2 hours".

    Minutes are only shown when less than a day remains; under a minute the
    raw seconds are shown.
    """
    remaining = int(target_timestamp - (time.time() if now is None else now))
    if remaining <= 0:
        return "0 seconds"

    days, rest = divmod(remaining, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60

    parts = []
    if days:
        parts.append(_plural(days, "day"))
    if hours:
        parts.append(_plural(hours, "hour"))
    if minutes and not days:
        parts.append(_plural(minutes, "minute"))
    return ", ".join(parts) or f"{remaining} seconds"


def truncate_address(address: str, chars: int = 6) -> str:
    """Shorten an address for log lines, e.g. "0x1234...345678"."""
    if len(address) <= chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"
