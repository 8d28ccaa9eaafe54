"""Network utilities for HTTP sessions, rate-limit headers and file transfers.

Provides the configured requests session used by the Freepik client, parsing
of the provider's rate-limit headers, the fixed backoff schedule, and
streamed downloads to disk.
"""
from __future__ import annotations

import logging
import os
import threading
from typing import Mapping, Optional, Sequence

import requests

from ..model import RateLimit

logger = logging.getLogger(__name__)

RATE_LIMIT_HEADERS = ("x-ratelimit-limit", "x-ratelimit-remaining", "x-ratelimit-reset")


class TransferCancelled(Exception):
    """Raised when a streamed transfer is stopped by its cancellation event."""


class TransferError(Exception):
    """Raised when a file transfer fails (bad status or interrupted stream)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def build_session() -> requests.Session:
    """Build a requests session with default headers.

    Retries are handled by the caller, so the adapter keeps urllib3's
    defaults and never retries on its own.

    Returns:
        Configured Session instance
    """
    session = requests.Session()
    session.headers.update({
        "User-Agent": "stockbot/0.1 (+https://www.freepik.com/api)",
        "Accept": "application/json",
    })
    return session


def parse_rate_limit(headers: Mapping[str, str]) -> Optional[RateLimit]:
    """Read the rate-limit snapshot from response headers.

    All three headers must be present and numeric; otherwise None is returned.
    """
    if headers is None:
        return None

    values = []
    for name in RATE_LIMIT_HEADERS:
        raw = headers.get(name)
        if raw is None:
            return None
        try:
            values.append(int(str(raw).strip()))
        except ValueError:
            logger.debug("Ignoring non-numeric %s header: %r", name, raw)
            return None

    limit, remaining, reset = values
    return RateLimit(limit=limit, remaining=remaining, reset=reset)


def backoff_delay(schedule: Sequence[float], failure_number: int) -> float:
    """Delay before the retry that follows the given failure (1-based).

    Failures beyond the schedule length reuse its last value.
    """
    if not schedule:
        return 0.0
    idx = min(max(failure_number, 1), len(schedule)) - 1
    return max(0.0, float(schedule[idx]))


def stream_to_file(
    session: requests.Session,
    url: str,
    dest_path: str,
    chunk_size: int = 64 * 1024,
    timeout: float = 120.0,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """Download a URL to dest_path and return the number of bytes written.

    The body is written to ``dest_path + ".part"`` and renamed into place only
    once complete, so an interrupted transfer never leaves a file that looks
    finished.

    Raises:
        TransferError: Non-success status or broken stream
        TransferCancelled: cancel_event was set while streaming
    """
    part_path = dest_path + ".part"
    written = 0
    try:
        with session.get(url, stream=True, timeout=timeout) as response:
            if response.status_code >= 400:
                raise TransferError(
                    f"Download failed: HTTP {response.status_code} for {url}",
                    status_code=response.status_code,
                )
            with open(part_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if cancel_event is not None and cancel_event.is_set():
                        raise TransferCancelled(f"Transfer cancelled: {url}")
                    if not chunk:
                        continue
                    f.write(chunk)
                    written += len(chunk)
        os.replace(part_path, dest_path)
    except requests.exceptions.RequestException as e:
        _remove_quietly(part_path)
        raise TransferError(f"Download failed for {url}: {e}") from e
    except BaseException:
        _remove_quietly(part_path)
        raise

    logger.info("Downloaded %s -> %s (%d bytes)", url, dest_path, written)
    return written


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove partial file %s: %s", path, e)
