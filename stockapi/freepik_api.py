"""Freepik API client.

Wraps the two endpoints the pipeline needs:
- ``GET /resources``: catalog search (responses cached)
- ``GET /resources/{id}/download``: short-lived download URL (never cached)

Every call goes through one retry loop that reads the provider's rate-limit
headers, waits for the window reset on HTTP 429, fails fast on other client
errors and backs off on a fixed schedule for server and transport failures.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Sequence

import requests

from .core.cache import ResponseCache
from .core.config import get_api_config, get_cache_config, get_network_config
from .core.network import backoff_delay, build_session, parse_rate_limit
from .model import DownloadInfo, RateLimit, SearchPage

logger = logging.getLogger(__name__)

SEARCH_ENDPOINT = "/resources"
API_KEY_HEADER = "x-freepik-api-key"

# Seconds to wait on 429 when no reset time is known yet
DEFAULT_RATE_LIMIT_WAIT_S = 60


class FreepikApiError(Exception):
    """Raised when a Freepik API call fails.

    Attributes:
        status_code: HTTP status of the last failed attempt (None for transport errors)
        rate_limit: Latest rate-limit snapshot known to the client
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        rate_limit: Optional[RateLimit] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.rate_limit = rate_limit

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


class FreepikNetworkError(FreepikApiError):
    """Raised when retries are exhausted and the last failure was at transport level."""


class FreepikClient:
    """Authenticated client for the Freepik resources API.

    Settings not passed explicitly are read from the ``api``, ``network`` and
    ``cache`` configuration sections.
    """

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delays_s: Optional[Sequence[float]] = None,
        timeout_s: Optional[float] = None,
        cache: Optional[ResponseCache] = None,
        cache_enabled: Optional[bool] = None,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ValueError("A Freepik API key is required")

        api_cfg = get_api_config()
        net = get_network_config()

        self.api_key = api_key
        self.base_url = str(base_url or api_cfg["base_url"]).rstrip("/")
        self.locale = str(api_cfg["locale"])
        self.max_retries = int(max_retries if max_retries is not None else net["max_retries"])
        self.retry_delays_s: List[float] = [
            float(d) for d in (retry_delays_s if retry_delays_s is not None else net["retry_delays_s"])
        ]
        self.timeout_s = float(timeout_s if timeout_s is not None else net["timeout_s"])
        self.session = session or build_session()

        if cache is not None:
            self.cache: Optional[ResponseCache] = cache
        else:
            cache_cfg = get_cache_config()
            enabled = cache_cfg["enabled"] if cache_enabled is None else cache_enabled
            self.cache = (
                ResponseCache(ttl_s=float(cache_cfg["ttl_s"]), max_size_mb=float(cache_cfg["max_size_mb"]))
                if enabled
                else None
            )

        self._rate_limit: Optional[RateLimit] = None
        self._rate_lock = threading.Lock()

    @property
    def rate_limit(self) -> Optional[RateLimit]:
        """Latest rate-limit snapshot (None until a response carried one)."""
        with self._rate_lock:
            return self._rate_limit

    def _set_rate_limit(self, rate_limit: Optional[RateLimit]) -> None:
        if rate_limit is None:
            return
        with self._rate_lock:
            self._rate_limit = rate_limit

    def search(
        self,
        term: str,
        locale: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        page: int = 1,
    ) -> SearchPage:
        """Search catalog resources.

        Args:
            term: Search phrase
            locale: Result locale (defaults to config, "en-US")
            filters: Filter object, sent JSON-encoded (content_type, order, orientation)
            limit: Page size (default 10)
            page: 1-based page number

        Returns:
            SearchPage with parsed resources and pagination metadata
        """
        params: Dict[str, str] = {
            "term": term,
            "locale": locale or self.locale,
            "limit": str(limit if limit is not None else 10),
            "page": str(page),
        }
        if filters:
            params["filters"] = json.dumps(filters)

        cache_key = ResponseCache.generate_key(SEARCH_ENDPOINT, params)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Cache hit for search '%s'", term)
                return SearchPage.from_api(cached)

        payload = self._request(SEARCH_ENDPOINT, params)
        result = SearchPage.from_api(payload)

        # Only responses that parsed are cached
        if self.cache is not None:
            self.cache.set(cache_key, payload)

        return result

    def get_download_url(self, resource_id: str, format: Optional[str] = None) -> DownloadInfo:
        """Request a download URL for a resource.

        Download URLs are single-use and expire, so responses bypass the cache.
        """
        endpoint = f"/resources/{resource_id}/download"
        params: Dict[str, str] = {}
        if format:
            params["format"] = format

        payload = self._request(endpoint, params)

        meta_rl = (payload.get("meta") or {}).get("rate_limit")
        if isinstance(meta_rl, dict):
            try:
                self._set_rate_limit(RateLimit(
                    limit=int(meta_rl["limit"]),
                    remaining=int(meta_rl["remaining"]),
                    reset=int(meta_rl["reset"]),
                ))
            except (KeyError, TypeError, ValueError):
                logger.debug("Ignoring malformed rate_limit meta for %s", resource_id)

        info = DownloadInfo.from_api(payload)
        if not info.url:
            raise FreepikApiError(f"No download URL returned for resource {resource_id}")
        return info

    def cache_stats(self) -> Optional[Dict[str, int]]:
        return self.cache.stats() if self.cache is not None else None

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    def _rate_limit_wait_s(self) -> float:
        """Seconds until the known rate-limit window resets."""
        rl = self.rate_limit
        reset = rl.reset if rl is not None else time.time() + DEFAULT_RATE_LIMIT_WAIT_S
        wait_ms = max(0.0, reset * 1000 - time.time() * 1000)
        return wait_ms / 1000.0

    def _request(self, endpoint: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """GET an endpoint with rate-limit handling and fixed-schedule backoff.

        Raises:
            FreepikApiError: Non-429 client error, or attempts exhausted
            FreepikNetworkError: Attempts exhausted after a transport failure
        """
        url = f"{self.base_url}{endpoint}"
        headers = {API_KEY_HEADER: self.api_key, "Accept": "application/json"}
        max_attempts = self.max_retries + 1

        failures = 0
        last_error: Optional[str] = None
        last_status: Optional[int] = None
        transport_failure = False

        for attempt in range(1, max_attempts + 1):
            try:
                resp = self.session.get(url, params=params or None, headers=headers, timeout=self.timeout_s)
            except requests.exceptions.RequestException as e:
                last_error, last_status, transport_failure = str(e), None, True
            else:
                self._set_rate_limit(parse_rate_limit(resp.headers))
                status = resp.status_code

                if status == 429:
                    last_error, last_status, transport_failure = "Rate limit exceeded", 429, False
                    if attempt < max_attempts:
                        wait_s = self._rate_limit_wait_s()
                        logger.warning(
                            "429 Too Many Requests for %s; sleeping %.1fs (attempt %d/%d)",
                            endpoint, wait_s, attempt, max_attempts,
                        )
                        time.sleep(wait_s)
                    continue

                if 400 <= status < 500:
                    logger.warning("Non-retryable HTTP %s for %s; not retrying", status, endpoint)
                    raise FreepikApiError(
                        f"API request failed: {status} {getattr(resp, 'reason', '') or ''}\n{resp.text}".rstrip(),
                        status_code=status,
                        rate_limit=self.rate_limit,
                    )

                if status < 400:
                    try:
                        return resp.json()
                    except ValueError as e:
                        last_error, last_status, transport_failure = f"Invalid JSON response: {e}", status, False
                else:
                    last_error, last_status, transport_failure = f"HTTP {status}", status, False

            failures += 1
            if attempt < max_attempts:
                sleep_s = backoff_delay(self.retry_delays_s, failures)
                logger.warning(
                    "Request to %s failed (%s); sleeping %.1fs (attempt %d/%d)",
                    endpoint, last_error, sleep_s, attempt, max_attempts,
                )
                time.sleep(sleep_s)

        logger.error("Giving up after %d attempts for %s", max_attempts, endpoint)
        error_cls = FreepikNetworkError if transport_failure else FreepikApiError
        raise error_cls(
            f"API request failed after {max_attempts} attempts: {last_error}",
            status_code=last_status,
            rate_limit=self.rate_limit,
        )
