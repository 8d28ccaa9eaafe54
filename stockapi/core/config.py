"""Configuration management for stockbot.

Handles loading and caching of the JSON configuration file with environment
variable support (STOCKBOT_CONFIG_PATH) and per-section defaults.

The configuration system provides:
- Centralized config loading with caching
- Freepik API endpoint and locale settings
- Retry schedule and timeouts for outbound calls
- Response cache sizing
- Search and download defaults (candidate limit, clip count, concurrency)
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_CONFIG_CACHE: Optional[Dict[str, Any]] = None

API_KEY_ENV = "FREEPIK_API_KEY"
DEFAULT_BASE_URL = "https://api.freepik.com/v1"


def get_config(force_reload: bool = False) -> Dict[str, Any]:
    """Load project configuration JSON.

    Looks for the path in STOCKBOT_CONFIG_PATH env var; falls back to 'config.json' in CWD.
    Caches the result unless force_reload is True.

    Returns:
        Configuration dictionary (empty dict if file not found or invalid)
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    path = os.environ.get("STOCKBOT_CONFIG_PATH", "config.json")
    try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                _CONFIG_CACHE = json.load(f) or {}
        else:
            _CONFIG_CACHE = {}
    except (OSError, ValueError) as e:
        logger.error("Failed to load config from %s: %s", path, e)
        _CONFIG_CACHE = {}

    return _CONFIG_CACHE


def _section(name: str) -> Dict[str, Any]:
    """Return a copy of a top-level config section (empty if missing or malformed)."""
    value = get_config().get(name, {})
    return dict(value) if isinstance(value, dict) else {}


def get_api_config() -> Dict[str, Any]:
    """Get Freepik API settings.

    Returns:
        API configuration dictionary with defaults
    """
    api = _section("api")
    api.setdefault("base_url", DEFAULT_BASE_URL)
    api.setdefault("locale", "en-US")
    return api


def get_api_key() -> Optional[str]:
    """Return the Freepik API key from the environment, then from config."""
    key = os.environ.get(API_KEY_ENV)
    if key:
        return key
    return get_api_config().get("api_key") or None


def get_network_config() -> Dict[str, Any]:
    """Return retry/backoff policy for outbound API calls.

    Returns:
        Network configuration dictionary with all fields populated
    """
    net = _section("network")
    net.setdefault("max_retries", 5)
    net.setdefault("retry_delays_s", [1.0, 2.0, 4.0, 8.0, 16.0])
    net.setdefault("timeout_s", 30.0)

    # A schedule must have at least one delay to clamp to
    if not isinstance(net.get("retry_delays_s"), list) or not net["retry_delays_s"]:
        net["retry_delays_s"] = [1.0]

    return net


def get_cache_config() -> Dict[str, Any]:
    """Get response cache settings.

    Returns:
        Cache configuration dictionary with defaults (24h TTL, 2 GB)
    """
    cache = _section("cache")
    cache.setdefault("enabled", True)
    cache.setdefault("ttl_s", 24 * 60 * 60)
    cache.setdefault("max_size_mb", 2048)
    return cache


def get_search_config() -> Dict[str, Any]:
    """Get search phase defaults.

    Returns:
        Search configuration dictionary with defaults
    """
    search = _section("search")
    search.setdefault("max_candidates_per_scene", 20)
    search.setdefault("default_clips_per_scene", 3)
    search.setdefault("default_format", "1080p")
    return search


def get_download_config() -> Dict[str, Any]:
    """Get download phase settings.

    Returns:
        Download configuration dictionary with defaults
    """
    dl = _section("download")
    dl.setdefault("max_concurrent", 3)
    dl.setdefault("chunk_size", 64 * 1024)
    dl.setdefault("timeout_s", 120.0)
    return dl
