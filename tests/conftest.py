"""Pytest configuration and shared fixtures for stockbot tests."""
from __future__ import annotations

import json
import os
import shutil
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List
from unittest.mock import MagicMock

import pytest


# ============================================================================
# Path and Directory Fixtures
# ============================================================================

@pytest.fixture
def temp_dir() -> Generator[str, None, None]:
    """Create a temporary directory for test files."""
    dirpath = tempfile.mkdtemp(prefix="stockbot_test_")
    yield dirpath
    shutil.rmtree(dirpath, ignore_errors=True)


@pytest.fixture
def temp_output_dir(temp_dir: str) -> str:
    """Create a temporary output directory."""
    output_dir = os.path.join(temp_dir, "output")
    os.makedirs(output_dir, exist_ok=True)
    return output_dir


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_config_cache(monkeypatch, temp_dir: str):
    """Isolate every test from config.json in the CWD and from real API keys."""
    import stockapi.core.config as config

    monkeypatch.setenv("STOCKBOT_CONFIG_PATH", os.path.join(temp_dir, "no_such_config.json"))
    monkeypatch.delenv("FREEPIK_API_KEY", raising=False)
    config._CONFIG_CACHE = None
    yield
    config._CONFIG_CACHE = None


@pytest.fixture
def sample_config() -> Dict[str, Any]:
    """Return a sample configuration dictionary."""
    return {
        "api": {"base_url": "https://api.example.test/v1", "locale": "en-GB"},
        "network": {"max_retries": 2, "retry_delays_s": [0.5, 1.5], "timeout_s": 10},
        "cache": {"enabled": True, "ttl_s": 60, "max_size_mb": 1},
        "search": {"max_candidates_per_scene": 15, "default_format": "720p"},
        "download": {"max_concurrent": 2, "chunk_size": 1024, "timeout_s": 30},
    }


@pytest.fixture
def config_file(temp_dir: str, sample_config: Dict[str, Any], monkeypatch) -> str:
    """Write the sample config to disk and point STOCKBOT_CONFIG_PATH at it."""
    import stockapi.core.config as config

    config_path = os.path.join(temp_dir, "config.json")
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(sample_config, f)
    monkeypatch.setenv("STOCKBOT_CONFIG_PATH", config_path)
    config._CONFIG_CACHE = None
    return config_path


# ============================================================================
# Catalog Data Fixtures
# ============================================================================

FIXED_NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


def make_resource_dict(
    resource_id: str,
    title: str = "City skyline at night",
    tags: List[str] | None = None,
    duration: float = 17.5,
    width: int = 3840,
    height: int = 2160,
    orientation: str = "landscape",
    created_at: str = "2024-06-01T00:00:00Z",
    content_type: str = "video",
) -> Dict[str, Any]:
    """Build a raw catalog resource as returned by the search endpoint."""
    return {
        "id": resource_id,
        "title": title,
        "content_type": content_type,
        "tags": tags if tags is not None else ["city", "night", "skyline"],
        "orientation": orientation,
        "created_at": created_at,
        "video_info": {"duration": duration, "width": width, "height": height, "fps": 30, "codec": "h264"},
    }


@pytest.fixture
def resource_factory():
    """Return the raw resource builder."""
    return make_resource_dict


@pytest.fixture
def sample_plan_dict() -> Dict[str, Any]:
    """Return a two-scene stock plan."""
    return {
        "project": {"title": "City Documentary", "language": "en"},
        "global": {"orientation": "landscape", "clips_per_scene": 2},
        "scenes": [
            {
                "order": 1,
                "id": "s1",
                "slug": "city-night",
                "label": "City at night",
                "excerpt": "The city never sleeps.",
                "search_queries": ["city night"],
                "negative_terms": ["cartoon"],
                "min_duration_s": 5,
                "max_duration_s": 30,
            },
            {
                "order": 2,
                "id": "s2",
                "slug": "forest-morning",
                "label": "Forest in the morning",
                "search_queries": ["forest morning", "misty forest"],
                "clips_per_scene": 1,
            },
        ],
    }


@pytest.fixture
def sample_plan_file(temp_dir: str, sample_plan_dict: Dict[str, Any]) -> str:
    path = os.path.join(temp_dir, "stockplan.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(sample_plan_dict, f)
    return path


# ============================================================================
# HTTP Mock Fixtures
# ============================================================================

@pytest.fixture
def mock_response():
    """Factory for mock HTTP responses."""
    def _create_response(
        status_code: int = 200,
        json_data: Any = None,
        headers: Dict[str, str] | None = None,
        content: bytes = b"",
        text: str = "",
    ):
        response = MagicMock()
        response.status_code = status_code
        response.headers = headers or {}
        response.reason = "OK" if status_code < 400 else "Error"
        response.content = content
        response.text = text or (json.dumps(json_data) if json_data is not None else "")
        if json_data is not None:
            response.json.return_value = json_data
        else:
            response.json.side_effect = ValueError("No JSON")
        response.iter_content.return_value = [content] if content else []
        response.__enter__.return_value = response
        response.__exit__.return_value = False
        return response

    return _create_response
