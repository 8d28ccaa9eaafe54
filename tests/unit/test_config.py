"""Unit tests for stockapi.core.config module."""
from __future__ import annotations

import json
import os


class TestGetConfig:
    """Tests for get_config function."""

    def test_missing_file_returns_empty(self):
        from stockapi.core.config import get_config

        assert get_config(force_reload=True) == {}

    def test_loads_file_from_env(self, config_file, sample_config):
        from stockapi.core.config import get_config

        assert get_config() == sample_config

    def test_result_is_cached(self, config_file):
        from stockapi.core.config import get_config

        first = get_config()
        with open(config_file, "w", encoding="utf-8") as f:
            json.dump({"api": {}}, f)

        assert get_config() is first
        assert get_config(force_reload=True) == {"api": {}}

    def test_invalid_json_returns_empty(self, temp_dir, monkeypatch):
        from stockapi.core.config import get_config

        path = os.path.join(temp_dir, "broken.json")
        with open(path, "w", encoding="utf-8") as f:
            f.write("{not json")
        monkeypatch.setenv("STOCKBOT_CONFIG_PATH", path)

        assert get_config(force_reload=True) == {}


class TestSectionDefaults:
    """Tests for the per-section accessors."""

    def test_defaults_without_file(self):
        from stockapi.core.config import (
            DEFAULT_BASE_URL,
            get_api_config,
            get_cache_config,
            get_download_config,
            get_network_config,
            get_search_config,
        )

        assert get_api_config()["base_url"] == DEFAULT_BASE_URL
        assert get_network_config()["max_retries"] == 5
        assert get_network_config()["retry_delays_s"] == [1.0, 2.0, 4.0, 8.0, 16.0]
        assert get_cache_config()["ttl_s"] == 86400
        assert get_cache_config()["max_size_mb"] == 2048
        assert get_search_config()["max_candidates_per_scene"] == 20
        assert get_search_config()["default_format"] == "1080p"
        assert get_download_config()["max_concurrent"] == 3

    def test_file_values_override_defaults(self, config_file):
        from stockapi.core.config import get_download_config, get_network_config, get_search_config

        assert get_network_config()["max_retries"] == 2
        assert get_download_config()["max_concurrent"] == 2
        # Keys not in the file still get defaults
        assert get_search_config()["default_clips_per_scene"] == 3

    def test_empty_retry_schedule_is_replaced(self, temp_dir, monkeypatch):
        from stockapi.core.config import get_config, get_network_config

        path = os.path.join(temp_dir, "c.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"network": {"retry_delays_s": []}}, f)
        monkeypatch.setenv("STOCKBOT_CONFIG_PATH", path)
        get_config(force_reload=True)

        assert get_network_config()["retry_delays_s"] == [1.0]

    def test_accessors_return_copies(self, config_file):
        from stockapi.core.config import get_config, get_search_config

        get_search_config()["default_format"] = "changed"
        assert get_config()["search"]["default_format"] == "720p"


class TestGetApiKey:
    def test_env_wins(self, monkeypatch, config_file, sample_config):
        from stockapi.core.config import get_api_key

        monkeypatch.setenv("FREEPIK_API_KEY", "from-env")
        assert get_api_key() == "from-env"

    def test_config_fallback(self, temp_dir, monkeypatch):
        from stockapi.core.config import get_api_key, get_config

        path = os.path.join(temp_dir, "c.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"api": {"api_key": "from-config"}}, f)
        monkeypatch.setenv("STOCKBOT_CONFIG_PATH", path)
        get_config(force_reload=True)

        assert get_api_key() == "from-config"

    def test_missing(self):
        from stockapi.core.config import get_api_key

        assert get_api_key() is None
