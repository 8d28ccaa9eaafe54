"""Unit tests for stockapi.core.network module."""
from __future__ import annotations

import os
import threading
from unittest.mock import MagicMock

import pytest
import requests


class TestBuildSession:
    def test_headers(self):
        from stockapi.core.network import build_session

        session = build_session()
        assert isinstance(session, requests.Session)
        assert session.headers["User-Agent"].startswith("stockbot/")
        assert session.headers["Accept"] == "application/json"


class TestParseRateLimit:
    """Tests for parse_rate_limit function."""

    def test_all_headers(self):
        from stockapi.core.network import parse_rate_limit

        rl = parse_rate_limit({"x-ratelimit-limit": "100", "x-ratelimit-remaining": "5", "x-ratelimit-reset": "1700"})
        assert (rl.limit, rl.remaining, rl.reset) == (100, 5, 1700)

    def test_missing_header(self):
        from stockapi.core.network import parse_rate_limit

        assert parse_rate_limit({"x-ratelimit-limit": "100", "x-ratelimit-remaining": "5"}) is None

    def test_non_numeric(self):
        from stockapi.core.network import parse_rate_limit

        headers = {"x-ratelimit-limit": "lots", "x-ratelimit-remaining": "5", "x-ratelimit-reset": "1700"}
        assert parse_rate_limit(headers) is None

    def test_case_insensitive_response_headers(self):
        from requests.structures import CaseInsensitiveDict

        from stockapi.core.network import parse_rate_limit

        headers = CaseInsensitiveDict({"X-RateLimit-Limit": "1", "X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "9"})
        assert parse_rate_limit(headers).reset == 9


class TestBackoffDelay:
    @pytest.mark.parametrize("failure,expected", [(1, 1.0), (2, 2.0), (3, 4.0), (4, 4.0), (10, 4.0)])
    def test_clamps_to_last(self, failure, expected):
        from stockapi.core.network import backoff_delay

        assert backoff_delay([1, 2, 4], failure) == expected

    def test_empty_schedule(self):
        from stockapi.core.network import backoff_delay

        assert backoff_delay([], 3) == 0.0


class TestStreamToFile:
    """Tests for stream_to_file function."""

    def _session(self, response):
        session = MagicMock()
        session.get.return_value = response
        return session

    def test_writes_file(self, temp_dir, mock_response):
        from stockapi.core.network import stream_to_file

        response = mock_response(200)
        response.iter_content.return_value = [b"abc", b"", b"def"]
        dest = os.path.join(temp_dir, "clip.mp4")

        written = stream_to_file(self._session(response), "https://cdn.test/clip.mp4", dest, chunk_size=3)

        assert written == 6
        with open(dest, "rb") as f:
            assert f.read() == b"abcdef"
        assert not os.path.exists(dest + ".part")

    def test_http_error(self, temp_dir, mock_response):
        from stockapi.core.network import TransferError, stream_to_file

        dest = os.path.join(temp_dir, "clip.mp4")
        with pytest.raises(TransferError) as exc_info:
            stream_to_file(self._session(mock_response(404)), "https://cdn.test/x", dest)

        assert exc_info.value.status_code == 404
        assert not os.path.exists(dest)

    def test_broken_stream_removes_part_file(self, temp_dir, mock_response):
        from stockapi.core.network import TransferError, stream_to_file

        def chunks(chunk_size):
            yield b"abc"
            raise requests.exceptions.ChunkedEncodingError("reset")

        response = mock_response(200)
        response.iter_content.side_effect = chunks
        dest = os.path.join(temp_dir, "clip.mp4")

        with pytest.raises(TransferError):
            stream_to_file(self._session(response), "https://cdn.test/x", dest)

        assert not os.path.exists(dest)
        assert not os.path.exists(dest + ".part")

    def test_cancel_event(self, temp_dir, mock_response):
        from stockapi.core.network import TransferCancelled, stream_to_file

        cancel = threading.Event()

        def chunks(chunk_size):
            yield b"abc"
            cancel.set()
            yield b"def"

        response = mock_response(200)
        response.iter_content.side_effect = chunks
        dest = os.path.join(temp_dir, "clip.mp4")

        with pytest.raises(TransferCancelled):
            stream_to_file(self._session(response), "https://cdn.test/x", dest, cancel_event=cancel)

        assert not os.path.exists(dest)
        assert not os.path.exists(dest + ".part")
