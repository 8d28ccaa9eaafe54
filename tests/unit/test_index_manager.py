"""Unit tests for stockbot.index_manager module."""
from __future__ import annotations

import os

import pandas as pd


def _manifests():
    from stockbot.artifacts import ManifestEntry, SceneManifest

    return [
        SceneManifest(1, 2, "forest", "Forest", [
            ManifestEntry(1, "0042", "002_forest__freepik_0042__a.mp4", "1080p", "2024-01-01T00:00:00+00:00", 300),
        ]),
        SceneManifest(0, 1, "city", "City", [
            ManifestEntry(2, "20", "001_city__freepik_20__b.mp4", "1080p", "2024-01-01T00:00:00+00:00", 200),
            ManifestEntry(1, "10", "001_city__freepik_10__a.mp4", "1080p", "2024-01-01T00:00:00+00:00", 100),
        ]),
    ]


class TestBuildIndexRows:
    def test_sorted_by_scene_then_rank(self, temp_output_dir):
        from stockbot.index_manager import build_index_rows

        rows = build_index_rows(temp_output_dir, _manifests())

        assert [(r["scene_slug"], r["rank"]) for r in rows] == [("city", 1), ("city", 2), ("forest", 1)]
        assert rows[0]["path"] == os.path.join(temp_output_dir, "001_city", "001_city__freepik_10__a.mp4")


class TestWriteDownloadIndex:
    """Tests for the downloads.csv index."""

    def test_write_and_read(self, temp_output_dir):
        from stockbot.index_manager import INDEX_COLUMNS, read_download_index, write_download_index

        path = write_download_index(temp_output_dir, _manifests())
        assert os.path.exists(path)

        df = read_download_index(temp_output_dir)
        assert list(df.columns) == INDEX_COLUMNS
        assert len(df) == 3
        # Leading zeros survive the round trip
        assert "0042" in df["resource_id"].tolist()

    def test_rewrite_does_not_duplicate(self, temp_output_dir):
        from stockbot.index_manager import read_download_index, write_download_index

        write_download_index(temp_output_dir, _manifests())
        write_download_index(temp_output_dir, _manifests())

        assert len(read_download_index(temp_output_dir)) == 3

    def test_empty_manifests_write_header(self, temp_output_dir):
        from stockbot.index_manager import INDEX_COLUMNS, write_download_index

        path = write_download_index(temp_output_dir, [])
        df = pd.read_csv(path)
        assert list(df.columns) == INDEX_COLUMNS
        assert df.empty

    def test_read_missing(self, temp_output_dir):
        from stockbot.index_manager import read_download_index

        assert read_download_index(temp_output_dir) is None
