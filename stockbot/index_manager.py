"""Flat CSV index of downloaded clips.

The per-scene manifests are the source of truth; ``_meta/downloads.csv`` is
rebuilt from them at the end of every download run so that a re-run never
duplicates rows.
"""
from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, Iterable, List

import pandas as pd

from stockapi.core.naming import scene_dir_name

from .artifacts import SceneManifest, download_index_path

logger = logging.getLogger(__name__)

INDEX_COLUMNS = [
    "scene_order",
    "scene_slug",
    "rank",
    "resource_id",
    "filename",
    "path",
    "format",
    "file_size",
    "downloaded_at",
]

_index_csv_lock = threading.Lock()


def build_index_rows(output_dir: str, manifests: Iterable[SceneManifest]) -> List[Dict[str, Any]]:
    """Flatten manifests into one row per downloaded file, in scene and rank order."""
    rows: List[Dict[str, Any]] = []
    for manifest in sorted(manifests, key=lambda m: m.scene_order):
        scene_dir = scene_dir_name(manifest.scene_order, manifest.scene_slug)
        for entry in sorted(manifest.downloads, key=lambda d: d.rank):
            rows.append({
                "scene_order": manifest.scene_order,
                "scene_slug": manifest.scene_slug,
                "rank": entry.rank,
                "resource_id": entry.resource_id,
                "filename": entry.filename,
                "path": os.path.join(output_dir, scene_dir, entry.filename),
                "format": entry.format,
                "file_size": entry.file_size,
                "downloaded_at": entry.downloaded_at,
            })
    return rows


def write_download_index(output_dir: str, manifests: Iterable[SceneManifest]) -> str:
    """Rewrite downloads.csv from the given manifests.

    Returns:
        Path of the written index
    """
    rows = build_index_rows(output_dir, manifests)
    index_path = download_index_path(output_dir)
    with _index_csv_lock:
        os.makedirs(os.path.dirname(index_path), exist_ok=True)
        df = pd.DataFrame(rows, columns=INDEX_COLUMNS)
        df.to_csv(index_path, index=False)
    logger.debug("Wrote download index with %d row(s) to %s", len(rows), index_path)
    return index_path


def read_download_index(output_dir: str) -> pd.DataFrame | None:
    """Read downloads.csv, or None if it does not exist or cannot be parsed."""
    index_path = download_index_path(output_dir)
    if not os.path.exists(index_path):
        return None
    try:
        return pd.read_csv(index_path, dtype={"resource_id": str})
    except (OSError, ValueError, pd.errors.ParserError):
        logger.exception("Failed to read %s", index_path)
        return None
