"""Persisted run artifacts and their on-disk layout.

Everything a run writes lives under one output directory:

    <output>/_meta/candidates.json   all scored candidates per scene
    <output>/_meta/selection.json    ranked picks per scene (download input)
    <output>/_meta/errors.jsonl      error journal
    <output>/_meta/.lock             active run record
    <output>/_meta/downloads.csv     flat index of downloaded files
    <output>/{order:03d}_{slug}/scene.json   per-scene download manifest

JSON files are written to a temporary sibling and renamed into place, so a
crash never leaves a truncated candidates or selection file behind.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

META_DIR = "_meta"
CANDIDATES_FILE = "candidates.json"
SELECTION_FILE = "selection.json"
ERRORS_FILE = "errors.jsonl"
LOCK_FILE = ".lock"
DOWNLOAD_INDEX_FILE = "downloads.csv"
MANIFEST_FILE = "scene.json"

FULFILLED = "fulfilled"
PARTIAL = "partial"
UNFULFILLED = "unfulfilled"
STATUSES = (FULFILLED, PARTIAL, UNFULFILLED)


class SelectionValidationError(ValueError):
    """Raised when selection.json is missing or does not have the expected shape."""


def meta_dir(output_dir: str) -> str:
    return os.path.join(output_dir, META_DIR)


def candidates_path(output_dir: str) -> str:
    return os.path.join(meta_dir(output_dir), CANDIDATES_FILE)


def selection_path(output_dir: str) -> str:
    return os.path.join(meta_dir(output_dir), SELECTION_FILE)


def errors_path(output_dir: str) -> str:
    return os.path.join(meta_dir(output_dir), ERRORS_FILE)


def lock_path(output_dir: str) -> str:
    return os.path.join(meta_dir(output_dir), LOCK_FILE)


def download_index_path(output_dir: str) -> str:
    return os.path.join(meta_dir(output_dir), DOWNLOAD_INDEX_FILE)


@dataclass
class SceneCandidateSet:
    """Search outcome for one scene (one entry of candidates.json)."""

    scene_index: int
    scene_order: int
    scene_slug: str
    search_queries: List[str]
    candidates: List[Dict[str, Any]]
    total_found: int
    filtered_count: int
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SelectedClip:
    resource_id: str
    score: int
    rank: int
    download_format: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SceneSelection:
    """Ranked picks for one scene (one entry of selection.json)."""

    scene_index: int
    scene_order: int
    scene_slug: str
    status: str
    selected_clips: List[SelectedClip] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scene_index": self.scene_index,
            "scene_order": self.scene_order,
            "scene_slug": self.scene_slug,
            "status": self.status,
            "selected_clips": [c.to_dict() for c in self.selected_clips],
        }


@dataclass
class ManifestEntry:
    rank: int
    resource_id: str
    filename: str
    format: str
    downloaded_at: str
    file_size: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SceneManifest:
    """Files downloaded for one scene (scene.json)."""

    scene_index: int
    scene_order: int
    scene_slug: str
    description: str
    downloads: List[ManifestEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scene_index": self.scene_index,
            "scene_order": self.scene_order,
            "scene_slug": self.scene_slug,
            "description": self.description,
            "downloads": [d.to_dict() for d in sorted(self.downloads, key=lambda d: d.rank)],
        }


def save_json(data: Any, path: str) -> str:
    """Write JSON atomically (temp file in the same directory, then rename).

    Returns:
        The path written
    """
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise
    return path


def write_search_results(
    output_dir: str,
    candidates: List[SceneCandidateSet],
    selection: List[SceneSelection],
) -> None:
    """Rewrite candidates.json and selection.json with the full result so far."""
    save_json([c.to_dict() for c in candidates], candidates_path(output_dir))
    save_json([s.to_dict() for s in selection], selection_path(output_dir))


def load_candidates(output_dir: str) -> List[Dict[str, Any]]:
    """Read candidates.json as plain dicts (empty list if absent)."""
    path = candidates_path(output_dir)
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return data if isinstance(data, list) else []


def parse_selection(data: Any) -> List[SceneSelection]:
    """Validate parsed selection.json content and build SceneSelection objects.

    Raises:
        SelectionValidationError: On any shape mismatch, naming the offending entry
    """
    if not isinstance(data, list):
        raise SelectionValidationError("selection must be an array")

    result: List[SceneSelection] = []
    for i, entry in enumerate(data):
        where = f"selection[{i}]"
        if not isinstance(entry, dict):
            raise SelectionValidationError(f"{where} must be an object")
        if not isinstance(entry.get("scene_slug"), str):
            raise SelectionValidationError(f"{where}.scene_slug must be a string")
        if not isinstance(entry.get("status"), str):
            raise SelectionValidationError(f"{where}.status must be a string")
        clips = entry.get("selected_clips")
        if not isinstance(clips, list):
            raise SelectionValidationError(f"{where}.selected_clips must be an array")

        parsed_clips: List[SelectedClip] = []
        for j, clip in enumerate(clips):
            cwhere = f"{where}.selected_clips[{j}]"
            if not isinstance(clip, dict):
                raise SelectionValidationError(f"{cwhere} must be an object")
            if not isinstance(clip.get("resource_id"), str) or not clip["resource_id"]:
                raise SelectionValidationError(f"{cwhere}.resource_id must be a non-empty string")
            rank = clip.get("rank")
            if not isinstance(rank, int) or isinstance(rank, bool) or rank < 1:
                raise SelectionValidationError(f"{cwhere}.rank must be a positive integer")
            parsed_clips.append(SelectedClip(
                resource_id=clip["resource_id"],
                score=int(clip.get("score") or 0),
                rank=rank,
                download_format=str(clip.get("download_format") or ""),
            ))

        result.append(SceneSelection(
            scene_index=_int_or(entry.get("scene_index"), i),
            scene_order=_int_or(entry.get("scene_order"), i + 1),
            scene_slug=entry["scene_slug"],
            status=entry["status"],
            selected_clips=parsed_clips,
        ))
    return result


def _int_or(value: Any, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


def load_selection(output_dir: str, path: Optional[str] = None) -> List[SceneSelection]:
    """Read and strictly validate selection.json.

    Raises:
        SelectionValidationError: File missing, not JSON, or wrong shape
    """
    path = path or selection_path(output_dir)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise SelectionValidationError(f"Selection file not found: {path}. Run the search phase first.") from e
    except ValueError as e:
        raise SelectionValidationError(f"Selection file {path} is not valid JSON: {e}") from e

    return parse_selection(data)
