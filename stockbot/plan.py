"""Stock plan model and loader.

The plan is the input of both phases: an ordered list of scenes, each with
its search queries and constraints, plus plan-wide defaults. Schema
validation happens upstream; this loader only builds the in-memory model and
rejects input it cannot interpret.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from stockapi.core.config import get_search_config

logger = logging.getLogger(__name__)

DEFAULT_CLIPS_PER_SCENE = 3


class PlanError(ValueError):
    """Raised when a plan file cannot be read or lacks required structure."""


@dataclass(frozen=True)
class SceneSpec:
    """Per-scene search constraints.

    Attributes:
        order: 1-based position used for directory and file names
        id: Scene identifier from the plan
        slug: Filesystem-friendly scene name
        search_queries: Queries sent to the catalog (at least one)
        negative_terms: Terms that disqualify a resource when found in title/tags
        min_duration_s / max_duration_s: Accepted clip length range
        min_width / min_height: Minimum frame size
        orientation: Required orientation, or None for any
        clips_per_scene: Per-scene override of the target clip count
    """

    order: int
    slug: str
    search_queries: List[str]
    id: str = ""
    label: str = ""
    excerpt: str = ""
    intent: str = ""
    negative_terms: List[str] = field(default_factory=list)
    min_duration_s: Optional[float] = None
    max_duration_s: Optional[float] = None
    min_width: Optional[int] = None
    min_height: Optional[int] = None
    orientation: Optional[str] = None
    clips_per_scene: Optional[int] = None

    @property
    def description(self) -> str:
        return self.excerpt or self.label or ""


@dataclass(frozen=True)
class GlobalSettings:
    orientation: Optional[str] = None
    clips_per_scene: int = DEFAULT_CLIPS_PER_SCENE
    max_candidates_per_scene: Optional[int] = None
    min_duration_s: Optional[float] = None
    max_duration_s: Optional[float] = None
    min_width: Optional[int] = None
    min_height: Optional[int] = None
    format_preference: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Plan:
    scenes: List[SceneSpec]
    settings: GlobalSettings = field(default_factory=GlobalSettings)
    title: str = ""
    language: str = "en"

    def target_clip_count(self, scene: SceneSpec) -> int:
        """Clips wanted for a scene: scene override, else the plan default."""
        if scene.clips_per_scene is not None:
            return scene.clips_per_scene
        return self.settings.clips_per_scene

    def find_scene(self, slug: str, index: Optional[int] = None) -> Optional[SceneSpec]:
        """Look a scene up by slug, falling back to its position in the plan."""
        for scene in self.scenes:
            if scene.slug == slug:
                return scene
        if index is not None and 0 <= index < len(self.scenes):
            return self.scenes[index]
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        """Build a Plan from parsed stock plan JSON.

        Scene constraints left unset inherit the value from the ``global``
        section.

        Raises:
            PlanError: Missing scenes, slugs or search queries
        """
        if not isinstance(data, dict):
            raise PlanError("Plan must be a JSON object")

        glob = data.get("global") or {}
        if not isinstance(glob, dict):
            raise PlanError("'global' must be an object")

        clips_per_scene = glob.get("clips_per_scene")
        if clips_per_scene is None:
            clips_per_scene = get_search_config()["default_clips_per_scene"]

        settings = GlobalSettings(
            orientation=glob.get("orientation"),
            clips_per_scene=int(clips_per_scene),
            max_candidates_per_scene=_opt_int(glob.get("max_candidates_per_scene")),
            min_duration_s=_opt_float(glob.get("min_duration_s")),
            max_duration_s=_opt_float(glob.get("max_duration_s")),
            min_width=_opt_int(glob.get("min_width")),
            min_height=_opt_int(glob.get("min_height")),
            format_preference=[str(f) for f in glob.get("format_preference") or []],
        )

        raw_scenes = data.get("scenes")
        if not isinstance(raw_scenes, list) or not raw_scenes:
            raise PlanError("Plan must contain a non-empty 'scenes' array")

        scenes = [_scene_from_dict(raw, i, settings) for i, raw in enumerate(raw_scenes)]

        project = data.get("project") or {}
        return cls(
            scenes=scenes,
            settings=settings,
            title=str(project.get("title") or ""),
            language=str(project.get("language") or "en"),
        )


def _opt_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _opt_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _scene_from_dict(raw: Any, index: int, settings: GlobalSettings) -> SceneSpec:
    if not isinstance(raw, dict):
        raise PlanError(f"scenes[{index}] must be an object")

    slug = raw.get("slug")
    if not isinstance(slug, str) or not slug:
        raise PlanError(f"scenes[{index}] is missing 'slug'")

    queries = raw.get("search_queries")
    if not isinstance(queries, list) or not queries:
        raise PlanError(f"scenes[{index}] ({slug}) needs at least one search query")

    def pick(key: str, fallback: Any) -> Any:
        value = raw.get(key)
        return fallback if value is None else value

    try:
        return SceneSpec(
            order=int(pick("order", index + 1)),
            id=str(raw.get("id") or ""),
            slug=slug,
            label=str(raw.get("label") or ""),
            excerpt=str(raw.get("excerpt") or ""),
            intent=str(raw.get("intent") or ""),
            search_queries=[str(q) for q in queries],
            negative_terms=[str(t) for t in raw.get("negative_terms") or []],
            min_duration_s=_opt_float(pick("min_duration_s", settings.min_duration_s)),
            max_duration_s=_opt_float(pick("max_duration_s", settings.max_duration_s)),
            min_width=_opt_int(pick("min_width", settings.min_width)),
            min_height=_opt_int(pick("min_height", settings.min_height)),
            orientation=pick("orientation", settings.orientation),
            clips_per_scene=_opt_int(raw.get("clips_per_scene")),
        )
    except (TypeError, ValueError) as e:
        raise PlanError(f"scenes[{index}] ({slug}) has an invalid value: {e}") from e


def load_plan(path: str) -> Plan:
    """Read a stock plan JSON file.

    Raises:
        PlanError: Unreadable file, invalid JSON or missing structure
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise PlanError(f"Cannot read plan {path}: {e}") from e
    except ValueError as e:
        raise PlanError(f"Plan {path} is not valid JSON: {e}") from e

    plan = Plan.from_dict(data)
    logger.info("Loaded plan '%s' with %d scene(s)", plan.title or path, len(plan.scenes))
    return plan
