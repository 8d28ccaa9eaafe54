"""Deterministic filtering and scoring of catalog videos against a scene.

Scores are built from four bounded components:
- resolution (0-40): pixel count tiers
- duration fit (0-25): distance from the middle of the scene's duration range
- relevance (0-25): share of scene queries whose terms all occur in title/tags
- recency (0-10): linear decay over one year

The total is always the exact sum of the components, so it lies in 0..100.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from .model import Resource

# Pixel thresholds for resolution tiers
PIXELS_4K = 3840 * 2160
PIXELS_1440P = 2560 * 1440
PIXELS_1080P = 1920 * 1080

# Duration range assumed for scoring when the scene leaves it open
DEFAULT_SCORE_MIN_DURATION_S = 5.0
DEFAULT_SCORE_MAX_DURATION_S = 30.0

RECENCY_WINDOW_DAYS = 365.0


class SceneConstraints(Protocol):
    """The scene attributes used by filtering and scoring."""

    search_queries: Sequence[str]
    negative_terms: Sequence[str]
    min_duration_s: Optional[float]
    max_duration_s: Optional[float]
    min_width: Optional[int]
    min_height: Optional[int]
    orientation: Optional[str]


@dataclass(frozen=True)
class ScoreBreakdown:
    resolution: int
    duration_fit: int
    relevance: int
    recency: int

    @property
    def total(self) -> int:
        return self.resolution + self.duration_fit + self.relevance + self.recency

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class ScoredCandidate:
    """A resource paired with its score breakdown."""

    resource: Resource
    breakdown: ScoreBreakdown

    @property
    def score(self) -> int:
        return self.breakdown.total

    def to_dict(self) -> Dict[str, object]:
        """Serialized form persisted in candidates.json."""
        video = self.resource.video_info
        return {
            "resource_id": self.resource.id,
            "score": self.score,
            "breakdown": self.breakdown.to_dict(),
            "title": self.resource.title,
            "duration": video.duration if video else 0,
            "resolution": self.resource.resolution,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def score_resolution(resource: Resource) -> int:
    if resource.video_info is None:
        return 0
    pixels = resource.video_info.pixels
    if pixels >= PIXELS_4K:
        return 40
    if pixels >= PIXELS_1440P:
        return 30
    if pixels >= PIXELS_1080P:
        return 20
    return 5


def score_duration_fit(resource: Resource, scene: SceneConstraints) -> int:
    """Perfect fit at the middle of the range scores 25, the edges 12.5."""
    if resource.video_info is None:
        return 0

    duration = resource.video_info.duration
    min_d = scene.min_duration_s if scene.min_duration_s is not None else DEFAULT_SCORE_MIN_DURATION_S
    max_d = scene.max_duration_s if scene.max_duration_s is not None else DEFAULT_SCORE_MAX_DURATION_S

    if duration < min_d or duration > max_d:
        return 0

    half_range = (max_d - min_d) / 2
    if half_range <= 0:
        return 25

    mid = (min_d + max_d) / 2
    normalized = abs(duration - mid) / half_range
    return _round_half_up(25 * (1 - normalized * 0.5))


def score_relevance(resource: Resource, scene: SceneConstraints) -> int:
    queries = list(scene.search_queries or [])
    if not queries:
        return 25

    text = resource.searchable_text()
    matched = 0
    for query in queries:
        terms = query.lower().split()
        if all(term in text for term in terms):
            matched += 1

    return _round_half_up(matched / len(queries) * 25)


def score_recency(resource: Resource, now: Optional[datetime] = None) -> int:
    created = _parse_timestamp(resource.created_at)
    if created is None:
        return 0

    now = now or datetime.now(timezone.utc)
    age_days = (now - created).total_seconds() / 86400.0

    if age_days <= 0:
        return 10
    if age_days >= RECENCY_WINDOW_DAYS:
        return 0
    return _round_half_up(10 * (1 - age_days / RECENCY_WINDOW_DAYS))


def score(resource: Resource, scene: SceneConstraints, now: Optional[datetime] = None) -> ScoredCandidate:
    """Score a resource against scene requirements.

    Args:
        resource: Catalog resource
        scene: Scene constraints and queries
        now: Reference time for recency (defaults to current UTC time)

    Returns:
        ScoredCandidate whose score is the sum of the breakdown
    """
    breakdown = ScoreBreakdown(
        resolution=score_resolution(resource),
        duration_fit=score_duration_fit(resource, scene),
        relevance=score_relevance(resource, scene),
        recency=score_recency(resource, now),
    )
    return ScoredCandidate(resource=resource, breakdown=breakdown)


def passes_hard_filters(resource: Resource, scene: SceneConstraints) -> bool:
    """Return True if the resource satisfies every hard constraint of the scene."""
    if resource.content_type != "video":
        return False

    video = resource.video_info
    if video is None:
        return False

    min_d = scene.min_duration_s if scene.min_duration_s is not None else 0.0
    max_d = scene.max_duration_s if scene.max_duration_s is not None else math.inf
    if video.duration < min_d or video.duration > max_d:
        return False

    if video.width < (scene.min_width or 0) or video.height < (scene.min_height or 0):
        return False

    if scene.orientation and resource.orientation != scene.orientation:
        return False

    negative_terms = [t for t in (scene.negative_terms or []) if t]
    if negative_terms:
        text = resource.searchable_text()
        for term in negative_terms:
            if term.lower() in text:
                return False

    return True


def sort_by_score(candidates: Iterable[ScoredCandidate]) -> List[ScoredCandidate]:
    """Sort by score descending, then resource id ascending."""
    return sorted(candidates, key=lambda c: (-c.score, c.resource.id))


def deduplicate(candidates: Iterable[ScoredCandidate]) -> List[ScoredCandidate]:
    """Keep one candidate per resource id, preferring the higher score."""
    best: Dict[str, ScoredCandidate] = {}
    for cand in candidates:
        existing = best.get(cand.resource.id)
        if existing is None or cand.score > existing.score:
            best[cand.resource.id] = cand
    return list(best.values())
