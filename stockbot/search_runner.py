"""Search phase: query the catalog per scene, score results and select clips.

Scenes are processed in plan order and queries within a scene one at a time.
After every scene both candidates.json and selection.json are rewritten with
the results so far, so an interrupted run leaves complete data for every
finished scene.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from stockapi import scoring
from stockapi.core.config import get_search_config
from stockapi.freepik_api import SEARCH_ENDPOINT, FreepikApiError, FreepikClient, FreepikNetworkError
from stockapi.scoring import ScoredCandidate

from .artifacts import (
    FULFILLED,
    PARTIAL,
    UNFULFILLED,
    SceneCandidateSet,
    SceneSelection,
    SelectedClip,
    meta_dir,
    write_search_results,
)
from .error_journal import ErrorJournal
from .plan import Plan, SceneSpec
from .progress import ProgressSink, SearchProgress, emit

logger = logging.getLogger(__name__)


@dataclass
class SearchResults:
    candidates: List[SceneCandidateSet] = field(default_factory=list)
    selection: List[SceneSelection] = field(default_factory=list)

    def status_counts(self) -> Dict[str, int]:
        counts = {FULFILLED: 0, PARTIAL: 0, UNFULFILLED: 0}
        for sel in self.selection:
            counts[sel.status] = counts.get(sel.status, 0) + 1
        return counts


def fulfillment_status(candidate_count: int, target: int) -> str:
    if candidate_count == 0:
        return UNFULFILLED
    if candidate_count < target:
        return PARTIAL
    return FULFILLED


def select_top(candidate_set: SceneCandidateSet, target: int, download_format: str) -> SceneSelection:
    """Take the first ``target`` candidates of a sorted set and rank them 1..K."""
    picked = candidate_set.candidates[:max(0, target)]
    return SceneSelection(
        scene_index=candidate_set.scene_index,
        scene_order=candidate_set.scene_order,
        scene_slug=candidate_set.scene_slug,
        status=candidate_set.status,
        selected_clips=[
            SelectedClip(
                resource_id=c["resource_id"],
                score=c["score"],
                rank=rank,
                download_format=download_format,
            )
            for rank, c in enumerate(picked, start=1)
        ],
    )


class SearchRunner:
    """Runs the search phase for a whole plan."""

    def __init__(
        self,
        client: FreepikClient,
        output_dir: str,
        journal: Optional[ErrorJournal] = None,
        progress: Optional[ProgressSink] = None,
        max_candidates_per_scene: Optional[int] = None,
        default_format: Optional[str] = None,
        now: Optional[datetime] = None,
    ):
        """Initialize the runner.

        Args:
            client: Freepik API client
            output_dir: Run output directory
            journal: Error journal for failed queries (optional)
            progress: Sink receiving a SearchProgress per scene (optional)
            max_candidates_per_scene: Page size per query; overrides plan and config
            default_format: Download format recorded for selected clips; overrides
                the plan's format_preference and config
            now: Fixed reference time for recency scoring (tests)
        """
        cfg = get_search_config()
        self.client = client
        self.output_dir = output_dir
        self.journal = journal
        self.progress = progress
        self._max_candidates = max_candidates_per_scene
        self._explicit_format = default_format
        self.default_format = str(cfg["default_format"])
        self._config_max_candidates = int(cfg["max_candidates_per_scene"])
        self._now = now

    def _page_size(self, plan: Plan) -> int:
        if self._max_candidates is not None:
            return self._max_candidates
        if plan.settings.max_candidates_per_scene:
            return plan.settings.max_candidates_per_scene
        return self._config_max_candidates

    def _download_format(self, plan: Plan) -> str:
        if self._explicit_format:
            return str(self._explicit_format)
        if plan.settings.format_preference:
            return plan.settings.format_preference[0]
        return self.default_format

    def run(self, plan: Plan) -> SearchResults:
        """Search, score and select clips for every scene of the plan.

        Raises:
            FreepikApiError: Authentication failure (aborts the run)
            OSError: Results could not be persisted
        """
        os.makedirs(meta_dir(self.output_dir), exist_ok=True)
        results = SearchResults()
        total = len(plan.scenes)
        limit = self._page_size(plan)
        download_format = self._download_format(plan)

        for index, scene in enumerate(plan.scenes):
            emit(self.progress, SearchProgress(current=index + 1, total=total, scene_slug=scene.slug))

            target = plan.target_clip_count(scene)
            candidate_set = self.process_scene(scene, index, target, limit)
            selection = select_top(candidate_set, target, download_format)

            results.candidates.append(candidate_set)
            results.selection.append(selection)
            write_search_results(self.output_dir, results.candidates, results.selection)

            logger.info(
                "Scene %s: %d candidate(s), %d selected, status=%s",
                scene.slug, candidate_set.filtered_count, len(selection.selected_clips), selection.status,
            )

        return results

    def process_scene(self, scene: SceneSpec, index: int, target: int, limit: int) -> SceneCandidateSet:
        """Run all queries of a scene and build its sorted candidate set."""
        pool: List[ScoredCandidate] = []

        for query in scene.search_queries:
            filters: Dict[str, Any] = {"content_type": ["video"], "order": "latest"}
            if scene.orientation:
                filters["orientation"] = scene.orientation

            try:
                page = self.client.search(term=query, filters=filters, limit=limit)
            except FreepikApiError as e:
                self._record_query_failure(scene, query, e)
                if e.is_auth_error:
                    raise
                continue
            except (ValueError, TypeError, AttributeError) as e:
                # Unparseable response body
                self._record_query_failure(scene, query, e)
                continue

            for resource in page.items:
                if scoring.passes_hard_filters(resource, scene):
                    pool.append(scoring.score(resource, scene, now=self._now))

        ranked = scoring.sort_by_score(scoring.deduplicate(pool))

        return SceneCandidateSet(
            scene_index=index,
            scene_order=scene.order,
            scene_slug=scene.slug,
            search_queries=list(scene.search_queries),
            candidates=[c.to_dict() for c in ranked],
            total_found=len(pool),
            filtered_count=len(ranked),
            status=fulfillment_status(len(ranked), target),
        )

    def _record_query_failure(self, scene: SceneSpec, query: str, error: Exception) -> None:
        status_code = getattr(error, "status_code", None)
        logger.error(
            "Error searching for '%s' (scene %s): %s%s",
            query, scene.slug, f"[{status_code}] " if status_code else "", error,
        )
        if self.journal is None:
            return

        context = {"scene_slug": scene.slug, "query": query, "error_name": type(error).__name__}
        if isinstance(error, FreepikNetworkError):
            context["endpoint"] = SEARCH_ENDPOINT
            self.journal.log_network_error(f"Search failed for query: {query}", context)
        else:
            self.journal.log_api_error(
                f"Search failed for query: {query}",
                status_code=status_code,
                endpoint=SEARCH_ENDPOINT,
                context=context,
            )
