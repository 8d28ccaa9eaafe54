"""Download phase: fetch the selected clips of every scene.

Transfers run on a thread pool and are bounded by one run-wide semaphore, so
the number of simultaneous downloads never exceeds ``max_concurrent`` no
matter how many scenes the selection spans. Scenes are handled one after
another; a scene's manifest is written once all of its transfers settle.

Files are named deterministically from the plan and the selection. A target
that already exists is recorded as-is without touching the network, which
makes re-running an interrupted download safe.
"""
from __future__ import annotations

import logging
import os
import threading
import traceback
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Dict, List, Optional

import requests

from stockapi.core.config import get_download_config
from stockapi.core.naming import clip_filename, scene_dir_name
from stockapi.core.network import TransferCancelled, TransferError, stream_to_file
from stockapi.freepik_api import FreepikApiError, FreepikClient

from .artifacts import MANIFEST_FILE, ManifestEntry, SceneManifest, SceneSelection, SelectedClip, save_json
from .error_journal import ErrorJournal
from .index_manager import write_download_index
from .plan import Plan, SceneSpec
from .progress import DownloadProgress, ProgressSink, emit

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    """Raised when a clip cannot be downloaded; aborts the download run.

    Attributes:
        resource_id: Resource that failed (None for run-level failures)
        scene_slug: Scene the resource belongs to
    """

    def __init__(self, message: str, resource_id: Optional[str] = None, scene_slug: Optional[str] = None):
        super().__init__(message)
        self.resource_id = resource_id
        self.scene_slug = scene_slug


class DownloadCancelled(DownloadError):
    """Raised when the run was cancelled before all transfers finished."""


def _mtime_iso(st: os.stat_result) -> str:
    return datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat()


class DownloadRunner:
    """Downloads the clips listed in a selection."""

    def __init__(
        self,
        client: FreepikClient,
        output_dir: str,
        max_concurrent: Optional[int] = None,
        progress: Optional[ProgressSink] = None,
        journal: Optional[ErrorJournal] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the runner.

        Args:
            client: Freepik API client (download URLs)
            output_dir: Run output directory
            max_concurrent: Simultaneous transfers (default from config, 3)
            progress: Sink receiving DownloadProgress events (optional)
            journal: Error journal for failed transfers (optional)
            session: Session used to fetch file URLs (defaults to the client's)
        """
        cfg = get_download_config()
        self.client = client
        self.output_dir = output_dir
        self.max_concurrent = max(1, int(max_concurrent if max_concurrent is not None else cfg["max_concurrent"]))
        self.progress = progress
        self.journal = journal
        self.session = session or client.session
        self.chunk_size = int(cfg["chunk_size"])
        self.timeout_s = float(cfg["timeout_s"])

        self._slots = threading.Semaphore(self.max_concurrent)
        self._cancel_event = threading.Event()
        self._counter_lock = threading.Lock()
        self._completed_files = 0
        self._total_files = 0
        self._total_scenes = 0

    def cancel(self) -> None:
        """Stop starting new transfers and abort in-flight ones at the next chunk."""
        if not self._cancel_event.is_set():
            logger.info("Download cancellation requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def run(self, plan: Plan, selection: List[SceneSelection]) -> List[SceneManifest]:
        """Download every selected clip and write one manifest per scene.

        Returns:
            Manifests of the processed scenes, in selection order

        Raises:
            DownloadError: A transfer failed (the run stops at that scene)
            DownloadCancelled: cancel() was called during the run
        """
        try:
            os.makedirs(self.output_dir, exist_ok=True)
        except OSError as e:
            raise DownloadError(f"Cannot create output directory {self.output_dir}: {e}") from e

        self._total_scenes = len(selection)
        self._total_files = sum(len(s.selected_clips) for s in selection)
        self._completed_files = 0
        manifests: List[SceneManifest] = []

        logger.info(
            "Downloading %d file(s) for %d scene(s) with %d concurrent transfer(s)",
            self._total_files, self._total_scenes, self.max_concurrent,
        )

        with ThreadPoolExecutor(max_workers=self.max_concurrent, thread_name_prefix="dl_worker") as executor:
            for i, scene_selection in enumerate(selection):
                if self.cancelled:
                    raise DownloadCancelled("Download run cancelled")

                scene = plan.find_scene(scene_selection.scene_slug, scene_selection.scene_index)
                if scene is None:
                    logger.warning(
                        "Scene %s (index %d) not found in plan; skipping",
                        scene_selection.scene_slug, scene_selection.scene_index,
                    )
                    continue

                scene_dir = os.path.join(self.output_dir, scene_dir_name(scene.order, scene.slug))
                os.makedirs(scene_dir, exist_ok=True)

                entries = self._download_scene(executor, scene, scene_selection, scene_dir, i)

                manifest = SceneManifest(
                    scene_index=scene_selection.scene_index,
                    scene_order=scene.order,
                    scene_slug=scene.slug,
                    description=scene.description,
                    downloads=sorted(entries, key=lambda e: e.rank),
                )
                save_json(manifest.to_dict(), os.path.join(scene_dir, MANIFEST_FILE))
                manifests.append(manifest)

        write_download_index(self.output_dir, manifests)

        emit(self.progress, DownloadProgress(
            total_scenes=self._total_scenes,
            completed_scenes=self._total_scenes,
            total_files=self._total_files,
            completed_files=self._completed_files,
            current_scene="",
            current_file="",
        ))
        return manifests

    def _download_scene(
        self,
        executor: ThreadPoolExecutor,
        scene: SceneSpec,
        scene_selection: SceneSelection,
        scene_dir: str,
        scene_position: int,
    ) -> List[ManifestEntry]:
        """Submit all clips of a scene and wait for them to settle."""
        futures: Dict[Future, SelectedClip] = {
            executor.submit(self._download_clip, scene, clip, scene_dir, scene_position): clip
            for clip in scene_selection.selected_clips
        }
        if not futures:
            return []

        done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
        if not_done:
            for future in not_done:
                future.cancel()
            # Let transfers that already started finish before reporting
            wait(not_done)

        entries: List[ManifestEntry] = []
        first_error: Optional[BaseException] = None
        for future in futures:
            if future.cancelled():
                continue
            error = future.exception()
            if error is not None:
                if first_error is None:
                    first_error = error
                continue
            entries.append(future.result())

        if first_error is not None:
            raise first_error
        return entries

    def _download_clip(
        self,
        scene: SceneSpec,
        clip: SelectedClip,
        scene_dir: str,
        scene_position: int,
    ) -> ManifestEntry:
        if self.cancelled:
            raise DownloadCancelled("Download run cancelled", clip.resource_id, scene.slug)

        filename = clip_filename(scene.order, scene.slug, clip.resource_id, clip.rank, clip.download_format)
        path = os.path.join(scene_dir, filename)

        self._slots.acquire()
        try:
            if os.path.exists(path):
                logger.info("Skipping %s (already exists)", filename)
            else:
                info = self.client.get_download_url(clip.resource_id, clip.download_format or None)
                stream_to_file(
                    self.session,
                    info.url,
                    path,
                    chunk_size=self.chunk_size,
                    timeout=self.timeout_s,
                    cancel_event=self._cancel_event,
                )
            st = os.stat(path)
        except TransferCancelled as e:
            raise DownloadCancelled(str(e), clip.resource_id, scene.slug) from e
        except (FreepikApiError, TransferError, OSError) as e:
            message = f"Download failed for {clip.resource_id} ({scene.slug}): {e}"
            logger.error(message)
            if self.journal is not None:
                self.journal.log_download_error(message, clip.resource_id, scene.slug, traceback.format_exc())
            raise DownloadError(message, clip.resource_id, scene.slug) from e
        finally:
            self._slots.release()

        entry = ManifestEntry(
            rank=clip.rank,
            resource_id=clip.resource_id,
            filename=filename,
            format=clip.download_format,
            downloaded_at=_mtime_iso(st),
            file_size=st.st_size,
        )
        self._file_done(scene.slug, filename, scene_position)
        return entry

    def _file_done(self, scene_slug: str, filename: str, scene_position: int) -> None:
        with self._counter_lock:
            self._completed_files += 1
            event = DownloadProgress(
                total_scenes=self._total_scenes,
                completed_scenes=scene_position,
                total_files=self._total_files,
                completed_files=self._completed_files,
                current_scene=scene_slug,
                current_file=filename,
            )
        emit(self.progress, event)
