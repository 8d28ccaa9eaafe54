"""Progress events emitted by the runners and the sinks that receive them."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchProgress:
    """Emitted when the search runner starts a scene (current is 1-based)."""

    current: int
    total: int
    scene_slug: str


@dataclass(frozen=True)
class DownloadProgress:
    total_scenes: int
    completed_scenes: int
    total_files: int
    completed_files: int
    current_scene: str
    current_file: str

    @property
    def done(self) -> bool:
        return self.completed_scenes >= self.total_scenes and self.completed_files >= self.total_files


ProgressEvent = Union[SearchProgress, DownloadProgress]


class ProgressSink(Protocol):
    def on_progress(self, event: ProgressEvent) -> None:
        ...


class NullProgressSink:
    def on_progress(self, event: ProgressEvent) -> None:
        pass


class LoggingProgressSink:
    """Reports progress through a logger; used by the command line."""

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logger

    def on_progress(self, event: ProgressEvent) -> None:
        if isinstance(event, SearchProgress):
            self._log.info("[%d/%d] Processing scene: %s", event.current, event.total, event.scene_slug)
        elif isinstance(event, DownloadProgress):
            if event.done:
                self._log.info("Downloads complete: %d file(s) in %d scene(s)", event.total_files, event.total_scenes)
            elif not event.current_file:
                # Final event of a run that skipped some files
                self._log.info("Downloads finished: %d of %d file(s)", event.completed_files, event.total_files)
            else:
                self._log.info(
                    "[%d/%d files] %s: %s",
                    event.completed_files, event.total_files, event.current_scene, event.current_file,
                )


def emit(sink: ProgressSink | None, event: ProgressEvent) -> None:
    """Deliver an event; sink failures are logged and never reach the runner."""
    if sink is None:
        return
    try:
        sink.on_progress(event)
    except Exception as e:
        logger.warning("Progress sink error: %s", e)
