"""Orchestration package for stockbot.

This package contains:
- plan: Stock plan model and loader
- search_runner: Search, scoring and selection per scene
- download_runner: Bounded-concurrency, idempotent clip downloads
- run_lock: Cross-process run lock and interrupt handling
- error_journal: Append-only JSONL failure log
- artifacts: On-disk layout and persisted result models
- index_manager: downloads.csv index of fetched clips
- progress: Progress events and sinks
- cli: Command line entry point
"""

__all__ = [
    "plan",
    "search_runner",
    "download_runner",
    "run_lock",
    "error_journal",
    "artifacts",
    "index_manager",
    "progress",
    "cli",
]
