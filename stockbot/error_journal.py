"""Append-only JSONL journal of run failures.

Each failure is written as one JSON object per line to
``<output>/_meta/errors.jsonl``. Journaling must never break a run, so write
failures are reported through logging and swallowed.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .artifacts import errors_path

logger = logging.getLogger(__name__)

API_ERROR = "api_error"
NETWORK_ERROR = "network_error"
DOWNLOAD_ERROR = "download_error"
VALIDATION_ERROR = "validation_error"
LOCK_CONFLICT = "lock_conflict"


@dataclass(frozen=True)
class ErrorRecord:
    timestamp: str
    kind: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    stack: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "error_type": self.kind,
            "message": self.message,
        }
        if self.context:
            d["context"] = self.context
        if self.stack:
            d["stack"] = self.stack
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorRecord":
        return cls(
            timestamp=str(data.get("timestamp", "")),
            kind=str(data.get("error_type", "unknown")),
            message=str(data.get("message", "")),
            context=dict(data.get("context") or {}),
            stack=data.get("stack"),
        )


class ErrorJournal:
    """Structured failure log for one output directory."""

    def __init__(self, output_dir: str):
        self.path = errors_path(output_dir)
        self._lock = threading.Lock()

    def log(
        self,
        kind: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        stack: Optional[str] = None,
    ) -> Optional[ErrorRecord]:
        """Append one record; returns it, or None if it could not be written."""
        record = ErrorRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            kind=kind,
            message=message,
            context={k: v for k, v in (context or {}).items() if v is not None},
            stack=stack,
        )
        try:
            line = json.dumps(record.to_dict(), default=str) + "\n"
            with self._lock:
                os.makedirs(os.path.dirname(self.path), exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write to error journal %s: %s", self.path, e)
            logger.error("Original error: %s", record)
            return None
        return record

    def log_api_error(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[ErrorRecord]:
        ctx = dict(context or {})
        ctx.update({"status_code": status_code, "endpoint": endpoint})
        return self.log(API_ERROR, message, ctx)

    def log_network_error(self, message: str, context: Optional[Dict[str, Any]] = None) -> Optional[ErrorRecord]:
        return self.log(NETWORK_ERROR, message, context)

    def log_download_error(
        self,
        message: str,
        resource_id: str,
        scene_slug: str,
        stack: Optional[str] = None,
    ) -> Optional[ErrorRecord]:
        return self.log(DOWNLOAD_ERROR, message, {"resource_id": resource_id, "scene_slug": scene_slug}, stack)

    def log_validation_error(self, message: str, context: Optional[Dict[str, Any]] = None) -> Optional[ErrorRecord]:
        return self.log(VALIDATION_ERROR, message, context)

    def log_lock_conflict(self, message: str, pid: Any = None, started_at: Any = None) -> Optional[ErrorRecord]:
        return self.log(LOCK_CONFLICT, message, {"pid": pid, "started_at": started_at})

    def read(self) -> List[ErrorRecord]:
        """Parse every record in the journal (empty if the file is missing)."""
        if not os.path.exists(self.path):
            return []

        records: List[ErrorRecord] = []
        with self._lock, open(self.path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    records.append(ErrorRecord.from_dict(json.loads(line)))
                except (ValueError, AttributeError):
                    logger.warning("Skipping malformed journal line %d in %s", lineno, self.path)
        return records

    def clear(self) -> None:
        """Delete the journal file."""
        with self._lock:
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass
