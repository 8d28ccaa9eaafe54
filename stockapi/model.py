"""Data models for the stockbot API layer.

Provides immutable dataclasses for Freepik catalog resources and the
responses of the search and download endpoints, plus conversion from the raw
JSON payloads.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VideoInfo:
    """Video metadata supplied by the provider.

    Attributes:
        duration: Clip length in seconds
        width: Frame width in pixels
        height: Frame height in pixels
        fps: Frames per second (0 if unknown)
        codec: Codec name (e.g., "h264")
    """

    duration: float
    width: int
    height: int
    fps: float = 0.0
    codec: str = ""

    @property
    def pixels(self) -> int:
        return self.width * self.height

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "VideoInfo":
        return cls(
            duration=float(data.get("duration") or 0),
            width=int(data.get("width") or 0),
            height=int(data.get("height") or 0),
            fps=float(data.get("fps") or 0),
            codec=str(data.get("codec") or ""),
        )


@dataclass(frozen=True)
class Resource:
    """Catalog item returned by the search endpoint.

    Attributes:
        id: Opaque provider identifier
        title: Resource title
        content_type: Provider content type ("video", "photo", "vector", ...)
        tags: Tags in provider order
        orientation: "landscape", "portrait" or "square"
        created_at: ISO-8601 creation timestamp
        video_info: Video metadata, only present for videos
        description: Free-text description
        premium: Whether the resource requires a premium plan
    """

    id: str
    title: str
    content_type: str
    tags: Tuple[str, ...] = ()
    orientation: Optional[str] = None
    created_at: str = ""
    video_info: Optional[VideoInfo] = None
    description: str = ""
    premium: bool = False

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Resource":
        """Convert a provider resource dict into a Resource."""
        video = data.get("video_info")
        tags = data.get("tags") or []
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title") or ""),
            content_type=str(data.get("content_type") or ""),
            tags=tuple(str(t) for t in tags if t is not None),
            orientation=data.get("orientation"),
            created_at=str(data.get("created_at") or ""),
            video_info=VideoInfo.from_api(video) if isinstance(video, dict) else None,
            description=str(data.get("description") or ""),
            premium=bool(data.get("premium", False)),
        )

    def searchable_text(self) -> str:
        """Lowercased title and tags joined by spaces, used for term matching."""
        return " ".join([self.title.lower(), *(t.lower() for t in self.tags)])

    @property
    def resolution(self) -> str:
        if self.video_info is None:
            return "unknown"
        return f"{self.video_info.width}x{self.video_info.height}"


@dataclass(frozen=True)
class RateLimit:
    """Rate-limit snapshot taken from response headers.

    Attributes:
        limit: Requests allowed per window
        remaining: Requests left in the current window
        reset: Unix timestamp (seconds) at which the window resets
    """

    limit: int
    remaining: int
    reset: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class SearchPage:
    """One page of search results."""

    items: List[Resource] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "SearchPage":
        """Parse a search response; items that cannot be converted are skipped.

        Raises:
            ValueError: The payload itself is not a search response object
        """
        if not isinstance(payload, dict):
            raise ValueError(f"Search response must be an object, got {type(payload).__name__}")

        items: List[Resource] = []
        for d in payload.get("data") or []:
            if not isinstance(d, dict):
                continue
            try:
                items.append(Resource.from_api(d))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping malformed search item %s: %s", d.get("id"), e)
        return cls(items=items, meta=dict(payload.get("meta") or {}))


@dataclass(frozen=True)
class DownloadInfo:
    """Short-lived download location for a resource.

    Attributes:
        url: Temporary download URL
        expires_at: ISO-8601 expiry timestamp
        size: File size in bytes as reported by the provider
        content_type: MIME type of the file
        format: Selected quality/format
        resource_id: Resource the URL belongs to
    """

    url: str
    expires_at: str = ""
    size: int = 0
    content_type: str = ""
    format: str = ""
    resource_id: str = ""

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "DownloadInfo":
        data = payload.get("data") or {}
        return cls(
            url=str(data.get("url") or ""),
            expires_at=str(data.get("expires_at") or ""),
            size=int(data.get("file_size") or 0),
            content_type=str(data.get("content_type") or ""),
            format=str(data.get("format") or ""),
            resource_id=str(data.get("resource_id") or ""),
        )
