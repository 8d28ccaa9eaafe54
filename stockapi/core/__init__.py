"""Core utilities for the stockbot API layer.

- config: Configuration loading and section defaults
- network: HTTP session, rate-limit header parsing, streamed downloads
- cache: TTL + size-bounded LRU response cache
- naming: Scene directory and clip filename conventions
"""

__all__ = [
    "config",
    "network",
    "cache",
    "naming",
]
