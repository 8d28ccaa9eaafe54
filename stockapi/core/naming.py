"""Naming conventions for scene directories and downloaded clips.

Names are derived only from plan and selection data, so a re-run of the
download phase computes exactly the same paths and can detect files that
already exist.
"""
from __future__ import annotations

PROVIDER_SLUG = "freepik"


def scene_dir_name(order: int, slug: str) -> str:
    """Directory name for a scene, e.g. ``003_city-night``."""
    return f"{int(order):03d}_{slug}"


def rank_letter(rank: int) -> str:
    """Letter suffix for a 1-based rank: 1 -> a, 26 -> z, 27 -> aa, 28 -> ab.

    Args:
        rank: 1-based rank within a scene

    Returns:
        Lowercase letter sequence
    """
    if rank < 1:
        raise ValueError(f"rank must be >= 1, got {rank}")
    letters = ""
    n = rank
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("a") + rem) + letters
    return letters


def extension_for_format(fmt: str | None) -> str:
    """Container extension for a download format string."""
    return "webm" if fmt and "webm" in fmt else "mp4"


def clip_filename(order: int, slug: str, resource_id: str, rank: int, fmt: str | None) -> str:
    """Deterministic clip filename.

    Format: ``{order:03d}_{slug}__freepik_{resource_id}__{rank_letter}.{ext}``

    Example:
        >>> clip_filename(1, "scene-slug", "123456", 1, "1080p")
        '001_scene-slug__freepik_123456__a.mp4'
    """
    return (
        f"{int(order):03d}_{slug}__{PROVIDER_SLUG}_{resource_id}"
        f"__{rank_letter(rank)}.{extension_for_format(fmt)}"
    )
