"""Freepik catalog access for stockbot.

This package contains the remote side of the pipeline:
- freepik_api: authenticated client with retry, rate-limit and cache handling
- model: dataclasses for catalog resources and API responses
- scoring: hard filters and deterministic candidate scoring
- core: configuration, HTTP session, response cache and naming helpers
"""

__all__ = [
    "freepik_api",
    "model",
    "scoring",
    "core",
]
