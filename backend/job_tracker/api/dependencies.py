"""FastAPI dependency helpers.

Everything a route needs is built once in the lifespan and kept on
``app.state.services``.
"""

from __future__ import annotations

from fastapi import Request

from job_tracker.services import EngineServices


def get_services(request: Request) -> EngineServices:
    """Get the shared EngineServices container from app state."""
    return request.app.state.services
