"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from fleet_backend.app.api.v1.endpoints import (
    location, fleet_owner, trip_execution, realtime
)

router = APIRouter()

# Position ingest (REST fallback) and read models
router.include_router(location.router)

# Fleet Owner dashboard
router.include_router(fleet_owner.router)

# Driver trip lifecycle (opens/closes trip history scopes)
router.include_router(trip_execution.router)

# WebSocket channel
router.include_router(realtime.router)
