"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from crowdroute.app.api.v1.endpoints import locations, routes, reports, suggestions, contributors

router = APIRouter()

router.include_router(locations.router)
router.include_router(routes.router)
router.include_router(reports.router)
router.include_router(suggestions.router)
router.include_router(contributors.router)
