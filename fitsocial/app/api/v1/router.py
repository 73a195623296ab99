"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from fitsocial.app.api.v1.endpoints import auth, notifications, posts, users

router = APIRouter()

router.include_router(auth.router)
router.include_router(notifications.router)
router.include_router(posts.router)
router.include_router(users.router)
