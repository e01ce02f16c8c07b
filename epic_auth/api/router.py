"""
Main API router for the application

This module contains the main API router for the application. It includes the
authentication routes and the settings routes of the two verification-backed
features (two-factor authentication and email change).
"""
from fastapi import APIRouter

from epic_auth.api.routes import (
    auth,
    change_email,
    two_factor,
)


api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["Auth"])
api_router.include_router(two_factor.router, prefix="/settings/two-factor", tags=["Two-Factor"])
api_router.include_router(change_email.router, prefix="/settings/change-email", tags=["Email"])

tags_metadata = [
    {
        "name": "Auth",
        "description": "The **Authentication** logic (registration, login, verification codes) is implemented here.",
    }, {
        "name": "Two-Factor",
        "description": "The **Two-Factor Authentication** settings (enrollment, disable) are implemented here.",
    }, {
        "name": "Email",
        "description": "The **Email Change** of the current user is implemented here.",
    }
]
