"""Waitlist API Router - aggregates all API routes."""

from fastapi import APIRouter

from waitlist.api import admin, unsubscribe, waitlist

# Main API router - all routes will be prefixed with /api
api_router = APIRouter(prefix="/api")

# Include routers
api_router.include_router(waitlist.router)
api_router.include_router(admin.router)
api_router.include_router(unsubscribe.router)
