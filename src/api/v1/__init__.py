# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API v1 routes package.

Modules:
    analytics: Madrassah analytics endpoints (metrics, alerts, cache).
"""

from fastapi import APIRouter

from src.api.v1 import analytics

# Create the main v1 router
router = APIRouter(prefix="/api/v1")

router.include_router(analytics.router, prefix="/analytics", tags=["Analytics"])

__all__ = ["router"]
