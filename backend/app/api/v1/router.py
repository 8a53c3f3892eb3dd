"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import campouts, settlement, finance, parent_links

router = APIRouter()

# Campout roster, expenses and payments
router.include_router(campouts.router)

# Campout settlement lifecycle
router.include_router(settlement.router)

# Troop ledger, IBA movements and fundraising
router.include_router(finance.router)

# Admin: parent-scout links
router.include_router(parent_links.router)
