"""
Settlement API Endpoints.

finalize -> collect -> payout -> close for a campout.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from backend.app.db.session import get_db
from backend.app.core.guards import Principal, get_principal
from backend.app.schemas.campout import BatchCollectRequest, PayoutRequest
from backend.app.domain.results import run_action
from backend.app.domain.campouts.settlement_service import SettlementService
from backend.app.api.v1.responses import render

router = APIRouter(prefix="/campouts", tags=["Settlement"])


@router.post("/{campout_id}/finalize")
async def finalize_campout(
    campout_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """OPEN -> READY_FOR_PAYMENT (ADMIN, FINANCIER, LEADER)."""
    result = await run_action(db, "finalize", lambda: SettlementService.finalize(db, principal, campout_id))
    return render(result)


@router.post("/{campout_id}/collect-iba")
async def batch_collect_iba(
    campout_id: int,
    data: Optional[BatchCollectRequest] = None,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """
    Collect every outstanding share from scout IBAs (ADMIN, FINANCIER).
    
    Fails naming the first participant that cannot be covered. Whether
    earlier participants stay collected depends on the collection mode.
    """
    mode = data.mode if data else None
    result = await run_action(db, "batch_collect_iba",
                              lambda: SettlementService.batch_collect_iba(db, principal, campout_id, mode=mode))
    return render(result)


@router.post("/{campout_id}/payouts")
async def payout_organizers(
    campout_id: int,
    data: PayoutRequest,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """Reimburse organizers; each payout clears that adult's pending expenses."""
    result = await run_action(db, "payout_organizers",
                              lambda: SettlementService.payout_organizers(db, principal, campout_id, data.payouts))
    return render(result)


@router.post("/{campout_id}/close")
async def close_campout(
    campout_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """READY_FOR_PAYMENT -> CLOSED (ADMIN, FINANCIER). Irreversible."""
    result = await run_action(db, "close_campout", lambda: SettlementService.close_campout(db, principal, campout_id))
    return render(result)
