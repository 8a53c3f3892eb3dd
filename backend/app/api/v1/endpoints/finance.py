"""
Finance API Endpoints.

Troop transactions, IBA deposits and reclaims, fundraising, and ledger
reconciliation.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from backend.app.db.session import get_db
from backend.app.core.guards import Principal, get_principal, AccessGuard, Action
from backend.app.schemas.finance import (
    TransactionCreate,
    TransactionUpdate,
    BulkIBADeposit,
    IBAReclaim,
    FundraisingCampaignCreate,
    FundraisingDistribution,
)
from backend.app.domain.results import run_action, ActionResult
from backend.app.domain.ledger.transaction_service import TransactionService
from backend.app.domain.fundraising.distribution_service import FundraisingService, Allocation
from backend.app.services.audit import get_audit_trail
from backend.app.api.v1.responses import render

router = APIRouter(prefix="/finance", tags=["Finance"])


@router.post("/transactions", status_code=status.HTTP_201_CREATED)
async def record_transaction(
    data: TransactionCreate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a troop transaction.
    
    ADMIN and FINANCIER entries are approved immediately; LEADER and
    PARENT entries wait for review.
    """
    result = await run_action(db, "record_transaction", lambda: TransactionService.record_transaction(
        db, principal,
        tx_type=data.type,
        amount=data.amount,
        description=data.description,
        transaction_date=data.transaction_date,
        scout_id=data.scout_id,
        campout_id=data.campout_id,
        budget_category_id=data.budget_category_id,
        fundraising_campaign_id=data.fundraising_campaign_id,
    ))
    return render(result, success_status=status.HTTP_201_CREATED)


@router.put("/transactions/{transaction_id}")
async def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """Edit amount and description of a PENDING transaction (ADMIN, FINANCIER, LEADER)."""
    result = await run_action(db, "update_transaction", lambda: TransactionService.update_transaction(
        db, principal, transaction_id, data.amount, data.description
    ))
    return render(result)


@router.post("/transactions/{transaction_id}/approve")
async def approve_transaction(
    transaction_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "approve_transaction",
                              lambda: TransactionService.approve_transaction(db, principal, transaction_id))
    return render(result)


@router.post("/transactions/{transaction_id}/reject")
async def reject_transaction(
    transaction_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "reject_transaction",
                              lambda: TransactionService.reject_transaction(db, principal, transaction_id))
    return render(result)


@router.delete("/transactions/{transaction_id}")
async def delete_transaction(
    transaction_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "delete_transaction",
                              lambda: TransactionService.delete_transaction(db, principal, transaction_id))
    return render(result)


@router.post("/iba/deposits", status_code=status.HTTP_201_CREATED)
async def bulk_record_iba_deposits(
    data: BulkIBADeposit,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """Record several IBA deposits at once; all succeed or none do."""
    result = await run_action(db, "bulk_record_iba_deposits", lambda: TransactionService.bulk_record_iba_deposits(
        db, principal,
        [(deposit.scout_id, deposit.amount) for deposit in data.deposits],
        data.description,
        transaction_date=data.transaction_date,
    ))
    return render(result, success_status=status.HTTP_201_CREATED)


@router.post("/iba/reclaim", status_code=status.HTTP_201_CREATED)
async def reclaim_iba(
    data: IBAReclaim,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "reclaim_iba", lambda: TransactionService.reclaim_iba(
        db, principal, data.scout_id, data.amount, data.description
    ))
    return render(result, success_status=status.HTTP_201_CREATED)


@router.post("/fundraising", status_code=status.HTTP_201_CREATED)
async def create_fundraising_campaign(
    data: FundraisingCampaignCreate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "create_fundraising_campaign", lambda: FundraisingService.create_campaign(
        db, principal,
        name=data.name,
        start_date=data.start_date,
        iba_percentage=data.iba_percentage,
        goal=data.goal,
        end_date=data.end_date,
    ))
    return render(result, success_status=status.HTTP_201_CREATED)


@router.post("/fundraising/{campaign_id}/toggle")
async def toggle_fundraising_status(
    campaign_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "toggle_fundraising_status",
                              lambda: FundraisingService.toggle_status(db, principal, campaign_id))
    return render(result)


@router.post("/fundraising/{campaign_id}/distribute", status_code=status.HTTP_201_CREATED)
async def distribute_fundraising(
    campaign_id: int,
    data: FundraisingDistribution,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """Record a campaign's proceeds and split them among scouts, payouts and the troop."""
    allocations = [
        Allocation(
            category=item.category,
            amount=item.amount,
            scout_id=item.scout_id,
            description=item.description,
        )
        for item in data.allocations
    ]
    result = await run_action(db, "distribute_fundraising", lambda: FundraisingService.distribute(
        db, principal, campaign_id, data.total_raised, allocations,
        transaction_date=data.transaction_date,
    ))
    return render(result, success_status=status.HTTP_201_CREATED)


@router.get("/reconciliation")
async def reconcile_ledger(
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """Troop balance, scout balance total and any scout whose stored IBA disagrees with the ledger."""
    result = await run_action(db, "reconcile_ledger", lambda: TransactionService.reconcile_ledger(db, principal))
    return render(result)


@router.get("/audit")
async def list_audit_trail(
    campout_id: Optional[int] = Query(None, description="Filter by campout"),
    action: Optional[str] = Query(None, description="Filter by audit action"),
    limit: int = Query(100, ge=1, le=500),
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """Most recent ledger and settlement audit events (ADMIN, FINANCIER)."""
    async def load_trail() -> ActionResult:
        await AccessGuard.authorize(db, principal, Action.VIEW_LEDGER)
        events = await get_audit_trail(db, campout_id=campout_id, action=action, limit=limit)
        return ActionResult.ok("Audit trail", data={"events": [
            {
                "id": event.id,
                "action": event.action,
                "actor_id": event.actor_id,
                "actor_username": event.actor_username,
                "campout_id": event.campout_id,
                "metadata": event.meta_data,
                "timestamp": event.timestamp.isoformat() if event.timestamp else None,
            }
            for event in events
        ]})
    
    result = await run_action(db, "list_audit_trail", load_trail)
    return render(result)
