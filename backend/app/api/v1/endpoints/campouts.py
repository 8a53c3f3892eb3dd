"""
Campout API Endpoints.

Roster, expenses and payments for a single campout. Settlement actions
live in settlement.py.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from backend.app.db.session import get_db
from backend.app.core.guards import Principal, get_principal
from backend.app.models.campout_enums import CampoutAdultRole, ParticipantKind
from backend.app.schemas.campout import (
    CampoutCreate,
    ParticipantRegister,
    AdultRoleSwitch,
    ExpenseCreate,
    AdultExpenseUpdate,
    IBAPayment,
    ManualPayment,
)
from backend.app.domain.results import run_action
from backend.app.domain.campouts.roster_service import RosterService
from backend.app.domain.campouts.payment_service import PaymentService
from backend.app.api.v1.responses import render

router = APIRouter(prefix="/campouts", tags=["Campouts"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_campout(
    data: CampoutCreate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """Create a campout in OPEN status (ADMIN, FINANCIER, LEADER)."""
    result = await run_action(db, "create_campout", lambda: RosterService.create_campout(
        db, principal,
        name=data.name,
        location=data.location,
        start_date=data.start_date,
        end_date=data.end_date,
        estimated_cost=data.estimated_cost,
    ))
    return render(result, success_status=status.HTTP_201_CREATED)


@router.get("/{campout_id}/summary")
async def get_campout_summary(
    campout_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """
    Cost split and payment status for every participant.
    
    Includes total cost, headcount, cost per person, each participant's
    amount paid / due, and pending reimbursements per organizer.
    """
    result = await run_action(db, "get_campout_summary",
                              lambda: PaymentService.get_campout_summary(db, principal, campout_id))
    return render(result)


@router.post("/{campout_id}/participants", status_code=status.HTTP_201_CREATED)
async def register_participant(
    campout_id: int,
    data: ParticipantRegister,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "register_participant", lambda: RosterService.register_participant(
        db, principal, campout_id, data.kind, data.participant_id, data.role
    ))
    return render(result, success_status=status.HTTP_201_CREATED)


@router.delete("/{campout_id}/participants/{kind}/{participant_id}")
async def remove_participant(
    campout_id: int,
    kind: ParticipantKind,
    participant_id: int,
    role: Optional[CampoutAdultRole] = Query(None, description="Adults only: drop just this role"),
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "remove_participant", lambda: RosterService.remove_participant(
        db, principal, campout_id, kind, participant_id, role
    ))
    return render(result)


@router.patch("/{campout_id}/adults/{adult_id}/role")
async def switch_adult_role(
    campout_id: int,
    adult_id: int,
    data: AdultRoleSwitch,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "switch_adult_role", lambda: RosterService.switch_adult_role(
        db, principal, campout_id, adult_id, data.from_role, data.to_role
    ))
    return render(result)


@router.post("/{campout_id}/expenses", status_code=status.HTTP_201_CREATED)
async def log_expense(
    campout_id: int,
    data: ExpenseCreate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """Log a troop-paid or adult-paid campout expense."""
    result = await run_action(db, "log_expense", lambda: PaymentService.log_expense(
        db, principal, campout_id, data.payer, data.amount, data.description, payer_id=data.payer_id
    ))
    return render(result, success_status=status.HTTP_201_CREATED)


@router.put("/expenses/{expense_id}")
async def update_adult_expense(
    expense_id: int,
    data: AdultExpenseUpdate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "update_adult_expense", lambda: PaymentService.update_adult_expense(
        db, principal, expense_id, data.amount, data.description
    ))
    return render(result)


@router.delete("/expenses/{expense_id}")
async def delete_adult_expense(
    expense_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "delete_adult_expense",
                              lambda: PaymentService.delete_adult_expense(db, principal, expense_id))
    return render(result)


@router.post("/expenses/{expense_id}/approve")
async def approve_reimbursement(
    expense_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """Reimburse one adult expense in full (ADMIN, FINANCIER)."""
    result = await run_action(db, "approve_reimbursement",
                              lambda: PaymentService.approve_reimbursement(db, principal, expense_id))
    return render(result)


@router.post("/{campout_id}/payments/iba", status_code=status.HTTP_201_CREATED)
async def pay_from_iba(
    campout_id: int,
    data: IBAPayment,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    """
    Pay from a scout's IBA.
    
    Allowed for LEADER and above, a parent linked to the scout, or the
    scout themselves.
    """
    result = await run_action(db, "pay_from_iba", lambda: PaymentService.pay_from_iba(
        db, principal, campout_id, data.scout_id, data.amount, data.beneficiary_adult_id
    ))
    return render(result, success_status=status.HTTP_201_CREATED)


@router.post("/{campout_id}/payments/manual", status_code=status.HTTP_201_CREATED)
async def record_manual_payment(
    campout_id: int,
    data: ManualPayment,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "record_manual_payment", lambda: PaymentService.record_manual_payment(
        db, principal, campout_id, data.amount,
        scout_id=data.scout_id, adult_id=data.adult_id, description=data.description,
    ))
    return render(result, success_status=status.HTTP_201_CREATED)
