"""
Campout payments and expenses.

Individual ledger mutations against one campout: IBA and manual
payments, troop and adult expenses, reimbursement approval, plus the
campout summary read model.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.adult_expense import AdultExpense
from backend.app.models.campout_scout import CampoutScout
from backend.app.models.campout_adult import CampoutAdult
from backend.app.models.scout import Scout
from backend.app.models.user import User
from backend.app.models.enums import UserRole
from backend.app.models.campout_enums import ExpensePayer
from backend.app.models.ledger_enums import TransactionType, AccountKind
from backend.app.core.money import to_money, ZERO
from backend.app.core.guards import AccessGuard, Action, Principal, Ownership, can_act
from backend.app.core.exceptions import (
    ValidationError,
    ResourceNotFoundError,
    InvalidStateError,
    UnauthorizedError,
)
from backend.app.db.session import unit_of_work
from backend.app.domain.ledger.balance import BalanceAccessor
from backend.app.domain.ledger.ledger_store import LedgerStore
from backend.app.domain.campouts.lifecycle import load_campout, ensure_not_closed, ensure_expenses_open
from backend.app.domain.campouts.cost_aggregator import CostAggregator
from backend.app.domain.campouts.payment_tracker import PaymentTracker, ParticipantPayment, scout_ref, adult_ref
from backend.app.domain.campouts.roster_service import ensure_organizer
from backend.app.domain.results import ActionResult
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.revalidation import campout_view, scout_view, FINANCE_VIEW

logger = logging.getLogger("troop_treasury.payments")


def _positive_amount(amount, field: str = "amount") -> Decimal:
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError.for_field(field, "Amount must be greater than zero")
    return amount


def _required_text(value: Optional[str], field: str) -> str:
    if not value or not value.strip():
        raise ValidationError.for_field(field, f"{field.capitalize()} is required")
    return value.strip()


async def _load_adult(db: AsyncSession, adult_id: int) -> User:
    adult = await db.get(User, adult_id)
    if not adult:
        raise ResourceNotFoundError("User", adult_id)
    if adult.role == UserRole.SCOUT:
        raise ValidationError.for_field("adult_id", "Scout accounts cannot be adult participants")
    return adult


async def _authorize_expense_edit(db: AsyncSession, principal: Principal, expense_id: int) -> None:
    """
    Owner or LEADER and above. Only the owner id is read before the
    decision, and a missing expense is reported as unauthorized to callers
    who could not have edited it anyway.
    """
    if can_act(principal, Action.EDIT_ADULT_EXPENSE):
        return
    owner_id = await db.scalar(select(AdultExpense.adult_id).where(AdultExpense.id == expense_id))
    if owner_id is None:
        raise UnauthorizedError()
    AccessGuard.enforce(principal, Action.EDIT_ADULT_EXPENSE, Ownership(subject_user_id=owner_id))


async def _lock_expense(db: AsyncSession, expense_id: int) -> AdultExpense:
    result = await db.execute(
        select(AdultExpense)
        .where(AdultExpense.id == expense_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    expense = result.scalar_one_or_none()
    if not expense:
        raise ResourceNotFoundError("Expense", expense_id)
    return expense


def _ensure_not_reimbursed(expense: AdultExpense, verb: str) -> None:
    if expense.is_reimbursed:
        raise InvalidStateError(
            f"Cannot {verb} an expense that has already been reimbursed.",
            details={"expense_id": expense.id},
        )


class PaymentService:
    
    @staticmethod
    async def pay_from_iba(
        db: AsyncSession,
        principal: Principal,
        campout_id: int,
        scout_id: int,
        amount: Decimal,
        beneficiary_adult_id: Optional[int] = None
    ) -> ActionResult:
        """
        Pay a campout share from a scout's IBA.
        
        Without a beneficiary the payment covers the scout. With one, the
        scout's IBA funds that adult's share and only the adult is
        credited.
        """
        await AccessGuard.authorize(db, principal, Action.PAY_FROM_IBA, scout_id=scout_id)
        amount = _positive_amount(amount)
        
        async with unit_of_work(db):
            campout = await load_campout(db, campout_id)
            ensure_not_closed(campout)
            
            if beneficiary_adult_id is not None:
                adult = await _load_adult(db, beneficiary_adult_id)
                beneficiary_kind = AccountKind.ADULT
                description = f"Payment for {adult.name} from IBA: {campout.name}"
            else:
                beneficiary_kind = AccountKind.SCOUT
                description = f"Payment from IBA: {campout.name}"
            
            scout = await BalanceAccessor.lock_scout(db, scout_id)
            tx = await LedgerStore.record(
                db,
                TransactionType.CAMP_TRANSFER,
                amount,
                description,
                actor=principal,
                scout=scout,
                campout_id=campout_id,
                user_id=beneficiary_adult_id,
                beneficiary_kind=beneficiary_kind,
            )
            await log_event(
                db, AuditAction.IBA_PAYMENT, actor=principal, campout_id=campout_id,
                metadata={
                    "transaction_id": tx.id,
                    "scout_id": scout_id,
                    "beneficiary_adult_id": beneficiary_adult_id,
                    "amount": str(amount),
                },
            )
        logger.info(
            "IBA payment %s on campout %s: scout %s paid %s (beneficiary %s %s)",
            tx.id, campout_id, scout_id, amount, beneficiary_kind.value, beneficiary_adult_id or scout_id,
        )
        
        return ActionResult.ok(
            "Transfer successful",
            data={"transaction_id": tx.id, "iba_balance": str(to_money(scout.iba_balance))},
            stale_views=[campout_view(campout_id), scout_view(scout_id)],
        )
    
    @staticmethod
    async def record_manual_payment(
        db: AsyncSession,
        principal: Principal,
        campout_id: int,
        amount: Decimal,
        scout_id: Optional[int] = None,
        adult_id: Optional[int] = None,
        description: Optional[str] = None
    ) -> ActionResult:
        """Cash or check payment toward exactly one participant's share."""
        await AccessGuard.authorize(db, principal, Action.RECORD_MANUAL_PAYMENT)
        amount = _positive_amount(amount)
        if (scout_id is None) == (adult_id is None):
            raise ValidationError(
                "Specify exactly one of scout or adult",
                issues={"scout_id": ["Specify exactly one of scout or adult"],
                        "adult_id": ["Specify exactly one of scout or adult"]},
            )
        
        async with unit_of_work(db):
            campout = await load_campout(db, campout_id)
            ensure_not_closed(campout)
            
            if scout_id is not None:
                scout = await db.get(Scout, scout_id)
                if not scout:
                    raise ResourceNotFoundError("Scout", scout_id)
                payer_name = scout.name
                beneficiary_kind = AccountKind.SCOUT
            else:
                scout = None
                payer_name = (await _load_adult(db, adult_id)).name
                beneficiary_kind = AccountKind.ADULT
            
            # EVENT_PAYMENT has no IBA effect; the scout is only the beneficiary
            tx = await LedgerStore.record(
                db,
                TransactionType.EVENT_PAYMENT,
                amount,
                (description or "").strip() or f"Campout payment for {payer_name}: {campout.name}",
                actor=principal,
                scout=scout,
                campout_id=campout_id,
                user_id=adult_id,
                beneficiary_kind=beneficiary_kind,
            )
            
            await log_event(
                db, AuditAction.MANUAL_PAYMENT_RECORDED, actor=principal, campout_id=campout_id,
                metadata={"transaction_id": tx.id, "scout_id": scout_id, "adult_id": adult_id, "amount": str(amount)},
            )
        logger.info(
            "Manual payment %s on campout %s: %s for scout %s / adult %s",
            tx.id, campout_id, amount, scout_id, adult_id,
        )
        
        return ActionResult.ok(
            "Payment recorded",
            data={"transaction_id": tx.id},
            stale_views=[campout_view(campout_id)],
        )
    
    @staticmethod
    async def log_expense(
        db: AsyncSession,
        principal: Principal,
        campout_id: int,
        payer_kind: ExpensePayer,
        amount: Decimal,
        description: str,
        payer_id: Optional[int] = None
    ) -> ActionResult:
        """
        TROOP: an approved EXPENSE transaction.
        ADULT: an out-of-pocket AdultExpense; the payer becomes an
        organizer of the campout if not one already.
        """
        if payer_kind == ExpensePayer.TROOP:
            await AccessGuard.authorize(db, principal, Action.LOG_TROOP_EXPENSE)
        else:
            payer_id = payer_id if payer_id is not None else principal.user_id
            await AccessGuard.authorize(db, principal, Action.LOG_ADULT_EXPENSE, subject_user_id=payer_id)
        
        amount = _positive_amount(amount)
        description = _required_text(description, "description")
        
        async with unit_of_work(db):
            campout = await load_campout(db, campout_id, for_update=True)
            ensure_expenses_open(campout)
            
            if payer_kind == ExpensePayer.TROOP:
                tx = await LedgerStore.record(
                    db,
                    TransactionType.EXPENSE,
                    amount,
                    description,
                    actor=principal,
                    campout_id=campout_id,
                )
                data = {"transaction_id": tx.id}
            else:
                await _load_adult(db, payer_id)
                expense = AdultExpense(
                    campout_id=campout_id,
                    adult_id=payer_id,
                    amount=amount,
                    description=description,
                    is_reimbursed=False,
                )
                db.add(expense)
                await ensure_organizer(db, campout_id, payer_id)
                data = {"expense_id": expense.id}
            
            await log_event(
                db, AuditAction.EXPENSE_LOGGED, actor=principal, campout_id=campout_id,
                metadata={"payer": payer_kind.value, "payer_id": payer_id, "amount": str(amount), **data},
            )
        logger.info("Logged %s expense of %s on campout %s: %s", payer_kind.value, amount, campout_id, data)
        
        return ActionResult.ok("Expense logged", data=data, stale_views=[campout_view(campout_id)])
    
    @staticmethod
    async def update_adult_expense(
        db: AsyncSession,
        principal: Principal,
        expense_id: int,
        amount: Decimal,
        description: str
    ) -> ActionResult:
        await _authorize_expense_edit(db, principal, expense_id)
        amount = _positive_amount(amount)
        description = _required_text(description, "description")
        
        async with unit_of_work(db):
            expense = await _lock_expense(db, expense_id)
            _ensure_not_reimbursed(expense, "edit")
            campout = await load_campout(db, expense.campout_id)
            ensure_expenses_open(campout)
            
            previous = {"amount": str(to_money(expense.amount)), "description": expense.description}
            expense.amount = amount
            expense.description = description
            await db.flush()
            await log_event(
                db, AuditAction.ADULT_EXPENSE_UPDATED, actor=principal, campout_id=expense.campout_id,
                metadata={"expense_id": expense_id, "previous": previous, "amount": str(amount)},
            )
        logger.info("Updated adult expense %s on campout %s to %s", expense_id, expense.campout_id, amount)
        
        return ActionResult.ok(
            "Expense updated",
            data={"expense_id": expense_id},
            stale_views=[campout_view(expense.campout_id)],
        )
    
    @staticmethod
    async def delete_adult_expense(db: AsyncSession, principal: Principal, expense_id: int) -> ActionResult:
        await _authorize_expense_edit(db, principal, expense_id)
        
        async with unit_of_work(db):
            expense = await _lock_expense(db, expense_id)
            _ensure_not_reimbursed(expense, "delete")
            campout = await load_campout(db, expense.campout_id)
            ensure_expenses_open(campout)
            
            campout_id = expense.campout_id
            await log_event(
                db, AuditAction.ADULT_EXPENSE_DELETED, actor=principal, campout_id=campout_id,
                metadata={"expense_id": expense_id, "amount": str(to_money(expense.amount))},
            )
            await db.delete(expense)
            await db.flush()
        logger.info("Deleted adult expense %s on campout %s", expense_id, campout_id)
        
        return ActionResult.ok("Expense deleted", stale_views=[campout_view(campout_id)])
    
    @staticmethod
    async def approve_reimbursement(db: AsyncSession, principal: Principal, expense_id: int) -> ActionResult:
        """Pay back one adult expense in full and mark it reimbursed."""
        await AccessGuard.authorize(db, principal, Action.APPROVE_REIMBURSEMENT)
        
        async with unit_of_work(db):
            expense = await _lock_expense(db, expense_id)
            _ensure_not_reimbursed(expense, "reimburse")
            campout = await load_campout(db, expense.campout_id)
            ensure_not_closed(campout)
            
            tx = await LedgerStore.record(
                db,
                TransactionType.REIMBURSEMENT,
                expense.amount,
                f"Reimbursement: {expense.description}",
                actor=principal,
                campout_id=expense.campout_id,
                user_id=expense.adult_id,
                beneficiary_kind=AccountKind.ADULT,
            )
            expense.is_reimbursed = True
            expense.reimbursed_at = datetime.now(timezone.utc)
            await db.flush()
            await log_event(
                db, AuditAction.REIMBURSEMENT_APPROVED, actor=principal, campout_id=expense.campout_id,
                metadata={"expense_id": expense_id, "transaction_id": tx.id, "amount": str(to_money(expense.amount))},
            )
        logger.info(
            "Reimbursed adult %s %s for expense %s on campout %s",
            expense.adult_id, to_money(expense.amount), expense_id, expense.campout_id,
        )
        
        return ActionResult.ok(
            "Reimbursement approved",
            data={"expense_id": expense_id, "transaction_id": tx.id},
            stale_views=[campout_view(expense.campout_id), FINANCE_VIEW],
        )
    
    @staticmethod
    async def get_campout_summary(db: AsyncSession, principal: Principal, campout_id: int) -> ActionResult:
        """Cost split, per-participant payment status and pending reimbursements."""
        await AccessGuard.authorize(db, principal, Action.VIEW_CAMPOUT)
        
        campout = await load_campout(db, campout_id)
        summary = await CostAggregator.summarize(db, campout_id)
        paid = await PaymentTracker.paid_totals(db, campout_id)
        cpp = summary.cost_per_person
        
        scout_rows = await db.execute(
            select(Scout.id, Scout.name, Scout.iba_balance)
            .join(CampoutScout, CampoutScout.scout_id == Scout.id)
            .where(CampoutScout.campout_id == campout_id)
            .order_by(Scout.id)
        )
        scouts = []
        for row in scout_rows.all():
            payment = ParticipantPayment(scout_ref(row.id), paid.get(scout_ref(row.id), ZERO), cpp)
            scouts.append({"scout_id": row.id, "name": row.name,
                           "iba_balance": str(to_money(row.iba_balance)), **payment.to_dict()})
        
        adult_rows = await db.execute(
            select(CampoutAdult, User.name)
            .join(User, User.id == CampoutAdult.adult_id)
            .where(CampoutAdult.campout_id == campout_id)
            .order_by(CampoutAdult.adult_id)
        )
        adults = []
        for assignment, name in adult_rows.all():
            entry = {"adult_id": assignment.adult_id, "name": name,
                     "roles": sorted(r.value for r in assignment.roles)}
            if assignment.is_attendee:
                ref = adult_ref(assignment.adult_id)
                entry.update(ParticipantPayment(ref, paid.get(ref, ZERO), cpp).to_dict())
            adults.append(entry)
        
        expense_rows = await db.execute(
            select(AdultExpense, User.name)
            .join(User, User.id == AdultExpense.adult_id)
            .where(AdultExpense.campout_id == campout_id, AdultExpense.is_reimbursed.is_(False))
            .order_by(AdultExpense.adult_id, AdultExpense.id)
        )
        pending = {}
        for expense, name in expense_rows.all():
            entry = pending.setdefault(expense.adult_id, {
                "adult_id": expense.adult_id, "name": name, "amount": ZERO, "expenses": [],
            })
            entry["amount"] += to_money(expense.amount)
            entry["expenses"].append({
                "expense_id": expense.id,
                "amount": str(to_money(expense.amount)),
                "description": expense.description,
            })
        for entry in pending.values():
            entry["amount"] = str(entry["amount"])
        
        return ActionResult.ok(
            "Campout summary",
            data={
                "campout": {
                    "id": campout.id,
                    "name": campout.name,
                    "location": campout.location,
                    "start_date": campout.start_date.isoformat(),
                    "end_date": campout.end_date.isoformat(),
                    "estimated_cost": str(to_money(campout.estimated_cost)),
                    "status": campout.status.value,
                },
                "cost": summary.to_dict(),
                "scouts": scouts,
                "adults": adults,
                "pending_reimbursements": list(pending.values()),
            },
        )
