"""
Troop ledger operations.

General transaction entry and review, IBA deposits and reclaims, and
reconciliation. Balance-moving types can only be created through their
dedicated operations here and in the campout and fundraising services.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.transaction import Transaction
from backend.app.models.scout import Scout
from backend.app.models.budget_category import BudgetCategory
from backend.app.models.fundraising_campaign import FundraisingCampaign
from backend.app.models.fundraising_enums import FundraisingStatus
from backend.app.models.ledger_enums import (
    TransactionType,
    TransactionStatus,
    AccountKind,
    BALANCE_MOVING_TYPES,
    CAMPOUT_PAYMENT_TYPES,
)
from backend.app.core.money import to_money, ZERO
from backend.app.core.guards import AccessGuard, Action, Principal, can_act
from backend.app.core.exceptions import ValidationError, ResourceNotFoundError, InvalidStateError
from backend.app.db.session import unit_of_work
from backend.app.domain.ledger.balance import BalanceAccessor
from backend.app.domain.ledger.ledger_store import LedgerStore
from backend.app.domain.campouts.lifecycle import load_campout, ensure_not_closed, ensure_expenses_open
from backend.app.domain.fundraising.distribution_service import apply_income_split, load_campaign
from backend.app.domain.results import ActionResult
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.revalidation import campout_view, scout_view, FINANCE_VIEW, DASHBOARD_VIEW

logger = logging.getLogger("troop_treasury.ledger")


async def _lock_transaction(db: AsyncSession, transaction_id: int) -> Transaction:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    tx = result.scalar_one_or_none()
    if not tx:
        raise ResourceNotFoundError("Transaction", transaction_id)
    return tx


def _stale_views_for(tx: Transaction) -> list:
    views = [FINANCE_VIEW, DASHBOARD_VIEW]
    if tx.campout_id is not None:
        views.append(campout_view(tx.campout_id))
    if tx.scout_id is not None:
        views.append(scout_view(tx.scout_id))
    return views


async def _ensure_campout_accepts(db: AsyncSession, tx_type: TransactionType, campout_id: Optional[int]) -> None:
    """Closed campouts take no entries; finalized ones take no cost changes."""
    if campout_id is None:
        return
    campout = await load_campout(db, campout_id)
    if tx_type == TransactionType.EXPENSE:
        ensure_expenses_open(campout)
    else:
        ensure_not_closed(campout)


async def _split_if_fundraising(db: AsyncSession, principal: Principal, tx: Transaction) -> Optional[Transaction]:
    if tx.type != TransactionType.FUNDRAISING_INCOME or tx.fundraising_campaign_id is None:
        return None
    campaign = await load_campaign(db, tx.fundraising_campaign_id)
    return await apply_income_split(db, principal, tx, campaign)


class TransactionService:
    
    @staticmethod
    async def record_transaction(
        db: AsyncSession,
        principal: Principal,
        tx_type: TransactionType,
        amount: Decimal,
        description: str,
        transaction_date: Optional[date] = None,
        scout_id: Optional[int] = None,
        campout_id: Optional[int] = None,
        budget_category_id: Optional[int] = None,
        fundraising_campaign_id: Optional[int] = None
    ) -> ActionResult:
        """
        Enter a troop transaction.
        
        Reviewers (ADMIN, FINANCIER) are auto-approved; everyone else
        creates a PENDING entry. An approved scout-linked fundraising
        income is split into the scout's IBA immediately.
        """
        await AccessGuard.authorize(db, principal, Action.RECORD_TRANSACTION, scout_id=scout_id)
        
        if tx_type in BALANCE_MOVING_TYPES:
            raise ValidationError.for_field(
                "type", f"{tx_type.value} transactions are created by the dedicated IBA operations"
            )
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError.for_field("amount", "Amount must be greater than zero")
        if not description or not description.strip():
            raise ValidationError.for_field("description", "Description is required")
        
        status = (
            TransactionStatus.APPROVED if can_act(principal, Action.REVIEW_TRANSACTION)
            else TransactionStatus.PENDING
        )
        
        async with unit_of_work(db):
            scout = None
            if scout_id is not None:
                scout = await db.get(Scout, scout_id)
                if not scout:
                    raise ResourceNotFoundError("Scout", scout_id)
            await _ensure_campout_accepts(db, tx_type, campout_id)
            if budget_category_id is not None and not await db.get(BudgetCategory, budget_category_id):
                raise ResourceNotFoundError("Budget category", budget_category_id)
            if fundraising_campaign_id is not None:
                campaign = await load_campaign(db, fundraising_campaign_id)
                if campaign.status == FundraisingStatus.CLOSED:
                    raise InvalidStateError("Fundraising campaign is closed.")
            
            beneficiary_kind = None
            if tx_type in CAMPOUT_PAYMENT_TYPES and campout_id is not None and scout_id is not None:
                beneficiary_kind = AccountKind.SCOUT
            
            tx = await LedgerStore.record(
                db,
                tx_type,
                amount,
                description.strip(),
                actor=principal,
                status=status,
                scout=scout,
                campout_id=campout_id,
                beneficiary_kind=beneficiary_kind,
                budget_category_id=budget_category_id,
                fundraising_campaign_id=fundraising_campaign_id,
                transaction_date=transaction_date,
            )
            
            credit = None
            if status == TransactionStatus.APPROVED:
                credit = await _split_if_fundraising(db, principal, tx)
            
            await log_event(
                db, AuditAction.TRANSACTION_RECORDED, actor=principal, campout_id=campout_id,
                metadata={
                    "transaction_id": tx.id,
                    "type": tx_type.value,
                    "amount": str(amount),
                    "status": status.value,
                    "iba_credit_id": credit.id if credit else None,
                },
            )
        logger.info(
            "Recorded %s transaction %s for %s (status %s, campout %s, scout %s)",
            tx_type.value, tx.id, amount, status.value, campout_id, scout_id,
        )
        
        message = "Transaction recorded" if status == TransactionStatus.APPROVED else "Transaction submitted for approval"
        return ActionResult.ok(
            message,
            data={
                "transaction_id": tx.id,
                "status": status.value,
                "iba_credit": str(credit.amount) if credit else None,
            },
            stale_views=_stale_views_for(tx),
        )
    
    @staticmethod
    async def approve_transaction(db: AsyncSession, principal: Principal, transaction_id: int) -> ActionResult:
        await AccessGuard.authorize(db, principal, Action.REVIEW_TRANSACTION)
        
        async with unit_of_work(db):
            tx = await _lock_transaction(db, transaction_id)
            await _ensure_campout_accepts(db, tx.type, tx.campout_id)
            await LedgerStore.approve(db, tx, principal)
            credit = await _split_if_fundraising(db, principal, tx)
            await log_event(
                db, AuditAction.TRANSACTION_APPROVED, actor=principal, campout_id=tx.campout_id,
                metadata={"transaction_id": tx.id, "iba_credit_id": credit.id if credit else None},
            )
        logger.info("Approved %s transaction %s for %s (campout %s)", tx.type.value, tx.id, tx.amount, tx.campout_id)
        
        return ActionResult.ok(
            "Transaction approved",
            data={"transaction_id": tx.id, "iba_credit": str(credit.amount) if credit else None},
            stale_views=_stale_views_for(tx),
        )
    
    @staticmethod
    async def update_transaction(
        db: AsyncSession,
        principal: Principal,
        transaction_id: int,
        amount: Decimal,
        description: str
    ) -> ActionResult:
        """
        Correct the amount or description of an entry still awaiting review.
        
        Approved and rejected entries are part of the ledger and cannot be
        edited.
        """
        await AccessGuard.authorize(db, principal, Action.UPDATE_TRANSACTION)
        
        amount = to_money(amount)
        issues = {}
        if amount <= ZERO:
            issues["amount"] = ["Amount must be greater than zero"]
        if not description or not description.strip():
            issues["description"] = ["Description is required"]
        if issues:
            raise ValidationError("Invalid transaction", issues=issues)
        
        async with unit_of_work(db):
            tx = await _lock_transaction(db, transaction_id)
            if tx.status != TransactionStatus.PENDING:
                raise InvalidStateError(
                    f"Only pending transactions can be edited (currently {tx.status.value})"
                )
            await _ensure_campout_accepts(db, tx.type, tx.campout_id)
            
            previous = to_money(tx.amount)
            tx.amount = amount
            tx.description = description.strip()
            await db.flush()
            await log_event(
                db, AuditAction.TRANSACTION_UPDATED, actor=principal, campout_id=tx.campout_id,
                metadata={"transaction_id": tx.id, "previous_amount": str(previous), "amount": str(amount)},
            )
        
        logger.info("Updated pending transaction %s: %s -> %s", tx.id, previous, amount)
        return ActionResult.ok(
            "Transaction updated",
            data={"transaction_id": tx.id, "amount": str(amount), "description": tx.description},
            stale_views=_stale_views_for(tx),
        )
    
    @staticmethod
    async def reject_transaction(db: AsyncSession, principal: Principal, transaction_id: int) -> ActionResult:
        await AccessGuard.authorize(db, principal, Action.REVIEW_TRANSACTION)
        
        async with unit_of_work(db):
            tx = await _lock_transaction(db, transaction_id)
            await LedgerStore.reject(db, tx, principal)
            await log_event(
                db, AuditAction.TRANSACTION_REJECTED, actor=principal, campout_id=tx.campout_id,
                metadata={"transaction_id": tx.id},
            )
        logger.info("Rejected transaction %s", tx.id)
        
        return ActionResult.ok("Transaction rejected", data={"transaction_id": tx.id}, stale_views=[FINANCE_VIEW])
    
    @staticmethod
    async def delete_transaction(db: AsyncSession, principal: Principal, transaction_id: int) -> ActionResult:
        """
        Delete a ledger entry. IBA movements, entries of closed campouts,
        expenses of finalized campouts and entries of a fundraising split
        cannot be deleted.
        """
        await AccessGuard.authorize(db, principal, Action.DELETE_TRANSACTION)
        
        async with unit_of_work(db):
            tx = await _lock_transaction(db, transaction_id)
            if tx.type in BALANCE_MOVING_TYPES:
                raise InvalidStateError(
                    f"{tx.type.value} transactions move an IBA balance and cannot be deleted."
                )
            if tx.iba_credit_id is not None:
                raise InvalidStateError(
                    "This transaction is part of a fundraising IBA split and cannot be deleted."
                )
            await _ensure_campout_accepts(db, tx.type, tx.campout_id)
            
            views = _stale_views_for(tx)
            campout_id = tx.campout_id
            await log_event(
                db, AuditAction.TRANSACTION_DELETED, actor=principal, campout_id=tx.campout_id,
                metadata={"transaction_id": tx.id, "type": tx.type.value, "amount": str(to_money(tx.amount))},
            )
            await db.delete(tx)
            await db.flush()
        
        logger.info("Deleted transaction %s (campout %s)", transaction_id, campout_id)
        return ActionResult.ok("Transaction deleted", data={"transaction_id": transaction_id}, stale_views=views)
    
    @staticmethod
    async def bulk_record_iba_deposits(
        db: AsyncSession,
        principal: Principal,
        deposits: List[Tuple[int, Decimal]],
        description: str,
        transaction_date: Optional[date] = None
    ) -> ActionResult:
        """One IBA_DEPOSIT plus balance increment per entry, all or none."""
        await AccessGuard.authorize(db, principal, Action.RECORD_IBA_DEPOSIT)
        
        issues = {}
        if not deposits:
            issues["deposits"] = ["At least one deposit is required"]
        if not description or not description.strip():
            issues["description"] = ["Description is required"]
        cleaned = []
        for index, (scout_id, amount) in enumerate(deposits):
            amount = to_money(amount)
            if amount <= ZERO:
                issues[f"deposits.{index}.amount"] = ["Amount must be greater than zero"]
            cleaned.append((scout_id, amount))
        if issues:
            raise ValidationError("Invalid deposits", issues=issues)
        
        async with unit_of_work(db):
            scouts = await BalanceAccessor.lock_scouts(db, [scout_id for scout_id, _ in cleaned])
            for scout_id, amount in cleaned:
                await LedgerStore.record(
                    db,
                    TransactionType.IBA_DEPOSIT,
                    amount,
                    description.strip(),
                    actor=principal,
                    scout=scouts[scout_id],
                    beneficiary_kind=AccountKind.SCOUT,
                    transaction_date=transaction_date,
                )
            total = sum((amount for _, amount in cleaned), ZERO)
            await log_event(
                db, AuditAction.IBA_DEPOSITS_RECORDED, actor=principal,
                metadata={"count": len(cleaned), "total": str(total)},
            )
        logger.info("Recorded %s IBA deposit(s) totaling %s", len(cleaned), total)
        
        return ActionResult.ok(
            f"Recorded {len(cleaned)} IBA deposit(s) totaling ${total}",
            data={"count": len(cleaned), "total": str(total)},
            stale_views=[FINANCE_VIEW] + sorted({scout_view(scout_id) for scout_id, _ in cleaned}),
        )
    
    @staticmethod
    async def reclaim_iba(
        db: AsyncSession,
        principal: Principal,
        scout_id: int,
        amount: Decimal,
        description: str
    ) -> ActionResult:
        """Move money from a scout's IBA back into the troop fund."""
        await AccessGuard.authorize(db, principal, Action.RECLAIM_IBA)
        
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError.for_field("amount", "Amount must be greater than zero")
        if not description or not description.strip():
            raise ValidationError.for_field("description", "Description is required")
        
        async with unit_of_work(db):
            scout = await BalanceAccessor.lock_scout(db, scout_id)
            tx = await LedgerStore.record(
                db,
                TransactionType.IBA_RECLAIM,
                amount,
                description.strip(),
                actor=principal,
                scout=scout,
            )
            await log_event(
                db, AuditAction.IBA_RECLAIMED, actor=principal,
                metadata={"transaction_id": tx.id, "scout_id": scout_id, "amount": str(amount)},
            )
        logger.info("Reclaimed %s from scout %s IBA (transaction %s)", amount, scout_id, tx.id)
        
        return ActionResult.ok(
            "IBA funds reclaimed",
            data={"transaction_id": tx.id, "iba_balance": str(to_money(scout.iba_balance))},
            stale_views=[FINANCE_VIEW, scout_view(scout_id)],
        )
    
    @staticmethod
    async def reconcile_ledger(db: AsyncSession, principal: Principal) -> ActionResult:
        await AccessGuard.authorize(db, principal, Action.VIEW_LEDGER)
        report = await LedgerStore.reconcile(db)
        message = "Ledger is balanced" if report.balanced else "Ledger has mismatched balances"
        return ActionResult.ok(message, data=report.to_dict())
