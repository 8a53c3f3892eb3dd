"""
Fundraising Distribution (Domain Logic).

Scout shares of fundraising proceeds are credited to IBAs. Every credit
is paired with troop-side entries so the troop ledger and the sum of
scout balances stay reconcilable:

    income (troop +total) -> IBA_CREDIT (scout +share)
                          -> distribution EXPENSE (troop -sum of shares)
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.fundraising_campaign import FundraisingCampaign
from backend.app.models.fundraising_enums import FundraisingStatus, AllocationCategory
from backend.app.models.transaction import Transaction
from backend.app.models.ledger_enums import TransactionType, AccountKind
from backend.app.core.config import settings
from backend.app.core.money import to_money, percentage_of, ZERO
from backend.app.core.guards import AccessGuard, Action, Principal
from backend.app.core.exceptions import ValidationError, ResourceNotFoundError
from backend.app.db.session import unit_of_work
from backend.app.domain.ledger.balance import BalanceAccessor
from backend.app.domain.ledger.ledger_store import LedgerStore
from backend.app.domain.results import ActionResult
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.revalidation import scout_view, FINANCE_VIEW, FUNDRAISING_VIEW, DASHBOARD_VIEW

logger = logging.getLogger("troop_treasury.fundraising")


@dataclass(frozen=True)
class Allocation:
    category: AllocationCategory
    amount: Decimal
    scout_id: Optional[int] = None
    description: Optional[str] = None


async def load_campaign(db: AsyncSession, campaign_id: int) -> FundraisingCampaign:
    campaign = await db.get(FundraisingCampaign, campaign_id)
    if not campaign:
        raise ResourceNotFoundError("Fundraising campaign", campaign_id)
    return campaign


async def apply_income_split(
    db: AsyncSession,
    principal: Principal,
    income: Transaction,
    campaign: FundraisingCampaign
) -> Optional[Transaction]:
    """
    Credit the campaign's IBA percentage of an approved, scout-linked
    fundraising income to that scout. Runs inside the caller's unit of work.
    
    Returns:
        The IBA_CREDIT transaction, or None when nothing is credited
    """
    if income.scout_id is None or not campaign.iba_percentage:
        return None
    
    credit = percentage_of(income.amount, campaign.iba_percentage)
    if credit <= ZERO:
        return None
    
    scout = await BalanceAccessor.lock_scout(db, income.scout_id)
    credit_tx = await LedgerStore.record(
        db,
        TransactionType.IBA_CREDIT,
        credit,
        f"Fundraising share ({campaign.iba_percentage}%): {campaign.name}",
        actor=principal,
        scout=scout,
        beneficiary_kind=AccountKind.SCOUT,
        fundraising_campaign_id=campaign.id,
        transaction_date=income.transaction_date,
    )
    distribution = await LedgerStore.record(
        db,
        TransactionType.EXPENSE,
        credit,
        f"IBA distribution: {campaign.name}",
        actor=principal,
        fundraising_campaign_id=campaign.id,
        transaction_date=income.transaction_date,
    )
    
    income.iba_credit_id = credit_tx.id
    distribution.iba_credit_id = credit_tx.id
    await db.flush()
    
    logger.info("Credited %s to scout %s from campaign %s", credit, scout.id, campaign.id)
    return credit_tx


class FundraisingService:
    
    @staticmethod
    async def create_campaign(
        db: AsyncSession,
        principal: Principal,
        name: str,
        start_date: date,
        iba_percentage: int = 0,
        goal: Decimal = ZERO,
        end_date: Optional[date] = None
    ) -> ActionResult:
        await AccessGuard.authorize(db, principal, Action.MANAGE_FUNDRAISING)
        
        issues = {}
        if not name or not name.strip():
            issues["name"] = ["Name is required"]
        if iba_percentage < 0 or iba_percentage > 100:
            issues["iba_percentage"] = ["IBA percentage must be between 0 and 100"]
        goal = to_money(goal)
        if goal < ZERO:
            issues["goal"] = ["Goal cannot be negative"]
        if end_date is not None and end_date < start_date:
            issues["end_date"] = ["End date must be on or after the start date"]
        if issues:
            raise ValidationError("Invalid fields", issues=issues)
        
        warnings = []
        if iba_percentage > settings.high_iba_percentage_warning:
            warnings.append(
                f"IBA percentage of {iba_percentage}% is above the usual "
                f"{settings.high_iba_percentage_warning}% limit for scout fundraising credit."
            )
            logger.warning("Campaign %r created with IBA percentage %s%%", name, iba_percentage)
        
        async with unit_of_work(db):
            campaign = FundraisingCampaign(
                name=name.strip(),
                start_date=start_date,
                end_date=end_date,
                goal=goal,
                iba_percentage=iba_percentage,
                status=FundraisingStatus.ACTIVE,
            )
            db.add(campaign)
            await db.flush()
            await log_event(
                db, AuditAction.FUNDRAISER_CREATED, actor=principal,
                metadata={"campaign_id": campaign.id, "iba_percentage": iba_percentage},
            )
        
        return ActionResult.ok(
            "Fundraising campaign created",
            data={"campaign_id": campaign.id, "warnings": warnings},
            stale_views=[FUNDRAISING_VIEW],
        )
    
    @staticmethod
    async def toggle_status(db: AsyncSession, principal: Principal, campaign_id: int) -> ActionResult:
        """ACTIVE <-> CLOSED."""
        await AccessGuard.authorize(db, principal, Action.MANAGE_FUNDRAISING)
        
        async with unit_of_work(db):
            campaign = await load_campaign(db, campaign_id)
            campaign.status = (
                FundraisingStatus.CLOSED if campaign.status == FundraisingStatus.ACTIVE
                else FundraisingStatus.ACTIVE
            )
            await db.flush()
            await log_event(
                db, AuditAction.FUNDRAISER_STATUS_CHANGED, actor=principal,
                metadata={"campaign_id": campaign_id, "status": campaign.status.value},
            )
        
        return ActionResult.ok(
            f"Campaign is now {campaign.status.value}",
            data={"campaign_id": campaign_id, "status": campaign.status.value},
            stale_views=[FUNDRAISING_VIEW],
        )
    
    @staticmethod
    async def distribute(
        db: AsyncSession,
        principal: Principal,
        campaign_id: int,
        total_raised: Decimal,
        allocations: List[Allocation],
        transaction_date: Optional[date] = None
    ) -> ActionResult:
        """
        Record a campaign's proceeds and split them.
        
        SCOUT allocations are credited to IBAs, EXTERNAL ones are paid out
        as expenses, TROOP ones stay in the fund. One distribution EXPENSE
        equal to the sum of scout credits balances the troop side.
        """
        await AccessGuard.authorize(db, principal, Action.DISTRIBUTE_FUNDRAISING)
        
        total_raised = to_money(total_raised)
        issues = {}
        if total_raised <= ZERO:
            issues["total_raised"] = ["Total raised must be greater than zero"]
        allocated = ZERO
        for index, allocation in enumerate(allocations):
            amount = to_money(allocation.amount)
            if amount <= ZERO:
                issues.setdefault(f"allocations.{index}.amount", []).append("Amount must be greater than zero")
            if allocation.category == AllocationCategory.SCOUT and allocation.scout_id is None:
                issues.setdefault(f"allocations.{index}.scout_id", []).append("Scout allocations need a scout")
            allocated += amount
        if not issues and allocated > total_raised:
            issues["allocations"] = [f"Allocations (${allocated}) exceed the total raised (${total_raised})"]
        if issues:
            raise ValidationError("Invalid distribution", issues=issues)
        
        async with unit_of_work(db):
            campaign = await load_campaign(db, campaign_id)
            
            income = await LedgerStore.record(
                db,
                TransactionType.FUNDRAISING_INCOME,
                total_raised,
                f"Fundraising proceeds: {campaign.name}",
                actor=principal,
                fundraising_campaign_id=campaign.id,
                transaction_date=transaction_date,
            )
            
            scouts = await BalanceAccessor.lock_scouts(
                db, [a.scout_id for a in allocations if a.category == AllocationCategory.SCOUT]
            )
            
            credits = []
            scout_total = ZERO
            for allocation in allocations:
                amount = to_money(allocation.amount)
                if allocation.category == AllocationCategory.SCOUT:
                    scout = scouts[allocation.scout_id]
                    credit_tx = await LedgerStore.record(
                        db,
                        TransactionType.IBA_CREDIT,
                        amount,
                        allocation.description or f"Fundraising share: {campaign.name}",
                        actor=principal,
                        scout=scout,
                        beneficiary_kind=AccountKind.SCOUT,
                        fundraising_campaign_id=campaign.id,
                        transaction_date=transaction_date,
                    )
                    credits.append(credit_tx)
                    scout_total += amount
                elif allocation.category == AllocationCategory.EXTERNAL:
                    await LedgerStore.record(
                        db,
                        TransactionType.EXPENSE,
                        amount,
                        allocation.description or f"Fundraising payout: {campaign.name}",
                        actor=principal,
                        fundraising_campaign_id=campaign.id,
                        transaction_date=transaction_date,
                    )
            
            if credits:
                distribution = await LedgerStore.record(
                    db,
                    TransactionType.EXPENSE,
                    scout_total,
                    f"IBA distribution: {campaign.name}",
                    actor=principal,
                    fundraising_campaign_id=campaign.id,
                    transaction_date=transaction_date,
                )
                # The chain is anchored on the first credit
                income.iba_credit_id = credits[0].id
                distribution.iba_credit_id = credits[0].id
                await db.flush()
            
            await log_event(
                db, AuditAction.FUNDRAISING_DISTRIBUTED, actor=principal,
                metadata={
                    "campaign_id": campaign_id,
                    "total_raised": str(total_raised),
                    "scout_total": str(scout_total),
                    "allocated": str(allocated),
                },
            )
        
        return ActionResult.ok(
            "Fundraising distributed successfully",
            data={
                "income_transaction_id": income.id,
                "scout_credit_total": str(scout_total),
                "retained": str(total_raised - allocated),
            },
            stale_views=[DASHBOARD_VIEW, FINANCE_VIEW, FUNDRAISING_VIEW]
            + sorted({scout_view(tx.scout_id) for tx in credits}),
        )
