"""
Settlement Orchestrator (Domain Logic).

Drives a campout through finalize -> collect -> payout -> close.

Batch IBA collection supports two atomicity modes:

- ALL_OR_NOTHING: every due is checked against projected balances first;
  the first participant that cannot be covered fails the whole batch and
  nothing is written. Otherwise all transfers commit together.
- PER_PARTICIPANT: each participant commits on its own. A failure stops
  the batch, and participants collected before it stay collected.

Both modes are idempotent: dues are recomputed from what has already been
paid, so settled participants owe nothing on a second run.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.scout import Scout
from backend.app.models.user import User
from backend.app.models.campout_scout import CampoutScout
from backend.app.models.campout_adult import CampoutAdult
from backend.app.models.parent_scout import ParentScout
from backend.app.models.adult_expense import AdultExpense
from backend.app.models.transaction import AccountRef
from backend.app.models.campout_enums import CampoutStatus
from backend.app.models.ledger_enums import TransactionType, AccountKind
from backend.app.core.config import settings
from backend.app.core.money import to_money, ZERO
from backend.app.core.guards import AccessGuard, Action, Principal
from backend.app.core.exceptions import (
    InsufficientFundsError,
    InvalidStateError,
    ResourceNotFoundError,
    ValidationError,
)
from backend.app.db.session import unit_of_work
from backend.app.domain.ledger.balance import BalanceAccessor
from backend.app.domain.ledger.ledger_store import LedgerStore
from backend.app.domain.campouts.lifecycle import load_campout, ensure_not_closed, advance
from backend.app.domain.campouts.cost_aggregator import CostAggregator
from backend.app.domain.campouts.payment_tracker import PaymentTracker
from backend.app.domain.results import ActionResult
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.revalidation import campout_view, scout_view, CAMPOUTS_VIEW, FINANCE_VIEW

logger = logging.getLogger("troop_treasury.settlement")

ALL_OR_NOTHING = "ALL_OR_NOTHING"
PER_PARTICIPANT = "PER_PARTICIPANT"


@dataclass(frozen=True)
class Participant:
    ref: AccountRef
    name: str
    # Adults only: linked scouts in ascending id order
    linked_scout_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Collection:
    participant: Participant
    funding_scout_id: int
    amount: Decimal
    
    def to_dict(self) -> dict:
        return {
            "kind": self.participant.ref.kind.value,
            "id": self.participant.ref.id,
            "name": self.participant.name,
            "funding_scout_id": self.funding_scout_id,
            "amount": str(self.amount),
        }


def plan_collection(
    participants: Iterable[Participant],
    cost_per_person: Decimal,
    paid: Dict[AccountRef, Decimal],
    balances: Dict[int, Decimal]
) -> List[Collection]:
    """
    Work out who owes what and which scout IBA covers it.
    
    Balances are projected as the plan grows, so one scout funding
    several shares is checked cumulatively. Raises InsufficientFundsError
    for the first participant that cannot be covered.
    """
    projected = dict(balances)
    plan = []
    
    for participant in participants:
        due = cost_per_person - paid.get(participant.ref, ZERO)
        if due <= ZERO:
            continue
        
        if participant.ref.kind == AccountKind.SCOUT:
            if projected.get(participant.ref.id, ZERO) < due:
                raise InsufficientFundsError(
                    f"Scout {participant.name} has insufficient IBA funds.",
                    account=f"scout:{participant.ref.id}",
                )
            funding_scout_id = participant.ref.id
        else:
            funding_scout_id = next(
                (scout_id for scout_id in participant.linked_scout_ids if projected.get(scout_id, ZERO) >= due),
                None,
            )
            if funding_scout_id is None:
                raise InsufficientFundsError(
                    f"Adult {participant.name} has no linked scout with sufficient IBA funds.",
                    account=f"adult:{participant.ref.id}",
                )
        
        projected[funding_scout_id] -= due
        plan.append(Collection(participant, funding_scout_id, due))
    
    return plan


def _funding_candidates(participants: Iterable[Participant]) -> set:
    ids = set()
    for participant in participants:
        if participant.ref.kind == AccountKind.SCOUT:
            ids.add(participant.ref.id)
        else:
            ids.update(participant.linked_scout_ids)
    return ids


async def load_participants(db: AsyncSession, campout_id: int) -> List[Participant]:
    """Scouts first, then adult attendees, each in ascending id order."""
    scout_rows = await db.execute(
        select(Scout.id, Scout.name)
        .join(CampoutScout, CampoutScout.scout_id == Scout.id)
        .where(CampoutScout.campout_id == campout_id)
        .order_by(Scout.id)
    )
    adult_rows = (await db.execute(
        select(User.id, User.name)
        .join(CampoutAdult, CampoutAdult.adult_id == User.id)
        .where(CampoutAdult.campout_id == campout_id, CampoutAdult.is_attendee.is_(True))
        .order_by(User.id)
    )).all()
    
    links: Dict[int, List[int]] = {}
    if adult_rows:
        link_rows = await db.execute(
            select(ParentScout.parent_id, ParentScout.scout_id)
            .where(ParentScout.parent_id.in_([row.id for row in adult_rows]))
            .order_by(ParentScout.scout_id)
        )
        for parent_id, scout_id in link_rows.all():
            links.setdefault(parent_id, []).append(scout_id)
    
    participants = [
        Participant(AccountRef(AccountKind.SCOUT, row.id), row.name)
        for row in scout_rows.all()
    ]
    participants.extend(
        Participant(AccountRef(AccountKind.ADULT, row.id), row.name, tuple(links.get(row.id, ())))
        for row in adult_rows
    )
    return participants


class SettlementService:
    
    @staticmethod
    async def finalize(db: AsyncSession, principal: Principal, campout_id: int) -> ActionResult:
        """OPEN -> READY_FOR_PAYMENT. Locks costs for collection."""
        await AccessGuard.authorize(db, principal, Action.FINALIZE_CAMPOUT)
        
        async with unit_of_work(db):
            campout = await load_campout(db, campout_id, for_update=True)
            advance(campout, CampoutStatus.READY_FOR_PAYMENT)
            campout.finalized_at = datetime.now(timezone.utc)
            
            summary = await CostAggregator.summarize(db, campout_id)
            await log_event(
                db, AuditAction.CAMPOUT_FINALIZED, actor=principal, campout_id=campout_id,
                metadata={"total_cost": str(summary.total_cost), "cost_per_person": str(summary.cost_per_person)},
            )
        logger.info(
            "Finalized campout %s: total %s, %s participant(s), %s per person",
            campout_id, summary.total_cost, summary.headcount, summary.cost_per_person,
        )
        
        return ActionResult.ok(
            "Campout finalized. Ready for payments.",
            data=summary.to_dict(),
            stale_views=[campout_view(campout_id), CAMPOUTS_VIEW],
        )
    
    @staticmethod
    async def batch_collect_iba(
        db: AsyncSession,
        principal: Principal,
        campout_id: int,
        mode: Optional[str] = None
    ) -> ActionResult:
        """
        Collect every outstanding share from scout IBAs.
        
        Scouts pay from their own IBA. Adult attendees are covered by the
        first linked scout (ascending id) whose balance covers the share.
        """
        await AccessGuard.authorize(db, principal, Action.BATCH_COLLECT_IBA)
        
        mode = mode or settings.batch_collection_mode
        if mode not in (ALL_OR_NOTHING, PER_PARTICIPANT):
            raise ValidationError.for_field("mode", f"Unknown collection mode: {mode}")
        
        if mode == PER_PARTICIPANT:
            collected = await SettlementService._collect_per_participant(db, principal, campout_id)
        else:
            collected = await SettlementService._collect_all_or_nothing(db, principal, campout_id)
        
        for item in collected:
            logger.info(
                "Collected %s on campout %s for %s %s from scout %s IBA",
                item.amount, campout_id, item.participant.ref.kind.value, item.participant.ref.id,
                item.funding_scout_id,
            )
        total = sum((item.amount for item in collected), ZERO)
        stale = [campout_view(campout_id)] + sorted({scout_view(item.funding_scout_id) for item in collected})
        if not collected:
            return ActionResult.ok("No outstanding dues to collect.", data={"collected": [], "total": str(total), "mode": mode})
        
        return ActionResult.ok(
            f"Collected {len(collected)} payment(s) totaling ${total}.",
            data={"collected": [item.to_dict() for item in collected], "total": str(total), "mode": mode},
            stale_views=stale,
        )
    
    @staticmethod
    async def _prepare_collection(db: AsyncSession, campout_id: int):
        campout = await load_campout(db, campout_id, for_update=True)
        ensure_not_closed(campout)
        summary = await CostAggregator.summarize(db, campout_id)
        if summary.headcount == 0:
            raise InvalidStateError("No participants to collect from", details={"campout_id": campout_id})
        return campout, summary
    
    @staticmethod
    async def _record_collection(db: AsyncSession, principal: Principal, campout, item: Collection, scout: Scout):
        ref = item.participant.ref
        if ref.kind == AccountKind.SCOUT:
            description = f"Campout fee: {campout.name}"
            user_id = None
        else:
            description = f"Campout fee for {item.participant.name}: {campout.name}"
            user_id = ref.id
        
        return await LedgerStore.record(
            db,
            TransactionType.CAMP_TRANSFER,
            item.amount,
            description,
            actor=principal,
            scout=scout,
            campout_id=campout.id,
            user_id=user_id,
            beneficiary_kind=ref.kind,
        )
    
    @staticmethod
    async def _collect_all_or_nothing(db: AsyncSession, principal: Principal, campout_id: int) -> List[Collection]:
        async with unit_of_work(db):
            campout, summary = await SettlementService._prepare_collection(db, campout_id)
            participants = await load_participants(db, campout_id)
            paid = await PaymentTracker.paid_totals(db, campout_id)
            scouts = await BalanceAccessor.lock_scouts(db, _funding_candidates(participants))
            
            plan = plan_collection(
                participants,
                summary.cost_per_person,
                paid,
                {scout_id: to_money(scout.iba_balance) for scout_id, scout in scouts.items()},
            )
            
            for item in plan:
                await SettlementService._record_collection(db, principal, campout, item, scouts[item.funding_scout_id])
            
            if plan:
                await log_event(
                    db, AuditAction.IBA_BATCH_COLLECTED, actor=principal, campout_id=campout_id,
                    metadata={"mode": ALL_OR_NOTHING, "collected": [item.to_dict() for item in plan]},
                )
        
        return plan
    
    @staticmethod
    async def _collect_per_participant(db: AsyncSession, principal: Principal, campout_id: int) -> List[Collection]:
        async with unit_of_work(db):
            await SettlementService._prepare_collection(db, campout_id)
            participants = await load_participants(db, campout_id)
        
        collected: List[Collection] = []
        for participant in participants:
            try:
                async with unit_of_work(db):
                    campout, summary = await SettlementService._prepare_collection(db, campout_id)
                    paid = await PaymentTracker.paid_totals(db, campout_id)
                    scouts = await BalanceAccessor.lock_scouts(db, _funding_candidates([participant]))
                    
                    plan = plan_collection(
                        [participant],
                        summary.cost_per_person,
                        paid,
                        {scout_id: to_money(scout.iba_balance) for scout_id, scout in scouts.items()},
                    )
                    for item in plan:
                        await SettlementService._record_collection(db, principal, campout, item, scouts[item.funding_scout_id])
                        await log_event(
                            db, AuditAction.IBA_BATCH_COLLECTED, actor=principal, campout_id=campout_id,
                            metadata={"mode": PER_PARTICIPANT, "collected": [item.to_dict()]},
                        )
            except InsufficientFundsError as exc:
                if collected:
                    logger.warning(
                        "Batch collection for campout %s stopped after %d participant(s): %s",
                        campout_id, len(collected), exc.message,
                    )
                exc.details["collected"] = [item.to_dict() for item in collected]
                raise
            
            collected.extend(plan)
        
        return collected
    
    @staticmethod
    async def payout_organizers(
        db: AsyncSession,
        principal: Principal,
        campout_id: int,
        payouts: Dict[int, Decimal]
    ) -> ActionResult:
        """
        Reimburse organizers.
        
        Each positive payout creates one REIMBURSEMENT and marks all of
        that adult's unreimbursed expenses on this campout reimbursed,
        whatever the amount. A payout settles the adult's pending
        liability for the campout even when it is under or over the
        expense total.
        """
        await AccessGuard.authorize(db, principal, Action.PAYOUT_ORGANIZERS)
        
        amounts: Dict[int, Decimal] = {}
        issues: Dict[str, List[str]] = {}
        for adult_id, amount in payouts.items():
            amount = to_money(amount)
            if amount < ZERO:
                issues[f"payouts.{adult_id}"] = ["Payout amount cannot be negative"]
            elif amount > ZERO:
                amounts[int(adult_id)] = amount
        if issues:
            raise ValidationError("Invalid payout amounts", issues=issues)
        
        async with unit_of_work(db):
            campout = await load_campout(db, campout_id, for_update=True)
            ensure_not_closed(campout)
            
            if not amounts:
                return ActionResult.ok("No payouts specified")
            
            user_rows = await db.execute(select(User.id).where(User.id.in_(list(amounts))))
            known = set(user_rows.scalars().all())
            for adult_id in sorted(amounts):
                if adult_id not in known:
                    raise ResourceNotFoundError("User", adult_id)
            
            now = datetime.now(timezone.utc)
            paid_out = []
            for adult_id in sorted(amounts):
                tx = await LedgerStore.record(
                    db,
                    TransactionType.REIMBURSEMENT,
                    amounts[adult_id],
                    f"Campout payout: {campout.name}",
                    actor=principal,
                    campout_id=campout_id,
                    user_id=adult_id,
                    beneficiary_kind=AccountKind.ADULT,
                )
                
                expense_rows = await db.execute(
                    select(AdultExpense).where(
                        AdultExpense.campout_id == campout_id,
                        AdultExpense.adult_id == adult_id,
                        AdultExpense.is_reimbursed.is_(False),
                    ).with_for_update()
                )
                expenses = expense_rows.scalars().all()
                for expense in expenses:
                    expense.is_reimbursed = True
                    expense.reimbursed_at = now
                
                paid_out.append({
                    "adult_id": adult_id,
                    "amount": str(amounts[adult_id]),
                    "transaction_id": tx.id,
                    "expenses_cleared": len(expenses),
                    "expense_total": str(sum((to_money(e.amount) for e in expenses), ZERO)),
                })
            
            await db.flush()
            await log_event(
                db, AuditAction.ORGANIZERS_PAID_OUT, actor=principal, campout_id=campout_id,
                metadata={"payouts": paid_out},
            )
        
        for payout in paid_out:
            logger.info(
                "Paid out %s to organizer %s on campout %s, cleared %s expense(s)",
                payout["amount"], payout["adult_id"], campout_id, payout["expenses_cleared"],
            )
        total = sum(amounts.values(), ZERO)
        return ActionResult.ok(
            f"Paid out ${total} to {len(paid_out)} organizer(s).",
            data={"payouts": paid_out, "total": str(total)},
            stale_views=[campout_view(campout_id), FINANCE_VIEW],
        )
    
    @staticmethod
    async def close_campout(db: AsyncSession, principal: Principal, campout_id: int) -> ActionResult:
        """READY_FOR_PAYMENT -> CLOSED. Irreversible."""
        await AccessGuard.authorize(db, principal, Action.CLOSE_CAMPOUT)
        
        async with unit_of_work(db):
            campout = await load_campout(db, campout_id, for_update=True)
            advance(campout, CampoutStatus.CLOSED)
            campout.closed_at = datetime.now(timezone.utc)
            await log_event(db, AuditAction.CAMPOUT_CLOSED, actor=principal, campout_id=campout_id)
        logger.info("Closed campout %s", campout_id)
        
        return ActionResult.ok(
            "Campout closed.",
            data={"campout_id": campout_id, "status": CampoutStatus.CLOSED.value},
            stale_views=[campout_view(campout_id), CAMPOUTS_VIEW],
        )
