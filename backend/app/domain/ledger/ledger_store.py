"""
Ledger Store.

Writes Transaction rows together with the balance change they justify,
and derives balances back from the ledger for reconciliation.

Effects (amounts are positive, effects signed, APPROVED only):

    REGISTRATION_INCOME, EVENT_PAYMENT,
    FUNDRAISING_INCOME, DUES, DONATION_IN   troop +a
    EXPENSE, REIMBURSEMENT                   troop -a
    IBA_DEPOSIT, IBA_CREDIT                  scout +a
    CAMP_TRANSFER, IBA_RECLAIM               troop +a, scout -a
"""

from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional, Iterable, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.transaction import Transaction
from backend.app.models.scout import Scout
from backend.app.models.ledger_enums import TransactionType, TransactionStatus, AccountKind
from backend.app.core.money import to_money, ZERO
from backend.app.core.exceptions import ValidationError, InvalidStateError
from backend.app.core.guards import Principal
from backend.app.domain.ledger.balance import BalanceAccessor


@dataclass(frozen=True)
class LedgerEffect:
    troop: Decimal = ZERO
    scout: Decimal = ZERO


TROOP_INCOME_TYPES = frozenset({
    TransactionType.REGISTRATION_INCOME,
    TransactionType.EVENT_PAYMENT,
    TransactionType.FUNDRAISING_INCOME,
    TransactionType.DUES,
    TransactionType.DONATION_IN,
})
TROOP_OUTFLOW_TYPES = frozenset({TransactionType.EXPENSE, TransactionType.REIMBURSEMENT})
IBA_INFLOW_TYPES = frozenset({TransactionType.IBA_DEPOSIT, TransactionType.IBA_CREDIT})
IBA_OUTFLOW_TYPES = frozenset({TransactionType.CAMP_TRANSFER, TransactionType.IBA_RECLAIM})


def ledger_effect(tx_type: TransactionType, amount) -> LedgerEffect:
    """Signed effect of an approved transaction of this type and amount."""
    amount = to_money(amount)
    if tx_type in TROOP_INCOME_TYPES:
        return LedgerEffect(troop=amount)
    if tx_type in TROOP_OUTFLOW_TYPES:
        return LedgerEffect(troop=-amount)
    if tx_type in IBA_INFLOW_TYPES:
        return LedgerEffect(scout=amount)
    if tx_type in IBA_OUTFLOW_TYPES:
        return LedgerEffect(troop=amount, scout=-amount)
    raise ValueError(f"No ledger effect defined for {tx_type}")


def effect_of(tx: Transaction) -> LedgerEffect:
    if tx.status != TransactionStatus.APPROVED:
        return LedgerEffect()
    return ledger_effect(tx.type, tx.amount)


@dataclass
class LedgerTotals:
    """Balances derived purely from the transaction log."""
    troop_balance: Decimal = ZERO
    scout_balances: Dict[int, Decimal] = field(default_factory=dict)
    
    @property
    def scout_total(self) -> Decimal:
        return sum(self.scout_balances.values(), ZERO)
    
    @property
    def ledger_total(self) -> Decimal:
        return self.troop_balance + self.scout_total


def derive_totals(transactions: Iterable[Transaction]) -> LedgerTotals:
    totals = LedgerTotals()
    for tx in transactions:
        effect = effect_of(tx)
        totals.troop_balance += effect.troop
        if effect.scout != ZERO:
            totals.scout_balances[tx.scout_id] = totals.scout_balances.get(tx.scout_id, ZERO) + effect.scout
    return totals


@dataclass(frozen=True)
class BalanceMismatch:
    scout_id: int
    name: str
    stored: Decimal
    derived: Decimal


@dataclass(frozen=True)
class ReconciliationReport:
    troop_balance: Decimal
    scout_balance_total: Decimal
    ledger_total: Decimal
    mismatches: List[BalanceMismatch]
    
    @property
    def balanced(self) -> bool:
        return not self.mismatches and self.troop_balance + self.scout_balance_total == self.ledger_total
    
    def to_dict(self) -> dict:
        return {
            "troop_balance": str(self.troop_balance),
            "scout_balance_total": str(self.scout_balance_total),
            "ledger_total": str(self.ledger_total),
            "balanced": self.balanced,
            "mismatches": [
                {
                    "scout_id": m.scout_id,
                    "name": m.name,
                    "stored": str(m.stored),
                    "derived": str(m.derived),
                }
                for m in self.mismatches
            ],
        }


class LedgerStore:
    
    @staticmethod
    async def record(
        db: AsyncSession,
        tx_type: TransactionType,
        amount,
        description: str,
        actor: Optional[Principal] = None,
        status: TransactionStatus = TransactionStatus.APPROVED,
        scout: Optional[Scout] = None,
        campout_id: Optional[int] = None,
        user_id: Optional[int] = None,
        beneficiary_kind: Optional[AccountKind] = None,
        budget_category_id: Optional[int] = None,
        fundraising_campaign_id: Optional[int] = None,
        transaction_date: Optional[date] = None,
        allow_overdraft: bool = False
    ) -> Transaction:
        """
        Add a Transaction and, when it is approved and moves a scout IBA,
        the matching balance change. Must run inside a unit of work.
        
        `scout` must come from BalanceAccessor.lock_scout when the type
        moves a balance.
        """
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError.for_field("amount", "Amount must be greater than zero")
        
        effect = ledger_effect(tx_type, amount)
        if effect.scout != ZERO and scout is None:
            raise ValueError(f"{tx_type.value} requires a scout account")
        
        tx = Transaction(
            type=tx_type,
            amount=amount,
            description=description,
            status=status,
            transaction_date=transaction_date,
            scout_id=scout.id if scout is not None else None,
            campout_id=campout_id,
            user_id=user_id,
            beneficiary_kind=beneficiary_kind,
            budget_category_id=budget_category_id,
            fundraising_campaign_id=fundraising_campaign_id,
            recorded_by_id=actor.user_id if actor else None,
        )
        if status == TransactionStatus.APPROVED:
            tx.approved_by_id = actor.user_id if actor else None
            tx.approved_at = datetime.now(timezone.utc)
        
        db.add(tx)
        
        if status == TransactionStatus.APPROVED and effect.scout != ZERO:
            await BalanceAccessor.apply_delta(db, scout, effect.scout, allow_overdraft=allow_overdraft)
        else:
            await db.flush()
        
        return tx
    
    @staticmethod
    async def record_for_scout_id(db: AsyncSession, tx_type: TransactionType, amount, description: str, scout_id: Optional[int], **kwargs) -> Transaction:
        """Like record(), locking the scout first when one is named."""
        scout = await BalanceAccessor.lock_scout(db, scout_id) if scout_id is not None else None
        return await LedgerStore.record(db, tx_type, amount, description, scout=scout, **kwargs)
    
    @staticmethod
    async def approve(db: AsyncSession, tx: Transaction, actor: Principal) -> Transaction:
        """PENDING -> APPROVED, applying the balance effect in the same unit."""
        if tx.status != TransactionStatus.PENDING:
            raise InvalidStateError(f"Only pending transactions can be approved (currently {tx.status.value})")
        
        effect = ledger_effect(tx.type, tx.amount)
        tx.status = TransactionStatus.APPROVED
        tx.approved_by_id = actor.user_id
        tx.approved_at = datetime.now(timezone.utc)
        
        if effect.scout != ZERO:
            scout = await BalanceAccessor.lock_scout(db, tx.scout_id)
            await BalanceAccessor.apply_delta(db, scout, effect.scout)
        else:
            await db.flush()
        
        return tx
    
    @staticmethod
    async def reject(db: AsyncSession, tx: Transaction, actor: Principal) -> Transaction:
        if tx.status != TransactionStatus.PENDING:
            raise InvalidStateError(f"Only pending transactions can be rejected (currently {tx.status.value})")
        tx.status = TransactionStatus.REJECTED
        tx.approved_by_id = actor.user_id
        tx.approved_at = datetime.now(timezone.utc)
        await db.flush()
        return tx
    
    @staticmethod
    async def reconcile(db: AsyncSession) -> ReconciliationReport:
        """
        Compare stored scout balances with the balances the ledger implies.
        
        troop_balance + scout_balance_total must equal ledger_total, and
        every scout's stored balance must equal its derived balance.
        """
        tx_result = await db.execute(
            select(Transaction).where(Transaction.status == TransactionStatus.APPROVED)
        )
        totals = derive_totals(tx_result.scalars().all())
        
        scout_result = await db.execute(select(Scout).order_by(Scout.id))
        scouts = scout_result.scalars().all()
        
        mismatches = []
        stored_total = ZERO
        for scout in scouts:
            stored = to_money(scout.iba_balance)
            derived = totals.scout_balances.get(scout.id, ZERO)
            stored_total += stored
            if stored != derived:
                mismatches.append(BalanceMismatch(scout.id, scout.name, stored, derived))
        
        return ReconciliationReport(
            troop_balance=totals.troop_balance,
            scout_balance_total=stored_total,
            ledger_total=totals.ledger_total,
            mismatches=mismatches,
        )
