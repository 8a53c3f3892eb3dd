"""
Payment Tracker.

How much each participant has paid toward a campout. Attribution goes by
the transaction's beneficiary, so a scout's IBA paying an adult's share
counts for the adult and never for the scout.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.transaction import Transaction, AccountRef
from backend.app.models.ledger_enums import TransactionStatus, AccountKind, CAMPOUT_PAYMENT_TYPES
from backend.app.core.money import to_money, ZERO


def counts_as_payment(tx: Transaction) -> bool:
    return tx.status == TransactionStatus.APPROVED and tx.type in CAMPOUT_PAYMENT_TYPES


def paid_totals(transactions: Iterable[Transaction]) -> Dict[AccountRef, Decimal]:
    """Sum approved campout payments per beneficiary."""
    totals: Dict[AccountRef, Decimal] = {}
    for tx in transactions:
        if not counts_as_payment(tx):
            continue
        beneficiary = tx.beneficiary
        if beneficiary is None:
            continue
        totals[beneficiary] = totals.get(beneficiary, ZERO) + to_money(tx.amount)
    return totals


@dataclass(frozen=True)
class ParticipantPayment:
    participant: AccountRef
    amount_paid: Decimal
    cost_per_person: Decimal
    
    @property
    def due(self) -> Decimal:
        remaining = self.cost_per_person - self.amount_paid
        return remaining if remaining > ZERO else ZERO
    
    @property
    def is_paid(self) -> bool:
        # A zero-cost campout is paid for everyone
        if self.cost_per_person <= ZERO:
            return True
        return self.amount_paid >= self.cost_per_person
    
    def to_dict(self) -> dict:
        return {
            "kind": self.participant.kind.value,
            "id": self.participant.id,
            "amount_paid": str(self.amount_paid),
            "due": str(self.due),
            "is_paid": self.is_paid,
        }


class PaymentTracker:
    
    @staticmethod
    async def load_payments(db: AsyncSession, campout_id: int) -> list:
        result = await db.execute(
            select(Transaction).where(
                Transaction.campout_id == campout_id,
                Transaction.status == TransactionStatus.APPROVED,
                Transaction.type.in_(CAMPOUT_PAYMENT_TYPES),
            ).order_by(Transaction.id)
        )
        return result.scalars().all()
    
    @staticmethod
    async def paid_totals(db: AsyncSession, campout_id: int) -> Dict[AccountRef, Decimal]:
        return paid_totals(await PaymentTracker.load_payments(db, campout_id))
    
    @staticmethod
    async def payment_status(
        db: AsyncSession,
        campout_id: int,
        participant: AccountRef,
        cost_per_person: Decimal
    ) -> ParticipantPayment:
        totals = await PaymentTracker.paid_totals(db, campout_id)
        return ParticipantPayment(participant, totals.get(participant, ZERO), cost_per_person)


def scout_ref(scout_id: int) -> AccountRef:
    return AccountRef(AccountKind.SCOUT, scout_id)


def adult_ref(adult_id: int) -> AccountRef:
    return AccountRef(AccountKind.ADULT, adult_id)
