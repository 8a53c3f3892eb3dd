"""
Cost Aggregator.

Total campout cost and per-person share.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.transaction import Transaction
from backend.app.models.adult_expense import AdultExpense
from backend.app.models.campout_scout import CampoutScout
from backend.app.models.campout_adult import CampoutAdult
from backend.app.models.ledger_enums import TransactionType, TransactionStatus
from backend.app.core.money import to_money, CENT, ZERO


def cost_per_person(total_cost: Decimal, headcount: int) -> Decimal:
    """total / headcount, half-up to the cent. 0 for an empty campout."""
    if headcount <= 0:
        return ZERO
    return (to_money(total_cost) / Decimal(headcount)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CostSummary:
    troop_expenses: Decimal
    adult_expenses: Decimal
    scout_count: int
    adult_attendee_count: int
    
    @property
    def total_cost(self) -> Decimal:
        return self.troop_expenses + self.adult_expenses
    
    @property
    def headcount(self) -> int:
        return self.scout_count + self.adult_attendee_count
    
    @property
    def cost_per_person(self) -> Decimal:
        return cost_per_person(self.total_cost, self.headcount)
    
    def to_dict(self) -> dict:
        return {
            "troop_expenses": str(self.troop_expenses),
            "adult_expenses": str(self.adult_expenses),
            "total_cost": str(self.total_cost),
            "scout_count": self.scout_count,
            "adult_attendee_count": self.adult_attendee_count,
            "headcount": self.headcount,
            "cost_per_person": str(self.cost_per_person),
        }


class CostAggregator:
    
    @staticmethod
    async def summarize(db: AsyncSession, campout_id: int) -> CostSummary:
        """
        Troop EXPENSE transactions (approved) plus every adult expense,
        reimbursed or not. REIMBURSEMENT transactions are the payout of an
        adult expense already counted, so they are left out.
        
        Headcount is registered scouts plus adults holding ATTENDEE.
        Organizers count only when they also attend.
        """
        troop_result = await db.execute(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.campout_id == campout_id,
                Transaction.type == TransactionType.EXPENSE,
                Transaction.status == TransactionStatus.APPROVED,
            )
        )
        adult_result = await db.execute(
            select(func.coalesce(func.sum(AdultExpense.amount), 0)).where(
                AdultExpense.campout_id == campout_id
            )
        )
        scout_count = await db.scalar(
            select(func.count(CampoutScout.id)).where(CampoutScout.campout_id == campout_id)
        )
        attendee_count = await db.scalar(
            select(func.count(CampoutAdult.id)).where(
                CampoutAdult.campout_id == campout_id,
                CampoutAdult.is_attendee.is_(True),
            )
        )
        
        return CostSummary(
            troop_expenses=to_money(str(troop_result.scalar())),
            adult_expenses=to_money(str(adult_result.scalar())),
            scout_count=scout_count or 0,
            adult_attendee_count=attendee_count or 0,
        )
