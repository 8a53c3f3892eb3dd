"""
Balance Accessor.

The only code path that writes Scout.iba_balance. Callers must already be
inside a unit of work that also writes the Transaction justifying the
change.
"""

from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from backend.app.models.scout import Scout
from backend.app.core.money import to_money, ZERO
from backend.app.core.exceptions import (
    ResourceNotFoundError,
    InsufficientFundsError,
    ConcurrencyConflictError,
)


def insufficient_scout_funds(scout: Scout) -> InsufficientFundsError:
    return InsufficientFundsError(
        f"Scout {scout.name} has insufficient IBA funds.",
        account=f"scout:{scout.id}",
    )


class BalanceAccessor:
    
    @staticmethod
    async def lock_scout(db: AsyncSession, scout_id: int) -> Scout:
        """
        Load a scout for a balance write.
        
        Takes a row lock where the database supports it and refreshes any
        copy already in the session, so the sufficiency check runs against
        the current balance and version.
        """
        result = await db.execute(
            select(Scout)
            .where(Scout.id == scout_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        scout = result.scalar_one_or_none()
        if not scout:
            raise ResourceNotFoundError("Scout", scout_id)
        return scout
    
    @staticmethod
    async def lock_scouts(db: AsyncSession, scout_ids) -> dict:
        """Lock several scouts in ascending id order. Returns {id: Scout}."""
        ids = sorted(set(scout_ids))
        if not ids:
            return {}
        result = await db.execute(
            select(Scout)
            .where(Scout.id.in_(ids))
            .order_by(Scout.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        scouts = {scout.id: scout for scout in result.scalars().all()}
        missing = [scout_id for scout_id in ids if scout_id not in scouts]
        if missing:
            raise ResourceNotFoundError("Scout", missing[0])
        return scouts
    
    @staticmethod
    async def apply_delta(
        db: AsyncSession,
        scout: Scout,
        delta: Decimal,
        allow_overdraft: bool = False
    ) -> Decimal:
        """
        Add `delta` to the scout's IBA balance and flush.
        
        A debit that would take the balance below zero raises
        InsufficientFundsError unless `allow_overdraft` is set. The flush
        checks and bumps Scout.version; a concurrent writer surfaces as
        ConcurrencyConflictError.
        
        Returns:
            New balance
        """
        delta = to_money(delta)
        new_balance = to_money(scout.iba_balance) + delta
        
        if delta < ZERO and new_balance < ZERO and not allow_overdraft:
            raise insufficient_scout_funds(scout)
        
        scout.iba_balance = new_balance
        try:
            await db.flush()
        except StaleDataError:
            raise ConcurrencyConflictError()
        
        return new_balance
