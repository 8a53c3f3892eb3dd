"""
Campout lifecycle rules.

OPEN -> READY_FOR_PAYMENT -> CLOSED. No skipping, no reversal. Every
mutation that writes ledger rows against a campout checks it here.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.campout import Campout
from backend.app.models.campout_enums import CampoutStatus
from backend.app.core.config import settings
from backend.app.core.exceptions import ResourceNotFoundError, InvalidStateError


NEXT_STATUS = {
    CampoutStatus.OPEN: CampoutStatus.READY_FOR_PAYMENT,
    CampoutStatus.READY_FOR_PAYMENT: CampoutStatus.CLOSED,
}

CLOSED_MESSAGE = "Campout is closed and cannot accept new transactions."


async def load_campout(db: AsyncSession, campout_id: int, for_update: bool = False) -> Campout:
    stmt = select(Campout).where(Campout.id == campout_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    campout = result.scalar_one_or_none()
    if not campout:
        raise ResourceNotFoundError("Campout", campout_id)
    return campout


def ensure_not_closed(campout: Campout) -> None:
    if campout.status == CampoutStatus.CLOSED:
        raise InvalidStateError(CLOSED_MESSAGE, details={"campout_id": campout.id})


def ensure_expenses_open(campout: Campout) -> None:
    """Expenses are locked once closed, and after finalization when configured."""
    ensure_not_closed(campout)
    if settings.lock_expenses_after_finalize and campout.status == CampoutStatus.READY_FOR_PAYMENT:
        raise InvalidStateError(
            "Campout costs are finalized; expenses can no longer be changed.",
            details={"campout_id": campout.id},
        )


def advance(campout: Campout, target: CampoutStatus) -> None:
    """Move to `target`, which must be the immediate next status."""
    if NEXT_STATUS.get(campout.status) != target:
        raise InvalidStateError(
            f"Cannot move campout from {campout.status.value} to {target.value}",
            details={"campout_id": campout.id, "status": campout.status.value},
        )
    campout.status = target
