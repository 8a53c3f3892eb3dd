"""
Payment Tracker Tests.

A scout's IBA funding an adult's share counts for the adult only.
"""

import pytest
from decimal import Decimal

from backend.app.models.transaction import Transaction, AccountRef
from backend.app.models.scout import Scout
from backend.app.models.ledger_enums import TransactionType, TransactionStatus, AccountKind
from backend.app.models.campout_enums import ParticipantKind, ExpensePayer
from backend.app.models.enums import UserRole
from backend.app.domain.campouts.payment_tracker import (
    PaymentTracker,
    ParticipantPayment,
    paid_totals,
    scout_ref,
    adult_ref,
)
from backend.app.domain.campouts.payment_service import PaymentService
from backend.app.domain.campouts.roster_service import RosterService


def _tx(tx_type, amount, scout_id=None, user_id=None, beneficiary_kind=None, status=TransactionStatus.APPROVED):
    return Transaction(
        type=tx_type,
        amount=Decimal(amount),
        description="test",
        status=status,
        scout_id=scout_id,
        user_id=user_id,
        beneficiary_kind=beneficiary_kind,
    )


def test_transfer_for_adult_is_attributed_to_adult():
    tx = _tx(TransactionType.CAMP_TRANSFER, "30.00", scout_id=1, user_id=7, beneficiary_kind=AccountKind.ADULT)
    
    assert tx.payer == AccountRef(AccountKind.SCOUT, 1)
    assert tx.beneficiary == AccountRef(AccountKind.ADULT, 7)
    
    totals = paid_totals([tx])
    assert totals == {adult_ref(7): Decimal("30.00")}
    assert scout_ref(1) not in totals


def test_paid_totals_ignore_other_types_and_unapproved():
    transactions = [
        _tx(TransactionType.CAMP_TRANSFER, "10.00", scout_id=1, beneficiary_kind=AccountKind.SCOUT),
        _tx(TransactionType.EVENT_PAYMENT, "5.00", scout_id=1, beneficiary_kind=AccountKind.SCOUT),
        _tx(TransactionType.REGISTRATION_INCOME, "2.50", scout_id=1, beneficiary_kind=AccountKind.SCOUT),
        _tx(TransactionType.EVENT_PAYMENT, "8.00", scout_id=1, beneficiary_kind=AccountKind.SCOUT,
            status=TransactionStatus.PENDING),
        _tx(TransactionType.REIMBURSEMENT, "40.00", user_id=7, beneficiary_kind=AccountKind.ADULT),
        _tx(TransactionType.EXPENSE, "90.00"),
    ]
    
    assert paid_totals(transactions) == {scout_ref(1): Decimal("17.50")}


def test_participant_payment_status():
    unpaid = ParticipantPayment(scout_ref(1), Decimal("12.00"), Decimal("30.00"))
    assert unpaid.due == Decimal("18.00")
    assert unpaid.is_paid is False
    
    overpaid = ParticipantPayment(scout_ref(1), Decimal("35.00"), Decimal("30.00"))
    assert overpaid.due == Decimal("0")
    assert overpaid.is_paid is True
    
    free = ParticipantPayment(adult_ref(3), Decimal("0.00"), Decimal("0.00"))
    assert free.is_paid is True


@pytest.mark.asyncio
async def test_scout_paying_for_parent(db_session, admin, make_principal, make_scout, make_campout, link_parent):
    campout = await make_campout()
    parent = await make_principal(UserRole.PARENT, "Pat Parent")
    scout = await make_scout("Avery", Decimal("100.00"))
    await link_parent(parent.user_id, scout.id)
    
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.SCOUT, scout.id)
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.ADULT, parent.user_id)
    await PaymentService.log_expense(db_session, admin, campout.id, ExpensePayer.TROOP, Decimal("50.00"), "Site fee")
    
    # The parent uses the linked scout's IBA for their own share
    result = await PaymentService.pay_from_iba(
        db_session, parent, campout.id, scout.id, Decimal("25.00"), beneficiary_adult_id=parent.user_id
    )
    assert result.success
    
    scout_status = await PaymentTracker.payment_status(db_session, campout.id, scout_ref(scout.id), Decimal("25.00"))
    adult_status = await PaymentTracker.payment_status(db_session, campout.id, adult_ref(parent.user_id), Decimal("25.00"))
    
    assert scout_status.amount_paid == Decimal("0")
    assert scout_status.is_paid is False
    assert adult_status.amount_paid == Decimal("25.00")
    assert adult_status.is_paid is True
    
    refreshed = await db_session.get(Scout, scout.id, populate_existing=True)
    assert refreshed.iba_balance == Decimal("75.00")


@pytest.mark.asyncio
async def test_manual_payment_counts_for_named_adult(db_session, financier, make_principal, make_campout):
    campout = await make_campout()
    adult = await make_principal(UserRole.PARENT, "Pat Parent")
    
    await PaymentService.record_manual_payment(db_session, financier, campout.id, Decimal("12.34"), adult_id=adult.user_id)
    
    totals = await PaymentTracker.paid_totals(db_session, campout.id)
    assert totals == {adult_ref(adult.user_id): Decimal("12.34")}
