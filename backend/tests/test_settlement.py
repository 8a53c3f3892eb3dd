"""
Settlement Orchestrator Tests.

Validates the finalize -> collect -> payout -> close lifecycle, batch
collection in both atomicity modes, and the organizer payout policy.
"""

import pytest
from decimal import Decimal
from sqlalchemy import select, func

from backend.app.core.config import settings
from backend.app.core.exceptions import InvalidStateError, InsufficientFundsError, ValidationError, ResourceNotFoundError
from backend.app.models.transaction import Transaction
from backend.app.models.adult_expense import AdultExpense
from backend.app.models.campout import Campout
from backend.app.models.scout import Scout
from backend.app.models.audit_log import AuditLog
from backend.app.models.campout_enums import CampoutStatus, ParticipantKind, ExpensePayer, CampoutAdultRole
from backend.app.models.ledger_enums import TransactionType, TransactionStatus
from backend.app.models.enums import UserRole
from backend.app.domain.results import run_action
from backend.app.domain.campouts.settlement_service import (
    SettlementService,
    Participant,
    plan_collection,
    ALL_OR_NOTHING,
    PER_PARTICIPANT,
)
from backend.app.domain.campouts.payment_service import PaymentService
from backend.app.domain.campouts.roster_service import RosterService
from backend.app.domain.campouts.payment_tracker import PaymentTracker, scout_ref, adult_ref
from backend.app.domain.campouts.cost_aggregator import CostAggregator
from backend.app.domain.ledger.transaction_service import TransactionService


async def _count(db, tx_type):
    return await db.scalar(select(func.count(Transaction.id)).where(Transaction.type == tx_type))


async def _balance(db, scout_id):
    return await db.scalar(select(Scout.iba_balance).where(Scout.id == scout_id))


@pytest.fixture
async def simple_split(db_session, admin, make_principal, make_scout, make_campout):
    """2 scouts, 1 adult attendee, one $90.00 troop expense."""
    campout = await make_campout()
    scout_a = await make_scout("Avery", Decimal("50.00"))
    scout_b = await make_scout("Blake", Decimal("10.00"))
    adult = await make_principal(UserRole.PARENT, "Pat Parent")
    
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.SCOUT, scout_a.id)
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.SCOUT, scout_b.id)
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.ADULT, adult.user_id)
    await PaymentService.log_expense(db_session, admin, campout.id, ExpensePayer.TROOP, Decimal("90.00"), "Campsite")
    
    return {"campout": campout, "a": scout_a, "b": scout_b, "adult": adult}


# Pure planning

def test_plan_projects_balances_cumulatively():
    """One scout funding two shares must cover both."""
    participants = [
        Participant(scout_ref(1), "Avery"),
        Participant(adult_ref(9), "Pat", linked_scout_ids=(1, 2)),
    ]
    plan = plan_collection(participants, Decimal("30.00"), {}, {1: Decimal("45.00"), 2: Decimal("30.00")})
    
    assert [(item.participant.name, item.funding_scout_id, item.amount) for item in plan] == [
        ("Avery", 1, Decimal("30.00")),
        ("Pat", 2, Decimal("30.00")),
    ]


def test_plan_skips_settled_and_names_first_failure():
    participants = [
        Participant(scout_ref(1), "Avery"),
        Participant(scout_ref(2), "Blake"),
        Participant(scout_ref(3), "Casey"),
    ]
    paid = {scout_ref(1): Decimal("30.00")}
    
    with pytest.raises(InsufficientFundsError) as exc_info:
        plan_collection(participants, Decimal("30.00"), paid, {1: Decimal("0"), 2: Decimal("5.00"), 3: Decimal("0")})
    
    assert exc_info.value.message == "Scout Blake has insufficient IBA funds."


def test_plan_adult_without_funded_link():
    participants = [Participant(adult_ref(9), "Pat", linked_scout_ids=(4,))]
    
    with pytest.raises(InsufficientFundsError) as exc_info:
        plan_collection(participants, Decimal("30.00"), {}, {4: Decimal("29.99")})
    
    assert exc_info.value.message == "Adult Pat has no linked scout with sufficient IBA funds."


# Scenarios

@pytest.mark.asyncio
async def test_simple_split(db_session, admin, simple_split):
    campout, scout_a, scout_b, adult = (simple_split[k] for k in ("campout", "a", "b", "adult"))
    
    result = await run_action(db_session, "pay_from_iba", lambda: PaymentService.pay_from_iba(
        db_session, admin, campout.id, scout_a.id, Decimal("30.00")
    ))
    assert result.success
    
    summary = await PaymentService.get_campout_summary(db_session, admin, campout.id)
    data = summary.data
    assert data["cost"]["cost_per_person"] == "30.00"
    assert data["cost"]["headcount"] == 3
    
    scouts = {entry["scout_id"]: entry for entry in data["scouts"]}
    assert scouts[scout_a.id]["is_paid"] is True
    assert scouts[scout_a.id]["iba_balance"] == "20.00"
    assert scouts[scout_b.id]["is_paid"] is False
    assert scouts[scout_b.id]["due"] == "30.00"
    
    adults = {entry["adult_id"]: entry for entry in data["adults"]}
    assert adults[adult.user_id]["is_paid"] is False
    assert adults[adult.user_id]["roles"] == ["ATTENDEE"]


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", [ALL_OR_NOTHING, PER_PARTICIPANT])
async def test_insufficient_batch_collection(db_session, admin, financier, simple_split, mode):
    campout, scout_a, scout_b = simple_split["campout"], simple_split["a"], simple_split["b"]
    await PaymentService.pay_from_iba(db_session, admin, campout.id, scout_a.id, Decimal("30.00"))
    transfers_before = await _count(db_session, TransactionType.CAMP_TRANSFER)
    
    result = await run_action(db_session, "batch_collect_iba", lambda: SettlementService.batch_collect_iba(
        db_session, financier, campout.id, mode=mode
    ))
    
    assert result.success is False
    assert result.error == "Scout Blake has insufficient IBA funds."
    assert result.error_code == "ERR_FUNDS_001"
    
    # Avery's earlier payment is untouched and Blake was not debited
    assert await _count(db_session, TransactionType.CAMP_TRANSFER) == transfers_before
    assert await _balance(db_session, scout_a.id) == Decimal("20.00")
    assert await _balance(db_session, scout_b.id) == Decimal("10.00")
    totals = await PaymentTracker.paid_totals(db_session, campout.id)
    assert totals[scout_ref(scout_a.id)] == Decimal("30.00")


@pytest.mark.asyncio
async def test_all_or_nothing_writes_nothing_on_failure(db_session, admin, financier, make_scout, make_campout):
    campout = await make_campout()
    first = await make_scout("Avery", Decimal("100.00"))
    second = await make_scout("Blake", Decimal("1.00"))
    for scout in (first, second):
        await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.SCOUT, scout.id)
    await PaymentService.log_expense(db_session, admin, campout.id, ExpensePayer.TROOP, Decimal("40.00"), "Food")
    
    with pytest.raises(InsufficientFundsError):
        await SettlementService.batch_collect_iba(db_session, financier, campout.id, mode=ALL_OR_NOTHING)
    
    assert await _count(db_session, TransactionType.CAMP_TRANSFER) == 0
    assert await _balance(db_session, first.id) == Decimal("100.00")


@pytest.mark.asyncio
async def test_per_participant_keeps_earlier_collections(db_session, admin, financier, make_scout, make_campout):
    campout = await make_campout()
    first = await make_scout("Avery", Decimal("100.00"))
    second = await make_scout("Blake", Decimal("1.00"))
    for scout in (first, second):
        await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.SCOUT, scout.id)
    await PaymentService.log_expense(db_session, admin, campout.id, ExpensePayer.TROOP, Decimal("40.00"), "Food")
    
    result = await run_action(db_session, "batch_collect_iba", lambda: SettlementService.batch_collect_iba(
        db_session, financier, campout.id, mode=PER_PARTICIPANT
    ))
    
    assert result.success is False
    assert "Blake" in result.error
    assert result.details["collected"][0]["name"] == "Avery"
    assert await _count(db_session, TransactionType.CAMP_TRANSFER) == 1
    assert await _balance(db_session, first.id) == Decimal("80.00")
    assert await _balance(db_session, second.id) == Decimal("1.00")


@pytest.mark.asyncio
async def test_configured_mode_is_the_default(db_session, admin, financier, make_scout, make_campout, monkeypatch):
    monkeypatch.setattr(settings, "batch_collection_mode", PER_PARTICIPANT)
    campout = await make_campout()
    scout = await make_scout("Avery", Decimal("100.00"))
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.SCOUT, scout.id)
    await PaymentService.log_expense(db_session, admin, campout.id, ExpensePayer.TROOP, Decimal("25.00"), "Food")
    
    result = await SettlementService.batch_collect_iba(db_session, financier, campout.id)
    
    assert result.data["mode"] == PER_PARTICIPANT


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", [ALL_OR_NOTHING, PER_PARTICIPANT])
async def test_batch_collection_is_idempotent(db_session, admin, financier, make_principal, make_scout,
                                              make_campout, link_parent, mode):
    campout = await make_campout()
    parent = await make_principal(UserRole.PARENT, "Pat Parent")
    scout_a = await make_scout("Avery", Decimal("50.00"))
    scout_b = await make_scout("Blake", Decimal("70.00"))
    await link_parent(parent.user_id, scout_a.id)
    await link_parent(parent.user_id, scout_b.id)
    
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.SCOUT, scout_a.id)
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.SCOUT, scout_b.id)
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.ADULT, parent.user_id)
    await PaymentService.log_expense(db_session, admin, campout.id, ExpensePayer.TROOP, Decimal("90.00"), "Site")
    
    first = await SettlementService.batch_collect_iba(db_session, financier, campout.id, mode=mode)
    
    assert first.data["total"] == "90.00"
    collected = {(item["kind"], item["id"]): item for item in first.data["collected"]}
    # Avery's 20.00 left cannot cover the parent's share, so Blake's IBA does
    assert collected[("ADULT", parent.user_id)]["funding_scout_id"] == scout_b.id
    assert await _balance(db_session, scout_a.id) == Decimal("20.00")
    assert await _balance(db_session, scout_b.id) == Decimal("10.00")
    
    transfers = await _count(db_session, TransactionType.CAMP_TRANSFER)
    second = await SettlementService.batch_collect_iba(db_session, financier, campout.id, mode=mode)
    
    assert second.success
    assert second.data["collected"] == []
    assert await _count(db_session, TransactionType.CAMP_TRANSFER) == transfers
    assert await _balance(db_session, scout_a.id) == Decimal("20.00")
    assert await _balance(db_session, scout_b.id) == Decimal("10.00")


@pytest.mark.asyncio
async def test_batch_collection_without_participants(db_session, admin, financier, make_campout):
    campout = await make_campout()
    await PaymentService.log_expense(db_session, admin, campout.id, ExpensePayer.TROOP, Decimal("90.00"), "Site")
    
    with pytest.raises(InvalidStateError) as exc_info:
        await SettlementService.batch_collect_iba(db_session, financier, campout.id)
    
    assert exc_info.value.message == "No participants to collect from"


@pytest.mark.asyncio
async def test_adult_without_linked_scout_fails_batch(db_session, admin, financier, make_principal, make_campout):
    campout = await make_campout()
    adult = await make_principal(UserRole.LEADER, "Lee Unlinked")
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.ADULT, adult.user_id)
    await PaymentService.log_expense(db_session, admin, campout.id, ExpensePayer.TROOP, Decimal("20.00"), "Gas")
    
    result = await run_action(db_session, "batch_collect_iba",
                              lambda: SettlementService.batch_collect_iba(db_session, financier, campout.id))
    
    assert result.success is False
    assert result.error == "Adult Lee Unlinked has no linked scout with sufficient IBA funds."


# State machine

@pytest.mark.asyncio
async def test_lifecycle_is_linear(db_session, leader, financier, make_campout):
    campout = await make_campout()
    
    with pytest.raises(InvalidStateError):
        await SettlementService.close_campout(db_session, financier, campout.id)
    
    await SettlementService.finalize(db_session, leader, campout.id)
    with pytest.raises(InvalidStateError):
        await SettlementService.finalize(db_session, leader, campout.id)
    
    await SettlementService.close_campout(db_session, financier, campout.id)
    with pytest.raises(InvalidStateError):
        await SettlementService.close_campout(db_session, financier, campout.id)
    with pytest.raises(InvalidStateError):
        await SettlementService.finalize(db_session, leader, campout.id)
    
    refreshed = await db_session.get(Campout, campout.id, populate_existing=True)
    assert refreshed.status == CampoutStatus.CLOSED
    assert refreshed.finalized_at is not None
    assert refreshed.closed_at is not None
    
    actions = (await db_session.execute(select(AuditLog.action).where(AuditLog.campout_id == campout.id))).scalars().all()
    assert "CAMPOUT_FINALIZED" in actions
    assert "CAMPOUT_CLOSED" in actions


@pytest.mark.asyncio
async def test_closed_campout_rejects_mutations(db_session, admin, financier, make_principal, make_scout, make_campout):
    campout = await make_campout()
    scout = await make_scout("Avery", Decimal("50.00"))
    organizer = await make_principal(UserRole.LEADER, "Olive Organizer")
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.SCOUT, scout.id)
    await SettlementService.finalize(db_session, admin, campout.id)
    await SettlementService.close_campout(db_session, admin, campout.id)
    
    attempts = {
        "log_troop_expense": lambda: PaymentService.log_expense(
            db_session, admin, campout.id, ExpensePayer.TROOP, Decimal("5.00"), "Late receipt"),
        "log_adult_expense": lambda: PaymentService.log_expense(
            db_session, organizer, campout.id, ExpensePayer.ADULT, Decimal("5.00"), "Late receipt"),
        "pay_from_iba": lambda: PaymentService.pay_from_iba(
            db_session, admin, campout.id, scout.id, Decimal("5.00")),
        "record_manual_payment": lambda: PaymentService.record_manual_payment(
            db_session, financier, campout.id, Decimal("5.00"), scout_id=scout.id),
        "batch_collect_iba": lambda: SettlementService.batch_collect_iba(db_session, financier, campout.id),
        "payout_organizers": lambda: SettlementService.payout_organizers(
            db_session, financier, campout.id, {organizer.user_id: Decimal("5.00")}),
        "register_participant": lambda: RosterService.register_participant(
            db_session, admin, campout.id, ParticipantKind.ADULT, organizer.user_id),
    }
    
    for name, attempt in attempts.items():
        result = await run_action(db_session, name, attempt)
        assert result.success is False, name
        assert result.error_code == "ERR_STATE_001", name
    
    assert await _balance(db_session, scout.id) == Decimal("50.00")
    assert await db_session.scalar(select(func.count(Transaction.id))) == 0
    assert await db_session.scalar(select(func.count(AdultExpense.id))) == 0


@pytest.mark.asyncio
async def test_expenses_locked_after_finalize(db_session, admin, make_campout, monkeypatch):
    campout = await make_campout()
    await SettlementService.finalize(db_session, admin, campout.id)
    
    monkeypatch.setattr(settings, "lock_expenses_after_finalize", True)
    with pytest.raises(InvalidStateError):
        await PaymentService.log_expense(db_session, admin, campout.id, ExpensePayer.TROOP, Decimal("5.00"), "Late")
    
    monkeypatch.setattr(settings, "lock_expenses_after_finalize", False)
    result = await PaymentService.log_expense(db_session, admin, campout.id, ExpensePayer.TROOP, Decimal("5.00"), "Late")
    assert result.success


async def test_finance_entry_cannot_add_expense_after_finalize(db_session, admin, financier, simple_split, monkeypatch):
    monkeypatch.setattr(settings, "lock_expenses_after_finalize", True)
    campout = simple_split["campout"]
    await SettlementService.finalize(db_session, admin, campout.id)
    
    with pytest.raises(InvalidStateError):
        await TransactionService.record_transaction(
            db_session, financier, TransactionType.EXPENSE, Decimal("50.00"), "Late receipt", campout_id=campout.id
        )
    
    summary = await CostAggregator.summarize(db_session, campout.id)
    assert summary.troop_expenses == Decimal("90.00")
    assert summary.cost_per_person == Decimal("30.00")
    assert await _count(db_session, TransactionType.EXPENSE) == 1
    
    # Money coming in is not a cost change
    result = await TransactionService.record_transaction(
        db_session, financier, TransactionType.EVENT_PAYMENT, Decimal("30.00"), "Cash at the trailhead",
        scout_id=simple_split["b"].id, campout_id=campout.id,
    )
    assert result.success


async def test_pending_expense_cannot_be_approved_after_finalize(db_session, admin, financier, leader, simple_split,
                                                                monkeypatch):
    monkeypatch.setattr(settings, "lock_expenses_after_finalize", True)
    campout = simple_split["campout"]
    submitted = await TransactionService.record_transaction(
        db_session, leader, TransactionType.EXPENSE, Decimal("45.00"), "Firewood", campout_id=campout.id
    )
    assert submitted.data["status"] == TransactionStatus.PENDING.value
    await SettlementService.finalize(db_session, admin, campout.id)
    
    result = await run_action(db_session, "approve_transaction", lambda: TransactionService.approve_transaction(
        db_session, financier, submitted.data["transaction_id"]
    ))
    
    assert not result.success
    assert result.error_code == "ERR_STATE_001"
    tx = await db_session.get(Transaction, submitted.data["transaction_id"], populate_existing=True)
    assert tx.status == TransactionStatus.PENDING
    assert (await CostAggregator.summarize(db_session, campout.id)).cost_per_person == Decimal("30.00")


async def test_expense_cannot_be_deleted_after_finalize(db_session, admin, simple_split, monkeypatch):
    monkeypatch.setattr(settings, "lock_expenses_after_finalize", True)
    campout = simple_split["campout"]
    expense_id = await db_session.scalar(
        select(Transaction.id).where(Transaction.type == TransactionType.EXPENSE, Transaction.campout_id == campout.id)
    )
    await SettlementService.finalize(db_session, admin, campout.id)
    
    with pytest.raises(InvalidStateError):
        await TransactionService.delete_transaction(db_session, admin, expense_id)
    
    assert await db_session.get(Transaction, expense_id, populate_existing=True) is not None
    assert (await CostAggregator.summarize(db_session, campout.id)).cost_per_person == Decimal("30.00")


# Organizer payouts

@pytest.mark.asyncio
async def test_organizer_payout_clears_liability(db_session, admin, make_principal, make_campout):
    campout = await make_campout()
    organizer = await make_principal(UserRole.LEADER, "Olive Organizer")
    await PaymentService.log_expense(db_session, organizer, campout.id, ExpensePayer.ADULT, Decimal("20.00"), "Tarps")
    await PaymentService.log_expense(db_session, organizer, campout.id, ExpensePayer.ADULT, Decimal("15.00"), "Rope")
    
    result = await SettlementService.payout_organizers(
        db_session, admin, campout.id, {organizer.user_id: Decimal("10.00")}
    )
    
    assert result.success
    assert result.data["payouts"][0]["expenses_cleared"] == 2
    
    reimbursements = (await db_session.execute(
        select(Transaction).where(Transaction.type == TransactionType.REIMBURSEMENT)
    )).scalars().all()
    assert len(reimbursements) == 1
    assert reimbursements[0].amount == Decimal("10.00")
    assert reimbursements[0].user_id == organizer.user_id
    
    expenses = (await db_session.execute(
        select(AdultExpense).execution_options(populate_existing=True)
    )).scalars().all()
    assert [e.is_reimbursed for e in expenses] == [True, True]


@pytest.mark.asyncio
async def test_payout_edge_cases(db_session, admin, financier, make_principal, make_campout):
    campout = await make_campout()
    organizer = await make_principal(UserRole.LEADER, "Olive Organizer")
    await PaymentService.log_expense(db_session, organizer, campout.id, ExpensePayer.ADULT, Decimal("20.00"), "Tarps")
    
    empty = await SettlementService.payout_organizers(db_session, financier, campout.id, {})
    assert empty.message == "No payouts specified"
    
    skipped = await SettlementService.payout_organizers(
        db_session, financier, campout.id, {organizer.user_id: Decimal("0")}
    )
    assert skipped.message == "No payouts specified"
    
    with pytest.raises(ValidationError) as exc_info:
        await SettlementService.payout_organizers(
            db_session, financier, campout.id, {organizer.user_id: Decimal("-5.00")}
        )
    assert f"payouts.{organizer.user_id}" in exc_info.value.details["issues"]
    
    with pytest.raises(ResourceNotFoundError):
        await SettlementService.payout_organizers(db_session, financier, campout.id, {9999: Decimal("5.00")})
    
    assert await _count(db_session, TransactionType.REIMBURSEMENT) == 0
    pending = await db_session.scalar(select(func.count(AdultExpense.id)).where(AdultExpense.is_reimbursed.is_(False)))
    assert pending == 1


@pytest.mark.asyncio
async def test_adult_expense_makes_payer_an_organizer(db_session, admin, make_principal, make_campout):
    campout = await make_campout()
    adult = await make_principal(UserRole.PARENT, "Pat Parent")
    await RosterService.register_participant(db_session, admin, campout.id, ParticipantKind.ADULT, adult.user_id)
    
    await PaymentService.log_expense(db_session, adult, campout.id, ExpensePayer.ADULT, Decimal("12.00"), "Snacks")
    
    summary = await PaymentService.get_campout_summary(db_session, admin, campout.id)
    adults = {entry["adult_id"]: entry for entry in summary.data["adults"]}
    assert adults[adult.user_id]["roles"] == [CampoutAdultRole.ATTENDEE.value, CampoutAdultRole.ORGANIZER.value]
    assert summary.data["pending_reimbursements"][0]["amount"] == "12.00"
