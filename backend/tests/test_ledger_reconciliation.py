"""
Ledger Consistency Tests.

Troop balance plus stored scout balances must always equal the total the
transaction log implies, under any mix of operations, and concurrent
writers to one IBA must not both succeed against the same version.
"""

import random
import pytest
from decimal import Decimal
from sqlalchemy import select, func

from backend.app.core.exceptions import (
    ConcurrencyConflictError,
    InsufficientFundsError,
    InvalidStateError,
    ResourceNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from backend.app.models.transaction import Transaction
from backend.app.models.scout import Scout
from backend.app.models.audit_log import AuditLog
from backend.app.models.ledger_enums import TransactionType, TransactionStatus
from backend.app.models.campout_enums import ExpensePayer
from backend.app.models.enums import UserRole
from backend.app.domain.results import run_action
from backend.app.domain.ledger.balance import BalanceAccessor
from backend.app.domain.ledger.ledger_store import LedgerStore, derive_totals, ledger_effect
from backend.app.domain.ledger.transaction_service import TransactionService
from backend.app.domain.fundraising.distribution_service import FundraisingService
from backend.app.domain.campouts.payment_service import PaymentService


TROOP_SIGN = {
    TransactionType.REGISTRATION_INCOME: 1,
    TransactionType.EVENT_PAYMENT: 1,
    TransactionType.FUNDRAISING_INCOME: 1,
    TransactionType.DUES: 1,
    TransactionType.DONATION_IN: 1,
    TransactionType.EXPENSE: -1,
    TransactionType.REIMBURSEMENT: -1,
    TransactionType.CAMP_TRANSFER: 1,
    TransactionType.IBA_RECLAIM: 1,
    TransactionType.IBA_DEPOSIT: 0,
    TransactionType.IBA_CREDIT: 0,
}

SCOUT_SIGN = {
    TransactionType.IBA_DEPOSIT: 1,
    TransactionType.IBA_CREDIT: 1,
    TransactionType.CAMP_TRANSFER: -1,
    TransactionType.IBA_RECLAIM: -1,
}


def _money(rng, low=1, high=5000):
    return Decimal(rng.randint(low, high)) / Decimal(100)


def test_every_type_has_an_effect():
    for tx_type in TransactionType:
        effect = ledger_effect(tx_type, Decimal("1.00"))
        assert effect.troop == TROOP_SIGN[tx_type]
        assert effect.scout == SCOUT_SIGN.get(tx_type, 0)


def test_derived_totals_match_log():
    """10,000 random entries; only APPROVED ones count."""
    rng = random.Random(20260419)
    types = list(TransactionType)
    statuses = list(TransactionStatus)
    
    transactions = []
    troop = Decimal("0.00")
    scouts = {}
    for _ in range(10_000):
        tx_type = rng.choice(types)
        status = rng.choice(statuses)
        amount = _money(rng)
        scout_id = rng.randint(1, 25)
        transactions.append(Transaction(type=tx_type, amount=amount, description="op", status=status, scout_id=scout_id))
        if status != TransactionStatus.APPROVED:
            continue
        troop += TROOP_SIGN[tx_type] * amount
        if tx_type in SCOUT_SIGN:
            scouts[scout_id] = scouts.get(scout_id, Decimal("0.00")) + SCOUT_SIGN[tx_type] * amount
    
    totals = derive_totals(transactions)
    
    assert totals.troop_balance == troop
    assert totals.scout_balances == scouts
    assert totals.ledger_total == troop + sum(scouts.values(), Decimal("0.00"))


@pytest.mark.asyncio
async def test_ledger_stays_balanced_under_random_operations(
    db_session, admin, financier, leader, make_principal, make_scout, make_campout
):
    rng = random.Random(7)
    campout = await make_campout()
    adult = await make_principal(UserRole.PARENT, "Pat Parent")
    scout_ids = [(await make_scout(name)).id for name in ("Avery", "Blake", "Casey", "Devon")]
    campaign = await FundraisingService.create_campaign(
        db_session, financier, "Popcorn", campout.start_date, iba_percentage=35
    )
    campaign_id = campaign.data["campaign_id"]
    pending_ids = []
    
    def deposit():
        return TransactionService.bulk_record_iba_deposits(
            db_session, financier, [(rng.choice(scout_ids), _money(rng)) for _ in range(rng.randint(1, 3))], "Deposit"
        )
    
    def reclaim():
        return TransactionService.reclaim_iba(db_session, financier, rng.choice(scout_ids), _money(rng, high=2000), "Reclaim")
    
    def pay():
        beneficiary = adult.user_id if rng.random() < 0.3 else None
        return PaymentService.pay_from_iba(
            db_session, admin, campout.id, rng.choice(scout_ids), _money(rng, high=3000), beneficiary_adult_id=beneficiary
        )
    
    def troop_entry():
        tx_type = rng.choice([TransactionType.DUES, TransactionType.EXPENSE, TransactionType.DONATION_IN])
        return TransactionService.record_transaction(db_session, financier, tx_type, _money(rng), "Troop entry")
    
    def fundraising():
        return TransactionService.record_transaction(
            db_session, rng.choice([financier, leader]), TransactionType.FUNDRAISING_INCOME, _money(rng),
            "Popcorn sale", scout_id=rng.choice(scout_ids), fundraising_campaign_id=campaign_id,
        )
    
    def adult_expense():
        return PaymentService.log_expense(db_session, adult, campout.id, ExpensePayer.ADULT, _money(rng), "Supplies")
    
    def review():
        tx_id = pending_ids.pop(rng.randrange(len(pending_ids)))
        if rng.random() < 0.7:
            return TransactionService.approve_transaction(db_session, financier, tx_id)
        return TransactionService.reject_transaction(db_session, financier, tx_id)
    
    operations = [deposit, deposit, reclaim, pay, pay, troop_entry, fundraising, fundraising, adult_expense]
    outcomes = {"ok": 0, "rejected": 0}
    
    for step in range(120):
        operation = review if pending_ids and rng.random() < 0.25 else rng.choice(operations)
        result = await run_action(db_session, operation.__name__, operation)
        outcomes["ok" if result.success else "rejected"] += 1
        if result.success and result.data and result.data.get("status") == "PENDING":
            pending_ids.append(result.data["transaction_id"])
        
        report = await LedgerStore.reconcile(db_session)
        assert report.balanced, (step, operation.__name__, report.to_dict())
        
        lowest = await db_session.scalar(select(func.min(Scout.iba_balance)))
        assert lowest >= 0
    
    # Both paths must have been exercised
    assert outcomes["ok"] > 0
    assert outcomes["rejected"] > 0


@pytest.mark.asyncio
async def test_reconcile_reports_tampered_balance(db_session, financier, make_scout):
    scout = await make_scout("Avery")
    await TransactionService.bulk_record_iba_deposits(db_session, financier, [(scout.id, Decimal("25.00"))], "Deposit")
    
    # Simulate a write that bypassed the ledger
    stored = await db_session.get(Scout, scout.id, populate_existing=True)
    stored.iba_balance = Decimal("30.00")
    await db_session.commit()
    
    result = await TransactionService.reconcile_ledger(db_session, financier)
    
    assert result.message == "Ledger has mismatched balances"
    assert result.data["balanced"] is False
    assert result.data["mismatches"] == [
        {"scout_id": scout.id, "name": "Avery", "stored": "30.00", "derived": "25.00"}
    ]


@pytest.mark.asyncio
async def test_stale_version_is_rejected(session_factory, financier, make_scout):
    scout_id = (await make_scout("Avery")).id
    
    async with session_factory() as first, session_factory() as second:
        stale = await first.get(Scout, scout_id)
        
        await TransactionService.bulk_record_iba_deposits(second, financier, [(scout_id, Decimal("10.00"))], "Deposit")
        
        with pytest.raises(ConcurrencyConflictError):
            await BalanceAccessor.apply_delta(first, stale, Decimal("5.00"))
        await first.rollback()
        
        # A fresh lock sees the committed version and proceeds
        current = await BalanceAccessor.lock_scout(first, scout_id)
        assert current.iba_balance == Decimal("10.00")
        await BalanceAccessor.apply_delta(first, current, Decimal("-4.00"))
        await first.commit()
    
    async with session_factory() as check:
        scout = await check.get(Scout, scout_id)
        assert scout.iba_balance == Decimal("6.00")
        assert scout.version == 3


@pytest.mark.asyncio
async def test_bulk_deposits_are_all_or_nothing(db_session, financier, make_scout):
    scout = await make_scout("Avery")
    
    result = await run_action(db_session, "bulk_record_iba_deposits", lambda: TransactionService.bulk_record_iba_deposits(
        db_session, financier, [(scout.id, Decimal("20.00")), (9999, Decimal("20.00"))], "Deposit"
    ))
    
    assert result.success is False
    assert result.error_code == "ERR_NOT_FOUND_001"
    assert await db_session.scalar(select(func.count(Transaction.id))) == 0
    assert await db_session.scalar(select(Scout.iba_balance).where(Scout.id == scout.id)) == Decimal("0.00")
    
    invalid = await run_action(db_session, "bulk_record_iba_deposits", lambda: TransactionService.bulk_record_iba_deposits(
        db_session, financier, [(scout.id, Decimal("20.00")), (scout.id, Decimal("-1.00"))], ""
    ))
    assert set(invalid.issues) == {"description", "deposits.1.amount"}


@pytest.mark.asyncio
async def test_bulk_deposits(db_session, financier, make_scout):
    avery = await make_scout("Avery", Decimal("5.00"))
    blake = await make_scout("Blake")
    
    result = await TransactionService.bulk_record_iba_deposits(
        db_session, financier,
        [(avery.id, Decimal("20.00")), (blake.id, Decimal("15.50")), (avery.id, Decimal("4.50"))],
        "Summer camp savings",
    )
    
    assert result.data == {"count": 3, "total": "40.00"}
    balances = dict((await db_session.execute(select(Scout.id, Scout.iba_balance))).all())
    assert balances == {avery.id: Decimal("29.50"), blake.id: Decimal("15.50")}


@pytest.mark.asyncio
async def test_reclaim_requires_funds(db_session, financier, make_scout):
    scout = await make_scout("Avery")
    await TransactionService.bulk_record_iba_deposits(db_session, financier, [(scout.id, Decimal("12.00"))], "Deposit")
    
    with pytest.raises(InsufficientFundsError):
        await TransactionService.reclaim_iba(db_session, financier, scout.id, Decimal("12.01"), "Aged out")
    
    result = await TransactionService.reclaim_iba(db_session, financier, scout.id, Decimal("12.00"), "Aged out")
    
    assert result.data["iba_balance"] == "0.00"
    report = await LedgerStore.reconcile(db_session)
    assert report.balanced
    assert report.troop_balance == Decimal("12.00")


@pytest.mark.asyncio
async def test_reclaim_unknown_scout(db_session, financier):
    with pytest.raises(ResourceNotFoundError):
        await TransactionService.reclaim_iba(db_session, financier, 31337, Decimal("1.00"), "Nobody")


@pytest.mark.asyncio
async def test_pending_entry_can_be_corrected(db_session, leader, financier):
    submitted = await TransactionService.record_transaction(
        db_session, leader, TransactionType.EXPENSE, Decimal("40.00"), "Lantern fuel"
    )
    tx_id = submitted.data["transaction_id"]
    
    result = await TransactionService.update_transaction(db_session, leader, tx_id, Decimal("42.50"), "  Lantern fuel and mantles ")
    
    assert result.success
    assert result.data["amount"] == "42.50"
    tx = await db_session.get(Transaction, tx_id, populate_existing=True)
    assert tx.amount == Decimal("42.50")
    assert tx.description == "Lantern fuel and mantles"
    assert tx.status == TransactionStatus.PENDING
    
    audit = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == "TRANSACTION_UPDATED")
    )).scalars().one()
    assert audit.meta_data["previous_amount"] == "40.00"
    assert audit.meta_data["amount"] == "42.50"
    
    # The correction is what gets approved
    await TransactionService.approve_transaction(db_session, financier, tx_id)
    report = await LedgerStore.reconcile(db_session)
    assert report.balanced
    assert report.troop_balance == Decimal("-42.50")


@pytest.mark.asyncio
async def test_reviewed_entries_cannot_be_edited(db_session, leader, financier):
    approved = await TransactionService.record_transaction(
        db_session, financier, TransactionType.DUES, Decimal("25.00"), "Spring dues"
    )
    rejected = await TransactionService.record_transaction(
        db_session, leader, TransactionType.EXPENSE, Decimal("9.00"), "Snacks"
    )
    await TransactionService.reject_transaction(db_session, financier, rejected.data["transaction_id"])
    
    for tx_id in (approved.data["transaction_id"], rejected.data["transaction_id"]):
        with pytest.raises(InvalidStateError):
            await TransactionService.update_transaction(db_session, financier, tx_id, Decimal("1.00"), "Edited")
    
    tx = await db_session.get(Transaction, approved.data["transaction_id"], populate_existing=True)
    assert tx.amount == Decimal("25.00")
    assert tx.description == "Spring dues"


@pytest.mark.asyncio
async def test_update_transaction_checks_role_and_input(db_session, leader, make_principal):
    parent = await make_principal(UserRole.PARENT, "Pat Parent")
    submitted = await TransactionService.record_transaction(
        db_session, leader, TransactionType.EXPENSE, Decimal("12.00"), "Propane"
    )
    tx_id = submitted.data["transaction_id"]
    
    with pytest.raises(UnauthorizedError):
        await TransactionService.update_transaction(db_session, parent, tx_id, Decimal("1.00"), "Mine now")
    
    with pytest.raises(ValidationError) as excinfo:
        await TransactionService.update_transaction(db_session, leader, tx_id, Decimal("0.00"), " ")
    assert set(excinfo.value.details["issues"]) == {"amount", "description"}
    
    with pytest.raises(ResourceNotFoundError):
        await TransactionService.update_transaction(db_session, leader, 31337, Decimal("1.00"), "Missing")
    
    tx = await db_session.get(Transaction, tx_id, populate_existing=True)
    assert tx.amount == Decimal("12.00")
