"""
Ledger enumerations.
"""

import enum


class TransactionType(str, enum.Enum):
    """Transaction type enumeration."""
    EXPENSE = "EXPENSE"  # Troop money spent
    REIMBURSEMENT = "REIMBURSEMENT"  # Troop paying back an adult
    CAMP_TRANSFER = "CAMP_TRANSFER"  # Scout IBA -> campout fee
    REGISTRATION_INCOME = "REGISTRATION_INCOME"
    EVENT_PAYMENT = "EVENT_PAYMENT"  # Cash/manual fee payment
    FUNDRAISING_INCOME = "FUNDRAISING_INCOME"
    DUES = "DUES"
    IBA_DEPOSIT = "IBA_DEPOSIT"  # Outside money into a scout IBA
    IBA_RECLAIM = "IBA_RECLAIM"  # Scout IBA -> troop fund
    IBA_CREDIT = "IBA_CREDIT"  # Fundraising share credited to a scout IBA
    DONATION_IN = "DONATION_IN"


class TransactionStatus(str, enum.Enum):
    """Transaction approval status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AccountKind(str, enum.Enum):
    """Kind of account a payment is attributed to."""
    SCOUT = "SCOUT"
    ADULT = "ADULT"


# Types that pay a participant's campout share
CAMPOUT_PAYMENT_TYPES = frozenset({
    TransactionType.CAMP_TRANSFER,
    TransactionType.REGISTRATION_INCOME,
    TransactionType.EVENT_PAYMENT,
})

# Types that move a scout IBA balance; only created by dedicated operations
BALANCE_MOVING_TYPES = frozenset({
    TransactionType.CAMP_TRANSFER,
    TransactionType.IBA_DEPOSIT,
    TransactionType.IBA_RECLAIM,
    TransactionType.IBA_CREDIT,
})
