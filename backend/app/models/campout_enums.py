"""
Campout and roster enumerations.
"""

import enum


class CampoutStatus(str, enum.Enum):
    """Campout lifecycle. Linear, no back-transitions."""
    OPEN = "OPEN"  # Collecting registrations and expenses
    READY_FOR_PAYMENT = "READY_FOR_PAYMENT"  # Costs finalized, collecting payments
    CLOSED = "CLOSED"  # Settled, no new ledger entries


class CampoutAdultRole(str, enum.Enum):
    """Role an adult holds on a campout. An adult may hold both."""
    ORGANIZER = "ORGANIZER"  # Plans the trip, pays upfront, gets reimbursed
    ATTENDEE = "ATTENDEE"  # Owes a per-person share


class ScoutStatus(str, enum.Enum):
    """Scout membership status."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ParticipantKind(str, enum.Enum):
    """Kind of campout participant."""
    SCOUT = "SCOUT"
    ADULT = "ADULT"


class ExpensePayer(str, enum.Enum):
    """Who paid for a logged campout expense."""
    TROOP = "TROOP"
    ADULT = "ADULT"
