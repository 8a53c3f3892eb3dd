"""
Fundraising enumerations.
"""

import enum


class FundraisingStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class AllocationCategory(str, enum.Enum):
    """Where a slice of fundraising proceeds goes."""
    SCOUT = "SCOUT"  # Credited to a scout IBA
    EXTERNAL = "EXTERNAL"  # Paid out (gift, donation out)
    TROOP = "TROOP"  # Stays in the troop fund
