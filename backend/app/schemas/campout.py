"""
Campout Pydantic schemas.

Request models for roster, expense, payment and settlement endpoints.
Monetary fields are Decimal with cent precision; floats never reach the
ledger.
"""

from pydantic import BaseModel, Field, model_validator
from datetime import date
from decimal import Decimal
from typing import Annotated, Optional, Dict, Literal

from backend.app.models.campout_enums import CampoutAdultRole, ParticipantKind, ExpensePayer


class CampoutCreate(BaseModel):
    """Schema for creating a campout."""
    name: str = Field(..., min_length=1, max_length=150)
    location: str = Field(..., min_length=1, max_length=255)
    start_date: date
    end_date: date
    estimated_cost: Decimal = Field(Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)


class ParticipantRegister(BaseModel):
    """Register a scout, or give an adult a role."""
    kind: ParticipantKind
    participant_id: int = Field(..., gt=0)
    role: CampoutAdultRole = CampoutAdultRole.ATTENDEE


class AdultRoleSwitch(BaseModel):
    from_role: CampoutAdultRole
    to_role: CampoutAdultRole


class ExpenseCreate(BaseModel):
    """
    Log a campout expense.
    
    payer TROOP: paid from troop funds.
    payer ADULT: paid out of pocket by payer_id (defaults to the caller).
    """
    payer: ExpensePayer
    payer_id: Optional[int] = Field(None, gt=0)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=255)


class AdultExpenseUpdate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=255)


class IBAPayment(BaseModel):
    """Pay from a scout's IBA, for the scout or for a named adult."""
    scout_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    beneficiary_adult_id: Optional[int] = Field(None, gt=0)


class ManualPayment(BaseModel):
    """Cash or check payment for exactly one participant."""
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    scout_id: Optional[int] = Field(None, gt=0)
    adult_id: Optional[int] = Field(None, gt=0)
    description: Optional[str] = Field(None, max_length=255)
    
    @model_validator(mode="after")
    def exactly_one_participant(self):
        if (self.scout_id is None) == (self.adult_id is None):
            raise ValueError("Specify exactly one of scout_id or adult_id")
        return self


class BatchCollectRequest(BaseModel):
    """Optional override of the configured collection mode."""
    mode: Optional[Literal["ALL_OR_NOTHING", "PER_PARTICIPANT"]] = None


PayoutAmount = Annotated[Decimal, Field(max_digits=12, decimal_places=2)]


class PayoutRequest(BaseModel):
    """Adult id -> payout amount. Zero amounts are skipped."""
    payouts: Dict[int, PayoutAmount] = Field(default_factory=dict)
