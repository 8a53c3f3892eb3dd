"""
Finance Pydantic schemas.

Request models for troop transactions, IBA movements, fundraising and
parent links.
"""

from pydantic import BaseModel, Field
from datetime import date
from decimal import Decimal
from typing import Optional, List

from backend.app.models.ledger_enums import TransactionType
from backend.app.models.fundraising_enums import AllocationCategory


class TransactionCreate(BaseModel):
    """Schema for recording a troop transaction."""
    type: TransactionType
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=255)
    transaction_date: Optional[date] = None
    scout_id: Optional[int] = Field(None, gt=0)
    campout_id: Optional[int] = Field(None, gt=0)
    budget_category_id: Optional[int] = Field(None, gt=0)
    fundraising_campaign_id: Optional[int] = Field(None, gt=0)


class TransactionUpdate(BaseModel):
    """Corrections to a transaction still awaiting review."""
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=255)


class IBADeposit(BaseModel):
    scout_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class BulkIBADeposit(BaseModel):
    """Several deposits recorded in one unit of work."""
    deposits: List[IBADeposit] = Field(..., min_length=1)
    description: str = Field(..., min_length=1, max_length=255)
    transaction_date: Optional[date] = None


class IBAReclaim(BaseModel):
    scout_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=255)


class FundraisingCampaignCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    start_date: date
    end_date: Optional[date] = None
    goal: Decimal = Field(Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)
    iba_percentage: int = Field(0, ge=0, le=100, description="Share of scout-linked income credited to the scout IBA")


class AllocationItem(BaseModel):
    category: AllocationCategory
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    scout_id: Optional[int] = Field(None, gt=0)
    description: Optional[str] = Field(None, max_length=255)


class FundraisingDistribution(BaseModel):
    total_raised: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    allocations: List[AllocationItem] = Field(default_factory=list)
    transaction_date: Optional[date] = None


class ParentLinkCreate(BaseModel):
    parent_id: int = Field(..., gt=0)
    scout_id: int = Field(..., gt=0)
