"""
Transaction database model.

Troop ledger entries: income, expenses and IBA movements.
"""

from dataclasses import dataclass
from typing import Optional
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Date, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.ledger_enums import TransactionType, TransactionStatus, AccountKind


@dataclass(frozen=True)
class AccountRef:
    """Reference to a scout IBA or an adult user."""
    kind: AccountKind
    id: int


class Transaction(Base):
    """
    Transaction model.
    
    Immutable once APPROVED. Amount is always positive; the ledger effect
    (troop fund / scout IBA) follows from the type.
    
    Payment attribution is explicit:
    - `scout_id` is the scout account involved (funding source for
      CAMP_TRANSFER, recipient for IBA credits, subject of cash payments).
    - `beneficiary_kind` says whose campout share a payment covers:
      SCOUT means the scout in `scout_id`, ADULT means the user in `user_id`.
    """
    __tablename__ = "transactions"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    amount = Column(Numeric(12, 2), nullable=False)
    type = Column(Enum(TransactionType), nullable=False, index=True)
    description = Column(String(255), nullable=False)
    status = Column(Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False, index=True)
    transaction_date = Column(Date, nullable=True)
    
    # Links
    scout_id = Column(Integer, ForeignKey('scouts.id'), nullable=True, index=True)
    campout_id = Column(Integer, ForeignKey('campouts.id'), nullable=True, index=True)
    budget_category_id = Column(Integer, ForeignKey('budget_categories.id'), nullable=True, index=True)
    fundraising_campaign_id = Column(Integer, ForeignKey('fundraising_campaigns.id'), nullable=True, index=True)
    
    # Adult party (beneficiary of a payment, payee of a reimbursement)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    beneficiary_kind = Column(Enum(AccountKind), nullable=True)
    
    # Who entered it and who approved it
    recorded_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    approved_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    
    # Links every entry of a fundraising split to its IBA credit; such entries are protected
    iba_credit_id = Column(Integer, ForeignKey('transactions.id'), nullable=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    @property
    def payer(self) -> Optional[AccountRef]:
        """Account the money came from, when it came from a scout IBA."""
        if self.type in (TransactionType.CAMP_TRANSFER, TransactionType.IBA_RECLAIM) and self.scout_id is not None:
            return AccountRef(AccountKind.SCOUT, self.scout_id)
        return None
    
    @property
    def beneficiary(self) -> Optional[AccountRef]:
        """Account whose share this payment covers."""
        if self.beneficiary_kind == AccountKind.SCOUT:
            return AccountRef(AccountKind.SCOUT, self.scout_id)
        if self.beneficiary_kind == AccountKind.ADULT:
            return AccountRef(AccountKind.ADULT, self.user_id)
        return None
    
    def __repr__(self):
        return f"<Transaction(id={self.id}, type='{self.type.value}', amount={self.amount}, status='{self.status.value}')>"
