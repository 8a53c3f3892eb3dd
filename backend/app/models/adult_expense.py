"""
Adult expense database model.
"""

from sqlalchemy import Column, Integer, String, Numeric, Boolean, ForeignKey, DateTime
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AdultExpense(Base):
    """
    Out-of-pocket campout expense paid by an adult, pending reimbursement.
    
    Counts toward campout cost whether or not it has been reimbursed.
    is_reimbursed is a one-way gate: once set, the row is immutable.
    """
    __tablename__ = "adult_expenses"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    campout_id = Column(Integer, ForeignKey('campouts.id'), nullable=False, index=True)
    adult_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(255), nullable=False)
    
    is_reimbursed = Column(Boolean, default=False, nullable=False, index=True)
    reimbursed_at = Column(DateTime(timezone=True), nullable=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<AdultExpense(id={self.id}, amount={self.amount}, reimbursed={self.is_reimbursed})>"
