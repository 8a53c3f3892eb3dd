"""
Audit Log Database Model.

Tracks every ledger mutation and settlement action for treasurer review.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.
    
    Written in the same unit of work as the mutation it describes, so a
    rolled-back mutation leaves no audit row behind.
    
    Events logged:
    - CAMPOUT_FINALIZED / CAMPOUT_CLOSED
    - IBA_BATCH_COLLECTED / ORGANIZERS_PAID_OUT
    - IBA_PAYMENT / MANUAL_PAYMENT_RECORDED
    - EXPENSE_LOGGED / REIMBURSEMENT_APPROVED
    - TRANSACTION_* / IBA_DEPOSITS_RECORDED / FUNDRAISING_DISTRIBUTED
    """
    __tablename__ = "audit_logs"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)
    
    # What action was performed
    action = Column(String(100), nullable=False, index=True)
    
    # Campout the action was about, if any
    campout_id = Column(Integer, index=True, nullable=True)
    
    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)
    
    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    
    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, campout={self.campout_id})>"
