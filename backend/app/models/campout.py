"""
Campout database model.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Date, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.campout_enums import CampoutStatus


class Campout(Base):
    """
    Campout model.
    
    Follows a strict lifecycle: OPEN -> READY_FOR_PAYMENT -> CLOSED.
    Once CLOSED, no Transaction or AdultExpense may reference it.
    """
    __tablename__ = "campouts"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    location = Column(String(255), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    
    estimated_cost = Column(Numeric(12, 2), default=0, nullable=False)
    
    status = Column(Enum(CampoutStatus), default=CampoutStatus.OPEN, nullable=False, index=True)
    
    finalized_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<Campout(id={self.id}, name='{self.name}', status='{self.status.value}')>"
