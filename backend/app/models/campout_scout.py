"""
Campout scout registration model.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base


class CampoutScout(Base):
    """A scout registered for a campout. Counts toward headcount."""
    __tablename__ = "campout_scouts"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    campout_id = Column(Integer, ForeignKey('campouts.id'), nullable=False, index=True)
    scout_id = Column(Integer, ForeignKey('scouts.id'), nullable=False, index=True)
    
    registered_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    __table_args__ = (
        UniqueConstraint('campout_id', 'scout_id', name='uq_campout_scout'),
    )
