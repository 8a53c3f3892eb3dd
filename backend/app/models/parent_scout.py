"""
Parent-Scout link model.

Authorizes a parent to act on behalf of a scout.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base


class ParentScout(Base):
    __tablename__ = "parent_scouts"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    parent_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    scout_id = Column(Integer, ForeignKey('scouts.id'), nullable=False, index=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    __table_args__ = (
        UniqueConstraint('parent_id', 'scout_id', name='uq_parent_scout'),
    )
    
    def __repr__(self):
        return f"<ParentScout(parent_id={self.parent_id}, scout_id={self.scout_id})>"
