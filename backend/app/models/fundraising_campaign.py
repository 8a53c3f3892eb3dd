"""
Fundraising campaign database model.
"""

from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.fundraising_enums import FundraisingStatus


class FundraisingCampaign(Base):
    """
    Fundraising campaign.
    
    iba_percentage of every scout-linked income is credited to that
    scout's IBA.
    """
    __tablename__ = "fundraising_campaigns"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    goal = Column(Numeric(12, 2), default=0, nullable=False)
    iba_percentage = Column(Integer, default=0, nullable=False)
    status = Column(Enum(FundraisingStatus), default=FundraisingStatus.ACTIVE, nullable=False)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<FundraisingCampaign(id={self.id}, name='{self.name}', iba_percentage={self.iba_percentage})>"
