"""
Scout database model.

Carries the Individual Budget Account (IBA) balance.
"""

from decimal import Decimal
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.campout_enums import ScoutStatus


class Scout(Base):
    """
    Scout model.
    
    iba_balance is owned by the ledger: it only changes through
    BalanceAccessor, in the same unit of work as the Transaction row
    that justifies the change. `version` is checked and bumped on every
    write (optimistic concurrency), so two requests racing on a stale
    balance cannot both succeed.
    """
    __tablename__ = "scouts"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    
    # One-to-one with the scout's own login, if any
    user_id = Column(Integer, ForeignKey('users.id'), unique=True, nullable=True)
    
    status = Column(Enum(ScoutStatus), default=ScoutStatus.ACTIVE, nullable=False)
    
    iba_balance = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    version = Column(Integer, nullable=False)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    __mapper_args__ = {"version_id_col": version}
    
    def __repr__(self):
        return f"<Scout(id={self.id}, name='{self.name}', iba_balance={self.iba_balance})>"
