"""
Campout adult assignment model.
"""

from sqlalchemy import Column, Integer, Boolean, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.campout_enums import CampoutAdultRole


class CampoutAdult(Base):
    """
    Role set of one adult on one campout.
    
    One row per (campout, adult). Roles are flags on the row, so switching
    or dropping a role is a single-row update instead of delete+recreate.
    A row with no roles left is deleted.
    """
    __tablename__ = "campout_adults"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    campout_id = Column(Integer, ForeignKey('campouts.id'), nullable=False, index=True)
    adult_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    
    is_organizer = Column(Boolean, default=False, nullable=False)
    is_attendee = Column(Boolean, default=False, nullable=False)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    __table_args__ = (
        UniqueConstraint('campout_id', 'adult_id', name='uq_campout_adult'),
    )
    
    @property
    def roles(self) -> frozenset:
        roles = set()
        if self.is_organizer:
            roles.add(CampoutAdultRole.ORGANIZER)
        if self.is_attendee:
            roles.add(CampoutAdultRole.ATTENDEE)
        return frozenset(roles)
    
    def has_role(self, role: CampoutAdultRole) -> bool:
        return role in self.roles
    
    def set_role(self, role: CampoutAdultRole, value: bool) -> None:
        if role == CampoutAdultRole.ORGANIZER:
            self.is_organizer = value
        else:
            self.is_attendee = value
    
    def __repr__(self):
        return f"<CampoutAdult(campout_id={self.campout_id}, adult_id={self.adult_id}, roles={sorted(r.value for r in self.roles)})>"
