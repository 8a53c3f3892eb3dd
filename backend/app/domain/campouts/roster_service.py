"""
Campout roster: creation, registration and adult roles.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.campout import Campout
from backend.app.models.campout_scout import CampoutScout
from backend.app.models.campout_adult import CampoutAdult
from backend.app.models.scout import Scout
from backend.app.models.user import User
from backend.app.models.enums import UserRole
from backend.app.models.campout_enums import CampoutStatus, CampoutAdultRole, ParticipantKind
from backend.app.core.money import to_money, ZERO
from backend.app.core.guards import AccessGuard, Action, Principal
from backend.app.core.exceptions import (
    ValidationError,
    ConflictError,
    ResourceNotFoundError,
    InvalidStateError,
)
from backend.app.db.session import unit_of_work
from backend.app.domain.campouts.lifecycle import load_campout, ensure_not_closed
from backend.app.domain.results import ActionResult
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.revalidation import campout_view, CAMPOUTS_VIEW

logger = logging.getLogger("troop_treasury.roster")


async def get_adult_assignment(db: AsyncSession, campout_id: int, adult_id: int) -> Optional[CampoutAdult]:
    result = await db.execute(
        select(CampoutAdult).where(
            CampoutAdult.campout_id == campout_id,
            CampoutAdult.adult_id == adult_id,
        ).with_for_update()
    )
    return result.scalar_one_or_none()


async def ensure_organizer(db: AsyncSession, campout_id: int, adult_id: int) -> CampoutAdult:
    """Give the adult the ORGANIZER role on the campout, keeping other roles."""
    assignment = await get_adult_assignment(db, campout_id, adult_id)
    if assignment is None:
        assignment = CampoutAdult(campout_id=campout_id, adult_id=adult_id, is_organizer=True, is_attendee=False)
        db.add(assignment)
    elif not assignment.is_organizer:
        assignment.set_role(CampoutAdultRole.ORGANIZER, True)
    await db.flush()
    return assignment


class RosterService:
    
    @staticmethod
    async def create_campout(
        db: AsyncSession,
        principal: Principal,
        name: str,
        location: str,
        start_date: date,
        end_date: date,
        estimated_cost: Decimal = ZERO
    ) -> ActionResult:
        await AccessGuard.authorize(db, principal, Action.CREATE_CAMPOUT)
        
        issues = {}
        if not name or not name.strip():
            issues["name"] = ["Name is required"]
        if not location or not location.strip():
            issues["location"] = ["Location is required"]
        if end_date < start_date:
            issues["end_date"] = ["End date must be on or after the start date"]
        estimated_cost = to_money(estimated_cost)
        if estimated_cost < ZERO:
            issues["estimated_cost"] = ["Estimated cost cannot be negative"]
        if issues:
            raise ValidationError("Invalid fields", issues=issues)
        
        async with unit_of_work(db):
            campout = Campout(
                name=name.strip(),
                location=location.strip(),
                start_date=start_date,
                end_date=end_date,
                estimated_cost=estimated_cost,
                status=CampoutStatus.OPEN,
            )
            db.add(campout)
            await db.flush()
            await log_event(db, AuditAction.CAMPOUT_CREATED, actor=principal, campout_id=campout.id,
                            metadata={"name": campout.name})
        logger.info("Created campout %s (%s)", campout.id, campout.name)
        
        return ActionResult.ok(
            "Campout created.",
            data={"campout_id": campout.id, "status": campout.status.value},
            stale_views=[CAMPOUTS_VIEW],
        )
    
    @staticmethod
    async def register_participant(
        db: AsyncSession,
        principal: Principal,
        campout_id: int,
        kind: ParticipantKind,
        participant_id: int,
        role: CampoutAdultRole = CampoutAdultRole.ATTENDEE
    ) -> ActionResult:
        """
        Register a scout, or give an adult a role on the campout.
        
        An adult already holding a different role gains the new one on
        the same assignment row.
        """
        if kind == ParticipantKind.SCOUT:
            await AccessGuard.authorize(db, principal, Action.REGISTER_SCOUT, scout_id=participant_id)
        else:
            await AccessGuard.authorize(db, principal, Action.REGISTER_ADULT, subject_user_id=participant_id)
        
        async with unit_of_work(db):
            campout = await load_campout(db, campout_id, for_update=True)
            ensure_not_closed(campout)
            
            if kind == ParticipantKind.SCOUT:
                scout = await db.get(Scout, participant_id)
                if not scout:
                    raise ResourceNotFoundError("Scout", participant_id)
                existing = await db.execute(
                    select(CampoutScout.id).where(
                        CampoutScout.campout_id == campout_id,
                        CampoutScout.scout_id == participant_id,
                    )
                )
                if existing.scalar_one_or_none():
                    raise ConflictError(f"{scout.name} is already registered for this campout.")
                db.add(CampoutScout(campout_id=campout_id, scout_id=participant_id))
                display_name = scout.name
                roles = []
            else:
                adult = await db.get(User, participant_id)
                if not adult:
                    raise ResourceNotFoundError("User", participant_id)
                if adult.role == UserRole.SCOUT:
                    raise ValidationError.for_field("participant_id", "Scout accounts cannot join as adults")
                
                assignment = await get_adult_assignment(db, campout_id, participant_id)
                if assignment is None:
                    assignment = CampoutAdult(campout_id=campout_id, adult_id=participant_id,
                                              is_organizer=False, is_attendee=False)
                    db.add(assignment)
                elif assignment.has_role(role):
                    raise ConflictError(f"{adult.name} is already an {role.value.lower()} for this campout.")
                assignment.set_role(role, True)
                display_name = adult.name
                roles = sorted(r.value for r in assignment.roles)
            
            await db.flush()
            await log_event(
                db, AuditAction.PARTICIPANT_REGISTERED, actor=principal, campout_id=campout_id,
                metadata={"kind": kind.value, "participant_id": participant_id, "roles": roles},
            )
        logger.info("Registered %s %s on campout %s with roles %s", kind.value, participant_id, campout_id, roles)
        
        return ActionResult.ok(
            f"{display_name} registered.",
            data={"kind": kind.value, "participant_id": participant_id, "roles": roles},
            stale_views=[campout_view(campout_id)],
        )
    
    @staticmethod
    async def remove_participant(
        db: AsyncSession,
        principal: Principal,
        campout_id: int,
        kind: ParticipantKind,
        participant_id: int,
        role: Optional[CampoutAdultRole] = None
    ) -> ActionResult:
        """
        Remove a scout registration, one adult role, or (role=None) all of
        an adult's roles.
        """
        if kind == ParticipantKind.SCOUT:
            await AccessGuard.authorize(db, principal, Action.REMOVE_PARTICIPANT)
        else:
            await AccessGuard.authorize(db, principal, Action.REMOVE_PARTICIPANT, subject_user_id=participant_id)
        
        async with unit_of_work(db):
            campout = await load_campout(db, campout_id, for_update=True)
            ensure_not_closed(campout)
            
            if kind == ParticipantKind.SCOUT:
                result = await db.execute(
                    select(CampoutScout).where(
                        CampoutScout.campout_id == campout_id,
                        CampoutScout.scout_id == participant_id,
                    )
                )
                registration = result.scalar_one_or_none()
                if not registration:
                    raise ResourceNotFoundError("Registration", participant_id)
                await db.delete(registration)
                remaining = []
            else:
                assignment = await get_adult_assignment(db, campout_id, participant_id)
                if assignment is None or (role is not None and not assignment.has_role(role)):
                    raise ResourceNotFoundError("Adult assignment", participant_id)
                if role is not None:
                    assignment.set_role(role, False)
                remaining = sorted(r.value for r in assignment.roles) if role is not None else []
                if not remaining:
                    await db.delete(assignment)
            
            await db.flush()
            await log_event(
                db, AuditAction.PARTICIPANT_REMOVED, actor=principal, campout_id=campout_id,
                metadata={
                    "kind": kind.value,
                    "participant_id": participant_id,
                    "role": role.value if role else None,
                },
            )
        logger.info(
            "Removed %s %s from campout %s (role %s)", kind.value, participant_id, campout_id, role.value if role else "ALL",
        )
        
        return ActionResult.ok(
            "Participant removed.",
            data={"kind": kind.value, "participant_id": participant_id, "remaining_roles": remaining},
            stale_views=[campout_view(campout_id)],
        )
    
    @staticmethod
    async def switch_adult_role(
        db: AsyncSession,
        principal: Principal,
        campout_id: int,
        adult_id: int,
        from_role: CampoutAdultRole,
        to_role: CampoutAdultRole
    ) -> ActionResult:
        """Swap one role for another on the adult's single assignment row."""
        await AccessGuard.authorize(db, principal, Action.SWITCH_ADULT_ROLE, subject_user_id=adult_id)
        
        if from_role == to_role:
            raise ValidationError.for_field("to_role", "New role must differ from the current role")
        
        async with unit_of_work(db):
            campout = await load_campout(db, campout_id, for_update=True)
            ensure_not_closed(campout)
            
            assignment = await get_adult_assignment(db, campout_id, adult_id)
            if assignment is None or not assignment.has_role(from_role):
                raise ResourceNotFoundError("Adult assignment", adult_id)
            if assignment.has_role(to_role):
                raise InvalidStateError(
                    f"Adult already holds the {to_role.value} role; remove {from_role.value} instead."
                )
            
            assignment.set_role(from_role, False)
            assignment.set_role(to_role, True)
            await db.flush()
            await log_event(
                db, AuditAction.ADULT_ROLE_SWITCHED, actor=principal, campout_id=campout_id,
                metadata={"adult_id": adult_id, "from": from_role.value, "to": to_role.value},
            )
        logger.info("Switched adult %s on campout %s from %s to %s", adult_id, campout_id, from_role.value, to_role.value)
        
        return ActionResult.ok(
            f"Role switched to {to_role.value}.",
            data={"adult_id": adult_id, "roles": sorted(r.value for r in assignment.roles)},
            stale_views=[campout_view(campout_id)],
        )
