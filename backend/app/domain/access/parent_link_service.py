"""
Parent-scout links.

A link lets a parent act for a scout (register, pay from IBA, submit
transactions) and makes the scout's IBA available to cover the parent's
campout share during batch collection.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.parent_scout import ParentScout
from backend.app.models.scout import Scout
from backend.app.models.user import User
from backend.app.models.enums import UserRole
from backend.app.core.guards import AccessGuard, Action, Principal
from backend.app.core.exceptions import ConflictError, ResourceNotFoundError, ValidationError
from backend.app.db.session import unit_of_work
from backend.app.domain.results import ActionResult
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.revalidation import USERS_VIEW


class ParentLinkService:
    
    @staticmethod
    async def link(db: AsyncSession, principal: Principal, parent_id: int, scout_id: int) -> ActionResult:
        await AccessGuard.authorize(db, principal, Action.MANAGE_PARENT_LINKS)
        
        async with unit_of_work(db):
            parent = await db.get(User, parent_id)
            if not parent:
                raise ResourceNotFoundError("User", parent_id)
            if parent.role == UserRole.SCOUT:
                raise ValidationError.for_field("parent_id", "Scout accounts cannot be linked as parents")
            scout = await db.get(Scout, scout_id)
            if not scout:
                raise ResourceNotFoundError("Scout", scout_id)
            
            existing = await db.execute(
                select(ParentScout.id).where(
                    ParentScout.parent_id == parent_id,
                    ParentScout.scout_id == scout_id,
                )
            )
            if existing.scalar_one_or_none():
                raise ConflictError(f"{parent.name} is already linked to {scout.name}.")
            
            link = ParentScout(parent_id=parent_id, scout_id=scout_id)
            db.add(link)
            await db.flush()
            await log_event(
                db, AuditAction.PARENT_LINKED, actor=principal,
                metadata={"parent_id": parent_id, "scout_id": scout_id},
            )
        
        return ActionResult.ok(
            f"Linked {parent.name} to {scout.name}",
            data={"link_id": link.id, "parent_id": parent_id, "scout_id": scout_id},
            stale_views=[USERS_VIEW],
        )
    
    @staticmethod
    async def unlink(db: AsyncSession, principal: Principal, parent_id: int, scout_id: int) -> ActionResult:
        await AccessGuard.authorize(db, principal, Action.MANAGE_PARENT_LINKS)
        
        async with unit_of_work(db):
            result = await db.execute(
                select(ParentScout).where(
                    ParentScout.parent_id == parent_id,
                    ParentScout.scout_id == scout_id,
                )
            )
            link = result.scalar_one_or_none()
            if not link:
                raise ResourceNotFoundError("Parent link")
            await db.delete(link)
            await db.flush()
            await log_event(
                db, AuditAction.PARENT_UNLINKED, actor=principal,
                metadata={"parent_id": parent_id, "scout_id": scout_id},
            )
        
        return ActionResult.ok(
            "Parent unlinked",
            data={"parent_id": parent_id, "scout_id": scout_id},
            stale_views=[USERS_VIEW],
        )
    
    @staticmethod
    async def list_links(db: AsyncSession, principal: Principal, parent_id: int = None) -> ActionResult:
        await AccessGuard.authorize(db, principal, Action.MANAGE_PARENT_LINKS)
        
        query = select(ParentScout).order_by(ParentScout.parent_id, ParentScout.scout_id)
        if parent_id is not None:
            query = query.where(ParentScout.parent_id == parent_id)
        result = await db.execute(query)
        links = [
            {"link_id": link.id, "parent_id": link.parent_id, "scout_id": link.scout_id}
            for link in result.scalars().all()
        ]
        return ActionResult.ok("Parent links", data={"links": links})
