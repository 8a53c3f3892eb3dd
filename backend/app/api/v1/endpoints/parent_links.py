"""
Parent Link API Endpoints (ADMIN only).
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from backend.app.db.session import get_db
from backend.app.core.guards import Principal, get_principal, require_role
from backend.app.models.enums import UserRole
from backend.app.schemas.finance import ParentLinkCreate
from backend.app.domain.results import run_action
from backend.app.domain.access.parent_link_service import ParentLinkService
from backend.app.api.v1.responses import render

router = APIRouter(
    prefix="/admin/parent-links",
    tags=["Admin"],
    dependencies=[Depends(require_role([UserRole.ADMIN]))],
)


@router.get("")
async def list_parent_links(
    parent_id: Optional[int] = Query(None),
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "list_parent_links",
                              lambda: ParentLinkService.list_links(db, principal, parent_id=parent_id))
    return render(result)


@router.post("", status_code=status.HTTP_201_CREATED)
async def link_parent_to_scout(
    data: ParentLinkCreate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "link_parent_to_scout",
                              lambda: ParentLinkService.link(db, principal, data.parent_id, data.scout_id))
    return render(result, success_status=status.HTTP_201_CREATED)


@router.delete("/{parent_id}/{scout_id}")
async def unlink_parent_from_scout(
    parent_id: int,
    scout_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db)
):
    result = await run_action(db, "unlink_parent_from_scout",
                              lambda: ParentLinkService.unlink(db, principal, parent_id, scout_id))
    return render(result)
