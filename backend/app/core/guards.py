"""
Security guards for role-based and ownership-based access control.

`can_act` is the single authorization predicate consulted by every
mutating operation, before any read of ledger state. `require_role`
protects endpoints that are role-gated outright.
"""

import enum
from dataclasses import dataclass, field
from typing import List, Optional, FrozenSet
from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.models.enums import UserRole
from backend.app.models.parent_scout import ParentScout
from backend.app.models.scout import Scout
from backend.app.core.dependencies import get_current_user
from backend.app.core.exceptions import UnauthorizedError


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, as supplied by the identity oracle."""
    user_id: int
    role: UserRole
    username: Optional[str] = None
    
    @classmethod
    def from_token(cls, payload: dict) -> "Principal":
        return cls(
            user_id=payload["user_id"],
            role=UserRole(payload["role"]),
            username=payload.get("sub"),
        )


class Action(str, enum.Enum):
    """Guarded operations."""
    CREATE_CAMPOUT = "CREATE_CAMPOUT"
    VIEW_CAMPOUT = "VIEW_CAMPOUT"
    REGISTER_SCOUT = "REGISTER_SCOUT"
    REGISTER_ADULT = "REGISTER_ADULT"
    REMOVE_PARTICIPANT = "REMOVE_PARTICIPANT"
    SWITCH_ADULT_ROLE = "SWITCH_ADULT_ROLE"
    LOG_TROOP_EXPENSE = "LOG_TROOP_EXPENSE"
    LOG_ADULT_EXPENSE = "LOG_ADULT_EXPENSE"
    EDIT_ADULT_EXPENSE = "EDIT_ADULT_EXPENSE"
    FINALIZE_CAMPOUT = "FINALIZE_CAMPOUT"
    BATCH_COLLECT_IBA = "BATCH_COLLECT_IBA"
    PAYOUT_ORGANIZERS = "PAYOUT_ORGANIZERS"
    CLOSE_CAMPOUT = "CLOSE_CAMPOUT"
    PAY_FROM_IBA = "PAY_FROM_IBA"
    RECORD_MANUAL_PAYMENT = "RECORD_MANUAL_PAYMENT"
    APPROVE_REIMBURSEMENT = "APPROVE_REIMBURSEMENT"
    RECORD_TRANSACTION = "RECORD_TRANSACTION"
    UPDATE_TRANSACTION = "UPDATE_TRANSACTION"
    REVIEW_TRANSACTION = "REVIEW_TRANSACTION"
    DELETE_TRANSACTION = "DELETE_TRANSACTION"
    RECORD_IBA_DEPOSIT = "RECORD_IBA_DEPOSIT"
    RECLAIM_IBA = "RECLAIM_IBA"
    MANAGE_FUNDRAISING = "MANAGE_FUNDRAISING"
    DISTRIBUTE_FUNDRAISING = "DISTRIBUTE_FUNDRAISING"
    VIEW_LEDGER = "VIEW_LEDGER"
    MANAGE_PARENT_LINKS = "MANAGE_PARENT_LINKS"


_FINANCIAL_ACTIONS = frozenset(Action) - {Action.MANAGE_PARENT_LINKS}

_LEADER_ACTIONS = frozenset({
    Action.CREATE_CAMPOUT,
    Action.VIEW_CAMPOUT,
    Action.REGISTER_SCOUT,
    Action.REGISTER_ADULT,
    Action.REMOVE_PARTICIPANT,
    Action.SWITCH_ADULT_ROLE,
    Action.LOG_TROOP_EXPENSE,
    Action.LOG_ADULT_EXPENSE,
    Action.EDIT_ADULT_EXPENSE,
    Action.FINALIZE_CAMPOUT,
    Action.PAY_FROM_IBA,
    Action.RECORD_MANUAL_PAYMENT,
    Action.RECORD_TRANSACTION,
    Action.UPDATE_TRANSACTION,
})

# Unconditional grants per role
ROLE_ACTIONS = {
    UserRole.ADMIN: frozenset(Action),
    UserRole.FINANCIER: _FINANCIAL_ACTIONS,
    UserRole.LEADER: _LEADER_ACTIONS,
    UserRole.PARENT: frozenset({Action.VIEW_CAMPOUT}),
    UserRole.SCOUT: frozenset({Action.VIEW_CAMPOUT}),
}

# Granted to a parent for scouts linked through ParentScout
PARENT_SCOUT_ACTIONS = frozenset({
    Action.REGISTER_SCOUT,
    Action.PAY_FROM_IBA,
    Action.RECORD_TRANSACTION,
})

# Granted to a scout user for their own scout record
SCOUT_SELF_ACTIONS = frozenset({
    Action.PAY_FROM_IBA,
})

# Granted to any adult acting on their own campout record/expenses
ADULT_SELF_ACTIONS = frozenset({
    Action.LOG_ADULT_EXPENSE,
    Action.EDIT_ADULT_EXPENSE,
    Action.SWITCH_ADULT_ROLE,
    Action.REMOVE_PARTICIPANT,
})


@dataclass(frozen=True)
class Ownership:
    """
    What the caller owns relative to the resource being touched.
    
    scout_id: scout the action targets, if any
    linked_scout_ids: scouts linked to the caller as a parent
    own_scout_id: the caller's own scout record (SCOUT role)
    subject_user_id: adult the action targets, if any
    """
    scout_id: Optional[int] = None
    linked_scout_ids: FrozenSet[int] = field(default_factory=frozenset)
    own_scout_id: Optional[int] = None
    subject_user_id: Optional[int] = None


NO_OWNERSHIP = Ownership()


def can_act(principal: Principal, action: Action, ownership: Ownership = NO_OWNERSHIP) -> bool:
    """
    Pure authorization predicate.
    
    Args:
        principal: Authenticated caller
        action: Operation being attempted
        ownership: Caller's relation to the target resource
        
    Returns:
        True if the caller may perform the action
    """
    if action in ROLE_ACTIONS.get(principal.role, frozenset()):
        return True
    
    if principal.role == UserRole.PARENT and action in PARENT_SCOUT_ACTIONS:
        if ownership.scout_id is not None and ownership.scout_id in ownership.linked_scout_ids:
            return True
    
    if principal.role == UserRole.SCOUT and action in SCOUT_SELF_ACTIONS:
        if ownership.scout_id is not None and ownership.scout_id == ownership.own_scout_id:
            return True
    
    if principal.role != UserRole.SCOUT and action in ADULT_SELF_ACTIONS:
        if ownership.subject_user_id is not None and ownership.subject_user_id == principal.user_id:
            return True
    
    return False


class AccessGuard:
    """
    Applies `can_act`, resolving ownership only when the role table alone
    does not grant the action.
    
    Usage:
        await AccessGuard.authorize(db, principal, Action.PAY_FROM_IBA, scout_id=scout_id)
    """
    
    @staticmethod
    def enforce(principal: Principal, action: Action, ownership: Ownership = NO_OWNERSHIP) -> None:
        """Raise UnauthorizedError if the predicate denies the action."""
        if not can_act(principal, action, ownership):
            raise UnauthorizedError()
    
    @staticmethod
    async def resolve_ownership(
        db: AsyncSession,
        principal: Principal,
        scout_id: Optional[int] = None,
        subject_user_id: Optional[int] = None
    ) -> Ownership:
        """
        Build the caller's Ownership. Reads only the caller's own links,
        never the target's balances.
        """
        linked: FrozenSet[int] = frozenset()
        own_scout_id = None
        
        if principal.role == UserRole.PARENT and scout_id is not None:
            result = await db.execute(
                select(ParentScout.scout_id).where(ParentScout.parent_id == principal.user_id)
            )
            linked = frozenset(result.scalars().all())
        
        if principal.role == UserRole.SCOUT and scout_id is not None:
            result = await db.execute(
                select(Scout.id).where(Scout.user_id == principal.user_id)
            )
            own_scout_id = result.scalar_one_or_none()
        
        return Ownership(
            scout_id=scout_id,
            linked_scout_ids=linked,
            own_scout_id=own_scout_id,
            subject_user_id=subject_user_id,
        )
    
    @staticmethod
    async def authorize(
        db: AsyncSession,
        principal: Principal,
        action: Action,
        scout_id: Optional[int] = None,
        subject_user_id: Optional[int] = None
    ) -> None:
        if can_act(principal, action):
            return
        ownership = await AccessGuard.resolve_ownership(
            db, principal, scout_id=scout_id, subject_user_id=subject_user_id
        )
        AccessGuard.enforce(principal, action, ownership)


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory gating a whole router or endpoint by role.
    
    Used where no ownership question exists, e.g. the admin-only
    parent-link routes:
    
        router = APIRouter(dependencies=[Depends(require_role([UserRole.ADMIN]))])
    
    Raises:
        HTTPException 403 if the caller's role is not in allowed_roles
    """
    allowed = {UserRole(role) for role in allowed_roles}
    
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        # decode_access_token already rejected unknown roles
        if UserRole(current_user["role"]) not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join(sorted(r.value for r in allowed))}"
            )
        return current_user
    
    return role_checker


async def get_principal(current_user: dict = Depends(get_current_user)) -> Principal:
    """FastAPI dependency turning the token payload into a Principal."""
    try:
        return Principal.from_token(current_user)
    except (KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid role in token"
        )
