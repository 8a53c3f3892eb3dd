"""
Audit logging service for ledger mutations and settlement actions.

Audit rows are added to the caller's unit of work (flush, no commit), so
they commit or roll back together with the mutation they describe.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog
from backend.app.core.guards import Principal


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Campout roster
    CAMPOUT_CREATED = "CAMPOUT_CREATED"
    PARTICIPANT_REGISTERED = "PARTICIPANT_REGISTERED"
    PARTICIPANT_REMOVED = "PARTICIPANT_REMOVED"
    ADULT_ROLE_SWITCHED = "ADULT_ROLE_SWITCHED"
    
    # Campout expenses and payments
    EXPENSE_LOGGED = "EXPENSE_LOGGED"
    ADULT_EXPENSE_UPDATED = "ADULT_EXPENSE_UPDATED"
    ADULT_EXPENSE_DELETED = "ADULT_EXPENSE_DELETED"
    IBA_PAYMENT = "IBA_PAYMENT"
    MANUAL_PAYMENT_RECORDED = "MANUAL_PAYMENT_RECORDED"
    REIMBURSEMENT_APPROVED = "REIMBURSEMENT_APPROVED"
    
    # Settlement
    CAMPOUT_FINALIZED = "CAMPOUT_FINALIZED"
    IBA_BATCH_COLLECTED = "IBA_BATCH_COLLECTED"
    ORGANIZERS_PAID_OUT = "ORGANIZERS_PAID_OUT"
    CAMPOUT_CLOSED = "CAMPOUT_CLOSED"
    
    # Troop ledger
    TRANSACTION_RECORDED = "TRANSACTION_RECORDED"
    TRANSACTION_UPDATED = "TRANSACTION_UPDATED"
    TRANSACTION_APPROVED = "TRANSACTION_APPROVED"
    TRANSACTION_REJECTED = "TRANSACTION_REJECTED"
    TRANSACTION_DELETED = "TRANSACTION_DELETED"
    IBA_DEPOSITS_RECORDED = "IBA_DEPOSITS_RECORDED"
    IBA_RECLAIMED = "IBA_RECLAIMED"
    
    # Fundraising
    FUNDRAISER_CREATED = "FUNDRAISER_CREATED"
    FUNDRAISER_STATUS_CHANGED = "FUNDRAISER_STATUS_CHANGED"
    FUNDRAISING_DISTRIBUTED = "FUNDRAISING_DISTRIBUTED"
    
    # Access
    PARENT_LINKED = "PARENT_LINKED"
    PARENT_UNLINKED = "PARENT_UNLINKED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor: Optional[Principal] = None,
    campout_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Add an audit row to the current unit of work.
    
    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor: Principal performing the action (None for system actions)
        campout_id: Campout the action concerns, if any
        metadata: Additional context as JSON (amounts as strings)
        
    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor.user_id if actor else None,
        actor_username=actor.username if actor else None,
        action=action,
        campout_id=campout_id,
        meta_data=metadata
    )
    
    db.add(audit_log)
    await db.flush()
    
    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    campout_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.
    
    Args:
        db: Database session
        campout_id: Filter by campout
        action: Filter by action type
        limit: Maximum number of records to return
        
    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))
    
    if campout_id:
        query = query.where(AuditLog.campout_id == campout_id)
    
    if action:
        query = query.where(AuditLog.action == action)
    
    query = query.limit(limit)
    
    result = await db.execute(query)
    return result.scalars().all()
