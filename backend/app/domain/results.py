"""
Operation boundary.

Every mutating operation runs through `run_action`: domain errors and
database errors are rolled back and turned into a structured result, so
no exception escapes to the caller and no partial write survives. On
success the affected views are signalled stale.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from backend.app.core.exceptions import (
    AppException,
    ValidationError,
    UnauthorizedError,
    ConflictError,
    ConcurrencyConflictError,
)
from backend.app.services.revalidation import signal_stale

logger = logging.getLogger("troop_treasury.actions")


@dataclass
class ActionResult:
    success: bool
    message: Optional[str] = None
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    issues: Dict[str, List[str]] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)
    status_code: int = 200
    stale_views: Sequence[str] = ()
    
    @classmethod
    def ok(cls, message: str, data: Any = None, stale_views: Sequence[str] = ()) -> "ActionResult":
        return cls(success=True, message=message, data=data, stale_views=tuple(stale_views))
    
    @classmethod
    def from_error(cls, exc: AppException) -> "ActionResult":
        issues = exc.details.get("issues", {}) if isinstance(exc, ValidationError) else {}
        details = {} if isinstance(exc, ValidationError) else dict(exc.details)
        return cls(
            success=False,
            error=exc.message,
            error_code=exc.error_code,
            issues=issues,
            details=details,
            status_code=exc.status_code,
        )
    
    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "message": self.message, "data": self.data}
        body = {"success": False, "error": self.error, "error_code": self.error_code}
        if self.issues:
            body["issues"] = self.issues
        if self.details:
            body["details"] = self.details
        return body


async def run_action(
    db: AsyncSession,
    name: str,
    operation: Callable[[], Awaitable[ActionResult]]
) -> ActionResult:
    """
    Run `operation` and convert any failure into an ActionResult.
    
    Args:
        db: Session the operation writes through
        name: Operation name for logging
        operation: Zero-argument coroutine factory returning ActionResult
    """
    try:
        result = await operation()
    except AppException as exc:
        await db.rollback()
        if isinstance(exc, UnauthorizedError):
            logger.warning("%s denied (%s)", name, exc.error_code)
        else:
            logger.warning("%s rejected (%s): %s", name, exc.error_code, exc.message)
        return ActionResult.from_error(exc)
    except StaleDataError:
        await db.rollback()
        error = ConcurrencyConflictError()
        logger.warning("%s rejected (%s): concurrent balance update", name, error.error_code)
        return ActionResult.from_error(error)
    except IntegrityError:
        await db.rollback()
        error = ConflictError("This record conflicts with an existing one.")
        logger.warning(
            "%s rejected (%s): uniqueness or reference constraint", name, error.error_code, exc_info=True
        )
        return ActionResult.from_error(error)
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("%s failed with a database error", name)
        return ActionResult(
            success=False,
            error="A database error occurred. No changes were saved.",
            error_code="ERR_DB_001",
            status_code=500,
        )
    
    logger.info("%s succeeded: %s", name, result.message)
    if result.stale_views:
        await signal_stale(result.stale_views)
    return result
