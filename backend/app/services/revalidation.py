"""
View revalidation signal.

After a mutation commits, the views that show the touched data are
announced on a Redis pub/sub channel so the UI layer can drop its cached
copies. Fire-and-forget: publishing never fails the mutation.
"""

import logging
from typing import Iterable

from backend.app.core.redis_client import publish_revalidation
from backend.app.core.reliability import revalidation_circuit_breaker, CircuitOpenError

logger = logging.getLogger("troop_treasury.revalidation")


def campout_view(campout_id: int) -> str:
    return f"/dashboard/campouts/{campout_id}"


def scout_view(scout_id: int) -> str:
    return f"/dashboard/scouts/{scout_id}"


DASHBOARD_VIEW = "/dashboard"
FINANCE_VIEW = "/dashboard/finance"
CAMPOUTS_VIEW = "/dashboard/campouts"
FUNDRAISING_VIEW = "/dashboard/finance/fundraising"
USERS_VIEW = "/dashboard/users"


async def signal_stale(paths: Iterable[str]) -> bool:
    """
    Announce that the given views are stale.
    
    Returns:
        True if the signal was published, False if it was dropped
    """
    paths = sorted(set(paths))
    if not paths:
        return False
    
    try:
        await revalidation_circuit_breaker.call(publish_revalidation, {"paths": paths})
    except CircuitOpenError:
        logger.warning("Revalidation circuit open, dropped signal for %s", paths)
        return False
    except Exception as exc:
        logger.warning("Revalidation publish failed for %s: %s", paths, exc)
        return False
    
    return True
