"""
Identity token handling.

Bearer tokens are minted by the identity provider with the shared secret.
The API only verifies them; `issue_principal_token` exists for the seed
script, the deployment smoke check and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from backend.app.core.config import settings
from backend.app.models.enums import UserRole

REQUIRED_CLAIMS = ("sub", "user_id", "role")


def issue_principal_token(
    user_id: int,
    role: UserRole,
    username: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Sign a token for a troop member.

    Example payload:
        {
            "sub": "jane.parent@troop.example",
            "user_id": 123,
            "role": "PARENT",
            "exp": 1234567890
        }
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    claims = {
        "sub": username,
        "user_id": user_id,
        "role": UserRole(role).value,
        "exp": expire,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify signature and expiry and return the claims.

    Returns:
        The claims when the token is valid and names a known role, None otherwise
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    if any(not payload.get(claim) for claim in REQUIRED_CLAIMS):
        return None
    if payload["role"] not in UserRole._value2member_map_:
        return None
    return payload
