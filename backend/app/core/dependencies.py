"""
Authentication dependencies for FastAPI.

The identity provider issues the bearer token; this module verifies it
and answers "who is calling, with which role" for each request.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from backend.app.core.jwt import decode_access_token
from backend.app.db.session import get_db
from backend.app.models.user import User

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    FastAPI dependency for JWT authentication.
    
    Checks:
    1. Validates JWT token signature and expiry
    2. Requires sub, user_id and a known role claim
    3. Verifies user is still active in database (real-time check)
    
    Args:
        credentials: HTTP Bearer token from request header
        db: Database session for real-time user status check
        
    Returns:
        Decoded token payload containing user information
        
    Raises:
        HTTPException: 401 if authentication fails for any reason
    """
    token = credentials.credentials
    
    # 1. Decode and validate JWT
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    
    user_id = payload["user_id"]

    # 2. Real-time database check: Verify user is still active
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    
    return payload
