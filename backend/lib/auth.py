"""
Bearer token authentication for the session API
"""
from typing import Optional

from fastapi import HTTPException, Header

from .logger import get_logger
from .supabase_client import get_supabase_client

logger = get_logger("backend.auth")


async def get_current_user(authorization: Optional[str] = Header(None)) -> dict:
    """
    Validate the Supabase access token and return the user.

    Args:
        authorization: Bearer token from Authorization header

    Returns:
        dict: User id and email

    Raises:
        HTTPException: If the header is missing or the token is invalid
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization[len("Bearer "):]

    try:
        user_response = get_supabase_client().auth.get_user(token)
    except Exception as e:
        logger.warning("Token validation failed", data={"error": str(e)})
        raise HTTPException(status_code=401, detail="Could not validate credentials")

    if not user_response or not user_response.user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return {"id": user_response.user.id, "email": user_response.user.email}
