"""
FastAPI dependencies for authentication and tenant access.

WHY: Dashboard routes are called with the user's Supabase session token.
These dependencies verify it and resolve the business the caller owns, so
route handlers never see another tenant's data.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from boinvit.core.auth import AuthenticatedUser, user_from_claims, verify_token
from boinvit.core.exceptions import (
    AuthenticationError,
    BusinessAccessDenied,
    TokenExpiredError,
    TokenInvalidError,
)
from boinvit.dao.business import BusinessDAO
from boinvit.db.session import get_db
from boinvit.models.business import Business


# WHY: auto_error=False so a missing header produces our 401 body rather
# than Starlette's 403.
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    """
    Get the authenticated Supabase user from the bearer token.

    Raises:
        AuthenticationError: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise AuthenticationError(message="Missing bearer token")

    try:
        claims = verify_token(credentials.credentials)
    except (TokenExpiredError, TokenInvalidError) as e:
        raise AuthenticationError(
            message=e.message,
            status_code=e.status_code,
        )

    return user_from_claims(claims)


async def get_owned_business(
    business_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Business:
    """
    Resolve `business_id` from the path, ensuring the caller owns it.

    Raises:
        BusinessAccessDenied: 404 when the business is missing or belongs
            to someone else
    """
    business = await BusinessDAO(db).get_owned(business_id, current_user.id)
    if business is None:
        raise BusinessAccessDenied(business_id=business_id)
    return business
