"""
Supabase access token verification.

WHY: Users sign in through Supabase Auth on the frontend; the backend only
has to verify the HS256 access token Supabase issued and read the user id
(`sub`) out of it. No passwords are handled here.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from boinvit.core.config import settings
from boinvit.core.exceptions import TokenExpiredError, TokenInvalidError


@dataclass
class AuthenticatedUser:
    """Identity extracted from a verified Supabase access token."""

    id: str
    email: Optional[str] = None
    role: str = "authenticated"


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify a Supabase access token and return its claims.

    Args:
        token: Raw bearer token

    Returns:
        Decoded claims

    Raises:
        TokenExpiredError: If the token has expired
        TokenInvalidError: If the signature, audience or format is wrong
    """
    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )

    except jwt.ExpiredSignatureError:
        raise TokenExpiredError(message="Token has expired")

    except JWTError as e:
        raise TokenInvalidError(
            message="Invalid token",
            error=str(e),
        )


def user_from_claims(claims: Dict[str, Any]) -> AuthenticatedUser:
    """Build the request user from verified claims."""
    user_id = claims.get("sub")
    if not user_id:
        raise TokenInvalidError(message="Invalid token: missing subject")

    return AuthenticatedUser(
        id=str(user_id),
        email=claims.get("email"),
        role=claims.get("role", "authenticated"),
    )
