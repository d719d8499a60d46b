"""JWT access token handling for the admin API.

Tokens are issued by the shop's auth service; this backend only validates
them (stateless, no database lookup). create_access_token exists for
service-to-service calls and tests.

Claims:
- sub: user id
- role: "ADMIN" | "INTEGRATOR" | "OPS" | "VIEWER"
- email: user's email address
- iat / exp: issued-at and expiration timestamps

Algorithm HS256 with the JWT_SECRET environment variable.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Dict, Any
import jwt


def _get_jwt_secret() -> str:
    """Get JWT_SECRET from environment.

    Raises:
        ValueError: If JWT_SECRET is not set
    """
    secret = os.getenv('JWT_SECRET')
    if not secret:
        raise ValueError("JWT_SECRET environment variable is not set")
    return secret


def create_access_token(user_id: str, role: str, email: str, expires_minutes: int = 60) -> str:
    """Create a signed access token.

    Args:
        user_id: User identifier (sub claim)
        role: User's role
        email: User's email address
        expires_minutes: Token lifetime

    Returns:
        str: Signed JWT token
    """
    now = datetime.now(timezone.utc)
    payload = {
        'sub': str(user_id),
        'role': role,
        'email': email,
        'iat': int(now.timestamp()),
        'exp': int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(payload, _get_jwt_secret(), algorithm='HS256')


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT token.

    Raises:
        jwt.ExpiredSignatureError: If token has expired
        jwt.InvalidTokenError: If token is invalid or tampered
        ValueError: If JWT_SECRET is not set
    """
    secret = _get_jwt_secret()

    try:
        return jwt.decode(token, secret, algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        raise jwt.ExpiredSignatureError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise jwt.InvalidTokenError(f"Invalid token: {str(e)}")
