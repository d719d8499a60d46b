"""FastAPI dependencies for authentication and authorization.

Usage:
    @router.get("/sync/status")
    def sync_status(actor: Actor = Depends(require_role(UserRole.VIEWER))):
        ...
"""

from dataclasses import dataclass
from typing import Callable

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .jwt import decode_token
from .roles import UserRole, has_permission


security = HTTPBearer()


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, built from token claims."""
    user_id: str
    role: UserRole
    email: str

    @property
    def label(self) -> str:
        return f"admin:{self.email or self.user_id}"


def get_current_actor(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Actor:
    """Validate the bearer token and return the caller.

    Raises:
        HTTPException 401: If token is missing, invalid, expired or lacks claims
    """
    try:
        payload = decode_token(credentials.credentials)
        user_id = payload.get("sub")
        if not user_id:
            raise ValueError("missing user ID claim")
        role = UserRole(payload.get("role"))
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token claims: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Actor(user_id=user_id, role=role, email=payload.get("email") or "")


def require_role(required_role: UserRole) -> Callable:
    """Create a dependency that enforces role-based access control.

    Higher roles inherit permissions from lower roles
    (ADMIN > INTEGRATOR > OPS > VIEWER).

    Raises:
        HTTPException 403: If the caller's role is insufficient
    """

    def role_dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not has_permission(actor.role, required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required role: {required_role.value}",
            )
        return actor

    return role_dependency
