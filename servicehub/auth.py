"""
This module contains the extraction of the acting user from a bearer token.
"""
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import settings

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """
    The authenticated actor of a request.

    Attributes:
        user_id (int): Identifier of the acting user.
        role (str): client, provider or admin.
    """
    user_id: int
    role: str


def get_auth_context(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthContext:
    """
    Dependency that verifies the bearer token and returns the acting user.
    """
    if not creds or creds.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
        )

    try:
        payload = jwt.decode(creds.credentials, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    subject = payload.get("sub", payload.get("id"))
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token carries no user id",
        )
    return AuthContext(user_id=user_id, role=str(payload.get("role") or "client").lower())


def require_role(*roles: str):
    """
    Dependency factory that only lets the given roles through.
    """
    allowed = {r.lower() for r in roles}

    def dependency(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if auth.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access forbidden for this role",
            )
        return auth

    return dependency
