"""
Service token authentication for the admin API.

Callers (the admin dashboard, scripts/import_spreadsheet.py) send an HS256 JWT
signed with SERVICE_AUTH_SECRET, either as `Authorization: Bearer <token>` or
as an `X-Service-Token` header.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel

from src.settings import settings

ALGORITHM = "HS256"


class AuthenticatedUser(BaseModel):
    """The service or operator a request was made by."""

    service_name: str
    subject: str | None = None


def create_service_token(
    service_name: str, expires_hours: int = 24, secret: str | None = None
) -> str:
    """Sign a token for `service_name` valid for `expires_hours`."""
    issued = datetime.now(timezone.utc)
    claims = {
        "service_name": service_name,
        "sub": f"service:{service_name}",
        "iss": settings.service_auth_issuer,
        "aud": settings.service_auth_audience,
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(hours=expires_hours)).timestamp()),
    }
    return jwt.encode(claims, secret or settings.service_auth_secret, algorithm=ALGORITHM)


def read_service_token(token: str) -> AuthenticatedUser:
    """
    Verify signature, issuer, audience and expiry of a service token.

    Raises:
        jwt.InvalidTokenError: If any check fails
    """
    claims = jwt.decode(
        token,
        settings.service_auth_secret,
        algorithms=[ALGORITHM],
        audience=settings.service_auth_audience,
        issuer=settings.service_auth_issuer,
        options={"require": ["exp", "service_name"]},
    )
    return AuthenticatedUser(service_name=claims["service_name"], subject=claims.get("sub"))


def _request_tokens(request: Request) -> list[str]:
    tokens = []
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        tokens.append(credentials)
    if header_token := request.headers.get("x-service-token"):
        tokens.append(header_token)
    return tokens


async def get_current_user(request: Request) -> AuthenticatedUser:
    """FastAPI dependency: the caller of a protected endpoint, or 401."""
    detail = "Authentication required. Provide a service token."
    for token in _request_tokens(request):
        try:
            return read_service_token(token)
        except jwt.ExpiredSignatureError:
            detail = "Service token has expired"
        except jwt.InvalidTokenError as e:
            detail = f"Invalid service token: {e}"

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


CurrentUserDep = Annotated[AuthenticatedUser, Depends(get_current_user)]
