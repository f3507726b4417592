"""
Authentication for SprintSync API.

Bearer tokens are HS256 JWTs carrying the user id in `sub`, an audience and an
expiry. Issuing tokens belongs to the identity provider; `issue_token` exists
for it and for tests. This module verifies them and exposes the resulting user
id as a FastAPI dependency.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
import structlog

from sprintsync.infrastructure.exceptions import UnauthorizedError

logger = structlog.get_logger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "sprintsync:api"


class TokenAuthenticator:
    """Issues and verifies signed JWT bearer tokens."""

    def __init__(self, secret: str, lifetime_seconds: int = 3600, audience: str = JWT_AUDIENCE):
        if not secret:
            raise ValueError("Authentication secret must not be empty")
        self._secret = secret
        self.lifetime_seconds = lifetime_seconds
        self.audience = audience

    def issue_token(self, user_id: str, lifetime_seconds: Optional[int] = None) -> str:
        now = datetime.now(timezone.utc)
        lifetime = self.lifetime_seconds if lifetime_seconds is None else lifetime_seconds
        payload = {
            "sub": user_id,
            "aud": self.audience,
            "iat": now,
            "exp": now + timedelta(seconds=lifetime),
        }
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    async def authenticate(self, token: str) -> str:
        """Return the user id carried by a valid token."""
        if not token:
            raise UnauthorizedError("Missing authentication token")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                audience=self.audience,
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("Token expired")
        except jwt.InvalidTokenError as e:
            logger.debug("jwt_decode_failed", error=str(e))
            raise UnauthorizedError("Invalid authentication token")

        user_id = payload.get("sub")
        if not user_id:
            raise UnauthorizedError("Invalid token: missing subject")
        return user_id


async def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """
    FastAPI dependency that enforces Bearer token authentication.

    Usage:
        @router.get("/endpoint")
        async def my_endpoint(user_id: str = Depends(require_user)):
            ...
    """
    if not credentials:
        raise UnauthorizedError("Missing authentication token")

    authenticator: TokenAuthenticator = request.app.state.container.authenticator
    try:
        return await authenticator.authenticate(credentials.credentials)
    except UnauthorizedError:
        logger.warning("auth_rejected", path=request.url.path, method=request.method)
        raise
