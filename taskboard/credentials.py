"""Password hashing and bearer token handling."""
from __future__ import annotations

import base64
import hashlib
import json
import logging
import secrets
from datetime import timedelta
from typing import Callable, Optional

from cryptography.fernet import Fernet, InvalidToken
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from .errors import UnauthenticatedError

logger = logging.getLogger("taskboard.credentials")

DEFAULT_TOKEN_TTL = timedelta(hours=1)

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _derive_fernet_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class CredentialService:
    """Hashes passwords and issues/verifies short-lived access tokens.

    Tokens are Fernet tokens carrying the user id; Fernet's embedded timestamp
    bounds their lifetime to ``token_ttl``.
    """

    def __init__(self, secret: Optional[str] = None, *, token_ttl: timedelta = DEFAULT_TOKEN_TTL) -> None:
        if not secret:
            logger.warning(
                "No token secret configured; generated a random one. Tokens will not"
                " survive a restart."
            )
            secret = secrets.token_urlsafe(32)
        if token_ttl.total_seconds() <= 0:
            raise ValueError("Token lifetime must be positive")
        self._cipher = Fernet(_derive_fernet_key(secret))
        self._token_ttl = token_ttl

    @property
    def token_ttl(self) -> timedelta:
        return self._token_ttl

    def hash(self, password: str) -> str:
        return _pwd_context.hash(password)

    def check(self, password: str, credential: str) -> bool:
        if not credential:
            return False
        try:
            return _pwd_context.verify(password, credential)
        except ValueError:
            return False

    def issue(self, user_id: int) -> str:
        payload = json.dumps({"uid": user_id}).encode("utf-8")
        return self._cipher.encrypt(payload).decode("utf-8")

    def verify(self, token: str) -> int:
        """Return the user id carried by ``token`` or raise :class:`UnauthenticatedError`."""

        try:
            payload = self._cipher.decrypt(
                token.encode("utf-8"),
                ttl=int(self._token_ttl.total_seconds()),
            )
            user_id = json.loads(payload.decode("utf-8"))["uid"]
        except (InvalidToken, ValueError, KeyError, TypeError) as exc:
            raise UnauthenticatedError("Invalid or expired token") from exc
        if not isinstance(user_id, int):
            raise UnauthenticatedError("Invalid or expired token")
        return user_id


def build_token_dependency(credentials: CredentialService) -> Callable[..., int]:
    """Return a FastAPI dependency resolving the bearer token to a user id."""

    bearer = HTTPBearer(auto_error=False)

    def dependency(authorization: HTTPAuthorizationCredentials | None = Depends(bearer)) -> int:
        if authorization is None or authorization.scheme.lower() != "bearer":
            raise UnauthenticatedError("Access denied")
        return credentials.verify(authorization.credentials)

    return dependency


__all__ = ["CredentialService", "DEFAULT_TOKEN_TTL", "build_token_dependency"]
