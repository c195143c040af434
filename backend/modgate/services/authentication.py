"""Bearer credential verification against the external authentication service."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from uuid import UUID

import jwt

from modgate.core.config import settings


class AuthenticationFailed(Exception):
    """The credential is missing, malformed, expired or forged."""


@dataclass(frozen=True)
class AuthenticatedIdentity:
    user_id: UUID


class Authenticator(ABC):
    @abstractmethod
    def verify(self, credential: str) -> AuthenticatedIdentity:
        """Verify a bearer credential and return the identity it belongs to."""
        pass  # pragma: no cover


class JWTAuthenticator(Authenticator):
    """Verifies HS256 access tokens signed with the auth service's shared secret."""

    def __init__(self, secret: str | None = None, audience: str | None = None):
        self.secret = secret or settings.AUTH_JWT_SECRET
        self.audience = audience or settings.AUTH_JWT_AUDIENCE

    def verify(self, credential: str) -> AuthenticatedIdentity:
        try:
            payload = jwt.decode(
                credential,
                self.secret,
                algorithms=["HS256"],
                audience=self.audience,
                options={"require": ["sub", "exp"]},
            )
            return AuthenticatedIdentity(user_id=UUID(payload["sub"]))
        except jwt.ExpiredSignatureError:
            raise AuthenticationFailed("Token has expired") from None
        except (jwt.InvalidTokenError, KeyError, ValueError):
            raise AuthenticationFailed("Invalid token") from None


@lru_cache
def get_authenticator() -> Authenticator:
    """Process-wide authenticator, resolved once and overridable in tests."""
    return JWTAuthenticator()
