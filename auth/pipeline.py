"""
auth/pipeline.py -- Resolve a bearer token to an authenticated user.

verify() is a pure function of (token, store state): it never raises for a bad
token and never mutates anything. It returns one of three results:

  Authenticated(user_id)      token decoded and the user exists
  Unauthenticated(reason)     missing | malformed | invalid_signature |
                              expired | not_found
  AuthError(error)            the store failed while resolving the user

require() is the hard variant used by resource handlers before any mutation:
it raises Unauthorized or InternalError instead of returning a result, so an
unauthenticated call stops before touching the store.

Layer rule: no imports from votes/ or content/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from auth.store import CredentialStore
from auth.tokens import TokenError, TokenIssuer
from core.errors import InternalError, Unauthorized

logger = logging.getLogger("threadboard.auth")

MISSING = "missing"
NOT_FOUND = "not_found"

_BEARER_SCHEME = "Bearer"


@dataclass(frozen=True)
class Authenticated:
    user_id: str


@dataclass(frozen=True)
class Unauthenticated:
    reason: str


@dataclass(frozen=True)
class AuthError:
    error: InternalError


AuthResult = Union[Authenticated, Unauthenticated, AuthError]


class AuthenticationPipeline:
    """Token -> user id, with the failure reason kept when it fails."""

    def __init__(self, issuer: TokenIssuer, credentials: CredentialStore) -> None:
        self.issuer = issuer
        self.credentials = credentials

    def verify(self, token: Optional[str]) -> AuthResult:
        if not token:
            return Unauthenticated(MISSING)
        try:
            user_id = self.issuer.decode(token)
        except TokenError as exc:
            return Unauthenticated(exc.reason)
        try:
            exists = self.credentials.exists(user_id)
        except InternalError as exc:
            return AuthError(exc)
        if not exists:
            return Unauthenticated(NOT_FOUND)
        return Authenticated(user_id)

    def authenticate_header(self, value: Optional[str]) -> AuthResult:
        """Verify an Authorization header value ("Bearer <token>" or a bare token)."""
        token = (value or "").strip()
        scheme, _, rest = token.partition(" ")
        if scheme.lower() == _BEARER_SCHEME.lower():
            token = rest.strip()
        return self.verify(token)

    def require(self, token: Optional[str]) -> str:
        """Return the caller's user id, or raise Unauthorized / InternalError.

        Accepts either a bare token or a full "Bearer <token>" header value.
        """
        result = self.authenticate_header(token)
        if isinstance(result, Authenticated):
            return result.user_id
        if isinstance(result, AuthError):
            raise result.error
        logger.debug("Rejected token: %s", result.reason)
        raise Unauthorized(f"Authentication required ({result.reason}).")
