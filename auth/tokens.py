"""
auth/tokens.py -- Bearer token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. A token carries the claim {"id": <user id>}
       and is signed with SECRET_KEY. The secret is fixed for the lifetime of
       the issuer; rotating it invalidates every outstanding token.

  Expiry: tokens carry no `exp` claim unless expire_seconds > 0. The
       no-expiry default matches the deployed behaviour and is reported by a
       startup warning in core/service.py. There is no revocation list.

  decode() distinguishes three failure reasons so the authentication pipeline
       can report them: malformed (not a JWT, or no id claim),
       invalid_signature (structurally fine, signature does not verify) and
       expired.

Layer rule: no imports from docstore/, votes/ or content/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

_ALGORITHM = "HS256"

MALFORMED = "malformed"
INVALID_SIGNATURE = "invalid_signature"
EXPIRED = "expired"


class TokenError(Exception):
    """A token could not be decoded. reason is one of the constants above."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class TokenIssuer:
    """Sign and verify bearer tokens with one shared secret.

    Usage:
        issuer = TokenIssuer(settings.secret_key)
        token = issuer.issue(user.id)
        issuer.decode(token)  # -> user.id
    """

    def __init__(self, secret: str, expire_seconds: int = 0) -> None:
        if not secret:
            raise ValueError("A signing secret is required.")
        if expire_seconds < 0:
            raise ValueError("expire_seconds must be >= 0")
        self._secret = secret
        self.expire_seconds = expire_seconds

    def issue(self, user_id: str) -> str:
        payload: dict = {"id": user_id}
        if self.expire_seconds > 0:
            payload["exp"] = datetime.now(timezone.utc) + timedelta(seconds=self.expire_seconds)
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def decode(self, token: str) -> str:
        """Return the user id a token was issued for, or raise TokenError."""
        if not isinstance(token, str) or not token:
            raise TokenError(MALFORMED)
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenError(MALFORMED) from exc
        if not isinstance(claims.get("id"), str) or not claims["id"]:
            raise TokenError(MALFORMED)
        try:
            payload = jwt.decode(token, self._secret, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenError(EXPIRED) from exc
        except JWTError as exc:
            raise TokenError(INVALID_SIGNATURE) from exc
        return payload["id"]
