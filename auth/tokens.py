"""
auth/tokens.py -- JWT codec and signed-cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry id, username, roles, iat and exp.
       verify() never raises for a bad token: it returns a VerificationError
       whose kind is one of a closed enum, so callers match on the kind
       instead of on exception class names.

  Cookie: the browser session cookie holds the same JWT, wrapped in an
       itsdangerous signature keyed by COOKIE_SECRET. A cookie whose signature
       does not check out is treated as if it were absent.

  Secret: sourced from core.config.get_settings() by the caller. A generated
       secret is valid only for the lifetime of the process.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from itsdangerous import BadSignature, Signer
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Identity
from core.config import AUTH_COOKIE_NAME

logger = logging.getLogger("s4.auth")

_ALGORITHM = "HS256"
_COOKIE_SALT = "s4.auth-cookie"


# ---------------------------------------------------------------------------
# JWT encode / verify
# ---------------------------------------------------------------------------


class VerificationErrorKind(str, Enum):
    expired = "expired"
    malformed = "malformed"
    invalid_payload = "invalid_payload"
    other = "other"


@dataclass(frozen=True)
class VerificationError:
    kind: VerificationErrorKind
    detail: str = ""
    cause: BaseException | None = None


class JwtCodec:
    """Sign and verify bearer tokens.

    Example:
        codec = JwtCodec()
        token = codec.sign(identity, settings.jwt_secret, 3600)
        result = codec.verify(token, settings.jwt_secret)
        if isinstance(result, VerificationError): ...
    """

    def __init__(self, algorithm: str = _ALGORITHM, clock: Callable[[], float] = time.time) -> None:
        self.algorithm = algorithm
        self._clock = clock

    def sign(self, identity: Identity, secret: str, ttl_seconds: int) -> str:
        now = int(self._clock())
        payload = {
            "id": identity.id,
            "username": identity.username,
            "roles": list(identity.roles),
            "iat": now,
            "exp": now + ttl_seconds,
        }
        if identity.allowed_locations:
            payload["allowed_locations"] = list(identity.allowed_locations)
        return jwt.encode(payload, secret, algorithm=self.algorithm)

    def verify(self, token: str, secret: str) -> Identity | VerificationError:
        """Check signature and expiry, then the payload shape.

        python-jose verifies the signature before it validates exp, so an
        expired verdict always refers to a genuine token.
        """
        try:
            payload = jwt.decode(token, secret, algorithms=[self.algorithm], options={"require_exp": True})
        except ExpiredSignatureError as exc:
            return VerificationError(VerificationErrorKind.expired, str(exc), exc)
        except JWTError as exc:
            return VerificationError(VerificationErrorKind.malformed, str(exc), exc)
        except Exception as exc:
            return VerificationError(VerificationErrorKind.other, repr(exc), exc)

        user_id = payload.get("id")
        username = payload.get("username")
        roles = payload.get("roles")
        if not user_id or not username or not isinstance(roles, list):
            return VerificationError(VerificationErrorKind.invalid_payload, "missing id, username or roles")

        locations = payload.get("allowed_locations")
        return Identity(
            id=str(user_id),
            username=str(username),
            roles=[str(r) for r in roles],
            allowed_locations=[str(loc) for loc in locations] if isinstance(locations, list) else [],
        )


# ---------------------------------------------------------------------------
# Signed cookie
# ---------------------------------------------------------------------------


def _signer(secret: str) -> Signer:
    return Signer(secret, salt=_COOKIE_SALT)


def sign_cookie_value(value: str, secret: str) -> str:
    return _signer(secret).sign(value).decode("utf-8")


def unsign_cookie_value(raw: str | None, secret: str) -> str | None:
    """Return the original value of a signed cookie, or None if absent or tampered."""
    if not raw:
        return None
    try:
        value = _signer(secret).unsign(raw).decode("utf-8")
    except BadSignature:
        logger.debug("Auth cookie signature rejected")
        return None
    return value or None


def set_auth_cookie(response, token: str, cookie_secret: str, options: dict) -> None:
    """Write the JWT as a signed, httpOnly cookie on the response.

    options comes from Settings.auth_cookie_options() so cookie lifetime
    matches token lifetime.
    """
    response.set_cookie(AUTH_COOKIE_NAME, value=sign_cookie_value(token, cookie_secret), **options)


def clear_auth_cookie(response) -> None:
    response.delete_cookie(AUTH_COOKIE_NAME, path="/")
