"""
auth/tokens.py -- Session tokens and password hashing.

Security design decisions:
  Tokens: HS256 JWTs assembled by TokenService from a constant header, a
       compact JSON claims payload and an HMAC-SHA256 signature, each segment
       base64url-encoded without padding (auth/codec.py). Building the token
       here rather than through jose.jwt gives every failure its own error
       type (InvalidToken / InvalidSignature / MalformedPayload /
       TokenExpired) instead of a single JWTError. The output is still a
       standard JWT: jose.jwt.decode() accepts it with the same secret.

  Signature check: hmac.compare_digest over the encoded signature segment,
       so comparison time does not depend on how many leading bytes match.

  Passwords: bcrypt directly. _DUMMY_HASH enables timing equalization in
       authenticate_user() so response time does not reveal whether an email
       is registered.

  Secret: one process-lifetime key from core.config. Changing it invalidates
       every outstanding token.

Layer rule: no imports from api/, library/ or cache/.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Optional

import bcrypt
from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError

from auth import codec
from auth.errors import InvalidSignatureError, InvalidTokenError, MalformedPayloadError, TokenExpiredError
from auth.models import Claims

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("folio.auth")

# base64url('{"alg":"HS256","typ":"JWT"}') -- the header never varies.
TOKEN_HEADER = "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9"

# ---------------------------------------------------------------------------
# Claims payload (wire form)
# ---------------------------------------------------------------------------


class _ClaimsPayload(BaseModel):
    """Strict wire schema of the payload segment.

    Extra keys are ignored so tokens carrying standard registered claims
    (sub, jti, ...) still parse.
    """

    model_config = ConfigDict(extra="ignore")

    user_id: StrictInt
    email: StrictStr
    username: Optional[StrictStr] = None
    exp: StrictInt
    iat: StrictInt


def _claims_to_json(claims: Claims) -> bytes:
    payload = {
        "user_id": claims.user_id,
        "email": claims.email,
        "username": claims.username,
        "exp": claims.expires_at,
        "iat": claims.issued_at,
    }
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _claims_from_json(raw: bytes) -> Claims:
    try:
        payload = _ClaimsPayload.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedPayloadError() from e
    return Claims(
        user_id=payload.user_id,
        email=payload.email,
        username=payload.username,
        issued_at=payload.iat,
        expires_at=payload.exp,
    )


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Creates and verifies signed session tokens.

    Stateless apart from the secret, so one instance is shared by all request
    handlers without locking. clock returns Unix seconds and is injectable
    for tests.

    Usage:
        tokens = TokenService(settings.secret_key)
        token, claims = tokens.issue(42, "a@b.com", "alice")
        claims = tokens.validate(token)
    """

    def __init__(self, secret: str | bytes, clock: Callable[[], float] = time.time) -> None:
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def _sign(self, signing_input: str) -> str:
        mac = hmac.new(self._secret, signing_input.encode("utf-8"), hashlib.sha256).digest()
        return codec.encode(mac)

    def create(self, claims: Claims) -> str:
        """Serialize and sign claims into "header.payload.signature"."""
        payload = codec.encode(_claims_to_json(claims))
        signing_input = f"{TOKEN_HEADER}.{payload}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def issue(self, user_id: int, email: str, username: str | None = None) -> tuple[str, Claims]:
        """Build fresh claims stamped with the current time and sign them."""
        claims = Claims.issue(user_id, email, username, self.now())
        token = self.create(claims)
        logger.debug("Token issued for user %d (expires %d)", user_id, claims.expires_at)
        return token, claims

    def validate(self, token: str) -> Claims:
        """Verify token and return its claims.

        Checks run in order: structure, signature, payload, expiry. A token
        whose exp equals the current second is still valid.

        Raises:
            InvalidTokenError: not exactly three non-empty segments.
            InvalidSignatureError: signature does not match header.payload.
            MalformedEncodingError: payload is not base64url.
            MalformedPayloadError: payload is not a claims JSON object.
            TokenExpiredError: exp is in the past.
        """
        parts = token.split(".")
        if len(parts) != 3 or not all(parts):
            raise InvalidTokenError()
        header, payload, signature = parts

        expected = self._sign(f"{header}.{payload}")
        if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
            raise InvalidSignatureError()

        claims = _claims_from_json(codec.decode(payload))

        if claims.expires_at < self.now():
            raise TokenExpiredError(claims.expires_at)
        return claims


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("folio_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user
