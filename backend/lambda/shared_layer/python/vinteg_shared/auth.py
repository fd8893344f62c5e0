"""vinteg_shared.auth — Password hashing and bearer session tokens.

Passwords are hashed with bcrypt (cost 12 by default). Sessions are HS256
JWTs signed with JWT_SECRET and carrying {id, role, email, iat, exp}; the
server keeps no session table, so validity is signature + expiry only.

verify_token() deliberately collapses every failure (malformed, expired,
foreign signature) into None so callers cannot leak why a token was refused.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import bcrypt
import jwt

from vinteg_shared.config import BCRYPT_ROUNDS, JWT_SECRET, JWT_TTL_SECONDS
from vinteg_shared.errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

__all__ = [
    "ROLE_ADMIN",
    "ROLE_EMPLOYEE",
    "Session",
    "hash_password",
    "issue_token",
    "require_admin",
    "require_session",
    "verify_password",
    "verify_token",
]

ROLE_ADMIN = "ADMIN"
ROLE_EMPLOYEE = "EMPLOYEE"
_ALGORITHM = "HS256"
# bcrypt ignores everything past 72 bytes; truncate explicitly so hash and
# verify always see the same input.
_BCRYPT_MAX_BYTES = 72


@dataclass(frozen=True)
class Session:
    user_id: str
    role: str
    email: str
    issued_at: int
    expires_at: int

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:_BCRYPT_MAX_BYTES],
            hashed.encode("utf-8"),
        )
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def issue_token(
    claims: Dict[str, Any],
    *,
    secret: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> str:
    issued_at = int(now if now is not None else time.time())
    payload = dict(claims)
    payload["iat"] = issued_at
    payload["exp"] = issued_at + (ttl_seconds if ttl_seconds is not None else JWT_TTL_SECONDS)
    return jwt.encode(payload, secret or JWT_SECRET, algorithm=_ALGORITHM)


def verify_token(token: str, *, secret: Optional[str] = None) -> Optional[Dict[str, Any]]:
    if not token or not isinstance(token, str):
        return None
    try:
        return jwt.decode(
            token,
            secret or JWT_SECRET,
            algorithms=[_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.PyJWTError:
        return None


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


def require_session(request: Any) -> Session:
    """Resolve the caller's session from `Authorization: Bearer <token>`.

    Raises Unauthorized (401) when the header is missing or the token is
    not valid; the cause of an invalid token is never exposed.
    """
    token = _extract_bearer(request.header("authorization"))
    if token is None:
        raise Unauthorized("Unauthorized: Missing token")
    claims = verify_token(token)
    if claims is None or not claims.get("id"):
        raise Unauthorized("Unauthorized: Invalid or expired token")
    return Session(
        user_id=str(claims["id"]),
        role=str(claims.get("role") or ""),
        email=str(claims.get("email") or ""),
        issued_at=int(claims.get("iat") or 0),
        expires_at=int(claims["exp"]),
    )


def require_admin(session: Session, message: str = "Forbidden") -> Session:
    if not session.is_admin:
        raise Forbidden(message)
    return session
