from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Any, Iterable
import hmac
import uuid

from jose import JWTError, jwt

from partner_rewards.config import Settings
from partner_rewards.core.exceptions import ForbiddenError, ValidationError

DEFAULT_ADMIN_ROLES = ("sovra_admin",)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as asserted by the portal's access token."""
    id: str
    role: str
    name: Optional[str] = None

    def has_role(self, roles: Iterable[str]) -> bool:
        return self.role in set(roles)


def create_access_token(
    settings: Settings,
    subject: str | uuid.UUID,
    role: str,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Create a JWT access token.

    The portal's auth layer issues tokens in production; this is used
    by operational scripts and tests.
    """
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": str(subject),
        "role": role,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "jti": str(uuid.uuid4()),
        "type": "access"
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_token(settings: Settings, token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None


def actor_from_token(settings: Settings, token: str) -> Optional[Actor]:
    """
    Verify an access token and return the actor it identifies.

    Returns:
        Actor or None if the token is invalid, expired or not an access token
    """
    payload = decode_token(settings, token)
    if payload is None:
        return None

    if payload.get("type") != "access" or not payload.get("sub"):
        return None

    return Actor(
        id=str(payload["sub"]),
        role=str(payload.get("role") or ""),
        name=payload.get("name"),
    )


def verify_cron_secret(settings: Settings, token: Optional[str]) -> bool:
    """Constant-time check of the cron bearer token. An unset secret never matches."""
    if not settings.CRON_SECRET or not token:
        return False
    return hmac.compare_digest(token.encode(), settings.CRON_SECRET.encode())


def require_admin(actor: Optional[Actor], admin_roles: Iterable[str]) -> Actor:
    """Raise ForbiddenError unless the actor holds an admin role."""
    if actor is None or not actor.has_role(admin_roles):
        raise ForbiddenError(
            "Admin rights required for manual overrides",
            {"actor_id": actor.id if actor else None},
        )
    return actor


MIN_REASON_LENGTH = 10


def require_reason(reason: Optional[str]) -> str:
    """Manual overrides need a justification of at least MIN_REASON_LENGTH characters."""
    cleaned = (reason or "").strip()
    if len(cleaned) < MIN_REASON_LENGTH:
        raise ValidationError(
            f"Reason must be at least {MIN_REASON_LENGTH} characters",
            {"reason_length": len(cleaned)},
        )
    return cleaned
