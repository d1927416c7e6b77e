from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

TOKEN_VERSION = 1


@dataclass(frozen=True, slots=True)
class ActorClaims:
    """Verified caller context: which organization and which agent is acting."""

    organization_id: UUID
    actor_id: UUID
    expires_at: datetime


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(raw: str) -> bytes:
    padded = raw + ("=" * (-len(raw) % 4))
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _sign(payload_segment: str, secret: str) -> bytes:
    return hmac.new(
        secret.encode("utf-8"),
        payload_segment.encode("utf-8"),
        hashlib.sha256,
    ).digest()


def create_actor_token(
    *,
    organization_id: UUID,
    actor_id: UUID,
    secret: str,
    ttl_minutes: int,
) -> tuple[str, datetime]:
    """Issue a signed actor token.

    Real tokens come from the identity provider; this is used by the seed
    script and by tests.
    """
    now = datetime.now(UTC)
    expires_at = now + timedelta(minutes=ttl_minutes)
    payload = {
        "v": TOKEN_VERSION,
        "org": str(organization_id),
        "sub": str(actor_id),
        "exp": int(expires_at.timestamp()),
        "iat": int(now.timestamp()),
    }
    payload_raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode(
        "utf-8"
    )
    payload_segment = _b64url_encode(payload_raw)
    token = f"{payload_segment}.{_b64url_encode(_sign(payload_segment, secret))}"
    return token, expires_at


def decode_actor_token(token: str, secret: str) -> ActorClaims:
    try:
        payload_segment, signature_segment = token.split(".", 1)
    except ValueError as exc:
        raise ValueError("Malformed token") from exc

    try:
        actual_signature = _b64url_decode(signature_segment)
    except (ValueError, TypeError) as exc:
        raise ValueError("Malformed token signature") from exc

    if not hmac.compare_digest(_sign(payload_segment, secret), actual_signature):
        raise ValueError("Invalid token signature")

    try:
        payload = json.loads(_b64url_decode(payload_segment).decode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise ValueError("Malformed token payload") from exc

    if not isinstance(payload, dict):
        raise ValueError("Malformed token payload")
    if payload.get("v") != TOKEN_VERSION:
        raise ValueError("Unsupported token version")

    try:
        organization_id = UUID(str(payload["org"]))
        actor_id = UUID(str(payload["sub"]))
        expires_at = datetime.fromtimestamp(int(payload["exp"]), UTC)
    except (KeyError, ValueError, TypeError) as exc:
        raise ValueError("Malformed token payload") from exc

    if expires_at <= datetime.now(UTC):
        raise ValueError("Token expired")

    return ActorClaims(
        organization_id=organization_id,
        actor_id=actor_id,
        expires_at=expires_at,
    )
