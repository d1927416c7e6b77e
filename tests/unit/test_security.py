from uuid import uuid4

import pytest

from app.core.security import create_actor_token, decode_actor_token

SECRET = "unit-test-secret-unit-test-secret"


def test_token_round_trip_carries_organization_and_actor() -> None:
    organization_id = uuid4()
    actor_id = uuid4()

    token, expires_at = create_actor_token(
        organization_id=organization_id,
        actor_id=actor_id,
        secret=SECRET,
        ttl_minutes=5,
    )
    claims = decode_actor_token(token, SECRET)

    assert claims.organization_id == organization_id
    assert claims.actor_id == actor_id
    assert claims.expires_at == expires_at.replace(microsecond=0)


def test_token_signed_with_other_secret_is_rejected() -> None:
    token, _ = create_actor_token(
        organization_id=uuid4(), actor_id=uuid4(), secret=SECRET, ttl_minutes=5
    )

    with pytest.raises(ValueError, match="signature"):
        decode_actor_token(token, "another-secret")


def test_expired_token_is_rejected() -> None:
    token, _ = create_actor_token(
        organization_id=uuid4(), actor_id=uuid4(), secret=SECRET, ttl_minutes=-1
    )

    with pytest.raises(ValueError, match="expired"):
        decode_actor_token(token, SECRET)


@pytest.mark.parametrize("token", ["", "no-dot", "abc.def", "!!.??"])
def test_malformed_tokens_are_rejected(token: str) -> None:
    with pytest.raises(ValueError):
        decode_actor_token(token, SECRET)
