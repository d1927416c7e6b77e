import pytest

from app.core.config import Settings


def test_startup_availability_reset_is_off_by_default() -> None:
    settings = Settings(_env_file=None)

    assert settings.routing_reset_availability_on_startup is False
    settings.validate_security_settings()


def test_send_timeout_must_stay_below_publish_timeout() -> None:
    settings = Settings(
        _env_file=None,
        realtime_send_timeout_seconds=2.0,
        routing_publish_timeout_seconds=2.0,
    )

    with pytest.raises(ValueError, match="REALTIME_SEND_TIMEOUT_SECONDS"):
        settings.validate_security_settings()
