"""
Tests for settings validation and CareNest defaults
"""
import pytest
from pydantic import ValidationError

from app.core.config import Settings

PROD_SECRET = "carenest-prod-secret-" + "x" * 16


def _settings(**overrides):
    values = dict(DATABASE_URL="sqlite:///:memory:", JWT_SECRET_KEY="test-key")
    values.update(overrides)
    return Settings(**values)


def _prod_settings(**overrides):
    values = dict(
        DATABASE_URL="postgresql://carenest@db/carenest_access",
        JWT_SECRET_KEY=PROD_SECRET,
        APP_ENV="prod",
        ALLOWED_ORIGINS="https://app.carenest.co.nz",
        INITIAL_ADMIN_PASSWORD="Rotated-Admin-Pass-2026",
    )
    values.update(overrides)
    return _settings(**values)


def test_prod_settings_pass_when_hardened():
    _prod_settings().validate_production()


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"ALLOWED_ORIGINS": "*"}, "ALLOWED_ORIGINS"),
        ({"ALLOWED_ORIGINS": ""}, "ALLOWED_ORIGINS"),
        ({"JWT_SECRET_KEY": "too-short"}, "JWT_SECRET_KEY"),
        ({"INITIAL_ADMIN_PASSWORD": "Admin@12345"}, "INITIAL_ADMIN_PASSWORD"),
    ],
)
def test_prod_settings_reject_unsafe_values(overrides, field):
    with pytest.raises(ValueError, match=field):
        _prod_settings(**overrides).validate_production()


def test_local_and_staging_skip_production_checks():
    for env in ("local", "staging"):
        settings = _settings(APP_ENV=env, ALLOWED_ORIGINS="*", JWT_SECRET_KEY="short")
        settings.validate_production()
        assert settings.get_allowed_origins_list() == ["*"]


def test_allowed_origins_are_split_and_trimmed():
    settings = _settings(ALLOWED_ORIGINS=" https://app.carenest.co.nz , https://admin.carenest.co.nz ,")
    assert settings.get_allowed_origins_list() == [
        "https://app.carenest.co.nz",
        "https://admin.carenest.co.nz",
    ]


def test_unknown_app_env_rejected():
    with pytest.raises(ValidationError):
        _settings(APP_ENV="production")


def test_log_level_is_normalized():
    assert _settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"
    with pytest.raises(ValidationError):
        _settings(LOG_LEVEL="verbose")


def test_carenest_bootstrap_defaults():
    settings = _settings()

    assert settings.INITIAL_ORGANIZATION_NAME == "CareNest Disability Services"
    assert settings.INITIAL_ADMIN_EMAIL == "admin@carenest.local"
    assert settings.JWT_ALGORITHM == "HS256"


def test_rbac_defaults():
    settings = _settings()

    assert settings.RBAC_DEFAULT_STRICT_MODE is False
    assert settings.RBAC_DEFAULT_GRACE_PERIOD_MINUTES == 15
    assert settings.RBAC_DEFAULT_REQUIRE_LOCATION is False
    assert settings.RBAC_DEFAULT_MAX_DISTANCE_METERS == 100
    assert settings.RBAC_DEFAULT_AUDIT_LOGGING is True
    assert settings.REJECT_MOCKED_LOCATION is True
    assert settings.RBAC_CONFIG_CACHE_TTL_SECONDS == 30


@pytest.mark.parametrize(
    "overrides",
    [
        {"RBAC_CONFIG_CACHE_TTL_SECONDS": -1},
        {"RBAC_DEFAULT_GRACE_PERIOD_MINUTES": -5},
        {"RBAC_DEFAULT_MAX_DISTANCE_METERS": 0},
    ],
)
def test_invalid_rbac_defaults_rejected(overrides):
    with pytest.raises(ValidationError):
        _settings(**overrides)
