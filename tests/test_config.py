import pytest
from pydantic import ValidationError

from companion.app.core.config import Settings


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('["http://localhost:5173"]', ["http://localhost:5173"]),
        ("http://a.example, http://b.example", ["http://a.example", "http://b.example"]),
        ("*", ["*"]),
        ("[]", []),
        ("", []),
    ],
)
def test_cors_origins_parsing_variants(monkeypatch, raw: str, expected: list[str]) -> None:
    monkeypatch.setenv("CORS_ORIGINS", raw)

    settings = Settings(_env_file=None)
    assert settings.cors_origins == expected


def test_defaults(monkeypatch) -> None:
    for name in ("ENVIRONMENT", "REDIS_URL", "DATABASE_URL", "RATE_LIMIT_REDIS_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.environment == "development"
    assert settings.is_production is False
    assert settings.redis_url == ""
    assert settings.database_url.startswith("sqlite+aiosqlite://")
    assert settings.rate_limit_redis_timeout == 0.5
    assert settings.rate_limit_cleanup_interval_seconds == 300
    assert settings.rate_limit_bucket_retention_seconds == 3600


def test_environment_normalised(monkeypatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", " Production ")

    assert Settings(_env_file=None).is_production is True


def test_unknown_environment_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, environment="staging")


@pytest.mark.parametrize(
    "field, value",
    [
        ("rate_limit_redis_timeout", 0),
        ("rate_limit_cleanup_interval_seconds", 0),
        ("rate_limit_bucket_retention_seconds", -5),
    ],
)
def test_non_positive_values_rejected(field: str, value) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})
