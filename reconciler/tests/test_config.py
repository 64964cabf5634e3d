import logging

import pytest

from reconciler.core.config import Settings, validate_config


def _settings(**overrides):
    values = {"DATABASE_URL": "sqlite:///reconciler.db"}
    values.update(overrides)
    return Settings(**values)


def test_valid_config_passes():
    assert validate_config(strict=True, settings_obj=_settings()) is True


def test_missing_database_url_warns_when_not_strict(caplog):
    logger = logging.getLogger("reconciler.test_config")

    with caplog.at_level(logging.WARNING, logger="reconciler.test_config"):
        ok = validate_config(strict=False, settings_obj=_settings(DATABASE_URL=None), logger=logger)

    assert ok is False
    assert "DATABASE_URL" in caplog.text


def test_strict_mode_raises():
    with pytest.raises(RuntimeError, match="STREAK_TIMEZONE"):
        validate_config(strict=True, settings_obj=_settings(STREAK_TIMEZONE="Mars/Olympus_Mons"))


@pytest.mark.parametrize(
    "overrides",
    [
        {"RECONCILE_CONCURRENCY": 0},
        {"RECONCILE_PAGE_SIZE": -5},
        {"NOTIFICATION_PRUNE_LIMIT": 0},
        {"STREAK_GRACE_HOURS": 30},
    ],
)
def test_out_of_range_limits_are_reported(overrides):
    assert validate_config(strict=False, settings_obj=_settings(**overrides)) is False


def test_defaults():
    cfg = Settings(_env_file=None)

    assert cfg.RECONCILE_CONCURRENCY == 20
    assert cfg.RECONCILE_MAX_DURATION_SECONDS == 480.0
    assert cfg.STREAK_GRACE_HOURS == 12
    assert cfg.NOTIFICATION_RETENTION_DAYS == 30
