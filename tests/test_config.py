from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from backend.utils.config import get_settings, validate_settings
from backend.utils.logger import fields


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("DATABASE_PATH", "/tmp/custom.db")
    monkeypatch.setenv("DATABASE_ISOLATION_LEVEL", "read_committed")
    monkeypatch.setenv("SEED_DEMO_DATA", "no")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.database_path == Path("/tmp/custom.db")
        assert settings.database_isolation_level == "READ_COMMITTED"
        assert settings.seed_demo_data is False
        assert settings.provisional_booking_ttl_hours == 24
        assert settings.resource_release_grace_hours == 0
    finally:
        get_settings.cache_clear()


def test_unknown_isolation_level_raises(monkeypatch):
    monkeypatch.setenv("DATABASE_ISOLATION_LEVEL", "snapshot")
    get_settings.cache_clear()
    try:
        with pytest.raises(ValueError, match="database_isolation_level"):
            get_settings()
    finally:
        get_settings.cache_clear()


@pytest.mark.parametrize(
    "overrides",
    [
        {"database_busy_timeout_seconds": 0},
        {"provisional_booking_ttl_hours": 0},
        {"resource_release_grace_hours": -1},
        {"system_actor_name": "  "},
    ],
)
def test_invalid_values_are_rejected(overrides):
    get_settings.cache_clear()
    with pytest.raises(ValueError):
        validate_settings(replace(get_settings(), **overrides))


def test_log_fields_render_in_order():
    assert fields(event_id=3, venue_id=None) == "event_id=3 | venue_id=None"
