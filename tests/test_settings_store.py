"""Unit tests for the persisted dashboard settings store."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from app.schemas import DashboardSettings
from datastore.settings_store import SettingsStore
from models.acquisition import DateRangeMode
from models.records import Lane


def test_defaults_match_dashboard_settings() -> None:
    store = SettingsStore()

    settings = store.get()

    assert settings == DashboardSettings()
    assert settings.update_interval == 3000
    assert settings.max_data_points == 120
    assert settings.selected_lanes == [Lane.left, Lane.right]
    assert settings.date_range_mode is DateRangeMode.realtime


def test_get_returns_deep_copy() -> None:
    store = SettingsStore()

    fetched = store.get()
    fetched.selected_sensors.append("Finish Line")

    assert store.get().selected_sensors == []


def test_update_merges_and_persists(tmp_path) -> None:
    path = tmp_path / "settings.json"
    store = SettingsStore(persistence_path=path)

    updated = store.update(
        {
            "update_interval": 1000,
            "date_range_mode": "custom",
            "custom_start_date": datetime(2025, 6, 1, 8, tzinfo=timezone.utc),
            "custom_end_date": datetime(2025, 6, 1, 9, tzinfo=timezone.utc),
        }
    )

    assert updated.update_interval == 1000
    assert updated.max_data_points == 120
    assert updated.date_range_mode is DateRangeMode.custom
    payload = json.loads(path.read_text())
    assert payload["update_interval"] == 1000
    assert payload["date_range_mode"] == "custom"

    reloaded = SettingsStore(persistence_path=path)
    assert reloaded.get() == updated


@pytest.mark.parametrize(
    "changes",
    [
        {"speed_threshold_min": 300, "speed_threshold_max": 100},
        {
            "custom_start_date": datetime(2025, 6, 2, tzinfo=timezone.utc),
            "custom_end_date": datetime(2025, 6, 1, tzinfo=timezone.utc),
        },
        {"update_interval": 0},
    ],
)
def test_invalid_update_is_rejected_and_not_stored(changes) -> None:
    store = SettingsStore()

    with pytest.raises(ValueError):
        store.update(changes)

    assert store.get() == DashboardSettings()


def test_reset_restores_defaults(tmp_path) -> None:
    path = tmp_path / "settings.json"
    store = SettingsStore(persistence_path=path)
    store.update({"max_data_points": 10, "enable_alerts": True})

    defaults = store.reset()

    assert defaults == DashboardSettings()
    assert json.loads(path.read_text())["max_data_points"] == 120


def test_partial_file_is_merged_with_defaults(tmp_path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"max_data_points": 25}))

    store = SettingsStore(persistence_path=path)

    assert store.get().max_data_points == 25
    assert store.get().update_interval == 3000


def test_corrupt_file_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json")

    store = SettingsStore(persistence_path=path)

    assert store.get() == DashboardSettings()
