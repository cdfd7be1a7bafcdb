"""Tests for settings loading."""
from __future__ import annotations

import pytest

from town_hall.config import Settings, SettingsLoader, get_settings


def test_default_settings():
    settings = get_settings()

    assert settings.starting_turn == 1
    assert settings.starting_budget == 1_000_000
    assert settings.starting_approval == 60
    assert settings.starting_economic_health == 70
    assert settings.support_blend == 0.5
    assert settings.title_max_length == 200
    assert settings.description_max_length == 2000
    assert settings.save_name_max_length == 50


def test_loader_caches_and_reloads(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("aggregation:\n  support_blend: 0.25\n", encoding="utf-8")
    loader = SettingsLoader(path)

    first = loader.load()
    path.write_text("aggregation:\n  support_blend: 0.75\n", encoding="utf-8")

    assert loader.load() is first
    assert loader.load(force=True).support_blend == 0.75
    assert first.starting_budget == 1_000_000


def test_support_blend_out_of_range():
    with pytest.raises(ValueError):
        Settings.from_dict({"aggregation": {"support_blend": 2}})


def test_max_concurrent_has_floor_of_one():
    assert Settings.from_dict({"evaluation": {"max_concurrent": 0}}).max_concurrent_evaluations == 1
