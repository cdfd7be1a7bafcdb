"""Configuration loading utilities for Town Hall."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml


DEFAULT_SETTINGS_PATH = Path(__file__).parent / "data" / "settings.yaml"


@dataclass(frozen=True)
class Settings:
    """Typed view over the settings YAML file."""

    starting_turn: int
    starting_budget: float
    starting_approval: float
    starting_economic_health: float
    support_blend: float
    title_max_length: int
    description_max_length: int
    save_name_max_length: int
    evaluation_timeout_seconds: float
    max_concurrent_evaluations: int

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Settings":
        new_game = data.get("new_game", {})
        aggregation = data.get("aggregation", {})
        proposals = data.get("proposals", {})
        saves = data.get("saves", {})
        evaluation = data.get("evaluation", {})
        support_blend = float(aggregation.get("support_blend", 0.5))
        if not 0.0 <= support_blend <= 1.0:
            raise ValueError(f"support_blend must be within [0, 1], got {support_blend}")
        return Settings(
            starting_turn=int(new_game.get("turn_number", 1)),
            starting_budget=float(new_game.get("budget", 1_000_000)),
            starting_approval=float(new_game.get("approval_rating", 60)),
            starting_economic_health=float(new_game.get("economic_health", 70)),
            support_blend=support_blend,
            title_max_length=int(proposals.get("title_max_length", 200)),
            description_max_length=int(proposals.get("description_max_length", 2000)),
            save_name_max_length=int(saves.get("name_max_length", 50)),
            evaluation_timeout_seconds=float(evaluation.get("timeout_seconds", 45)),
            max_concurrent_evaluations=max(1, int(evaluation.get("max_concurrent", 8))),
        )


class SettingsLoader:
    """Loads and caches settings from YAML configuration files."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or DEFAULT_SETTINGS_PATH
        self._cache: Settings | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> Settings:
        if self._cache is not None and not force:
            return self._cache
        with self._path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        self._cache = Settings.from_dict(data)
        return self._cache


def get_settings() -> Settings:
    """Convenience accessor for default settings."""

    return SettingsLoader().load()


__all__ = ["Settings", "SettingsLoader", "get_settings"]
