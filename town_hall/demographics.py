"""Read-only catalog of the town's constituencies."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import yaml

from .models import Demographic

_DATA_PATH = Path(__file__).parent / "data"


@dataclass(frozen=True)
class DemographicPriorities:
    primary: Tuple[str, ...] = ()
    secondary: Tuple[str, ...] = ()
    negative: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DemographicTemplate:
    """Immutable registry entry from which per-game demographics are seeded."""

    id: str
    name: str
    happiness: float
    support_level: float
    population_percentage: float
    concerns: Tuple[str, ...]
    persona: str
    priorities: DemographicPriorities

    def instantiate(self) -> Demographic:
        return Demographic(
            id=self.id,
            name=self.name,
            happiness=self.happiness,
            support_level=self.support_level,
            population_percentage=self.population_percentage,
            concerns=list(self.concerns),
            persona=self.persona,
        )


class DemographicRegistry:
    """Loads demographic templates once and hands out independent copies."""

    def __init__(self, data_path: Path | None = None, filename: str = "demographics.yaml") -> None:
        self._path = data_path or _DATA_PATH
        entries = self._load_yaml(filename)["demographics"]
        templates: Dict[str, DemographicTemplate] = {}
        for entry in entries:
            template = self._template_from_dict(entry)
            if template.id in templates:
                raise ValueError(f"Duplicate demographic id: {template.id}")
            templates[template.id] = template
        self._templates: Mapping[str, DemographicTemplate] = templates

    def _load_yaml(self, name: str) -> Dict:
        with (self._path / name).open("r", encoding="utf-8") as fh:
            return yaml.safe_load(fh)

    @staticmethod
    def _template_from_dict(data: Dict) -> DemographicTemplate:
        priorities = data.get("priorities", {})
        return DemographicTemplate(
            id=str(data["id"]),
            name=str(data["name"]),
            happiness=float(data["happiness"]),
            support_level=float(data["support_level"]),
            population_percentage=float(data["population_percentage"]),
            concerns=tuple(data.get("concerns", [])),
            persona=str(data["persona"]).strip(),
            priorities=DemographicPriorities(
                primary=tuple(priorities.get("primary", [])),
                secondary=tuple(priorities.get("secondary", [])),
                negative=tuple(priorities.get("negative", [])),
            ),
        )

    def ids(self) -> List[str]:
        return list(self._templates.keys())

    def get(self, demographic_id: str) -> Optional[Demographic]:
        template = self._templates.get(demographic_id)
        return template.instantiate() if template else None

    def priorities(self, demographic_id: str) -> DemographicPriorities:
        template = self._templates.get(demographic_id)
        if template is None:
            raise KeyError(demographic_id)
        return template.priorities

    def seed(self) -> Dict[str, Demographic]:
        """Fresh demographics for a new game; each call returns new objects."""

        return {key: template.instantiate() for key, template in self._templates.items()}

    def total_population(self) -> float:
        return sum(template.population_percentage for template in self._templates.values())


__all__ = ["DemographicPriorities", "DemographicTemplate", "DemographicRegistry"]
