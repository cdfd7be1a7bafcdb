"""Shared test doubles."""
from __future__ import annotations

import asyncio
import json
from typing import Dict, List, Optional, Union

import pytest

from town_hall.models import Demographic, GameState


def reply(happiness: float, economic: float, support: float, explanation: str = "Noted.") -> str:
    return json.dumps(
        {
            "happiness_change": happiness,
            "economic_impact": economic,
            "support_likelihood": support,
            "explanation": explanation,
        }
    )


class ScriptedBackend:
    """Backend double that answers per demographic name found in the prompt."""

    def __init__(
        self,
        replies: Optional[Dict[str, Union[str, Exception]]] = None,
        *,
        default: Union[str, Exception, None] = None,
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self.replies = replies or {}
        self.default = default if default is not None else reply(0, 0, 50)
        self.delays = delays or {}
        self.prompts: List[str] = []
        self.systems: List[Optional[str]] = []
        self.healthy = True

    def _match(self, prompt: str) -> Optional[str]:
        for name in set(self.replies) | set(self.delays):
            if f"representing the {name} demographic" in prompt:
                return name
        return None

    async def complete(self, prompt: str, *, system: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        self.systems.append(system)
        name = self._match(prompt)
        delay = self.delays.get(name, 0.0) if name else 0.0
        if delay:
            await asyncio.sleep(delay)
        answer = self.replies.get(name, self.default) if name else self.default
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def health_check(self) -> bool:
        return self.healthy

    @property
    def call_count(self) -> int:
        return len(self.prompts)


def make_demographic(
    demographic_id: str,
    *,
    name: Optional[str] = None,
    happiness: float = 50,
    support: float = 50,
    population: float = 50,
) -> Demographic:
    return Demographic(
        id=demographic_id,
        name=name or demographic_id.title(),
        happiness=happiness,
        support_level=support,
        population_percentage=population,
        concerns=["taxes", "parks"],
        persona=f"You speak for the {demographic_id} of the town.",
    )


def make_state(*demographics: Demographic, **overrides) -> GameState:
    values = dict(turn_number=1, budget=1_000_000, approval_rating=60, economic_health=70)
    values.update(overrides)
    return GameState(demographics={demo.id: demo for demo in demographics}, **values)


@pytest.fixture
def scripted_backend():
    return ScriptedBackend
