"""Population-weighted reduction of demographic reactions into one turn delta."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .models import Demographic, DemographicReaction, StateDelta, clamp

DEFAULT_SUPPORT_BLEND = 0.5


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass
class AggregateResult:
    delta: StateDelta
    demographics: Dict[str, Demographic]


def population_weights(demographics: Mapping[str, Demographic]) -> Dict[str, float]:
    """Default weights: each group's share of the population as a fraction."""

    return {key: demo.population_percentage / 100.0 for key, demo in demographics.items()}


def update_demographic(
    demographic: Demographic,
    reaction: DemographicReaction,
    support_blend: float = DEFAULT_SUPPORT_BLEND,
) -> Demographic:
    """Return a copy of ``demographic`` after it has reacted to a policy.

    Support moves part of the way toward the reaction's support likelihood
    instead of jumping to it.
    """
    updated = demographic.copy()
    updated.happiness = clamp(demographic.happiness + reaction.happiness_change)
    updated.support_level = clamp(
        demographic.support_level
        + (reaction.support_likelihood - demographic.support_level) * support_blend
    )
    updated.last_policy_reaction = reaction.explanation
    return updated


def aggregate(
    reactions: Mapping[str, DemographicReaction],
    demographics: Mapping[str, Demographic],
    weights: Optional[Mapping[str, float]] = None,
    *,
    support_blend: float = DEFAULT_SUPPORT_BLEND,
    budget_delta: float = 0.0,
) -> AggregateResult:
    """Fold per-demographic reactions into a state delta and updated groups.

    Neither argument is modified. Demographics without a reaction are carried
    over as copies and contribute nothing to the global deltas.
    """
    if not 0.0 <= support_blend <= 1.0:
        raise ValueError(f"support_blend must be within [0, 1], got {support_blend}")
    weights = population_weights(demographics) if weights is None else weights

    approval = 0.0
    economic = 0.0
    updated: Dict[str, Demographic] = {}
    for key, demographic in demographics.items():
        reaction = reactions.get(key)
        if reaction is None:
            updated[key] = demographic.copy()
            continue
        updated[key] = update_demographic(demographic, reaction, support_blend)
        weight = weights.get(key, 0.0)
        approval += weight * reaction.happiness_change
        economic += weight * reaction.economic_impact

    delta = StateDelta(
        approval=round_half_up(approval),
        economic=round_half_up(economic),
        budget=float(budget_delta),
    )
    return AggregateResult(delta=delta, demographics=updated)


__all__ = [
    "DEFAULT_SUPPORT_BLEND",
    "AggregateResult",
    "aggregate",
    "population_weights",
    "round_half_up",
    "update_demographic",
]
