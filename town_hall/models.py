"""Core data models for Town Hall."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Union

FALLBACK_EXPLANATION = "Unable to evaluate policy at this time."


def clamp(value: float, lower: float = 0.0, upper: float = 100.0) -> float:
    return max(lower, min(upper, value))


class PolicyStatus(str, Enum):
    PROPOSED = "proposed"
    ENACTED = "enacted"
    REJECTED = "rejected"


class EventType(str, Enum):
    ECONOMIC = "economic"
    SOCIAL = "social"
    ENVIRONMENTAL = "environmental"
    POLITICAL = "political"


@dataclass
class Demographic:
    id: str
    name: str
    happiness: float
    support_level: float
    population_percentage: float
    concerns: List[str]
    persona: str
    last_policy_reaction: Optional[str] = None

    def copy(self) -> "Demographic":
        """Return an independent value copy."""

        return replace(self, concerns=list(self.concerns))


@dataclass(frozen=True)
class DemographicReaction:
    """One constituency's bounded judgement of one policy."""

    happiness_change: float
    economic_impact: float
    support_likelihood: float
    explanation: str

    @staticmethod
    def neutral() -> "DemographicReaction":
        """The fixed reaction used whenever backend output cannot be trusted."""
        return DemographicReaction(
            happiness_change=0,
            economic_impact=0,
            support_likelihood=50,
            explanation=FALLBACK_EXPLANATION,
        )

    def to_payload(self) -> Dict[str, object]:
        return {
            "happiness_change": self.happiness_change,
            "economic_impact": self.economic_impact,
            "support_likelihood": self.support_likelihood,
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class ValidReaction:
    reaction: DemographicReaction


@dataclass(frozen=True)
class InvalidReaction:
    reason: str


ReactionResult = Union[ValidReaction, InvalidReaction]


@dataclass(frozen=True)
class PolicyProposal:
    """Player submission for a single turn."""

    title: str
    description: str
    effects: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class Policy:
    id: str
    title: str
    description: str
    proposed_at: datetime
    status: PolicyStatus = PolicyStatus.PROPOSED
    enacted_at: Optional[datetime] = None
    effects: Dict[str, float] = field(default_factory=dict)

    def enact(self, when: datetime) -> "Policy":
        if self.status is not PolicyStatus.PROPOSED:
            raise ValueError(f"Policy {self.id} is already {self.status.value}")
        return replace(self, status=PolicyStatus.ENACTED, enacted_at=when)

    def reject(self) -> "Policy":
        if self.status is not PolicyStatus.PROPOSED:
            raise ValueError(f"Policy {self.id} is already {self.status.value}")
        return replace(self, status=PolicyStatus.REJECTED)

    @property
    def budget_effect(self) -> float:
        return float(self.effects.get("budget", 0))


@dataclass(frozen=True)
class GameEvent:
    id: str
    name: str
    description: str
    type: EventType
    probability: float
    trigger_conditions: Dict[str, object] = field(default_factory=dict)
    effects: Dict[str, float] = field(default_factory=dict)
    duration: Optional[int] = None
    start_turn: Optional[int] = None

    def expired_at(self, turn_number: int) -> bool:
        """True once the event has run its full duration by ``turn_number``."""

        if self.duration is None or self.start_turn is None:
            return False
        return turn_number >= self.start_turn + self.duration


@dataclass(frozen=True)
class StateDelta:
    approval: int = 0
    economic: int = 0
    budget: float = 0.0


@dataclass
class GameState:
    turn_number: int
    budget: float
    approval_rating: float
    economic_health: float
    demographics: Dict[str, Demographic] = field(default_factory=dict)
    active_events: List[GameEvent] = field(default_factory=list)
    policy_history: List[Policy] = field(default_factory=list)

    def copy(self) -> "GameState":
        return GameState(
            turn_number=self.turn_number,
            budget=self.budget,
            approval_rating=self.approval_rating,
            economic_health=self.economic_health,
            demographics={key: demo.copy() for key, demo in self.demographics.items()},
            active_events=list(self.active_events),
            policy_history=list(self.policy_history),
        )


@dataclass
class TurnOutcome:
    new_turn_number: int
    reactions: Dict[str, DemographicReaction]
    state: GameState
    policy: Policy
    delta: StateDelta
    fallbacks: List[str] = field(default_factory=list)


@dataclass
class SaveSummary:
    save_name: str
    turn_number: int
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = [
    "FALLBACK_EXPLANATION",
    "clamp",
    "PolicyStatus",
    "EventType",
    "Demographic",
    "DemographicReaction",
    "ValidReaction",
    "InvalidReaction",
    "ReactionResult",
    "PolicyProposal",
    "Policy",
    "GameEvent",
    "StateDelta",
    "GameState",
    "TurnOutcome",
    "SaveSummary",
]
