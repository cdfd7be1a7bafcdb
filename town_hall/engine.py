"""Turn advance: proposal validation, concurrent evaluation, atomic state replacement."""
from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from .aggregator import DEFAULT_SUPPORT_BLEND, aggregate
from .config import Settings
from .models import (
    Demographic,
    DemographicReaction,
    GameState,
    Policy,
    PolicyProposal,
    TurnOutcome,
    clamp,
)
from .reactions import Evaluation, ReactionEvaluator

logger = logging.getLogger(__name__)


class ProposalValidationError(ValueError):
    """Raised for a structurally malformed proposal; no turn is started."""


def validate_proposal(
    proposal: PolicyProposal,
    *,
    title_max_length: int = 200,
    description_max_length: int = 2000,
) -> PolicyProposal:
    """Return a normalised copy of ``proposal`` or raise."""

    title = (proposal.title or "").strip()
    description = (proposal.description or "").strip()
    if not title:
        raise ProposalValidationError("Policy title must not be empty")
    if len(title) > title_max_length:
        raise ProposalValidationError(
            f"Policy title exceeds {title_max_length} characters"
        )
    if not description:
        raise ProposalValidationError("Policy description must not be empty")
    if len(description) > description_max_length:
        raise ProposalValidationError(
            f"Policy description exceeds {description_max_length} characters"
        )
    effects: Dict[str, float] = {}
    for tag, value in (proposal.effects or {}).items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ProposalValidationError(f"Policy effect {tag!r} must be a finite number")
        effects[str(tag)] = float(value)
    return PolicyProposal(title=title, description=description, effects=effects)


def policy_text(proposal: PolicyProposal) -> str:
    return f"{proposal.title}: {proposal.description}"


class TurnEngine:
    """Applies one policy proposal to a game state as a single transition."""

    def __init__(
        self,
        evaluator: ReactionEvaluator,
        *,
        support_blend: float = DEFAULT_SUPPORT_BLEND,
        max_concurrent: int = 8,
        title_max_length: int = 200,
        description_max_length: int = 2000,
    ) -> None:
        self._evaluator = evaluator
        self._support_blend = support_blend
        self._max_concurrent = max(1, max_concurrent)
        self._title_max_length = title_max_length
        self._description_max_length = description_max_length

    @classmethod
    def from_settings(cls, evaluator: ReactionEvaluator, settings: Settings) -> "TurnEngine":
        return cls(
            evaluator,
            support_blend=settings.support_blend,
            max_concurrent=settings.max_concurrent_evaluations,
            title_max_length=settings.title_max_length,
            description_max_length=settings.description_max_length,
        )

    def validate(self, proposal: PolicyProposal) -> PolicyProposal:
        return validate_proposal(
            proposal,
            title_max_length=self._title_max_length,
            description_max_length=self._description_max_length,
        )

    async def evaluate_all(
        self,
        demographics: Dict[str, Demographic],
        text: str,
    ) -> Dict[str, Evaluation]:
        """Evaluate every demographic concurrently and join on all of them."""
        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def evaluate_one(key: str, demographic: Demographic) -> Tuple[str, Evaluation]:
            async with semaphore:
                return key, await self._evaluator.evaluate_detailed(demographic, text)

        results = await asyncio.gather(
            *(evaluate_one(key, demo) for key, demo in demographics.items())
        )
        return dict(results)

    async def advance_turn(
        self,
        state: GameState,
        proposal: PolicyProposal,
        now: Optional[datetime] = None,
    ) -> TurnOutcome:
        """Compute the next state; ``state`` itself is left untouched."""
        proposal = self.validate(proposal)
        now = now or datetime.now(timezone.utc)
        policy = Policy(
            id=f"policy-{state.turn_number}",
            title=proposal.title,
            description=proposal.description,
            proposed_at=now,
            effects=dict(proposal.effects),
        )

        # Snapshot so evaluation never observes a partially replaced state.
        snapshot = {key: demo.copy() for key, demo in state.demographics.items()}
        evaluations = await self.evaluate_all(snapshot, policy_text(proposal))
        reactions: Dict[str, DemographicReaction] = {
            key: evaluation.reaction for key, evaluation in evaluations.items()
        }
        fallbacks = sorted(key for key, evaluation in evaluations.items() if evaluation.is_fallback)

        result = aggregate(
            reactions,
            snapshot,
            support_blend=self._support_blend,
            budget_delta=policy.budget_effect,
        )
        enacted = policy.enact(now)
        new_turn = state.turn_number + 1
        new_state = GameState(
            turn_number=new_turn,
            budget=state.budget + result.delta.budget,
            approval_rating=clamp(state.approval_rating + result.delta.approval),
            economic_health=clamp(state.economic_health + result.delta.economic),
            demographics=result.demographics,
            active_events=[event for event in state.active_events if not event.expired_at(new_turn)],
            policy_history=[*state.policy_history, enacted],
        )
        logger.info(
            "Turn %d -> %d: approval %+d, economy %+d, budget %+.0f (%d fallback reactions)",
            state.turn_number,
            new_turn,
            result.delta.approval,
            result.delta.economic,
            result.delta.budget,
            len(fallbacks),
        )
        return TurnOutcome(
            new_turn_number=new_turn,
            reactions=reactions,
            state=new_state,
            policy=enacted,
            delta=result.delta,
            fallbacks=fallbacks,
        )


__all__ = ["ProposalValidationError", "TurnEngine", "policy_text", "validate_proposal"]
