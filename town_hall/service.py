"""High-level game service: the boundary the surrounding application calls."""
from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .config import Settings, get_settings
from .demographics import DemographicRegistry
from .engine import TurnEngine, policy_text
from .llm_client import LLMClient
from .models import DemographicReaction, GameState, PolicyProposal, SaveSummary, TurnOutcome
from .reactions import ReactionEvaluator
from .state import PersistenceError, SaveStore
from .telemetry import TelemetryCollector, track_duration

logger = logging.getLogger(__name__)


class GameNotFoundError(LookupError):
    """Raised when a (player, save name) pair has no stored game."""


class InvalidSaveKeyError(ValueError):
    """Raised for empty or oversized player or save names."""


class GameService:
    """Coordinates the registry, turn engine, backend and save store.

    Collaborators are injected so tests can substitute them. Only what is
    built here is released by :meth:`close`; injected ones stay with the caller.
    """

    def __init__(
        self,
        db_path: Path,
        settings: Settings | None = None,
        registry: DemographicRegistry | None = None,
        llm_client: LLMClient | None = None,
        telemetry: TelemetryCollector | None = None,
        store: SaveStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry or DemographicRegistry()
        self.store = store or SaveStore(db_path)
        self._owns_llm = llm_client is None
        self.llm = llm_client or LLMClient()
        self.telemetry = telemetry
        self.evaluator = ReactionEvaluator(
            self.llm,
            timeout=self.settings.evaluation_timeout_seconds,
            telemetry=telemetry,
        )
        self.engine = TurnEngine.from_settings(self.evaluator, self.settings)
        # Entries disappear once no turn holds or awaits the lock.
        self._save_locks: weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._closed = False

    # Save lifecycle ----------------------------------------------------
    def _check_key(self, player_name: str, save_name: str) -> None:
        limit = self.settings.save_name_max_length
        for label, value in (("player name", player_name), ("save name", save_name)):
            if not value or not value.strip():
                raise InvalidSaveKeyError(f"The {label} must not be empty")
            if len(value) > limit:
                raise InvalidSaveKeyError(f"The {label} exceeds {limit} characters")

    def new_game_state(self) -> GameState:
        return GameState(
            turn_number=self.settings.starting_turn,
            budget=self.settings.starting_budget,
            approval_rating=self.settings.starting_approval,
            economic_health=self.settings.starting_economic_health,
            demographics=self.registry.seed(),
        )

    def create_game(self, player_name: str, save_name: str) -> Tuple[int, GameState]:
        self._check_key(player_name, save_name)
        state = self.new_game_state()
        save_id = self.store.create_save(player_name, save_name, state)
        logger.info("New game created for %s (%s)", player_name, save_name)
        if self.telemetry is not None:
            self.telemetry.track_system_event("game_created", source=player_name)
        return save_id, state

    def load_game(self, player_name: str, save_name: str) -> GameState:
        state = self.store.load(player_name, save_name)
        if state is None:
            raise GameNotFoundError(f"No save {save_name!r} for player {player_name!r}")
        return state

    def list_saves(self, player_name: str) -> List[SaveSummary]:
        return self.store.list_saves(player_name)

    def turn_history(self, player_name: str, save_name: str) -> List[Dict[str, object]]:
        return self.store.turn_history(player_name, save_name)

    # Turns -------------------------------------------------------------
    def _lock_for(self, player_name: str, save_name: str) -> asyncio.Lock:
        key = (player_name, save_name)
        lock = self._save_locks.get(key)
        if lock is None:
            lock = self._save_locks[key] = asyncio.Lock()
        return lock

    async def submit_policy(
        self,
        player_name: str,
        save_name: str,
        title: str,
        description: str,
        effects: Optional[Dict[str, float]] = None,
        now: Optional[datetime] = None,
    ) -> TurnOutcome:
        """Advance a stored game by one turn and persist the result.

        Turns against the same save run one at a time. The outcome is only
        returned once the new state has been written.
        """
        proposal = self.engine.validate(
            PolicyProposal(title=title, description=description, effects=dict(effects or {}))
        )
        async with self._lock_for(player_name, save_name):
            state = self.load_game(player_name, save_name)
            with track_duration(self.telemetry, "advance_turn", {"save_name": save_name}):
                outcome = await self.engine.advance_turn(state, proposal, now=now)
            try:
                self.store.update_save(
                    player_name,
                    save_name,
                    outcome.state,
                    expected_turn=state.turn_number,
                    reactions=outcome.reactions,
                    fallbacks=outcome.fallbacks,
                )
            except PersistenceError as exc:
                logger.error("Turn %d for %s/%s was not saved: %s",
                             outcome.new_turn_number, player_name, save_name, exc)
                if self.telemetry is not None:
                    self.telemetry.track_error(
                        type(exc).__name__,
                        operation="submit_policy",
                        player_id=player_name,
                        error_details=str(exc),
                    )
                raise
        if self.telemetry is not None:
            self.telemetry.track_turn(
                player_name,
                save_name,
                outcome.new_turn_number,
                outcome.state.approval_rating,
                outcome.state.economic_health,
                outcome.state.budget,
                fallbacks=len(outcome.fallbacks),
            )
        return outcome

    async def preview_reaction(
        self,
        demographic_id: str,
        title: str,
        description: str,
    ) -> DemographicReaction:
        """Evaluate one registry demographic against a policy without touching any save."""
        demographic = self.registry.get(demographic_id)
        if demographic is None:
            raise KeyError(
                f"Unknown demographic {demographic_id!r}; available: {', '.join(self.registry.ids())}"
            )
        proposal = self.engine.validate(PolicyProposal(title=title, description=description))
        return await self.evaluator.evaluate(demographic, policy_text(proposal))

    async def health(self) -> Dict[str, object]:
        database = self.store.health_check()
        llm_ok = await self.llm.health_check()
        healthy = database["status"] == "ok" and llm_ok
        if self.telemetry is not None and not healthy:
            self.telemetry.track_system_event(
                "health_degraded",
                source="service",
                reason="llm unavailable" if not llm_ok else database["message"],
            )
        return {
            "status": "healthy" if healthy else "degraded",
            "services": {
                "database": database,
                "llm": {
                    "status": "ok" if llm_ok else "error",
                    "message": "LLM service available" if llm_ok else "LLM service unavailable",
                },
            },
        }

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_llm:
            self.llm.close()


__all__ = ["GameNotFoundError", "GameService", "InvalidSaveKeyError"]
