"""Save-game persistence keyed by (player, save name)."""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .models import (
    Demographic,
    DemographicReaction,
    EventType,
    GameEvent,
    GameState,
    Policy,
    PolicyStatus,
    SaveSummary,
)

logger = logging.getLogger(__name__)

_DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS game_saves (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    player_name TEXT NOT NULL,
    save_name TEXT NOT NULL,
    turn_number INTEGER NOT NULL,
    game_state TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (player_name, save_name)
);
CREATE INDEX IF NOT EXISTS idx_game_saves_player
    ON game_saves (player_name);
CREATE TABLE IF NOT EXISTS turn_reactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    game_save_id INTEGER NOT NULL,
    turn_number INTEGER NOT NULL,
    policy_id TEXT NOT NULL,
    demographic_id TEXT NOT NULL,
    payload TEXT NOT NULL,
    fallback INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    FOREIGN KEY (game_save_id) REFERENCES game_saves (id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_turn_reactions_save
    ON turn_reactions (game_save_id, turn_number);
"""


class PersistenceError(RuntimeError):
    """Raised when a save cannot be read or written."""


class StaleSaveError(PersistenceError):
    """Raised when the stored turn no longer matches the turn a write was based on."""


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def serialize_game_state(state: GameState) -> Dict[str, object]:
    return {
        "turn_number": state.turn_number,
        "budget": state.budget,
        "approval_rating": state.approval_rating,
        "economic_health": state.economic_health,
        "demographics": {
            key: {
                "id": demo.id,
                "name": demo.name,
                "happiness": demo.happiness,
                "support_level": demo.support_level,
                "population_percentage": demo.population_percentage,
                "concerns": list(demo.concerns),
                "persona": demo.persona,
                "last_policy_reaction": demo.last_policy_reaction,
            }
            for key, demo in state.demographics.items()
        },
        "active_events": [
            {
                "id": event.id,
                "name": event.name,
                "description": event.description,
                "type": event.type.value,
                "probability": event.probability,
                "trigger_conditions": dict(event.trigger_conditions),
                "effects": dict(event.effects),
                "duration": event.duration,
                "start_turn": event.start_turn,
            }
            for event in state.active_events
        ],
        "policy_history": [
            {
                "id": policy.id,
                "title": policy.title,
                "description": policy.description,
                "proposed_at": _iso(policy.proposed_at),
                "enacted_at": _iso(policy.enacted_at),
                "status": policy.status.value,
                "effects": dict(policy.effects),
            }
            for policy in state.policy_history
        ],
    }


def deserialize_game_state(data: Mapping[str, object]) -> GameState:
    if not isinstance(data, dict):
        raise ValueError(f"Game state must be a JSON object, got {type(data).__name__}")
    demographics = {
        key: Demographic(
            id=item["id"],
            name=item["name"],
            happiness=float(item["happiness"]),
            support_level=float(item["support_level"]),
            population_percentage=float(item["population_percentage"]),
            concerns=list(item.get("concerns", [])),
            persona=item["persona"],
            last_policy_reaction=item.get("last_policy_reaction"),
        )
        for key, item in dict(data.get("demographics", {})).items()
    }
    events = [
        GameEvent(
            id=item["id"],
            name=item["name"],
            description=item["description"],
            type=EventType(item["type"]),
            probability=float(item["probability"]),
            trigger_conditions=dict(item.get("trigger_conditions", {})),
            effects=dict(item.get("effects", {})),
            duration=item.get("duration"),
            start_turn=item.get("start_turn"),
        )
        for item in data.get("active_events", [])
    ]
    policies = [
        Policy(
            id=item["id"],
            title=item["title"],
            description=item["description"],
            proposed_at=_parse_dt(item["proposed_at"]),
            enacted_at=_parse_dt(item.get("enacted_at")),
            status=PolicyStatus(item["status"]),
            effects=dict(item.get("effects", {})),
        )
        for item in data.get("policy_history", [])
    ]
    return GameState(
        turn_number=int(data["turn_number"]),
        budget=float(data["budget"]),
        approval_rating=float(data["approval_rating"]),
        economic_health=float(data["economic_health"]),
        demographics=demographics,
        active_events=events,
        policy_history=policies,
    )


class SaveStore:
    """SQLite-backed persistence gateway for game saves."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._ensure_schema()
        logger.info("Save store initialised at %s", db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ensure_schema(self) -> None:
        try:
            with closing(self._connect()) as conn:
                conn.executescript(_DB_SCHEMA)
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not initialise save database: {exc}") from exc

    def create_save(self, player_name: str, save_name: str, state: GameState) -> int:
        """Store ``state`` under (player, save name), replacing any earlier save."""
        now = datetime.now(timezone.utc).isoformat()
        blob = json.dumps(serialize_game_state(state))
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute(
                    """
                    INSERT INTO game_saves
                        (player_name, save_name, turn_number, game_state, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT (player_name, save_name) DO UPDATE SET
                        turn_number = excluded.turn_number,
                        game_state = excluded.game_state,
                        created_at = excluded.created_at,
                        updated_at = excluded.updated_at
                    """,
                    (player_name, save_name, state.turn_number, blob, now, now),
                )
                row = conn.execute(
                    "SELECT id FROM game_saves WHERE player_name = ? AND save_name = ?",
                    (player_name, save_name),
                ).fetchone()
                save_id = int(row[0])
                conn.execute("DELETE FROM turn_reactions WHERE game_save_id = ?", (save_id,))
        except sqlite3.Error as exc:
            logger.error("Failed to create save %s/%s: %s", player_name, save_name, exc)
            raise PersistenceError(f"Could not create save {save_name!r}: {exc}") from exc
        logger.info("Game save created (id=%d, player=%s, save=%s)", save_id, player_name, save_name)
        return save_id

    def load(self, player_name: str, save_name: str) -> Optional[GameState]:
        try:
            with closing(self._connect()) as conn:
                row = conn.execute(
                    "SELECT game_state FROM game_saves WHERE player_name = ? AND save_name = ?",
                    (player_name, save_name),
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not load save {save_name!r}: {exc}") from exc
        if not row:
            return None
        try:
            return deserialize_game_state(json.loads(row[0]))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.error("Failed to parse game state for %s/%s: %s", player_name, save_name, exc)
            raise PersistenceError(f"Save {save_name!r} is corrupted") from exc

    def update_save(
        self,
        player_name: str,
        save_name: str,
        state: GameState,
        *,
        expected_turn: Optional[int] = None,
        reactions: Optional[Mapping[str, DemographicReaction]] = None,
        fallbacks: Optional[List[str]] = None,
    ) -> None:
        """Overwrite a save in one transaction.

        With ``expected_turn`` the write only succeeds while the stored turn is
        still that value; otherwise :class:`StaleSaveError` is raised.
        """
        now = datetime.now(timezone.utc).isoformat()
        blob = json.dumps(serialize_game_state(state))
        fallback_ids = set(fallbacks or [])
        policy_id = state.policy_history[-1].id if state.policy_history else ""
        try:
            with closing(self._connect()) as conn, conn:
                query = (
                    "UPDATE game_saves SET turn_number = ?, game_state = ?, updated_at = ? "
                    "WHERE player_name = ? AND save_name = ?"
                )
                params: List[object] = [state.turn_number, blob, now, player_name, save_name]
                if expected_turn is not None:
                    query += " AND turn_number = ?"
                    params.append(expected_turn)
                cursor = conn.execute(query, params)
                if cursor.rowcount == 0:
                    row = conn.execute(
                        "SELECT turn_number FROM game_saves WHERE player_name = ? AND save_name = ?",
                        (player_name, save_name),
                    ).fetchone()
                    if row is None:
                        raise PersistenceError(f"No save {save_name!r} for player {player_name!r}")
                    raise StaleSaveError(
                        f"Save {save_name!r} is at turn {row[0]}, expected {expected_turn}"
                    )
                if reactions:
                    save_id = conn.execute(
                        "SELECT id FROM game_saves WHERE player_name = ? AND save_name = ?",
                        (player_name, save_name),
                    ).fetchone()[0]
                    conn.executemany(
                        """
                        INSERT INTO turn_reactions
                            (game_save_id, turn_number, policy_id, demographic_id, payload, fallback, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            (
                                save_id,
                                state.turn_number - 1,
                                policy_id,
                                demographic_id,
                                json.dumps(reaction.to_payload()),
                                1 if demographic_id in fallback_ids else 0,
                                now,
                            )
                            for demographic_id, reaction in reactions.items()
                        ],
                    )
        except sqlite3.Error as exc:
            logger.error("Failed to update save %s/%s: %s", player_name, save_name, exc)
            raise PersistenceError(f"Could not update save {save_name!r}: {exc}") from exc

    def list_saves(self, player_name: str) -> List[SaveSummary]:
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(
                    """
                    SELECT save_name, turn_number, updated_at
                    FROM game_saves
                    WHERE player_name = ?
                    ORDER BY updated_at DESC
                    """,
                    (player_name,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not list saves: {exc}") from exc
        return [
            SaveSummary(save_name=row[0], turn_number=row[1], updated_at=datetime.fromisoformat(row[2]))
            for row in rows
        ]

    def delete_save(self, player_name: str, save_name: str) -> bool:
        try:
            with closing(self._connect()) as conn, conn:
                cursor = conn.execute(
                    "DELETE FROM game_saves WHERE player_name = ? AND save_name = ?",
                    (player_name, save_name),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not delete save {save_name!r}: {exc}") from exc
        return cursor.rowcount > 0

    def turn_history(self, player_name: str, save_name: str) -> List[Dict[str, object]]:
        """Reactions recorded for each completed turn, oldest first."""
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(
                    """
                    SELECT r.turn_number, r.policy_id, r.demographic_id, r.payload, r.fallback
                    FROM turn_reactions r
                    JOIN game_saves s ON s.id = r.game_save_id
                    WHERE s.player_name = ? AND s.save_name = ?
                    ORDER BY r.turn_number, r.demographic_id
                    """,
                    (player_name, save_name),
                ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not read turn history: {exc}") from exc
        return [
            {
                "turn_number": row[0],
                "policy_id": row[1],
                "demographic_id": row[2],
                "reaction": json.loads(row[3]),
                "fallback": bool(row[4]),
            }
            for row in rows
        ]

    def health_check(self) -> Dict[str, str]:
        try:
            with closing(self._connect()) as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error as exc:
            logger.error("Database health check failed: %s", exc)
            return {"status": "error", "message": str(exc)}
        return {"status": "ok", "message": "Database connection healthy"}


__all__ = [
    "PersistenceError",
    "StaleSaveError",
    "SaveStore",
    "serialize_game_state",
    "deserialize_game_state",
]
