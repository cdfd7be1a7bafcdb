"""Tests for the SQLite save store."""
from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

import pytest

from conftest import make_demographic, make_state
from town_hall.models import DemographicReaction, EventType, GameEvent, Policy, PolicyStatus
from town_hall.state import (
    PersistenceError,
    SaveStore,
    StaleSaveError,
    deserialize_game_state,
    serialize_game_state,
)


def rich_state():
    state = make_state(
        make_demographic("youth", happiness=65, support=55, population=25),
        make_demographic("seniors", happiness=40.5, support=71, population=30),
    )
    state.active_events.append(
        GameEvent("flood", "River flood", "Low streets underwater", EventType.ENVIRONMENTAL, 0.15,
                  {"season": "spring"}, {"economic_health": -5}, duration=2, start_turn=1)
    )
    proposed = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
    state.policy_history.append(
        Policy("policy-0", "Bike lanes", "Paint bike lanes", proposed, effects={"budget": -5000}).enact(proposed)
    )
    state.demographics["youth"].last_policy_reaction = "Love it"
    return state


def test_schema_created(tmp_path):
    db_path = tmp_path / "saves.db"
    SaveStore(db_path)

    with sqlite3.connect(db_path) as conn:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}

    assert {"game_saves", "turn_reactions"}.issubset(tables)


def test_serialization_round_trip_preserves_everything():
    state = rich_state()
    assert deserialize_game_state(serialize_game_state(state)) == state


def test_create_and_load(tmp_path):
    store = SaveStore(tmp_path / "saves.db")
    state = rich_state()

    save_id = store.create_save("alex", "first term", state)

    assert save_id > 0
    loaded = store.load("alex", "first term")
    assert loaded == state
    assert loaded.policy_history[0].status is PolicyStatus.ENACTED


def test_load_missing_returns_none(tmp_path):
    store = SaveStore(tmp_path / "saves.db")
    assert store.load("alex", "nope") is None


def test_saves_are_keyed_by_player_and_name(tmp_path):
    store = SaveStore(tmp_path / "saves.db")
    store.create_save("alex", "main", make_state(turn_number=1))
    store.create_save("sam", "main", make_state(turn_number=7))

    assert store.load("alex", "main").turn_number == 1
    assert store.load("sam", "main").turn_number == 7


def test_create_replaces_existing_save_and_its_history(tmp_path):
    store = SaveStore(tmp_path / "saves.db")
    first_id = store.create_save("alex", "main", make_state(make_demographic("a")))
    advanced = make_state(make_demographic("a"), turn_number=2)
    store.update_save("alex", "main", advanced, reactions={"a": DemographicReaction(1, 1, 60, "ok")})

    second_id = store.create_save("alex", "main", make_state(make_demographic("a")))

    assert second_id == first_id
    assert store.load("alex", "main").turn_number == 1
    assert store.turn_history("alex", "main") == []


def test_update_with_expected_turn(tmp_path):
    store = SaveStore(tmp_path / "saves.db")
    store.create_save("alex", "main", make_state(turn_number=1))

    store.update_save("alex", "main", make_state(turn_number=2), expected_turn=1)

    assert store.load("alex", "main").turn_number == 2
    with pytest.raises(StaleSaveError):
        store.update_save("alex", "main", make_state(turn_number=2), expected_turn=1)
    assert store.load("alex", "main").turn_number == 2


def test_update_missing_save_fails(tmp_path):
    store = SaveStore(tmp_path / "saves.db")
    with pytest.raises(PersistenceError):
        store.update_save("alex", "ghost", make_state())


def test_turn_history_records_reactions(tmp_path):
    store = SaveStore(tmp_path / "saves.db")
    base = make_state(make_demographic("a"), make_demographic("b"))
    store.create_save("alex", "main", base)
    nxt = make_state(make_demographic("a"), make_demographic("b"), turn_number=2)
    nxt.policy_history.append(Policy("policy-1", "Parks", "More parks", datetime.now(timezone.utc)))

    store.update_save(
        "alex",
        "main",
        nxt,
        expected_turn=1,
        reactions={
            "a": DemographicReaction(5, 1, 70, "Nice"),
            "b": DemographicReaction.neutral(),
        },
        fallbacks=["b"],
    )

    history = store.turn_history("alex", "main")
    assert [(row["turn_number"], row["demographic_id"], row["fallback"]) for row in history] == [
        (1, "a", False),
        (1, "b", True),
    ]
    assert history[0]["policy_id"] == "policy-1"
    assert history[0]["reaction"]["explanation"] == "Nice"


@pytest.mark.parametrize("blob", ["{not json", "[]", "null", '"text"', "42"])
def test_corrupted_blob_raises(tmp_path, blob):
    db_path = tmp_path / "saves.db"
    store = SaveStore(db_path)
    store.create_save("alex", "main", make_state())
    with sqlite3.connect(db_path) as conn:
        conn.execute("UPDATE game_saves SET game_state = ?", (blob,))

    with pytest.raises(PersistenceError):
        store.load("alex", "main")


def test_list_and_delete_saves(tmp_path):
    store = SaveStore(tmp_path / "saves.db")
    store.create_save("alex", "one", make_state(turn_number=1))
    store.create_save("alex", "two", make_state(turn_number=4))
    store.create_save("sam", "three", make_state())

    saves = {summary.save_name: summary.turn_number for summary in store.list_saves("alex")}
    assert saves == {"one": 1, "two": 4}

    assert store.delete_save("alex", "one") is True
    assert store.delete_save("alex", "one") is False
    assert [s.save_name for s in store.list_saves("alex")] == ["two"]


def test_health_check(tmp_path):
    store = SaveStore(tmp_path / "saves.db")
    assert store.health_check()["status"] == "ok"
