"""Tests for the population-weighted reaction aggregator."""
from __future__ import annotations

import copy

import pytest

from conftest import make_demographic
from town_hall.aggregator import aggregate, round_half_up, update_demographic
from town_hall.models import DemographicReaction, StateDelta


def reaction(happiness=0, economic=0, support=50, explanation="ok"):
    return DemographicReaction(happiness, economic, support, explanation)


def test_population_weighted_changes():
    demographics = {
        "a": make_demographic("a", population=60),
        "b": make_demographic("b", population=40),
    }
    reactions = {"a": reaction(happiness=10), "b": reaction(happiness=-10)}

    result = aggregate(reactions, demographics)

    assert result.delta.approval == 2


def test_economic_delta_is_weighted_by_population():
    demographics = {
        "a": make_demographic("a", population=25),
        "b": make_demographic("b", population=15),
    }
    reactions = {"a": reaction(economic=5), "b": reaction(economic=10)}

    result = aggregate(reactions, demographics)

    # 0.25 * 5 + 0.15 * 10 = 2.75
    assert result.delta.economic == 3


def test_happiness_and_support_are_clamped():
    demographics = {
        "up": make_demographic("up", happiness=95, support=99),
        "down": make_demographic("down", happiness=3, support=1),
    }
    reactions = {
        "up": reaction(happiness=50, support=100),
        "down": reaction(happiness=-50, support=0),
    }

    result = aggregate(reactions, demographics, support_blend=1.0)

    assert result.demographics["up"].happiness == 100
    assert result.demographics["up"].support_level == 100
    assert result.demographics["down"].happiness == 0
    assert result.demographics["down"].support_level == 0


def test_support_moves_part_way_toward_likelihood():
    demo = make_demographic("a", support=40)
    updated = update_demographic(demo, reaction(support=80, explanation="Good for us"), support_blend=0.25)

    assert updated.support_level == pytest.approx(50)
    assert updated.last_policy_reaction == "Good for us"
    assert demo.support_level == 40
    assert demo.last_policy_reaction is None


def test_zero_population_group_updates_itself_without_weight():
    demographics = {
        "ghost": make_demographic("ghost", population=0, happiness=50),
        "real": make_demographic("real", population=100, happiness=50),
    }
    reactions = {"ghost": reaction(happiness=40), "real": reaction(happiness=0)}

    result = aggregate(reactions, demographics)

    assert result.demographics["ghost"].happiness == 90
    assert result.delta.approval == 0


def test_empty_demographics_is_a_no_op():
    result = aggregate({}, {}, budget_delta=-2500)

    assert result.delta == StateDelta(approval=0, economic=0, budget=-2500.0)
    assert result.demographics == {}


def test_missing_reaction_carries_demographic_over():
    demographics = {"a": make_demographic("a", happiness=42)}

    result = aggregate({}, demographics)

    assert result.demographics["a"] == demographics["a"]
    assert result.demographics["a"] is not demographics["a"]


def test_aggregate_is_pure_and_repeatable():
    demographics = {
        "a": make_demographic("a", population=70, happiness=30),
        "b": make_demographic("b", population=30, happiness=80),
    }
    reactions = {"a": reaction(12, -3, 90), "b": reaction(-7, 4, 20)}
    before = copy.deepcopy(demographics)

    first = aggregate(reactions, demographics)
    second = aggregate(reactions, demographics)

    assert first == second
    assert demographics == before


def test_explicit_weights_override_population():
    demographics = {
        "a": make_demographic("a", population=50),
        "b": make_demographic("b", population=50),
    }
    reactions = {"a": reaction(happiness=10), "b": reaction(happiness=-10)}

    result = aggregate(reactions, demographics, weights={"a": 1.0, "b": 0.0})

    assert result.delta.approval == 10


def test_invalid_support_blend_is_rejected():
    with pytest.raises(ValueError):
        aggregate({}, {}, support_blend=1.5)


@pytest.mark.parametrize(
    "value, expected",
    [(2.5, 3), (2.49, 2), (0.5, 1), (-0.5, 0), (-2.5, -2), (-2.51, -3), (0.0, 0)],
)
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected
