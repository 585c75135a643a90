"""Shared fixtures for the roll engine tests."""

import pytest

from rollengine.core import RollController, RollEngine, RollLog, make_rng
from rollengine.models import (
    CharacterSnapshot,
    CriticalRules,
    RollContext,
    RollSource,
    RollTarget,
    SourceType,
)


class ScriptedRandom:
    """Random source that hands out queued faces in order, then 1s."""

    def __init__(self, values=()):
        self.values = list(values)
        self.calls = []

    def __call__(self, sides: int) -> int:
        self.calls.append(sides)
        return self.values.pop(0) if self.values else 1


@pytest.fixture
def scripted():
    """Factory: scripted([20, 5, 6]) -> ScriptedRandom"""
    return ScriptedRandom


@pytest.fixture
def make_engine():
    """Engine with explicit rules so tests never depend on .env settings."""
    def _make(rng=None, rules=None, **kwargs):
        kwargs.setdefault("max_execution_time", 0)
        kwargs.setdefault("explode_cap", 100)
        return RollEngine(
            rules=rules or CriticalRules(),
            rng=rng or make_rng(1234),
            roll_log=RollLog(limit=50),
            **kwargs,
        )
    return _make


@pytest.fixture
def make_controller(make_engine):
    def _make(rng=None, rules=None, gate_damage_on_hit=False, **kwargs):
        return RollController(make_engine(rng=rng, rules=rules, **kwargs), gate_damage_on_hit=gate_damage_on_hit)
    return _make


@pytest.fixture
def plain_context():
    """A rapier with no character bonuses behind it."""
    return RollContext(
        source=RollSource(type=SourceType.WEAPON, name="Rapier", tags=["melee", "finesse"]),
    )


@pytest.fixture
def nimble_context():
    """DEX 20 adventurer with no skill proficiencies."""
    return RollContext(
        character=CharacterSnapshot(
            name="Nim",
            level=1,
            ability_scores={"STR": 8, "DEX": 20},
        ),
        target=RollTarget(dc=15),
    )
