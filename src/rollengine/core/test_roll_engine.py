"""
Roll engine tests: analyze_roll previews and execute_roll results.
"""

import itertools
import logging
import statistics

import pytest

from rollengine.core.exceptions import DiceParseError, RollTimeoutError
from rollengine.core.roller import make_rng
from rollengine.models import (
    BreakdownType,
    CharacterSnapshot,
    CriticalRules,
    ModifierSource,
    ModifierType,
    RollContext,
    RollDefinition,
    RollEnvironment,
    RollModifier,
    RollSource,
    RollTarget,
    RollType,
    SourceType,
)
from rollengine.scenarios import create_fighter_context, create_rogue_context, create_warlock_context


def definition(expression, roll_type=RollType.RAW, context=None, **fields):
    return RollDefinition(
        type=roll_type,
        name=fields.pop("name", expression),
        base_expression=expression,
        context=context or RollContext(),
        **fields,
    )


def modifier(id, type, value, **fields):
    fields.setdefault("source", ModifierSource.FEAT)
    return RollModifier(id=id, name=fields.pop("name", id.title()), type=type, value=value, **fields)


# ============================================================
# analyze_roll
# ============================================================

def test_analyze_plain_expression(make_engine):
    info = make_engine().analyze_roll(definition("1d20+5"))
    assert (info.estimated_range.min, info.estimated_range.max) == (6, 25)
    assert info.estimated_range.average == 15.5
    assert [item.type for item in info.breakdown] == [BreakdownType.DIE, BreakdownType.MODIFIER]
    assert info.critical_range == [20]
    print("✓ Preview ranges exact")


def test_analyze_is_pure(make_engine, scripted):
    """No dice drawn, nothing logged, same answer twice."""
    rng = scripted()
    engine = make_engine(rng=rng)
    roll = definition("attack:1d20+5,damage:1d8+3", RollType.ATTACK, create_rogue_context(hidden=True))

    first = engine.analyze_roll(roll)
    second = engine.analyze_roll(roll)
    assert first == second
    assert rng.calls == []
    assert len(engine.roll_log) == 0


def test_analyze_label_ranges(make_engine):
    info = make_engine().analyze_roll(definition("attack:1d20+5,damage:1d8+3", RollType.ATTACK))
    attack, damage = info.label_ranges["attack"], info.label_ranges["damage"]
    assert (attack.min, attack.max) == (6, 25)
    assert (damage.min, damage.max, damage.average) == (4, 11, 7.5)
    assert info.estimated_range == damage
    assert any("2d8+3" in note for note in info.notes)


def test_analyze_unlabeled_segments_are_numbered(make_engine):
    info = make_engine().analyze_roll(definition("1d6,1d4"))
    assert set(info.label_ranges) == {"roll_1", "roll_2"}


def test_analyze_reports_conditions_and_crit_range(make_engine):
    context = create_fighter_context().model_copy(update={"environment": RollEnvironment(advantage=True)})
    info = make_engine().analyze_roll(definition("1d20", RollType.ATTACK, context))

    assert info.critical_range == [19, 20]
    assert "Critical hit on 19-20" in info.notes
    assert {c.id for c in info.conditions} >= {"advantage", "improved_critical"}
    # 2d20kh1 + STR 3 + proficiency 3 + weapon 1
    assert info.estimated_range.max == 27
    assert info.estimated_range.average == pytest.approx(13.82 + 7, abs=0.01)


def test_analyze_invalid_expression_raises(make_engine):
    with pytest.raises(DiceParseError):
        make_engine().analyze_roll(definition("3x6"))


# ============================================================
# execute_roll
# ============================================================

def test_simple_execution(make_engine, scripted):
    result = make_engine(rng=scripted([11])).execute_roll(definition("1d20+5"))
    assert result.total == 16
    assert result.natural_roll is None          # RAW rolls have no natural d20
    assert [(i.type, i.label, i.value) for i in result.breakdown] == [
        (BreakdownType.DIE, "d20", 11),
        (BreakdownType.MODIFIER, "Bonus", 5),
    ]


def test_total_matches_breakdown(make_engine):
    engine = make_engine()
    roll = definition("attack:1d20+5,damage:2d6+3,damage:1d4", RollType.ATTACK, create_rogue_context(hidden=True))
    for _ in range(50):
        result = engine.execute_roll(roll)
        for part in result.multi_results:
            counted = sum(item.value for item in part.breakdown if not item.details.dropped)
            assert counted == part.total
        assert result.total == result.multi_results[-1].total


def test_advantage_rolls_two_keeps_one(make_engine, scripted):
    context = RollContext(environment=RollEnvironment(advantage=True))
    result = make_engine(rng=scripted([4, 17])).execute_roll(definition("1d20+2", RollType.ATTACK, context))

    assert result.total == 19
    assert result.natural_roll == 17
    assert result.metadata.advantage
    dice = result.items(BreakdownType.DIE)
    assert len(dice) == 2
    assert sum(d.details.dropped for d in dice) == 1
    assert result.metadata.expression == "2d20kh1+2"


def test_advantage_and_disadvantage_cancel(make_engine, scripted):
    context = RollContext(environment=RollEnvironment(advantage=True, disadvantage=True))
    result = make_engine(rng=scripted([9])).execute_roll(definition("1d20", RollType.ATTACK, context))

    assert result.total == 9
    assert len(result.items(BreakdownType.DIE)) == 1
    assert not result.metadata.advantage and not result.metadata.disadvantage
    assert result.items(BreakdownType.CONDITION)
    print("✓ Advantage and disadvantage cancel")


def test_cancelled_advantage_matches_plain_d20(make_engine):
    """Over many seeded rolls, adv + disadv behaves like a single d20."""
    trials = 4000
    both = RollContext(environment=RollEnvironment(advantage=True, disadvantage=True))
    cancelled = make_engine(rng=make_rng(7))
    plain = make_engine(rng=make_rng(8))
    advantaged = make_engine(rng=make_rng(9))

    cancelled_totals = [cancelled.execute_roll(definition("1d20", RollType.ATTACK, both)).total for _ in range(trials)]
    plain_totals = [plain.execute_roll(definition("1d20", RollType.ATTACK)).total for _ in range(trials)]
    advantage_totals = [
        advantaged.execute_roll(
            definition("1d20", RollType.ATTACK, RollContext(environment=RollEnvironment(advantage=True)))
        ).total
        for _ in range(trials)
    ]

    cancelled_mean = statistics.mean(cancelled_totals)
    assert abs(cancelled_mean - 10.5) < 0.35
    assert abs(cancelled_mean - statistics.mean(plain_totals)) < 0.5
    # Advantage alone averages 13.82, well clear of both
    assert statistics.mean(advantage_totals) - cancelled_mean > 2.5

    twenties = cancelled_totals.count(20) / trials
    assert abs(twenties - plain_totals.count(20) / trials) < 0.025
    assert set(cancelled_totals) == set(range(1, 21))
    print("✓ Cancelled advantage distributed like 1d20")


def test_skill_check_itemized(make_engine, scripted, nimble_context):
    context = nimble_context.with_source(type=SourceType.SKILL, name="Stealth")
    result = make_engine(rng=scripted([14])).execute_roll(definition("1d20", RollType.SKILL, context))

    assert result.total == 19
    assert [(i.type, i.value) for i in result.breakdown] == [
        (BreakdownType.DIE, 14),
        (BreakdownType.MODIFIER, 5),
    ]
    assert result.success is True               # DC 15
    assert result.target_number == 15


def test_attack_against_ac(make_engine, scripted):
    context = RollContext(target=RollTarget(ac=15))
    engine = make_engine(rng=scripted([9, 10]))
    miss = engine.execute_roll(definition("1d20+5", RollType.ATTACK, context))
    hit = engine.execute_roll(definition("1d20+5", RollType.ATTACK, context))
    assert miss.success is False and miss.target_number == 15
    assert hit.success is True


def test_natural_twenty_and_one_override_ac(make_engine, scripted):
    engine = make_engine(rng=scripted([20, 1]))
    crit = engine.execute_roll(definition("1d20", RollType.ATTACK, RollContext(target=RollTarget(ac=30))))
    fumble = engine.execute_roll(definition("1d20+20", RollType.ATTACK, RollContext(target=RollTarget(ac=5))))

    assert crit.critical_success and crit.success is True
    assert fumble.critical_failure and fumble.success is False


def test_exploding_d20_still_crits(make_engine, scripted):
    """The explosion die is not the natural roll; the first d20 is."""
    result = make_engine(rng=scripted([20, 5])).execute_roll(definition("1d20!", RollType.ATTACK))
    assert result.natural_roll == 20
    assert result.critical_success
    assert result.total == 25
    assert len(result.items(BreakdownType.DIE)) == 2

    fumble = make_engine(rng=scripted([1])).execute_roll(definition("1d20!", RollType.ATTACK))
    assert fumble.natural_roll == 1
    assert fumble.critical_failure
    print("✓ Exploding d20 keeps its natural 20")


def test_initiative_never_crits(make_engine, scripted):
    result = make_engine(rng=scripted([20])).execute_roll(definition("1d20", RollType.INITIATIVE))
    assert result.natural_roll == 20
    assert not result.critical_success


def test_death_save_defaults_to_dc_ten(make_engine, scripted):
    result = make_engine(rng=scripted([12])).execute_roll(definition("1d20", RollType.DEATH_SAVE))
    assert result.target_number == 10
    assert result.success is True


def test_critical_attack_doubles_following_damage(make_engine, scripted):
    roll = definition("attack:1d20+5,damage:1d8+3", RollType.ATTACK, RollContext())
    result = make_engine(rng=scripted([20, 5, 6])).execute_roll(roll)

    attack, damage = result.multi_results
    assert attack.critical_success
    assert damage.metadata.expression == "2d8+3"
    assert damage.metadata.roll_type is RollType.DAMAGE
    assert damage.total == 14
    assert result.total == 14
    assert result.critical_success
    assert result.natural_roll == 20


def test_weapon_only_crit_doubles_first_damage_term(make_engine, scripted):
    roll = definition("attack:1d20,damage:1d8,damage:1d6", RollType.ATTACK)
    result = make_engine(rng=scripted([20, 1, 1, 1])).execute_roll(roll)
    assert [r.metadata.expression for r in result.multi_results] == ["1d20", "2d8", "1d6"]

    rules = CriticalRules(affected_dice="all_damage")
    result = make_engine(rng=scripted([20]), rules=rules).execute_roll(roll)
    assert [r.metadata.expression for r in result.multi_results] == ["1d20", "2d8", "2d6"]


def test_critical_damage_flag(make_engine, scripted):
    roll = definition("2d8+3", RollType.DAMAGE, critical_hit=True)
    rules = CriticalRules(additional_dice="1d6")
    result = make_engine(rng=scripted([3, 4, 5]), rules=rules).execute_roll(roll)

    critical = result.items(BreakdownType.CRITICAL)
    assert len(critical) == 1 and critical[0].value == 5
    assert result.total == 3 + 4 + 3 + 5


def test_sneak_attack_once_per_turn(make_engine):
    context = create_rogue_context(hidden=True)
    result = make_engine().execute_roll(definition("1d8,1d8", RollType.DAMAGE, context))

    first, second = result.multi_results
    assert "Sneak Attack" in first.metadata.modifiers_applied
    assert "Sneak Attack" not in second.metadata.modifiers_applied
    assert len([i for i in first.breakdown if i.details.source == "Sneak Attack"]) == 2


def test_once_per_turn_resets_between_calls(make_engine):
    engine = make_engine()
    context = create_rogue_context(hidden=True)
    for _ in range(2):
        result = engine.execute_roll(definition("1d8", RollType.DAMAGE, context))
        assert "Sneak Attack" in result.metadata.modifiers_applied


def test_vulnerability_and_agonizing_blast(make_engine, scripted):
    roll = definition("1d10", RollType.DAMAGE, create_warlock_context())
    result = make_engine(rng=scripted([6])).execute_roll(roll)
    # (6 + 4 CHA) x2
    assert result.total == 20


def test_resistance_floors(make_engine, scripted):
    context = RollContext(
        source=RollSource(type=SourceType.WEAPON, name="Torch", properties={"damage_type": "fire"}),
        target=RollTarget(conditions=["resistant_fire"]),
    )
    result = make_engine(rng=scripted([7])).execute_roll(definition("1d8", RollType.DAMAGE, context))
    assert result.total == 3


def test_reroll_and_minimum_modifiers(make_engine, scripted):
    extra = [
        modifier("halfling_luck", ModifierType.REROLL, [1]),
        modifier("reliable", ModifierType.MINIMUM, 10),
    ]
    result = make_engine(rng=scripted([1, 4])).execute_roll(
        definition("1d20", RollType.SKILL, modifiers=extra)
    )
    assert result.total == 10
    assert result.items(BreakdownType.REROLL)[0].value == 1
    assert result.metadata.expression == "1d20r1min10"


def test_minimum_above_declared_maximum_is_skipped(make_engine, scripted, caplog):
    extra = [modifier("reliable", ModifierType.MINIMUM, 10)]
    with caplog.at_level(logging.WARNING, logger="rollengine"):
        result = make_engine(rng=scripted([3])).execute_roll(
            definition("1d20max5", RollType.SKILL, modifiers=extra)
        )
    assert result.total == 3
    assert result.metadata.expression == "1d20max5"
    assert "reliable" in caplog.text


def test_replace_die(make_engine, scripted):
    extra = [modifier("portent", ModifierType.REPLACE_DIE, 18)]
    result = make_engine(rng=scripted([3])).execute_roll(definition("1d20+1", RollType.SAVE, modifiers=extra))
    assert result.natural_roll == 18
    assert result.total == 19


def test_extra_attack(make_engine, scripted):
    extra = [modifier("extra_attack", ModifierType.EXTRA_ATTACK, 1)]
    result = make_engine(rng=scripted([12, 7])).execute_roll(definition("1d20+5", RollType.ATTACK, modifiers=extra))
    assert result.total == 17
    assert len(result.additional_results) == 1
    assert result.additional_results[0].total == 12


def test_character_modifiers_can_be_turned_off(make_engine, scripted):
    context = create_fighter_context()
    with_bonuses = make_engine(rng=scripted([10])).execute_roll(definition("1d20", RollType.ATTACK, context))
    without = make_engine(rng=scripted([10])).execute_roll(
        definition("1d20", RollType.ATTACK, context, derive_character_modifiers=False)
    )
    assert with_bonuses.total == 17
    assert without.total == 10


def test_exploding_roll_is_capped(make_engine):
    result = make_engine(explode_cap=100).execute_roll(definition("1d1!"))
    assert result.total == 100
    assert any("cap" in note for note in result.metadata.notes)


def test_timeout(make_engine):
    ticks = itertools.count(0, 10)
    engine = make_engine(max_execution_time=5, clock=lambda: next(ticks))
    with pytest.raises(RollTimeoutError):
        engine.execute_roll(definition("2d6"))
    assert len(engine.roll_log) == 0


def test_invalid_expression_raises(make_engine):
    engine = make_engine()
    with pytest.raises(DiceParseError):
        engine.execute_roll(definition("1d20,3x6"))
    assert len(engine.roll_log) == 0


def test_execute_appends_to_log(make_engine):
    engine = make_engine()
    result = engine.execute_roll(definition("1d6"))
    assert engine.history[0].result == result
    assert result.metadata.execution_ms >= 0
    engine.clear_history()
    assert engine.history == []


def test_context_is_not_mutated(make_engine):
    context = RollContext(
        character=CharacterSnapshot(ability_scores={"DEX": 18}),
        environment=RollEnvironment(advantage=True),
    )
    before = context.model_dump()
    make_engine().execute_roll(definition("1d20", RollType.INITIATIVE, context))
    assert context.model_dump() == before
