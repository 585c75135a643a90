"""
Modifier resolution tests: which modifiers apply to a context and in what order.
"""

import logging

from rollengine.core.resolver import ModifierResolver
from rollengine.models import (
    ApplicationTiming,
    Attribute,
    CharacterSnapshot,
    DiceExpression,
    ModifierSource,
    ModifierType,
    RollContext,
    RollEnvironment,
    RollModifier,
    RollSource,
    RollTarget,
    RollType,
    SourceType,
)
from rollengine.scenarios import create_fighter_context, create_rogue_context, create_warlock_context


def by_id(modifiers):
    return {m.id: m for m in modifiers}


def homebrew(**fields):
    fields.setdefault("id", "lucky_charm")
    fields.setdefault("name", "Lucky Charm")
    fields.setdefault("source", ModifierSource.HOMEBREW)
    fields.setdefault("type", ModifierType.FLAT)
    fields.setdefault("value", 1)
    return RollModifier(**fields)


def test_finesse_weapon_uses_better_of_str_and_dex():
    resolver = ModifierResolver()
    context = create_rogue_context()
    assert resolver.ability_for(context, RollType.ATTACK) is Attribute.DEX

    tied = context.model_copy(update={
        "character": CharacterSnapshot(ability_scores={"STR": 14, "DEX": 14}),
    })
    assert resolver.ability_for(tied, RollType.ATTACK) is Attribute.STR
    print("✓ Finesse picks the better ability, STR on a tie")


def test_ability_inference_by_roll_type():
    resolver = ModifierResolver()
    context = RollContext()
    assert resolver.ability_for(context, RollType.INITIATIVE) is Attribute.DEX
    assert resolver.ability_for(context, RollType.CONCENTRATION) is Attribute.CON
    assert resolver.ability_for(context.with_source(type=SourceType.SKILL, name="Athletics"), RollType.SKILL) is Attribute.STR
    assert resolver.ability_for(context.with_source(type=SourceType.SAVE, name="Wisdom"), RollType.SAVE) is Attribute.WIS
    assert resolver.ability_for(create_warlock_context(), RollType.SPELL_ATTACK) is Attribute.CHA
    assert resolver.ability_for(context, RollType.HEALING) is None


def test_expertise_is_a_single_doubled_bonus():
    resolver = ModifierResolver()
    context = create_rogue_context().with_source(type=SourceType.SKILL, name="Stealth")
    modifiers = by_id(resolver.resolve(context, RollType.SKILL))

    assert modifiers["expertise_bonus"].value == 4
    assert "proficiency_bonus" not in modifiers
    assert modifiers["ability_dex"].value == 3
    print("✓ Expertise doubles proficiency once")


def test_proficient_skill_gets_proficiency_bonus():
    resolver = ModifierResolver()
    context = create_rogue_context().with_source(type=SourceType.SKILL, name="Perception")
    modifiers = by_id(resolver.resolve(context, RollType.SKILL))
    assert modifiers["proficiency_bonus"].value == 2
    assert "ability_wis" not in modifiers       # WIS 10 contributes nothing


def test_modifiers_are_ordered_by_priority():
    resolver = ModifierResolver()
    context = create_fighter_context()
    priorities = [m.priority for m in resolver.resolve(context, RollType.ATTACK)]
    assert priorities == sorted(priorities)


def test_character_resolvers_can_be_skipped():
    resolver = ModifierResolver()
    context = create_fighter_context()
    modifiers = by_id(resolver.resolve(context, RollType.ATTACK, include_character=False))
    assert "ability_str" not in modifiers
    assert "proficiency_bonus" not in modifiers
    assert "weapon_enhancement" not in modifiers
    assert "improved_critical" in modifiers


def test_champion_improved_critical():
    modifiers = by_id(ModifierResolver().resolve(create_fighter_context(), RollType.ATTACK))
    assert modifiers["improved_critical"].value == 19
    assert modifiers["weapon_enhancement"].value == 1


def test_sneak_attack_needs_an_opening():
    resolver = ModifierResolver()
    hidden = by_id(resolver.resolve(create_rogue_context(hidden=True), RollType.DAMAGE))
    sneak = hidden["sneak_attack"]
    assert sneak.value.to_notation() == "2d6"
    assert sneak.application is ApplicationTiming.ONCE_PER_TURN

    exposed = by_id(resolver.resolve(create_rogue_context(), RollType.DAMAGE))
    assert "sneak_attack" not in exposed
    print("✓ Sneak Attack only with advantage, hiding or an ally")


def test_advantage_sources():
    resolver = ModifierResolver()
    context = create_rogue_context(hidden=True).model_copy(update={
        "environment": RollEnvironment(hidden=True, conditions=["poisoned"]),
    })
    kinds = {m.id: m.type for m in resolver.resolve(context, RollType.ATTACK)}
    assert kinds["hidden_advantage"] is ModifierType.ADVANTAGE
    assert kinds["poisoned"] is ModifierType.DISADVANTAGE

    # Advantage never reaches damage
    assert not [m for m in resolver.resolve(context, RollType.DAMAGE) if m.type is ModifierType.ADVANTAGE]


def test_prone_target_depends_on_range():
    resolver = ModifierResolver()
    melee = RollContext(
        source=RollSource(type=SourceType.WEAPON, name="Mace", tags=["melee"]),
        target=RollTarget(ac=12, conditions=["prone"]),
    )
    ranged = melee.with_source(name="Shortbow", tags=["ranged"])
    assert by_id(resolver.resolve(melee, RollType.ATTACK))["prone_advantage"].type is ModifierType.ADVANTAGE
    assert by_id(resolver.resolve(ranged, RollType.ATTACK))["prone_disadvantage"].type is ModifierType.DISADVANTAGE


def test_cover_penalty():
    context = RollContext(environment=RollEnvironment(cover="three_quarters"))
    modifiers = by_id(ModifierResolver().resolve(context, RollType.ATTACK))
    assert modifiers["cover_penalty"].value == -5


def test_bless_and_guidance():
    resolver = ModifierResolver()
    blessed = RollContext(environment=RollEnvironment(blessed=True, guidance=True))
    attack = by_id(resolver.resolve(blessed, RollType.ATTACK))
    skill = by_id(resolver.resolve(blessed, RollType.SKILL))
    assert isinstance(attack["bless"].value, DiceExpression)
    assert "guidance" not in attack
    assert "guidance" in skill
    assert "bless" not in skill


def test_damage_type_vulnerability():
    modifiers = by_id(ModifierResolver().resolve(create_warlock_context(), RollType.DAMAGE))
    assert modifiers["vulnerability"].type is ModifierType.MULTIPLIER
    assert modifiers["agonizing_blast"].value == 4


def test_dice_modifier_notation_is_parsed():
    resolver = ModifierResolver()
    extra = homebrew(id="hex", name="Hex", source=ModifierSource.SPELL, type=ModifierType.DICE, value="1d6")
    modifiers = by_id(resolver.resolve(RollContext(), RollType.DAMAGE, extra=[extra]))
    assert modifiers["hex"].value.to_notation() == "1d6"


def test_malformed_modifiers_are_skipped(caplog):
    resolver = ModifierResolver()
    bad = [
        homebrew(id="bad_dice", name="Bad Dice", type=ModifierType.DICE, value="3x6"),
        homebrew(id="zero_divider", name="Zero", type=ModifierType.DIVIDER, value=0),
        homebrew(id="wide_crit", name="Wide Crit", type=ModifierType.CRIT_RANGE, value=1),
    ]
    with caplog.at_level(logging.WARNING, logger="rollengine"):
        modifiers = by_id(resolver.resolve(RollContext(), RollType.ATTACK, extra=bad))
    assert not {"bad_dice", "zero_divider", "wide_crit"} & set(modifiers)
    assert "bad_dice" in caplog.text
    print("✓ Malformed modifiers skipped with a warning")


def test_failing_condition_is_skipped(caplog):
    def explode(context):
        raise KeyError("missing")

    resolver = ModifierResolver()
    extra = [
        homebrew(id="fragile", name="Fragile", condition=explode),
        homebrew(id="never", name="Never", condition=lambda context: False),
        homebrew(id="always", name="Always", condition=lambda context: True),
    ]
    with caplog.at_level(logging.WARNING, logger="rollengine"):
        modifiers = by_id(resolver.resolve(RollContext(), RollType.ATTACK, extra=extra))
    assert set(modifiers) == {"always"}
    assert "fragile" in caplog.text


def test_homebrew_can_be_disabled():
    resolver = ModifierResolver(enable_homebrew=False)
    modifiers = resolver.resolve(RollContext(), RollType.ATTACK, extra=[homebrew()])
    assert modifiers == []


def test_non_stacking_modifiers_collapse():
    weak = homebrew(id="charm_a", value=1, priority=70)
    strong = homebrew(id="charm_b", value=2, priority=10)
    stacking = [homebrew(id=f"stack_{i}", name="Stack", stacks=True) for i in range(2)]

    collapsed = ModifierResolver.collapse([weak, strong] + stacking)
    assert [m.id for m in collapsed] == ["charm_b", "stack_0", "stack_1"]


def test_custom_resolvers(caplog):
    resolver = ModifierResolver()

    def rage(context, roll_type):
        if roll_type is not RollType.DAMAGE:
            return []
        return [RollModifier(id="rage", name="Rage", source=ModifierSource.CLASS_FEATURE, type=ModifierType.FLAT, value=2)]

    def broken(context, roll_type):
        raise RuntimeError("boom")

    resolver.register("rage", rage)
    resolver.register("broken", broken)
    assert resolver.resolver_names[-2:] == ["rage", "broken"]

    with caplog.at_level(logging.WARNING, logger="rollengine"):
        modifiers = by_id(resolver.resolve(RollContext(), RollType.DAMAGE))
    assert modifiers["rage"].value == 2
    assert "broken" in caplog.text

    resolver.unregister("rage")
    assert "rage" not in resolver.resolver_names


def test_resolution_is_deterministic():
    resolver = ModifierResolver()
    context = create_rogue_context(hidden=True)
    first = [m.id for m in resolver.resolve(context, RollType.DAMAGE)]
    second = [m.id for m in resolver.resolve(context, RollType.DAMAGE)]
    assert first == second
