"""
Sample characters for trying the roller by hand and for tests.
"""
from rollengine.models import (
    Attribute,
    CharacterSnapshot,
    RollContext,
    RollEnvironment,
    RollSource,
    RollTarget,
    SourceType,
    WeaponProfile,
)

# ==================== WEAPONS ====================

RAPIER = WeaponProfile(
    name="Rapier",
    damage_dice="1d8",
    attack_bonus=5,             # DEX +3, proficiency +2
    damage_bonus=3,
    damage_type="piercing",
    tags=["melee", "finesse"],
)

LONGSWORD = WeaponProfile(
    name="Longsword",
    damage_dice="1d8",
    attack_bonus=6,
    damage_bonus=3,
    damage_type="slashing",
    tags=["melee", "versatile"],
    magic_bonus=1,
)


def create_rogue_context(hidden: bool = False) -> RollContext:
    """
    Level 3 rogue with a rapier against a goblin (AC 13).

    Returns:
        RollContext: Rapier in hand, ready for attack and damage rolls
    """
    rogue = CharacterSnapshot(
        id="char_vex_001",
        name="Vex",
        level=3,
        ability_scores={"STR": 10, "DEX": 16, "CON": 12, "INT": 13, "WIS": 10, "CHA": 14},
        skill_proficiencies=["Stealth", "Acrobatics", "Perception", "Sleight of Hand"],
        expertise=["Stealth", "Sleight of Hand"],
        saving_throw_proficiencies=[Attribute.DEX, Attribute.INT],
        class_name="Rogue",
        features=["Sneak Attack", "Cunning Action"],
    )
    return RollContext(
        character=rogue,
        source=RollSource(
            type=SourceType.WEAPON,
            name=RAPIER.name,
            tags=list(RAPIER.tags),
            properties={"damage": RAPIER.damage_dice, "damage_type": RAPIER.damage_type},
        ),
        target=RollTarget(ac=13, dc=12),
        environment=RollEnvironment(hidden=hidden),
    )


def create_fighter_context() -> RollContext:
    """Level 5 champion with a +1 longsword against an ogre (AC 11, resistant to nothing)."""
    fighter = CharacterSnapshot(
        id="char_brom_001",
        name="Brom",
        level=5,
        ability_scores={"STR": 17, "DEX": 12, "CON": 16, "INT": 8, "WIS": 11, "CHA": 10},
        skill_proficiencies=["Athletics", "Intimidation"],
        saving_throw_proficiencies=[Attribute.STR, Attribute.CON],
        class_name="Fighter",
        subclass="Champion",
        features=["Improved Critical", "Extra Attack", "Second Wind"],
    )
    return RollContext(
        character=fighter,
        source=RollSource(
            type=SourceType.WEAPON,
            name=LONGSWORD.name,
            tags=list(LONGSWORD.tags),
            properties={
                "damage": LONGSWORD.damage_dice,
                "damage_type": LONGSWORD.damage_type,
                "magic_bonus": LONGSWORD.magic_bonus,
            },
        ),
        target=RollTarget(ac=11),
    )


def create_warlock_context() -> RollContext:
    warlock = CharacterSnapshot(
        id="char_selene_001",
        name="Selene",
        level=5,
        ability_scores={"STR": 8, "DEX": 14, "CON": 14, "INT": 10, "WIS": 12, "CHA": 18},
        skill_proficiencies=["Arcana", "Deception"],
        saving_throw_proficiencies=[Attribute.WIS, Attribute.CHA],
        class_name="Warlock",
        features=["Agonizing Blast"],
    )
    return RollContext(
        character=warlock,
        source=RollSource(
            type=SourceType.SPELL,
            name="Eldritch Blast",
            properties={"damage": "1d10", "damage_type": "force"},
        ),
        target=RollTarget(ac=15, conditions=["vulnerable_force"]),
    )
