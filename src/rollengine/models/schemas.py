import logging
from enum import Enum
from typing import Dict

logger = logging.getLogger(__name__)

# Enum Classes
class Attribute(str, Enum):         # Attributes (D&D standard six)
    STR = 'STR'
    DEX = 'DEX'
    CON = 'CON'
    INT = 'INT'
    WIS = 'WIS'
    CHA = 'CHA'

    @classmethod
    def from_name(cls, name: "str | Attribute") -> "Attribute":
        """
        Accepts 'DEX', 'dex', 'Dexterity' or 'Dexterity Save' style names.
        Raises ValueError for anything else.
        """
        if isinstance(name, cls):
            return name
        cleaned = str(name).strip().lower()
        for suffix in (" saving throw", " save", "_save", " check"):
            if cleaned.endswith(suffix):
                cleaned = cleaned[: -len(suffix)]
        key = cleaned[:3].upper()
        if key in cls.__members__ and (len(cleaned) == 3 or ATTRIBUTE_NAMES[cls[key]] == cleaned):
            return cls[key]
        raise ValueError(f"Unknown attribute: {name!r}")

ATTRIBUTE_NAMES: Dict[Attribute, str] = {
    Attribute.STR: "strength",
    Attribute.DEX: "dexterity",
    Attribute.CON: "constitution",
    Attribute.INT: "intelligence",
    Attribute.WIS: "wisdom",
    Attribute.CHA: "charisma",
}

class RollType(str, Enum):
    """Types of dice rolls"""
    ATTACK = "attack"                       # d20 + modifiers vs AC
    DAMAGE = "damage"                       # Weapon/spell damage dice
    SKILL = "skill"                         # Skill check (d20 vs DC)
    SAVE = "save"                           # Saving throw (d20 vs DC)
    ABILITY = "ability"                     # Raw ability check
    INITIATIVE = "initiative"               # Turn order, never critical
    CONCENTRATION = "concentration"         # CON save to keep a spell
    DEATH_SAVE = "death_save"               # d20 vs 10
    SPELL_SAVE = "spell_save"               # Save forced by a spell
    SPELL_ATTACK = "spell_attack"           # d20 + spell attack bonus vs AC
    HEALING = "healing"                     # Hit points restored
    RAW = "raw"                             # Plain dice, no derived modifiers

    @classmethod
    def coerce(cls, value: "str | RollType") -> "RollType":
        """Unknown roll types fall back to RAW so defaults stay inferable."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning("Unknown roll type %r, falling back to %s", value, cls.RAW.value)
            return cls.RAW

    @classmethod
    def from_label(cls, label: str | None) -> "RollType | None":
        """Infer a sub-roll type from an expression label ('attack', 'damage', 'heal', ...)."""
        if not label:
            return None
        lowered = label.lower()
        if "attack" in lowered or lowered in ("hit", "to_hit", "tohit"):
            return cls.ATTACK
        if "damage" in lowered or lowered == "dmg":
            return cls.DAMAGE
        if "heal" in lowered:
            return cls.HEALING
        if "save" in lowered:
            return cls.SAVE
        if lowered.startswith("init"):
            return cls.INITIATIVE
        if "check" in lowered or "skill" in lowered:
            return cls.SKILL
        return None

    @property
    def is_attack(self) -> bool:
        return self in (RollType.ATTACK, RollType.SPELL_ATTACK)

    @property
    def is_damage(self) -> bool:
        return self is RollType.DAMAGE

    @property
    def is_d20(self) -> bool:
        return self not in (RollType.DAMAGE, RollType.HEALING, RollType.RAW)

    @property
    def is_check(self) -> bool:
        return self in (
            RollType.SKILL, RollType.SAVE, RollType.ABILITY,
            RollType.CONCENTRATION, RollType.SPELL_SAVE,
        )

class SourceType(str, Enum):        # What produced the roll
    WEAPON = "weapon"
    SPELL = "spell"
    ABILITY = "ability"
    SKILL = "skill"
    SAVE = "save"
    CUSTOM = "custom"

class ModifierSource(str, Enum):
    ABILITY_SCORE = "ability_score"
    PROFICIENCY = "proficiency"
    EXPERTISE = "expertise"
    ITEM = "item"
    SPELL = "spell"
    CLASS_FEATURE = "class_feature"
    FEAT = "feat"
    CONDITION = "condition"
    HOMEBREW = "homebrew"
    TEMPORARY = "temporary"

class ModifierType(str, Enum):
    FLAT = "flat"                           # +N to the total
    DICE = "dice"                           # +XdY rolled alongside
    ADVANTAGE = "advantage"
    DISADVANTAGE = "disadvantage"
    REROLL = "reroll"                       # Adds an rN operation
    MINIMUM = "minimum"                     # Adds a minN clamp
    MAXIMUM = "maximum"                     # Adds a maxN clamp
    CRIT_RANGE = "crit_range"               # Lowest natural roll that crits
    MULTIPLIER = "multiplier"
    DIVIDER = "divider"
    REPLACE_DIE = "replace_die"             # Natural d20 replaced by value
    EXTRA_ATTACK = "extra_attack"           # Roll N more copies

class ApplicationTiming(str, Enum):
    BEFORE_ROLL = "before_roll"
    DURING_ROLL = "during_roll"
    AFTER_ROLL = "after_roll"
    ON_DAMAGE = "on_damage"
    ON_CRITICAL = "on_critical"
    ONCE_PER_TURN = "once_per_turn"
    ONCE_PER_REST = "once_per_rest"

class OperationType(str, Enum):
    KEEP_HIGHEST = "keep_highest"
    KEEP_LOWEST = "keep_lowest"
    DROP_HIGHEST = "drop_highest"
    DROP_LOWEST = "drop_lowest"
    REROLL = "reroll"
    EXPLODE = "explode"
    MINIMUM = "minimum"
    MAXIMUM = "maximum"

class DamageStrategy(str, Enum):
    DOUBLE_DICE = "double_dice"             # 1d8+3 -> 2d8+3
    MAX_BASE_DICE = "max_base_dice"         # 1d8+3 -> 1d8+11
    DOUBLE_TOTAL = "double_total"           # 1d8+3 -> 2d8+6

class AffectedDice(str, Enum):
    WEAPON_ONLY = "weapon_only"
    ALL_DAMAGE = "all_damage"
    EXCLUDE_MODIFIERS = "exclude_modifiers"

class BreakdownType(str, Enum):
    DIE = "die"
    MODIFIER = "modifier"
    REROLL = "reroll"
    CRITICAL = "critical"
    CONDITION = "condition"

# Skill -> governing ability. Keys are normalised with normalize_name().
SKILL_ABILITIES: Dict[str, Attribute] = {
    "acrobatics": Attribute.DEX,
    "animal_handling": Attribute.WIS,
    "arcana": Attribute.INT,
    "athletics": Attribute.STR,
    "deception": Attribute.CHA,
    "history": Attribute.INT,
    "insight": Attribute.WIS,
    "intimidation": Attribute.CHA,
    "investigation": Attribute.INT,
    "medicine": Attribute.WIS,
    "nature": Attribute.INT,
    "perception": Attribute.WIS,
    "performance": Attribute.CHA,
    "persuasion": Attribute.CHA,
    "religion": Attribute.INT,
    "sleight_of_hand": Attribute.DEX,
    "stealth": Attribute.DEX,
    "survival": Attribute.WIS,
}

SPELLCASTING_ABILITIES: Dict[str, Attribute] = {
    "artificer": Attribute.INT,
    "wizard": Attribute.INT,
    "cleric": Attribute.WIS,
    "druid": Attribute.WIS,
    "monk": Attribute.WIS,
    "ranger": Attribute.WIS,
    "bard": Attribute.CHA,
    "paladin": Attribute.CHA,
    "sorcerer": Attribute.CHA,
    "warlock": Attribute.CHA,
}

def normalize_name(name: str) -> str:
    """'Sleight of Hand' -> 'sleight_of_hand'"""
    return name.strip().lower().replace("-", "_").replace(" ", "_")
