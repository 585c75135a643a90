
from .schemas import (
    Attribute,
    ATTRIBUTE_NAMES,
    RollType,
    SourceType,
    ModifierSource,
    ModifierType,
    ApplicationTiming,
    OperationType,
    DamageStrategy,
    AffectedDice,
    BreakdownType,
    SKILL_ABILITIES,
    SPELLCASTING_ABILITIES,
    normalize_name,
)

from .dice import (
    Operation,
    ParsedDice,
    DiceExpression,
    LabeledDiceExpression,
    MultiDiceExpression,
    DiceParseResult,
)

from .context import (
    CharacterSnapshot,
    RollSource,
    RollTarget,
    RollEnvironment,
    RollContext,
)

from .rolls import (
    RollModifier,
    CriticalRules,
    RollDefinition,
    WeaponProfile,
    WeaponExpressions,
)

from .results import (
    DieResult,
    AppliedOperation,
    DiceRoll,
    BreakdownDetails,
    RollBreakdown,
    RollMetadata,
    RollResult,
    AttackDamageResult,
    EstimatedRange,
    ActiveCondition,
    PreRollInfo,
    RollLogEntry,
    RollStats,
)

__all__ = [
    # Schemas
    "Attribute",
    "ATTRIBUTE_NAMES",
    "RollType",
    "SourceType",
    "ModifierSource",
    "ModifierType",
    "ApplicationTiming",
    "OperationType",
    "DamageStrategy",
    "AffectedDice",
    "BreakdownType",
    "SKILL_ABILITIES",
    "SPELLCASTING_ABILITIES",
    "normalize_name",

    # Dice
    "Operation",
    "ParsedDice",
    "DiceExpression",
    "LabeledDiceExpression",
    "MultiDiceExpression",
    "DiceParseResult",

    # Context
    "CharacterSnapshot",
    "RollSource",
    "RollTarget",
    "RollEnvironment",
    "RollContext",

    # Rolls
    "RollModifier",
    "CriticalRules",
    "RollDefinition",
    "WeaponProfile",
    "WeaponExpressions",

    # Results
    "DieResult",
    "AppliedOperation",
    "DiceRoll",
    "BreakdownDetails",
    "RollBreakdown",
    "RollMetadata",
    "RollResult",
    "AttackDamageResult",
    "EstimatedRange",
    "ActiveCondition",
    "PreRollInfo",
    "RollLogEntry",
    "RollStats",
]
