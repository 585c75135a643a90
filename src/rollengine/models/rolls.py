from typing import Any, Callable, List, Tuple
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field, field_validator

from rollengine.models.context import RollContext
from rollengine.models.dice import DiceExpression, MultiDiceExpression
from rollengine.models.schemas import (
    AffectedDice,
    ApplicationTiming,
    DamageStrategy,
    ModifierSource,
    ModifierType,
    RollType,
)

# ============================================================
# MODIFIERS
# ============================================================

class RollModifier(BaseModel):
    """
    A single situational effect on a roll. Applied in ascending priority;
    non-stacking modifiers sharing (source, name) collapse to one instance.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    name: str
    description: str = ""
    source: ModifierSource
    type: ModifierType
    value: int | float | DiceExpression | List[int] | str = 0
    # Evaluated against the live context on every resolve
    condition: Callable[[RollContext], bool] | None = Field(default=None, exclude=True)
    application: ApplicationTiming = ApplicationTiming.BEFORE_ROLL
    applies_to: List[RollType] | None = None    # None = every roll type
    stacks: bool = False
    priority: int = 50

    @property
    def key(self) -> Tuple[ModifierSource, str]:
        return (self.source, self.name)

    @property
    def is_once(self) -> bool:
        return self.application in (ApplicationTiming.ONCE_PER_TURN, ApplicationTiming.ONCE_PER_REST)

    def applies_to_type(self, roll_type: RollType) -> bool:
        return self.applies_to is None or roll_type in self.applies_to

# ============================================================
# CRITICAL RULES
# ============================================================

class CriticalRules(BaseModel):
    """Configured once per engine, consulted but never mutated while rolling."""
    model_config = ConfigDict(frozen=True)

    range: List[int] = [20]
    damage_strategy: DamageStrategy = DamageStrategy.DOUBLE_DICE
    affected_dice: AffectedDice = AffectedDice.WEAPON_ONLY
    additional_dice: str | None = None      # e.g. "1d6" for a brutal-critical style extra
    failure_range: List[int] = [1]

    @classmethod
    def from_settings(cls, settings: Any) -> "CriticalRules":
        return cls(
            range=settings.crit_range,
            damage_strategy=settings.crit_damage_strategy,
            affected_dice=settings.crit_affected_dice,
            additional_dice=settings.crit_additional_dice,
            failure_range=settings.crit_failure_range,
        )

# ============================================================
# ROLL DEFINITION
# ============================================================

class RollDefinition(BaseModel):
    """
    Built fresh per roll request and executed once.
    A string expression is parsed when the engine first touches it.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: f"roll_{uuid4().hex[:8]}")
    type: RollType = RollType.RAW
    name: str = ""
    base_expression: MultiDiceExpression | str
    context: RollContext = Field(default_factory=RollContext)
    modifiers: List[RollModifier] = []
    derive_character_modifiers: bool = True     # Off when the expression already carries bonuses
    critical_hit: bool = False                  # Damage follows a critical attack

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value):
        return RollType.coerce(value)

    @property
    def expression_text(self) -> str:
        if isinstance(self.base_expression, str):
            return self.base_expression
        return self.base_expression.full_expression

# ============================================================
# WEAPONS
# ============================================================

class WeaponProfile(BaseModel):
    """Weapon data as a character sheet stores it."""
    name: str
    damage_dice: str = "1d6"
    attack_bonus: int = 0
    damage_bonus: int = 0
    damage_type: str | None = None
    tags: List[str] = ["melee"]
    magic_bonus: int = 0

class WeaponExpressions(BaseModel):
    name: str
    attack_expression: str
    damage_expression: str
    full_expression: str                    # attack:...,damage:... for the combined roll
