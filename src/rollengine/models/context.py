import math
from typing import Any, Dict, List
from pydantic import BaseModel, ConfigDict, Field, field_validator

from rollengine.models.schemas import Attribute, SourceType, normalize_name

# ============================================================
# ROLL CONTEXT: read-only snapshot handed to the engine per roll
# ============================================================

class CharacterSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    id: str = "anonymous"
    name: str | None = None
    level: int = Field(default=1, ge=1, le=30)
    ability_scores: Dict[Attribute, int] = {}
    proficiency_bonus: int | None = None            # Derived from level when missing
    skill_proficiencies: List[str] = []
    saving_throw_proficiencies: List[Attribute] = []
    expertise: List[str] = []
    class_name: str | None = None
    subclass: str | None = None
    features: List[str] = []

    @field_validator("ability_scores", mode="before")
    @classmethod
    def _normalize_scores(cls, value):
        if not isinstance(value, dict):
            return value
        return {Attribute.from_name(k): v for k, v in value.items()}

    @field_validator("saving_throw_proficiencies", mode="before")
    @classmethod
    def _normalize_saves(cls, value):
        if not isinstance(value, (list, tuple)):
            return value
        return [Attribute.from_name(v) for v in value]

    @field_validator("skill_proficiencies", "expertise", mode="before")
    @classmethod
    def _normalize_skills(cls, value):
        if not isinstance(value, (list, tuple)):
            return value
        return [normalize_name(v) for v in value]

    @property
    def effective_proficiency_bonus(self) -> int:
        if self.proficiency_bonus is not None:
            return self.proficiency_bonus
        return math.ceil(self.level / 4) + 1

    def score(self, attribute: Attribute) -> int:
        return self.ability_scores.get(attribute, 10)

    def ability_modifier(self, attribute: Attribute) -> int:
        """Standard modifier: (val - 10) // 2, so 10 -> 0, 12 -> +1, 8 -> -1"""
        return (self.score(attribute) - 10) // 2

    def is_proficient_in(self, skill: str) -> bool:
        return normalize_name(skill) in self.skill_proficiencies

    def has_expertise_in(self, skill: str) -> bool:
        return normalize_name(skill) in self.expertise

    def has_feature(self, feature: str) -> bool:
        wanted = normalize_name(feature)
        return any(normalize_name(f) == wanted for f in self.features)

    def is_class(self, class_name: str) -> bool:
        return bool(self.class_name) and class_name.lower() in self.class_name.lower()

class RollSource(BaseModel):
    """What is being rolled: a weapon, a spell, a skill..."""
    model_config = ConfigDict(frozen=True)

    type: SourceType = SourceType.CUSTOM
    name: str = ""
    tags: List[str] = []                    # finesse, ranged, melee...
    properties: Dict[str, Any] = {}         # damage, damage_type, magic_bonus...
    ability: Attribute | None = None        # Overrides the inferred ability
    proficient: bool | None = None          # Overrides the inferred proficiency

    @field_validator("ability", mode="before")
    @classmethod
    def _normalize_ability(cls, value):
        if value is None or isinstance(value, Attribute):
            return value
        return Attribute.from_name(value)

    def has_tag(self, tag: str) -> bool:
        return tag.lower() in (t.lower() for t in self.tags)

class RollTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    ac: int | None = None
    save_bonus: int | None = None
    dc: int | None = None
    conditions: List[str] = []              # prone, resistant_fire, vulnerable_cold...

    def has_condition(self, condition: str) -> bool:
        return condition.lower() in (c.lower() for c in self.conditions)

class RollEnvironment(BaseModel):
    """Situational flags. Unknown keys (flanking, cover, guidance...) are kept as extras."""
    model_config = ConfigDict(frozen=True, extra="allow")

    advantage: bool = False
    disadvantage: bool = False
    hidden: bool = False
    blessed: bool = False
    inspired: bool = False
    conditions: List[str] = []

    def flag(self, name: str) -> Any:
        """Look a situational flag up in the extras, then in the condition strings."""
        extras = self.model_extra or {}
        if name in extras:
            return extras[name]
        return name.lower() in (c.lower() for c in self.conditions)

class RollContext(BaseModel):
    """Never mutated by the engine; callers own its lifecycle."""
    model_config = ConfigDict(frozen=True)

    character: CharacterSnapshot = Field(default_factory=CharacterSnapshot)
    source: RollSource = Field(default_factory=RollSource)
    target: RollTarget | None = None
    environment: RollEnvironment = Field(default_factory=RollEnvironment)

    def with_source(self, **changes) -> "RollContext":
        source = RollSource(**{**self.source.model_dump(), **changes})
        return self.model_copy(update={"source": source})
