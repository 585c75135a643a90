import logging
import math
from typing import Callable, Dict, Iterable, List

from rollengine.core.exceptions import DiceParseError, ModifierError
from rollengine.core.parser import DiceParser, dice_parser
from rollengine.models import (
    ApplicationTiming,
    Attribute,
    DiceExpression,
    ModifierSource,
    ModifierType,
    RollContext,
    RollModifier,
    RollType,
    SKILL_ABILITIES,
    SPELLCASTING_ABILITIES,
    SourceType,
    normalize_name,
)

logger = logging.getLogger(__name__)

# (context, roll type) -> modifiers that might apply
Resolver = Callable[[RollContext, RollType], List[RollModifier]]

ATTACK_TYPES = [RollType.ATTACK, RollType.SPELL_ATTACK]
D20_TYPES = [t for t in RollType if t.is_d20]

# ============================================================
# MODIFIER RESOLVER
# ============================================================

class ModifierResolver:
    """
    Turns a roll context into an ordered list of applicable modifiers.

    Built-in resolvers run first, in registration order, then any
    custom ones. The resolver keeps no state between calls.
    """

    # Resolvers skipped when the expression already carries character bonuses
    CHARACTER_RESOLVERS = ("ability_scores", "proficiency", "equipment")

    def __init__(
        self,
        parser: DiceParser | None = None,
        enable_homebrew: bool = True,
        auto_resolve_abilities: bool = True,
        auto_resolve_proficiency: bool = True,
    ):
        self.parser = parser or dice_parser
        self.enable_homebrew = enable_homebrew
        self._resolvers: Dict[str, Resolver] = {}

        if auto_resolve_abilities:
            self.register("ability_scores", self.ability_modifiers)
        if auto_resolve_proficiency:
            self.register("proficiency", self.proficiency_modifiers)
        self.register("advantage", self.advantage_modifiers)
        self.register("spells", self.spell_modifiers)
        self.register("class_features", self.class_feature_modifiers)
        self.register("equipment", self.equipment_modifiers)
        self.register("damage_types", self.damage_type_modifiers)
        self.register("situational", self.situational_modifiers)

    def register(self, name: str, resolver: Resolver) -> None:
        """Add (or replace) a named resolver."""
        self._resolvers[name] = resolver

    def unregister(self, name: str) -> None:
        self._resolvers.pop(name, None)

    @property
    def resolver_names(self) -> List[str]:
        return list(self._resolvers)

    def resolve(
        self,
        context: RollContext,
        roll_type: RollType,
        extra: Iterable[RollModifier] = (),
        include_character: bool = True,
    ) -> List[RollModifier]:
        """
        Collect, validate, filter and order modifiers for one roll.

        Modifiers whose predicate fails or that are malformed are skipped
        with a warning; they never abort the roll.
        """
        candidates: List[RollModifier] = []
        for name, resolver in self._resolvers.items():
            if not include_character and name in self.CHARACTER_RESOLVERS:
                continue
            try:
                candidates.extend(resolver(context, roll_type))
            except Exception as e:
                error = ModifierError(name, f"resolver failed: {e}")
                logger.warning(error.message)
        candidates.extend(extra)

        applicable = []
        for modifier in candidates:
            try:
                modifier = self.validate(modifier)
                if modifier is None or not self._condition_holds(modifier, context):
                    continue
            except ModifierError as e:
                logger.warning(e.message)
                continue
            applicable.append(modifier)

        return self.collapse(applicable)

    def validate(self, modifier: RollModifier) -> RollModifier | None:
        """
        Check a modifier's value against its type. Dice values given as
        notation are parsed here. Returns None when homebrew is disabled.

        Raises:
            ModifierError: when the value does not fit the modifier type.
        """
        if modifier.source is ModifierSource.HOMEBREW and not self.enable_homebrew:
            logger.info("Homebrew disabled, ignoring modifier %s", modifier.id)
            return None

        value = modifier.value
        if modifier.type is ModifierType.DICE:
            if isinstance(value, str):
                try:
                    return modifier.model_copy(update={"value": self.parser.parse_expression(value)})
                except DiceParseError as e:
                    raise ModifierError(modifier.id, e.message) from e
            if not isinstance(value, DiceExpression):
                raise ModifierError(modifier.id, "dice modifiers need a dice expression")

        elif modifier.type in (ModifierType.FLAT, ModifierType.EXTRA_ATTACK):
            if not isinstance(value, int):
                raise ModifierError(modifier.id, f"{modifier.type.value} modifiers need a whole number")
            if modifier.type is ModifierType.EXTRA_ATTACK and value < 0:
                raise ModifierError(modifier.id, "extra attacks cannot be negative")

        elif modifier.type in (ModifierType.MULTIPLIER, ModifierType.DIVIDER):
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ModifierError(modifier.id, f"{modifier.type.value} needs a non-negative number")
            if modifier.type is ModifierType.DIVIDER and value == 0:
                raise ModifierError(modifier.id, "cannot divide by zero")

        elif modifier.type is ModifierType.CRIT_RANGE:
            if not isinstance(value, int) or not 2 <= value <= 20:
                raise ModifierError(modifier.id, "critical range must be a natural roll between 2 and 20")

        elif modifier.type in (ModifierType.MINIMUM, ModifierType.MAXIMUM, ModifierType.REPLACE_DIE):
            if not isinstance(value, int) or value < 1:
                raise ModifierError(modifier.id, f"{modifier.type.value} needs a face value of at least 1")

        elif modifier.type is ModifierType.REROLL:
            faces = value if isinstance(value, list) else [value]
            if not faces or not all(isinstance(f, int) and f >= 1 for f in faces):
                raise ModifierError(modifier.id, "reroll needs one or more face values")

        return modifier

    def _condition_holds(self, modifier: RollModifier, context: RollContext) -> bool:
        if modifier.condition is None:
            return True
        try:
            return bool(modifier.condition(context))
        except Exception as e:
            raise ModifierError(modifier.id, f"condition raised {type(e).__name__}: {e}") from e

    @staticmethod
    def collapse(modifiers: List[RollModifier]) -> List[RollModifier]:
        """
        Keep one instance per (source, name) for non-stacking modifiers,
        preferring the lowest priority number, then order by priority.
        """
        best: Dict[tuple, RollModifier] = {}
        stacked: List[RollModifier] = []
        for modifier in modifiers:
            if modifier.stacks:
                stacked.append(modifier)
                continue
            current = best.get(modifier.key)
            if current is None or modifier.priority < current.priority:
                best[modifier.key] = modifier
        return sorted(stacked + list(best.values()), key=lambda m: m.priority)

    # ------------------------------------------------------------
    # Ability scores and proficiency
    # ------------------------------------------------------------

    def ability_for(self, context: RollContext, roll_type: RollType) -> Attribute | None:
        """Which ability governs this roll, if any."""
        source = context.source
        character = context.character
        if roll_type in (RollType.HEALING, RollType.RAW, RollType.DEATH_SAVE, RollType.SPELL_SAVE):
            return None
        if source.ability is not None:
            return source.ability
        if roll_type is RollType.INITIATIVE:
            return Attribute.DEX
        if roll_type is RollType.CONCENTRATION:
            return Attribute.CON

        if source.type is SourceType.WEAPON and roll_type in (RollType.ATTACK, RollType.DAMAGE):
            if source.has_tag("finesse"):
                strength, dexterity = character.score(Attribute.STR), character.score(Attribute.DEX)
                return Attribute.STR if strength >= dexterity else Attribute.DEX
            if source.has_tag("ranged"):
                return Attribute.DEX
            return Attribute.STR
        if source.type is SourceType.SPELL and roll_type.is_attack:
            for class_name, ability in SPELLCASTING_ABILITIES.items():
                if character.is_class(class_name):
                    return ability
            return Attribute.CHA
        if source.type is SourceType.SKILL and roll_type in (RollType.SKILL, RollType.ABILITY):
            return SKILL_ABILITIES.get(normalize_name(source.name), Attribute.INT)
        if source.type in (SourceType.SAVE, SourceType.ABILITY) and roll_type.is_check:
            try:
                return Attribute.from_name(source.name)
            except ValueError:
                return None
        return None

    def ability_modifiers(self, context: RollContext, roll_type: RollType) -> List[RollModifier]:
        ability = self.ability_for(context, roll_type)
        if ability is None:
            return []
        score = context.character.score(ability)
        value = context.character.ability_modifier(ability)
        if value == 0:
            return []
        return [RollModifier(
            id=f"ability_{ability.value.lower()}",
            name=f"{ability.value} Modifier",
            description=f"{score} {ability.value} provides {value:+d}",
            source=ModifierSource.ABILITY_SCORE,
            type=ModifierType.FLAT,
            value=value,
            priority=10,
        )]

    def _is_proficient(self, context: RollContext, roll_type: RollType) -> bool:
        source = context.source
        character = context.character
        if source.proficient is not None:
            return source.proficient
        if roll_type.is_attack:
            return source.type in (SourceType.WEAPON, SourceType.SPELL)
        if roll_type is RollType.SKILL and source.type is SourceType.SKILL:
            return character.is_proficient_in(source.name)
        if roll_type in (RollType.SAVE, RollType.CONCENTRATION):
            ability = self.ability_for(context, roll_type)
            return ability in character.saving_throw_proficiencies
        return False

    def proficiency_modifiers(self, context: RollContext, roll_type: RollType) -> List[RollModifier]:
        if not (roll_type.is_attack or roll_type in (RollType.SKILL, RollType.SAVE, RollType.CONCENTRATION)):
            return []
        if not self._is_proficient(context, roll_type):
            return []

        bonus = context.character.effective_proficiency_bonus
        if roll_type is RollType.SKILL and context.character.has_expertise_in(context.source.name):
            # A single doubled instance, not two stacked ones
            return [RollModifier(
                id="expertise_bonus",
                name="Expertise",
                description=f"Double proficiency bonus ({bonus} x2)",
                source=ModifierSource.EXPERTISE,
                type=ModifierType.FLAT,
                value=bonus * 2,
                priority=20,
            )]
        return [RollModifier(
            id="proficiency_bonus",
            name="Proficiency Bonus",
            description=f"Level {context.character.level} proficiency bonus",
            source=ModifierSource.PROFICIENCY,
            type=ModifierType.FLAT,
            value=bonus,
            priority=20,
        )]

    # ------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------

    def advantage_modifiers(self, context: RollContext, roll_type: RollType) -> List[RollModifier]:
        if not roll_type.is_d20:
            return []
        env = context.environment
        modifiers = []
        if env.advantage:
            modifiers.append(_condition("advantage", "Advantage", ModifierType.ADVANTAGE, 30, ModifierSource.TEMPORARY))
        if env.disadvantage:
            modifiers.append(_condition("disadvantage", "Disadvantage", ModifierType.DISADVANTAGE, 30, ModifierSource.TEMPORARY))

        if roll_type.is_attack:
            if env.hidden:
                modifiers.append(_condition(
                    "hidden_advantage", "Hidden", ModifierType.ADVANTAGE, 30,
                    description="Attack with advantage when hidden",
                ))
            target_prone = env.flag("target_prone") or (context.target is not None and context.target.has_condition("prone"))
            if target_prone:
                if context.source.has_tag("ranged"):
                    modifiers.append(_condition(
                        "prone_disadvantage", "Target Prone", ModifierType.DISADVANTAGE, 31,
                        description="Ranged attacks have disadvantage against prone targets",
                    ))
                else:
                    modifiers.append(_condition(
                        "prone_advantage", "Target Prone", ModifierType.ADVANTAGE, 31,
                        description="Melee attacks have advantage against prone targets",
                    ))

        if env.flag("poisoned") and (roll_type.is_attack or roll_type in (RollType.SKILL, RollType.ABILITY)):
            modifiers.append(_condition(
                "poisoned", "Poisoned", ModifierType.DISADVANTAGE, 32,
                description="Disadvantage on attack rolls and ability checks",
            ))
        return modifiers

    def situational_modifiers(self, context: RollContext, roll_type: RollType) -> List[RollModifier]:
        if not roll_type.is_attack:
            return []
        env = context.environment
        modifiers = []
        if env.flag("flanking"):
            modifiers.append(_condition(
                "flanking", "Flanking", ModifierType.ADVANTAGE, 35,
                description="Attack with advantage when flanking",
            ))

        cover = env.flag("cover")
        penalty = {"half": 2, "three_quarters": 5}.get(cover if isinstance(cover, str) else "", 0)
        if penalty:
            modifiers.append(RollModifier(
                id="cover_penalty",
                name="Half Cover" if penalty == 2 else "Three-Quarters Cover",
                description=f"Target has +{penalty} AC from cover",
                source=ModifierSource.CONDITION,
                type=ModifierType.FLAT,
                value=-penalty,
                priority=36,
            ))
        return modifiers

    # ------------------------------------------------------------
    # Spells, class features, equipment, damage types
    # ------------------------------------------------------------

    def spell_modifiers(self, context: RollContext, roll_type: RollType) -> List[RollModifier]:
        env = context.environment
        modifiers = []
        if env.blessed and (roll_type.is_attack or roll_type in (RollType.SAVE, RollType.DEATH_SAVE, RollType.CONCENTRATION)):
            modifiers.append(self._dice_modifier(
                "bless", "Bless", "1d4", 50,
                description="Add 1d4 to attack rolls and saving throws",
            ))
        if env.flag("guidance") and roll_type in (RollType.SKILL, RollType.ABILITY):
            modifiers.append(self._dice_modifier(
                "guidance", "Guidance", "1d4", 51,
                description="Add 1d4 to one ability check",
            ))
        if env.inspired and roll_type.is_d20:
            die = env.flag("inspiration_die")
            modifiers.append(self._dice_modifier(
                "bardic_inspiration", "Bardic Inspiration", die if isinstance(die, str) else "1d6", 52,
                description="Add the Bardic Inspiration die to this roll",
                application=ApplicationTiming.ONCE_PER_REST,
                applies_to=D20_TYPES,
            ))
        return modifiers

    def class_feature_modifiers(self, context: RollContext, roll_type: RollType) -> List[RollModifier]:
        character = context.character
        source = context.source
        modifiers = []

        is_rogue = character.is_class("rogue") or character.has_feature("sneak attack")
        if is_rogue and roll_type.is_damage and source.type is SourceType.WEAPON \
                and (source.has_tag("finesse") or source.has_tag("ranged")):
            dice = math.ceil(character.level / 2)
            modifiers.append(self._dice_modifier(
                "sneak_attack", "Sneak Attack", f"{dice}d6", 60,
                description=f"Add {dice}d6 damage when conditions are met",
                source=ModifierSource.CLASS_FEATURE,
                application=ApplicationTiming.ONCE_PER_TURN,
                applies_to=[RollType.DAMAGE],
                condition=can_sneak_attack,
            ))

        is_warlock = character.is_class("warlock") or character.has_feature("agonizing blast")
        if is_warlock and roll_type.is_damage:
            value = character.ability_modifier(Attribute.CHA)
            if value:
                modifiers.append(RollModifier(
                    id="agonizing_blast",
                    name="Agonizing Blast",
                    description="Add Charisma modifier to Eldritch Blast damage",
                    source=ModifierSource.CLASS_FEATURE,
                    type=ModifierType.FLAT,
                    value=value,
                    condition=is_eldritch_blast,
                    application=ApplicationTiming.ON_DAMAGE,
                    priority=61,
                ))

        if roll_type.is_attack:
            subclass = (character.subclass or "").lower()
            if character.has_feature("superior critical"):
                threshold = 18
            elif "champion" in subclass or character.has_feature("improved critical"):
                threshold = 19
            else:
                threshold = None
            if threshold:
                modifiers.append(RollModifier(
                    id="improved_critical",
                    name="Improved Critical",
                    description=f"Critical hit on {threshold}-20",
                    source=ModifierSource.CLASS_FEATURE,
                    type=ModifierType.CRIT_RANGE,
                    value=threshold,
                    priority=40,
                ))
        return modifiers

    def equipment_modifiers(self, context: RollContext, roll_type: RollType) -> List[RollModifier]:
        source = context.source
        bonus = source.properties.get("magic_bonus", 0)
        if source.type is not SourceType.WEAPON or not (roll_type.is_attack or roll_type.is_damage):
            return []
        if not isinstance(bonus, int) or bonus <= 0:
            return []
        return [RollModifier(
            id="weapon_enhancement",
            name=f"+{bonus} Weapon",
            description="Magical weapon enhancement bonus",
            source=ModifierSource.ITEM,
            type=ModifierType.FLAT,
            value=bonus,
            priority=25,
        )]

    def damage_type_modifiers(self, context: RollContext, roll_type: RollType) -> List[RollModifier]:
        target = context.target
        damage_type = context.source.properties.get("damage_type")
        if not roll_type.is_damage or target is None or not damage_type:
            return []

        modifiers = []
        label = str(damage_type).capitalize()
        for prefix, name, kind, value, priority in (
            ("vulnerable", "Vulnerability", ModifierType.MULTIPLIER, 2, 100),
            ("resistant", "Resistance", ModifierType.DIVIDER, 2, 101),
            ("immune", "Immunity", ModifierType.MULTIPLIER, 0, 102),
        ):
            if target.has_condition(f"{prefix}_{damage_type}"):
                modifiers.append(RollModifier(
                    id=name.lower(),
                    name=f"{label} {name}",
                    description=f"Target is {prefix} to {damage_type} damage",
                    source=ModifierSource.CONDITION,
                    type=kind,
                    value=value,
                    application=ApplicationTiming.ON_DAMAGE,
                    priority=priority,
                ))
        return modifiers

    def _dice_modifier(self, id: str, name: str, notation: str, priority: int, **fields) -> RollModifier:
        fields.setdefault("source", ModifierSource.SPELL)
        return RollModifier(
            id=id,
            name=name,
            type=ModifierType.DICE,
            value=self.parser.parse_expression(notation),
            priority=priority,
            **fields,
        )

# ============================================================
# HELPERS
# ============================================================

def _condition(id: str, name: str, kind: ModifierType, priority: int,
               source: ModifierSource = ModifierSource.CONDITION, description: str = "") -> RollModifier:
    return RollModifier(id=id, name=name, description=description, source=source, type=kind, priority=priority)

def can_sneak_attack(context: RollContext) -> bool:
    """Advantage, hiding or an adjacent ally, and no net disadvantage."""
    env = context.environment
    if env.disadvantage and not env.advantage:
        return False
    return bool(env.advantage or env.hidden or env.flag("ally_adjacent"))

def is_eldritch_blast(context: RollContext) -> bool:
    return "eldritch blast" in context.source.name.lower()
