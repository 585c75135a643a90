import logging
from typing import Iterable, List
from uuid import uuid4

from rollengine.core.roll_engine import RollEngine
from rollengine.models import (
    AttackDamageResult,
    Attribute,
    ATTRIBUTE_NAMES,
    MultiDiceExpression,
    PreRollInfo,
    RollContext,
    RollDefinition,
    RollEnvironment,
    RollLogEntry,
    RollModifier,
    RollResult,
    RollStats,
    RollType,
    SourceType,
    WeaponExpressions,
    WeaponProfile,
)

logger = logging.getLogger(__name__)

# Default expression per roll type; anything missing rolls a d20
DEFAULT_EXPRESSIONS = {
    RollType.DAMAGE: "1d6",
    RollType.HEALING: "2d4+2",
    RollType.RAW: "1d20",
}


class RollController:
    """
    Caller-side coordinator on top of a RollEngine.
    Builds definitions with sensible defaults and runs the composite
    flows (attack then damage, combined multi-rolls).
    """

    def __init__(self, engine: RollEngine, gate_damage_on_hit: bool = False):
        self.engine = engine
        self.gate_damage_on_hit = gate_damage_on_hit
        self.last_preview: PreRollInfo | None = None

    # ------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------

    def create_roll_definition(
        self,
        roll_type: RollType | str,
        context: RollContext,
        custom_expression: str | MultiDiceExpression | None = None,
        name: str | None = None,
        modifiers: Iterable[RollModifier] = (),
        **options,
    ) -> RollDefinition:
        """
        Definition with a smart default name and expression for the roll type.
        Damage falls back to the source's `damage` property, healing to 2d4+2.
        """
        roll_type = RollType.coerce(roll_type)
        expression = custom_expression
        if expression is None and roll_type is RollType.DAMAGE:
            expression = context.source.properties.get("damage")
        if expression is None:
            expression = DEFAULT_EXPRESSIONS.get(roll_type, "1d20")

        return RollDefinition(
            id=f"{roll_type.value}_{_short_id()}",
            type=roll_type,
            name=name or self._default_name(roll_type, context),
            base_expression=expression,
            context=context,
            modifiers=list(modifiers),
            **options,
        )

    def _default_name(self, roll_type: RollType, context: RollContext) -> str:
        source = context.source.name
        names = {
            RollType.ATTACK: f"{source} Attack",
            RollType.DAMAGE: f"{source} Damage",
            RollType.SKILL: source,
            RollType.SAVE: f"{source} Save",
            RollType.INITIATIVE: "Initiative",
            RollType.DEATH_SAVE: "Death Save",
            RollType.CONCENTRATION: "Concentration Save",
            RollType.SPELL_ATTACK: f"{source} Spell Attack",
            RollType.SPELL_SAVE: f"{source} Spell Save",
            RollType.HEALING: f"{source} Healing",
        }
        return (names.get(roll_type) or roll_type.value).strip()

    # ------------------------------------------------------------
    # Rolling
    # ------------------------------------------------------------

    def roll_direct(self, definition: RollDefinition) -> RollResult:
        """Analyze for consistency, then execute."""
        self.last_preview = self.engine.analyze_roll(definition)
        logger.debug(
            "Preview for %s: %s",
            definition.name,
            self.last_preview.estimated_range,
        )
        result = self.engine.execute_roll(definition)
        self.last_preview = None
        return result

    def roll_attack(self, weapon_name: str, context: RollContext, expression: str | None = None) -> RollResult:
        attack_context = self._weapon_context(weapon_name, context)
        return self.roll_direct(self.create_roll_definition(RollType.ATTACK, attack_context, expression))

    def roll_damage(
        self,
        weapon_name: str,
        damage_expression: str | None,
        context: RollContext,
        critical: bool = False,
    ) -> RollResult:
        """Roll damage on its own. `critical` doubles the dice per the engine's rules."""
        damage_context = self._weapon_context(weapon_name, context)
        definition = self.create_roll_definition(RollType.DAMAGE, damage_context, damage_expression)
        if critical:
            doubled = self.engine.apply_critical_damage(definition.base_expression)
            definition = definition.model_copy(update={"base_expression": doubled, "critical_hit": True})
        return self.roll_direct(definition)

    def roll_skill(self, skill_name: str, context: RollContext) -> RollResult:
        skill_context = context.with_source(type=SourceType.SKILL, name=skill_name, tags=["skill"])
        return self.roll_direct(self.create_roll_definition(RollType.SKILL, skill_context))

    def roll_save(self, ability: Attribute | str, context: RollContext) -> RollResult:
        attribute = Attribute.from_name(ability)
        save_context = context.with_source(
            type=SourceType.SAVE,
            name=ATTRIBUTE_NAMES[attribute].capitalize(),
            ability=attribute,
            tags=["save"],
        )
        return self.roll_direct(self.create_roll_definition(RollType.SAVE, save_context))

    def roll_initiative(self, context: RollContext) -> RollResult:
        return self.roll_direct(self.create_roll_definition(RollType.INITIATIVE, context))

    def roll_death_save(self, context: RollContext) -> RollResult:
        return self.roll_direct(self.create_roll_definition(RollType.DEATH_SAVE, context))

    def roll_healing(self, context: RollContext, expression: str | None = None) -> RollResult:
        return self.roll_direct(self.create_roll_definition(RollType.HEALING, context, expression))

    def roll_multi_expression(
        self,
        expression: str,
        context: RollContext,
        roll_type: RollType | str = RollType.RAW,
        name: str | None = None,
    ) -> RollResult:
        """Free-form "label:expr,label:expr" roll; segment types come from the labels."""
        definition = self.create_roll_definition(roll_type, context, expression, name=name or expression)
        return self.roll_direct(definition)

    def roll_attack_and_damage(
        self,
        weapon_name: str,
        attack_expression: str,
        damage_expression: str,
        context: RollContext,
    ) -> RollResult:
        """
        One combined roll, "attack:...,damage:...". A critical attack
        carries into the damage segments inside the engine.
        """
        weapon_context = self._weapon_context(weapon_name, context)
        definition = self.create_roll_definition(
            RollType.ATTACK,
            weapon_context,
            f"attack:{attack_expression},damage:{damage_expression}",
            name=f"{weapon_name} Attack & Damage",
            derive_character_modifiers=False,
        )
        return self.roll_direct(definition)

    def roll_attack_then_damage(
        self,
        weapon_name: str,
        attack_expression: str,
        damage_expression: str,
        context: RollContext,
        gate_on_hit: bool | None = None,
    ) -> AttackDamageResult:
        """
        Roll the attack, then the damage. Damage is rolled even on a miss
        unless gating is switched on; a critical attack doubles the damage
        dice before they are rolled.

        Both expressions already carry their bonuses, so ability and
        proficiency modifiers are not derived again.

        Raises:
            DiceParseError: if either expression is malformed; nothing is rolled.
        """
        weapon_context = self._weapon_context(weapon_name, context)
        # Validate damage up front so a bad expression never leaves a lone attack in the log
        self.engine.parser.parse_multi(damage_expression)

        attack = self.create_roll_definition(
            RollType.ATTACK,
            weapon_context,
            attack_expression,
            name=f"{weapon_name} Attack",
            derive_character_modifiers=False,
        )
        attack_result = self.engine.execute_roll(attack)

        gate = self.gate_damage_on_hit if gate_on_hit is None else gate_on_hit
        if gate and attack_result.success is False:
            logger.info("%s missed (AC %s), damage skipped", weapon_name, attack_result.target_number)
            return AttackDamageResult(attack_result=attack_result)

        expression = damage_expression
        if attack_result.critical_success:
            expression = self.engine.apply_critical_damage(damage_expression)
            logger.info("Critical hit with %s: damage %s -> %s", weapon_name, damage_expression, expression)

        damage = self.create_roll_definition(
            RollType.DAMAGE,
            weapon_context,
            expression,
            name=f"{weapon_name} Damage",
            derive_character_modifiers=False,
            critical_hit=attack_result.critical_success,
        )
        damage_result = self.engine.execute_roll(damage)
        return AttackDamageResult(attack_result=attack_result, damage_result=damage_result)

    # ------------------------------------------------------------
    # Weapons
    # ------------------------------------------------------------

    def weapon_expressions(self, weapon: WeaponProfile, environment: RollEnvironment | None = None) -> WeaponExpressions:
        """
        Attack and damage notation for a weapon as written on a sheet.
        Hidden or advantaged attackers roll 2d20kh1, disadvantaged 2d20kl1.
        """
        environment = environment or RollEnvironment()
        advantage = environment.advantage or environment.hidden
        if advantage and not environment.disadvantage:
            attack = "2d20kh1"
        elif environment.disadvantage and not advantage:
            attack = "2d20kl1"
        else:
            attack = "1d20"
        attack += _signed(weapon.attack_bonus + weapon.magic_bonus)
        damage = weapon.damage_dice.replace(" ", "") + _signed(weapon.damage_bonus + weapon.magic_bonus)
        return WeaponExpressions(
            name=weapon.name,
            attack_expression=attack,
            damage_expression=damage,
            full_expression=f"attack:{attack},damage:{damage}",
        )

    def weapon_context(self, weapon: WeaponProfile, context: RollContext) -> RollContext:
        properties = dict(context.source.properties)
        properties.update({"damage": weapon.damage_dice, "damage_type": weapon.damage_type})
        return context.with_source(
            type=SourceType.WEAPON,
            name=weapon.name,
            tags=list(weapon.tags),
            properties=properties,
        )

    def roll_weapon(self, weapon: WeaponProfile, context: RollContext, gate_on_hit: bool | None = None) -> AttackDamageResult:
        expressions = self.weapon_expressions(weapon, context.environment)
        return self.roll_attack_then_damage(
            weapon.name,
            expressions.attack_expression,
            expressions.damage_expression,
            self.weapon_context(weapon, context),
            gate_on_hit=gate_on_hit,
        )

    def _weapon_context(self, weapon_name: str, context: RollContext) -> RollContext:
        if context.source.type is SourceType.WEAPON and context.source.name == weapon_name:
            return context
        return context.with_source(type=SourceType.WEAPON, name=weapon_name)

    # ------------------------------------------------------------
    # History
    # ------------------------------------------------------------

    @property
    def history(self) -> List[RollLogEntry]:
        return self.engine.roll_log.entries

    def last_roll(self, roll_type: RollType | None = None) -> RollResult | None:
        return self.engine.roll_log.last(roll_type)

    def stats(self) -> RollStats:
        return self.engine.roll_log.stats()

    def clear_history(self) -> None:
        self.engine.roll_log.clear()


def _signed(value: int) -> str:
    if value > 0:
        return f"+{value}"
    if value < 0:
        return str(value)
    return ""


def _short_id() -> str:
    return uuid4().hex[:8]
