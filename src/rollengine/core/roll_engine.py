import logging
import math
import time
from dataclasses import dataclass, field, replace
from typing import Callable, List, Set, Tuple
from uuid import uuid4

from rollengine.config.settings import settings
from rollengine.core.critical import (
    apply_critical_damage,
    critical_expression,
    critical_range,
    is_critical,
    is_critical_failure,
)
from rollengine.core.exceptions import ModifierError, RollTimeoutError
from rollengine.core.parser import DiceParser, clamps_consistent, has_advantage, has_disadvantage
from rollengine.core.probability import combine, estimate_dice, scale
from rollengine.core.resolver import ModifierResolver
from rollengine.core.roll_log import RollLog
from rollengine.core.roller import DiceRoller, RandomSource
from rollengine.models import (
    ActiveCondition,
    AffectedDice,
    ApplicationTiming,
    BreakdownDetails,
    BreakdownType,
    CriticalRules,
    DiceExpression,
    DiceRoll,
    EstimatedRange,
    LabeledDiceExpression,
    ModifierType,
    MultiDiceExpression,
    Operation,
    OperationType,
    PreRollInfo,
    RollBreakdown,
    RollContext,
    RollDefinition,
    RollMetadata,
    RollModifier,
    RollResult,
    RollType,
)

logger = logging.getLogger(__name__)

_ROLL_OPERATIONS = {
    ModifierType.REROLL: OperationType.REROLL,
    ModifierType.MINIMUM: OperationType.MINIMUM,
    ModifierType.MAXIMUM: OperationType.MAXIMUM,
}

_SCALING = (ModifierType.MULTIPLIER, ModifierType.DIVIDER)

# Modifier types surfaced as "active conditions" in the preview
_CONDITION_TYPES = (
    ModifierType.ADVANTAGE,
    ModifierType.DISADVANTAGE,
    ModifierType.REROLL,
    ModifierType.MINIMUM,
    ModifierType.MAXIMUM,
    ModifierType.CRIT_RANGE,
    ModifierType.MULTIPLIER,
    ModifierType.DIVIDER,
    ModifierType.REPLACE_DIE,
    ModifierType.EXTRA_ATTACK,
)


@dataclass
class _ExecutionState:
    """Bookkeeping for one analyze/execute call. Never outlives it."""
    deadline: float | None = None
    used_once: Set[str] = field(default_factory=set)
    critical_pending: bool = False          # Last attack crit; damage terms still to come
    critical_consumed: bool = False         # weapon_only: first damage term already doubled
    extra_dice_rolled: bool = False
    attack_missed: bool = False

# ============================================================
# ROLL ENGINE
# ============================================================

class RollEngine:
    """
    Orchestrates parser, resolver, roller and critical policy.

    analyze_roll() is a pure preview; execute_roll() consumes randomness
    and appends to the roll log. Neither keeps per-roll state on the
    instance, so calls can interleave freely.
    """

    def __init__(
        self,
        rules: CriticalRules | None = None,
        parser: DiceParser | None = None,
        roller: DiceRoller | None = None,
        resolver: ModifierResolver | None = None,
        roll_log: RollLog | None = None,
        rng: RandomSource | None = None,
        max_execution_time: float | None = None,
        explode_cap: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rules = rules or CriticalRules.from_settings(settings)
        self.parser = parser or DiceParser(
            max_dice=settings.max_dice,
            max_sides=settings.max_sides,
            max_modifier=settings.max_modifier,
        )
        self.explode_cap = explode_cap if explode_cap is not None else settings.explode_cap
        self.rng = rng
        self.roller = roller or DiceRoller(rng=rng, explode_cap=self.explode_cap, clock=clock)
        self.resolver = resolver or ModifierResolver(
            parser=self.parser,
            enable_homebrew=settings.enable_homebrew,
            auto_resolve_abilities=settings.auto_resolve_abilities,
            auto_resolve_proficiency=settings.auto_resolve_proficiency,
        )
        self.roll_log = roll_log if roll_log is not None else RollLog(settings.history_limit)
        self.max_execution_time = (
            max_execution_time if max_execution_time is not None else settings.max_execution_time
        )
        self._clock = clock
        # Bad configuration surfaces here rather than mid-roll
        self._critical_extra = (
            self.parser.parse_expression(self.rules.additional_dice) if self.rules.additional_dice else None
        )

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    def expression_for(self, definition: RollDefinition) -> MultiDiceExpression:
        """
        The definition's expression, parsed if it is still a string.

        Raises:
            DiceParseError: on malformed notation.
        """
        base = definition.base_expression
        if isinstance(base, MultiDiceExpression):
            return base
        return self.parser.parse_multi(base)

    def apply_critical_damage(self, expression):
        return apply_critical_damage(expression, self.rules, self.parser)

    @property
    def history(self):
        return self.roll_log.entries

    def clear_history(self) -> None:
        self.roll_log.clear()

    def analyze_roll(self, definition: RollDefinition) -> PreRollInfo:
        """
        Predict a roll without drawing any dice: resolved modifiers,
        active conditions, exact min/max/average and critical ranges.

        Raises:
            DiceParseError: on malformed notation.
        """
        multi = self.expression_for(definition)
        kinds = self._sub_roll_types(definition, multi)
        state = _ExecutionState()

        breakdown: List[RollBreakdown] = []
        conditions: List[ActiveCondition] = []
        notes: List[str] = []
        label_ranges = {}
        crit_faces = list(self.rules.range)
        estimate = None
        seen_attack = False

        for index, (segment, kind) in enumerate(zip(multi.expressions, kinds)):
            critical_damage = kind.is_damage and definition.critical_hit
            modifiers = self._active_modifiers(definition, kind, state, critical_damage)
            expression, condition_items, _, _ = self._apply_advantage(segment.expression, kind, modifiers, notes)
            expression = self._with_roll_operations(expression, modifiers)
            prefix = f"{segment.label}: " if segment.label else ""

            breakdown.extend(self._predicted_items(expression, prefix))
            breakdown.extend(condition_items)

            parts = [estimate_dice(expression, self.explode_cap)]
            for m in modifiers:
                if m.type is ModifierType.FLAT:
                    parts.append(EstimatedRange(min=m.value, max=m.value, average=m.value))
                    breakdown.append(self._modifier_item(m))
                elif m.type is ModifierType.DICE:
                    parts.append(estimate_dice(m.value, self.explode_cap))
                    breakdown.extend(self._predicted_items(m.value, f"{m.name}: "))
            estimate = combine(*parts)
            for m in modifiers:
                if m.type is ModifierType.MULTIPLIER:
                    estimate = scale(estimate, multiplier=m.value)
                elif m.type is ModifierType.DIVIDER:
                    estimate = scale(estimate, divider=m.value)
            label_ranges[segment.label or f"roll_{index + 1}"] = estimate

            for m in modifiers:
                if (m.type in _CONDITION_TYPES or m.condition is not None) and all(c.id != m.id for c in conditions):
                    conditions.append(ActiveCondition(id=m.id, name=m.name, type=m.type, description=m.description))
                if m.is_once:
                    notes.append(f"{m.name} applies once per {'turn' if m.application is ApplicationTiming.ONCE_PER_TURN else 'rest'}")

            if kind.is_attack and not seen_attack:
                crit_faces = critical_range(self.rules, modifiers)
                seen_attack = True
            elif kind.is_damage and seen_attack and not expression.is_flat:
                doubled = critical_expression(expression, self.rules)
                notes.append(f"On a critical hit {expression.to_notation()} becomes {doubled.to_notation()}")
            if expression.parsed.has(OperationType.EXPLODE):
                notes.append(f"Exploding dice are estimated with at most {self.explode_cap} dice")

        if crit_faces != [20]:
            notes.append(f"Critical hit on {_describe_faces(crit_faces)}")

        return PreRollInfo(
            definition_id=definition.id,
            breakdown=breakdown,
            conditions=conditions,
            estimated_range=estimate,
            label_ranges=label_ranges,
            critical_range=crit_faces,
            critical_failure_range=list(self.rules.failure_range),
            notes=notes,
        )

    def execute_roll(self, definition: RollDefinition) -> RollResult:
        """
        Roll every labeled segment in order and assemble an itemized
        result. Multi-expressions list each segment in multi_results and
        report the last segment's total and breakdown on the outer result.

        Raises:
            DiceParseError: on malformed notation.
            RollTimeoutError: when the roll runs past max_execution_time.
        """
        started = self._clock()
        multi = self.expression_for(definition)
        kinds = self._sub_roll_types(definition, multi)
        state = _ExecutionState(
            deadline=started + self.max_execution_time if self.max_execution_time else None
        )

        try:
            results = [
                self._roll_segment(definition, segment, kind, state)
                for segment, kind in zip(multi.expressions, kinds)
            ]
        except RollTimeoutError:
            logger.error(
                "Roll %s (%s) aborted after %.2fs", definition.id, multi.full_expression, self.max_execution_time
            )
            raise

        result = results[0] if len(results) == 1 else self._combine(definition, multi, results)
        result.metadata.execution_ms = round((self._clock() - started) * 1000, 3)
        self.roll_log.append(result)

        logger.info(
            "%s: %s = %d%s",
            definition.name or definition.type.value,
            multi.full_expression,
            result.total,
            " (critical)" if result.critical_success else " (fumble)" if result.critical_failure else "",
        )
        return result

    # ------------------------------------------------------------
    # Segment execution
    # ------------------------------------------------------------

    def _roll_segment(
        self,
        definition: RollDefinition,
        segment: LabeledDiceExpression,
        kind: RollType,
        state: _ExecutionState,
        allow_extra: bool = True,
    ) -> RollResult:
        context = definition.context
        notes: List[str] = []
        critical_damage = kind.is_damage and (definition.critical_hit or state.critical_pending)
        modifiers = self._active_modifiers(definition, kind, state, critical_damage)

        expression, items, advantage, disadvantage = self._apply_advantage(segment.expression, kind, modifiers, notes)
        expression = self._with_roll_operations(expression, modifiers)

        transform = (
            kind.is_damage
            and state.critical_pending
            and not expression.is_flat
            and not (state.critical_consumed and self.rules.affected_dice is AffectedDice.WEAPON_ONLY)
        )
        if transform:
            doubled = critical_expression(expression, self.rules)
            notes.append(f"Critical hit: {expression.to_notation()} rolled as {doubled.to_notation()}")
            expression = doubled
            state.critical_consumed = True

        dice_roll = self.roller.roll(expression, rng=self.rng, label=segment.label, deadline=state.deadline)
        notes.extend(dice_roll.notes)

        natural = None
        # Dice added by an explosion never count as the natural roll
        kept = [d for d in dice_roll.kept if not d.exploded]
        if kind.is_d20 and expression.parsed.sides == 20 and len(kept) == 1:
            natural = kept[0].natural
            replacement = next((m for m in modifiers if m.type is ModifierType.REPLACE_DIE), None)
            if replacement is not None:
                natural = self._replace_die(dice_roll, kept[0].index, replacement, items)

        items = self._dice_items(dice_roll) + items

        for m in modifiers:
            if m.type is ModifierType.FLAT:
                items.append(self._modifier_item(m))
            elif m.type is ModifierType.DICE:
                bonus = m.value
                if critical_damage and self.rules.affected_dice is not AffectedDice.WEAPON_ONLY:
                    bonus = critical_expression(bonus, self.rules)
                bonus_roll = self.roller.roll(bonus, rng=self.rng, label=m.name, deadline=state.deadline)
                items.extend(self._dice_items(bonus_roll, source=m.name))

        if critical_damage and self._critical_extra is not None and not state.extra_dice_rolled:
            extra_roll = self.roller.roll(self._critical_extra, rng=self.rng, label="critical", deadline=state.deadline)
            items.extend(
                item.model_copy(update={"type": BreakdownType.CRITICAL, "label": f"Critical {item.label}"})
                for item in self._dice_items(extra_roll)
            )
            state.extra_dice_rolled = True

        total = _counted(items)
        for m in modifiers:
            if m.type not in _SCALING:
                continue
            if m.type is ModifierType.MULTIPLIER:
                scaled = math.floor(total * m.value)
                label = f"{m.name} (x{m.value:g})"
            else:
                scaled = math.floor(total / m.value)
                label = f"{m.name} (/{m.value:g})"
            items.append(RollBreakdown(
                type=BreakdownType.MODIFIER,
                label=label,
                value=scaled - total,
                details=BreakdownDetails(source=m.source.value),
            ))
            total = scaled

        crit_faces = critical_range(self.rules, modifiers) if kind.is_attack else list(self.rules.range)
        can_crit = natural is not None and kind is not RollType.INITIATIVE
        critical_success = can_crit and is_critical(natural, self.rules, crit_faces)
        critical_failure = can_crit and is_critical_failure(natural, self.rules)

        target_number = self._target_number(context, kind)
        success = None
        if target_number is not None:
            if (kind.is_attack or kind is RollType.DEATH_SAVE) and (critical_success or critical_failure):
                success = critical_success
            else:
                success = total >= target_number

        additional = None
        if allow_extra and kind.is_attack:
            extra_count = sum(int(m.value) for m in modifiers if m.type is ModifierType.EXTRA_ATTACK)
            if extra_count:
                # Extra attacks must not disturb the critical carry of the main attack
                side_state = replace(state, used_once=state.used_once)
                additional = [
                    self._roll_segment(definition, segment, kind, side_state, allow_extra=False)
                    for _ in range(extra_count)
                ]

        if kind.is_attack:
            state.critical_pending = critical_success
            state.critical_consumed = False
            state.attack_missed = success is False

        return RollResult(
            total=total,
            breakdown=items,
            critical_success=critical_success,
            critical_failure=critical_failure,
            success=success,
            target_number=target_number,
            natural_roll=natural,
            additional_results=additional,
            metadata=RollMetadata(
                roll_id=f"res_{uuid4().hex[:8]}",
                definition_id=definition.id,
                name=definition.name,
                roll_type=kind,
                label=segment.label,
                expression=expression.to_notation(),
                modifiers_applied=[m.name for m in modifiers],
                advantage=advantage,
                disadvantage=disadvantage,
                critical_range=crit_faces,
                notes=notes,
            ),
        )

    def _combine(self, definition: RollDefinition, multi: MultiDiceExpression, results: List[RollResult]) -> RollResult:
        last = results[-1]
        first_check = next((r for r in results if r.success is not None), None)
        first_d20 = next((r for r in results if r.natural_roll is not None), None)
        additional = [extra for r in results for extra in (r.additional_results or [])]
        applied = []
        for r in results:
            applied.extend(name for name in r.metadata.modifiers_applied if name not in applied)

        return RollResult(
            total=last.total,
            breakdown=list(last.breakdown),
            critical_success=any(r.critical_success for r in results),
            critical_failure=any(r.critical_failure for r in results),
            success=first_check.success if first_check else None,
            target_number=first_check.target_number if first_check else None,
            natural_roll=first_d20.natural_roll if first_d20 else None,
            additional_results=additional or None,
            multi_results=results,
            metadata=RollMetadata(
                roll_id=f"res_{uuid4().hex[:8]}",
                definition_id=definition.id,
                name=definition.name,
                roll_type=definition.type,
                expression=multi.full_expression,
                modifiers_applied=applied,
                advantage=any(r.metadata.advantage for r in results),
                disadvantage=any(r.metadata.disadvantage for r in results),
                critical_range=first_d20.metadata.critical_range if first_d20 else list(self.rules.range),
                notes=[note for r in results for note in r.metadata.notes],
            ),
        )

    # ------------------------------------------------------------
    # Modifier handling shared by analyze and execute
    # ------------------------------------------------------------

    def _sub_roll_types(self, definition: RollDefinition, multi: MultiDiceExpression) -> List[RollType]:
        """
        Type of each segment: from its label when recognisable, else damage
        once an attack or damage segment has been seen, else the definition type.
        """
        kinds: List[RollType] = []
        for segment in multi.expressions:
            kind = RollType.from_label(segment.label)
            if kind is RollType.ATTACK and definition.type.is_attack:
                kind = definition.type
            if kind is None:
                follows_attack = any(k.is_attack for k in kinds)
                kind = RollType.DAMAGE if kinds and (follows_attack or kinds[-1].is_damage) else definition.type
            kinds.append(kind)
        return kinds

    def _active_modifiers(
        self,
        definition: RollDefinition,
        kind: RollType,
        state: _ExecutionState,
        critical_damage: bool,
    ) -> List[RollModifier]:
        resolved = self.resolver.resolve(
            definition.context,
            kind,
            extra=definition.modifiers,
            include_character=definition.derive_character_modifiers,
        )
        active = []
        for m in resolved:
            if not m.applies_to_type(kind):
                continue
            if m.application is ApplicationTiming.ON_DAMAGE and not kind.is_damage:
                continue
            if m.application is ApplicationTiming.ON_CRITICAL and not critical_damage:
                continue
            if m.is_once:
                if m.id in state.used_once or (kind.is_damage and state.attack_missed):
                    continue
                state.used_once.add(m.id)
            active.append(m)
        return active

    def _apply_advantage(
        self,
        expression: DiceExpression,
        kind: RollType,
        modifiers: List[RollModifier],
        notes: List[str],
    ) -> Tuple[DiceExpression, List[RollBreakdown], bool, bool]:
        """Advantage and disadvantage cancel; a lone one turns 1d20 into 2d20kh1/kl1."""
        advantages = [m.name for m in modifiers if m.type is ModifierType.ADVANTAGE]
        disadvantages = [m.name for m in modifiers if m.type is ModifierType.DISADVANTAGE]
        items: List[RollBreakdown] = []

        if advantages and disadvantages:
            message = "Advantage and disadvantage cancel out"
            notes.append(message)
            items.append(_condition_item(message))
            return expression, items, False, False
        if not advantages and not disadvantages:
            return expression, items, False, False

        is_advantage = bool(advantages)
        names = ", ".join(advantages or disadvantages)
        label = f"{'Advantage' if is_advantage else 'Disadvantage'} ({names})"
        parsed = expression.parsed
        keeps = any(op.type in (OperationType.KEEP_HIGHEST, OperationType.KEEP_LOWEST,
                                OperationType.DROP_HIGHEST, OperationType.DROP_LOWEST)
                    for op in parsed.operations)

        if kind.is_d20 and parsed.count == 1 and parsed.sides == 20 and not keeps:
            keep = OperationType.KEEP_HIGHEST if is_advantage else OperationType.KEEP_LOWEST
            expression = expression.replace(count=2, operations=[Operation(type=keep, value=1)] + list(parsed.operations))
            items.append(_condition_item(label))
        elif (is_advantage and has_advantage(expression)) or (not is_advantage and has_disadvantage(expression)):
            items.append(_condition_item(label))
        else:
            notes.append(f"{label} has no effect on {expression.to_notation()}")
        return expression, items, is_advantage, not is_advantage

    def _with_roll_operations(self, expression: DiceExpression, modifiers: List[RollModifier]) -> DiceExpression:
        """Reroll/minimum/maximum modifiers become extra operations on the die pool."""
        sides = expression.parsed.sides
        extra: List[Operation] = []
        for m in modifiers:
            op_type = _ROLL_OPERATIONS.get(m.type)
            if op_type is None or expression.is_flat:
                continue
            faces = m.value if isinstance(m.value, list) else [int(m.value)]
            if any(face > sides for face in faces):
                logger.warning(ModifierError(m.id, f"face value outside 1..{sides}").message)
                continue
            if op_type is OperationType.REROLL:
                extra.extend(Operation(type=op_type, value=face) for face in faces)
                continue

            clamp = Operation(type=op_type, value=faces[0])
            if not clamps_consistent(list(expression.parsed.operations) + extra + [clamp]):
                logger.warning(ModifierError(m.id, "minimum is greater than maximum").message)
                continue
            extra.append(clamp)
        if not extra:
            return expression
        return expression.replace(operations=list(expression.parsed.operations) + extra)

    def _replace_die(self, dice_roll: DiceRoll, index: int, modifier: RollModifier, items: List[RollBreakdown]) -> int:
        face = min(int(modifier.value), 20)
        die = dice_roll.dice[index]
        dice_roll.dice[index] = die.model_copy(update={"value": face, "natural": face})
        items.append(_condition_item(f"{modifier.name}: d20 {die.natural} replaced with {face}"))
        return face

    def _target_number(self, context: RollContext, kind: RollType) -> int | None:
        target = context.target
        if kind.is_attack:
            return target.ac if target else None
        if kind is RollType.DEATH_SAVE:
            return target.dc if target and target.dc is not None else 10
        if kind.is_check:
            return target.dc if target else None
        return None

    # ------------------------------------------------------------
    # Breakdown items
    # ------------------------------------------------------------

    def _dice_items(self, dice_roll: DiceRoll, source: str | None = None) -> List[RollBreakdown]:
        expression = dice_roll.expression
        if expression.is_flat:
            return [RollBreakdown(
                type=BreakdownType.MODIFIER,
                label=source or "Flat",
                value=dice_roll.total,
                details=BreakdownDetails(source=source or "expression", is_flat_number=True),
            )]

        prefix = f"{source} " if source else ""
        items = []
        for die in dice_roll.dice:
            for discarded in die.rolls[:-1]:
                items.append(RollBreakdown(
                    type=BreakdownType.REROLL,
                    label=f"{prefix}d{die.sides} (rerolled)",
                    value=discarded,
                    details=BreakdownDetails(
                        original_roll=discarded, sides=die.sides, source=source,
                        rerolled=True, dropped=True, rolls=die.rolls,
                    ),
                ))
            items.append(RollBreakdown(
                type=BreakdownType.DIE,
                label=f"{prefix}d{die.sides}",
                value=die.value,
                details=BreakdownDetails(
                    original_roll=die.original, sides=die.sides, source=source,
                    rerolled=die.rerolled, dropped=die.dropped, exploded=die.exploded, rolls=die.rolls,
                ),
            ))
        if dice_roll.modifier:
            items.append(RollBreakdown(
                type=BreakdownType.MODIFIER,
                label=f"{source} bonus" if source else "Bonus",
                value=dice_roll.modifier,
                details=BreakdownDetails(source=source or "expression"),
            ))
        return items

    def _predicted_items(self, expression: DiceExpression, prefix: str = "") -> List[RollBreakdown]:
        parsed = expression.parsed
        if expression.is_flat:
            return [RollBreakdown(
                type=BreakdownType.MODIFIER,
                label=f"{prefix}Flat",
                value=1 + parsed.modifier,
                details=BreakdownDetails(source="expression", is_flat_number=True),
            )]
        dice = expression.replace(modifier=0).to_notation()
        items = [RollBreakdown(
            type=BreakdownType.DIE,
            label=f"{prefix}{dice}",
            value=0,
            details=BreakdownDetails(sides=parsed.sides),
        )]
        if parsed.modifier:
            items.append(RollBreakdown(
                type=BreakdownType.MODIFIER,
                label=f"{prefix}Bonus",
                value=parsed.modifier,
                details=BreakdownDetails(source="expression"),
            ))
        return items

    def _modifier_item(self, modifier: RollModifier) -> RollBreakdown:
        return RollBreakdown(
            type=BreakdownType.MODIFIER,
            label=modifier.name,
            value=int(modifier.value),
            details=BreakdownDetails(source=modifier.source.value),
        )


def _condition_item(label: str) -> RollBreakdown:
    return RollBreakdown(type=BreakdownType.CONDITION, label=label, value=0)


def _counted(items: List[RollBreakdown]) -> int:
    return sum(item.value for item in items if not item.details.dropped)


def _describe_faces(faces: List[int]) -> str:
    if len(faces) > 1 and faces == list(range(faces[0], faces[-1] + 1)):
        return f"{faces[0]}-{faces[-1]}"
    return ", ".join(str(f) for f in faces)
