import logging
from typing import Iterable, List

from rollengine.core.parser import DiceParser, dice_parser
from rollengine.models import (
    AffectedDice,
    CriticalRules,
    DamageStrategy,
    DiceExpression,
    LabeledDiceExpression,
    ModifierType,
    MultiDiceExpression,
    Operation,
    OperationType,
    RollModifier,
    RollType,
)

logger = logging.getLogger(__name__)

# ============================================================
# CRITICAL HIT POLICY
# ============================================================

_SCALED_WITH_COUNT = (
    OperationType.KEEP_HIGHEST,
    OperationType.KEEP_LOWEST,
    OperationType.DROP_HIGHEST,
    OperationType.DROP_LOWEST,
)


def is_critical(natural_roll: int | None, rules: CriticalRules, crit_range: Iterable[int] | None = None) -> bool:
    """Natural (unmodified) face inside the critical range."""
    if natural_roll is None:
        return False
    return natural_roll in (crit_range if crit_range is not None else rules.range)


def is_critical_failure(natural_roll: int | None, rules: CriticalRules) -> bool:
    if natural_roll is None:
        return False
    return natural_roll in rules.failure_range


def critical_range(rules: CriticalRules, modifiers: Iterable[RollModifier] = ()) -> List[int]:
    """
    Rules range widened by crit_range modifiers, whose value is the lowest
    natural roll that crits (Improved Critical: 19).
    """
    faces = set(rules.range)
    for modifier in modifiers:
        if modifier.type is ModifierType.CRIT_RANGE:
            faces.update(range(int(modifier.value), 21))
    return sorted(faces)


def _is_damage_segment(segment: LabeledDiceExpression) -> bool:
    kind = RollType.from_label(segment.label)
    if kind is not None and kind.is_d20:
        return False
    return not segment.expression.is_flat


def critical_expression(expression: DiceExpression, rules: CriticalRules) -> DiceExpression:
    """Transform one damage term according to the damage strategy."""
    if expression.is_flat:
        return expression
    parsed = expression.parsed

    if rules.damage_strategy is DamageStrategy.MAX_BASE_DICE:
        return expression.replace(modifier=parsed.modifier + parsed.count * parsed.sides)

    # Keep/drop counts scale with the pool so 2d6kh1 becomes 4d6kh2
    operations = [
        Operation(type=op.type, value=op.value * 2, recursive=op.recursive)
        if op.type in _SCALED_WITH_COUNT else op
        for op in parsed.operations
    ]
    modifier = parsed.modifier
    if rules.damage_strategy is DamageStrategy.DOUBLE_TOTAL and rules.affected_dice is not AffectedDice.EXCLUDE_MODIFIERS:
        modifier *= 2
    return expression.replace(count=parsed.count * 2, operations=operations, modifier=modifier)


def critical_segments(expression: MultiDiceExpression, rules: CriticalRules) -> MultiDiceExpression:
    """
    Transform the damage segments of a multi-expression. weapon_only touches
    the first damage term only; the other modes touch every damage term.
    Attack and check segments are left alone.
    """
    transformed = []
    done = False
    for segment in expression.expressions:
        if _is_damage_segment(segment) and not (done and rules.affected_dice is AffectedDice.WEAPON_ONLY):
            segment = LabeledDiceExpression(label=segment.label, expression=critical_expression(segment.expression, rules))
            done = True
        transformed.append(segment)
    return MultiDiceExpression.from_segments(transformed)


def apply_critical_damage(
    expression: "str | DiceExpression | MultiDiceExpression",
    rules: CriticalRules,
    parser: DiceParser | None = None,
):
    """
    Returns the same shape it was given, with qualifying damage dice
    transformed. "1d8+3" -> "2d8+3" under double_dice.

    Raises:
        DiceParseError: if a string expression is malformed.
    """
    if isinstance(expression, DiceExpression):
        return critical_expression(expression, rules)
    if isinstance(expression, MultiDiceExpression):
        return critical_segments(expression, rules)

    multi = (parser or dice_parser).parse_multi(expression)
    result = critical_segments(multi, rules).to_notation()
    logger.debug("Critical damage: %s -> %s", expression, result)
    return result
