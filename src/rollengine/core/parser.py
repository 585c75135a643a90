"""
Dice notation parsing.

Segment grammar: ``[N]dS[op...][+/-flat...]`` where op is one of
``khN klN dhN dlN rN rrN ! !N minN maxN``. A bare integer is a flat number.
Segments are comma separated and may carry a ``label:`` prefix.
"""

import logging
import re
from typing import List, Tuple

from rollengine.core.exceptions import DiceParseError
from rollengine.models import (
    DiceExpression,
    DiceParseResult,
    LabeledDiceExpression,
    MultiDiceExpression,
    Operation,
    OperationType,
    ParsedDice,
)

logger = logging.getLogger(__name__)

# ============================================================
# DICE PARSER
# ============================================================

class DiceParser:
    """
    Parse and validate dice notation.

    Limits (configurable):
        - max_dice: Maximum number of dice in one segment
        - max_sides: Maximum sides per die
        - max_modifier: Maximum absolute flat modifier
    """

    DICE_PATTERN = re.compile(r"^(?P<count>\d*)d(?P<sides>\d*)(?P<rest>.*)$")
    FLAT_PATTERN = re.compile(r"^[+-]?\d+$")
    LABEL_PATTERN = re.compile(r"^([a-zA-Z_][a-zA-Z0-9_]*):(.+)$")
    # rr before r, min/max before anything starting with m
    TOKEN_PATTERN = re.compile(r"(kh|kl|dh|dl|rr|r|min|max|!|\+|-)(\d*)")

    KEEP_DROP = {
        "kh": OperationType.KEEP_HIGHEST,
        "kl": OperationType.KEEP_LOWEST,
        "dh": OperationType.DROP_HIGHEST,
        "dl": OperationType.DROP_LOWEST,
    }

    DEFAULT_MAX_DICE = 100
    DEFAULT_MAX_SIDES = 1000
    DEFAULT_MAX_MODIFIER = 10000
    MAX_DIGITS = 9                  # Longest digit run accepted in any number

    def __init__(
        self,
        max_dice: int = DEFAULT_MAX_DICE,
        max_sides: int = DEFAULT_MAX_SIDES,
        max_modifier: int = DEFAULT_MAX_MODIFIER,
    ):
        self.max_dice = max_dice
        self.max_sides = max_sides
        self.max_modifier = max_modifier

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    def parse(self, expression: str) -> DiceParseResult:
        """Parse one segment. Never raises; check `valid` on the result."""
        try:
            dice = self.parse_expression(expression)
        except DiceParseError as e:
            logger.debug("Rejected dice expression %r: %s", expression, e.reason)
            return DiceParseResult(valid=False, expression=expression or "", error=e.reason)
        return DiceParseResult(valid=True, expression=expression, dice_expression=dice)

    def parse_expression(self, expression: str) -> DiceExpression:
        """Parse one segment, raising DiceParseError when it is malformed."""
        if expression is None or not str(expression).strip():
            raise DiceParseError(expression or "", "expression is empty")
        cleaned = re.sub(r"\s+", "", str(expression))
        parsed = self._parse_segment(cleaned.lower(), cleaned)
        return DiceExpression(expression=cleaned, parsed=parsed)

    def parse_multi(self, expression: str) -> MultiDiceExpression:
        """
        Parse comma separated, optionally labeled segments:
        "attack:1d20+5,damage:1d8+3".

        Raises:
            DiceParseError: naming the offending segment.
        """
        if expression is None or not str(expression).strip():
            raise DiceParseError(expression or "", "expression is empty")

        segments: List[LabeledDiceExpression] = []
        for raw in str(expression).split(","):
            segment = re.sub(r"\s+", "", raw)
            if not segment:
                raise DiceParseError(expression, "empty segment between commas")

            label = None
            match = self.LABEL_PATTERN.match(segment)
            if match:
                label, segment = match.group(1), match.group(2)

            segments.append(LabeledDiceExpression(label=label, expression=self.parse_expression(segment)))

        multi = MultiDiceExpression(
            full_expression=re.sub(r"\s+", "", str(expression)),
            expressions=segments,
        )
        logger.debug("Parsed %r into %d segment(s)", expression, len(segments))
        return multi

    def try_parse_multi(self, expression: str) -> Tuple[MultiDiceExpression | None, str | None]:
        try:
            return self.parse_multi(expression), None
        except DiceParseError as e:
            return None, e.message

    def validate(self, expression: str) -> bool:
        return self.try_parse_multi(expression)[0] is not None

    # ------------------------------------------------------------
    # Segment parsing
    # ------------------------------------------------------------

    def _parse_segment(self, text: str, original: str) -> ParsedDice:
        if self.FLAT_PATTERN.match(text):
            value = self._number(original, text)
            self._check_modifier(original, value - 1)
            return ParsedDice(count=1, sides=1, modifier=value - 1)

        match = self.DICE_PATTERN.match(text)
        if not match:
            raise DiceParseError(original, "expected NdS dice notation or a whole number")

        count_str, sides_str = match.group("count"), match.group("sides")
        if not sides_str:
            raise DiceParseError(original, "missing die size after 'd'")

        count = self._number(original, count_str) if count_str else 1
        sides = self._number(original, sides_str)

        if count < 1:
            raise DiceParseError(original, "must roll at least 1 die")
        if count > self.max_dice:
            raise DiceParseError(original, f"maximum {self.max_dice} dice allowed")
        if sides < 1:
            raise DiceParseError(original, "dice must have at least 1 side")
        if sides > self.max_sides:
            raise DiceParseError(original, f"maximum {self.max_sides} sides allowed")

        operations, modifier = self._parse_tail(match.group("rest"), sides, original)
        self._check_modifier(original, modifier)
        return ParsedDice(count=count, sides=sides, modifier=modifier, operations=operations)

    def _parse_tail(self, rest: str, sides: int, original: str) -> Tuple[List[Operation], int]:
        """Walk the tokens after NdS left to right. Flat terms may sit between operations."""
        operations: List[Operation] = []
        modifier = 0
        position = 0

        while position < len(rest):
            match = self.TOKEN_PATTERN.match(rest, position)
            if not match:
                raise DiceParseError(original, f"unknown operation '{rest[position:]}'")
            token, digits = match.group(1), match.group(2)
            position = match.end()

            if token in ("+", "-"):
                if not digits:
                    raise DiceParseError(
                        original,
                        f"'{token}' must be followed by a whole number; "
                        "use comma separated segments for extra dice",
                    )
                number = self._number(original, digits)
                modifier += number if token == "+" else -number

            elif token in self.KEEP_DROP:
                amount = self._number(original, digits) if digits else 1
                if amount < 1:
                    raise DiceParseError(original, f"'{token}' needs a count of at least 1")
                operations.append(Operation(type=self.KEEP_DROP[token], value=amount))

            elif token in ("r", "rr"):
                if not digits:
                    raise DiceParseError(original, f"'{token}' needs a face value to reroll")
                face = self._check_face(original, token, digits, sides)
                operations.append(Operation(type=OperationType.REROLL, value=face, recursive=token == "rr"))

            elif token == "!":
                if any(op.type is OperationType.EXPLODE for op in operations):
                    raise DiceParseError(original, "explode given more than once")
                threshold = self._check_face(original, token, digits, sides) if digits else sides
                operations.append(Operation(type=OperationType.EXPLODE, value=threshold))

            else:
                if not digits:
                    raise DiceParseError(original, f"'{token}' needs a value")
                face = self._check_face(original, token, digits, sides)
                op_type = OperationType.MINIMUM if token == "min" else OperationType.MAXIMUM
                operations.append(Operation(type=op_type, value=face))

        self._check_clamps(original, operations)
        return operations, modifier

    def _number(self, original: str, text: str) -> int:
        if len(text.lstrip("+-")) > self.MAX_DIGITS:
            raise DiceParseError(original, "number too large")
        return int(text)

    def _check_face(self, original: str, token: str, digits: str, sides: int) -> int:
        face = self._number(original, digits)
        if not 1 <= face <= sides:
            raise DiceParseError(original, f"'{token}{digits}' is outside 1..{sides}")
        return face

    def _check_clamps(self, original: str, operations: List[Operation]) -> None:
        if not clamps_consistent(operations):
            raise DiceParseError(original, "minimum is greater than maximum")

    def _check_modifier(self, original: str, modifier: int) -> None:
        if abs(modifier) > self.max_modifier:
            raise DiceParseError(
                original, f"modifier must be between -{self.max_modifier} and +{self.max_modifier}"
            )

# ============================================================
# HELPERS
# ============================================================

def create_dice_expression(
    count: int,
    sides: int,
    modifier: int = 0,
    operations: List[Operation] | None = None,
) -> DiceExpression:
    """Build an expression directly, without going through notation."""
    if count < 1 or sides < 1:
        raise DiceParseError(f"{count}d{sides}", "count and sides must be at least 1")
    return DiceExpression.from_parsed(
        ParsedDice(count=count, sides=sides, modifier=modifier, operations=operations or [])
    )

def flat_expression(value: int) -> DiceExpression:
    return create_dice_expression(1, 1, value - 1)

def advantage_expression(modifier: int = 0) -> DiceExpression:
    return create_dice_expression(2, 20, modifier, [Operation(type=OperationType.KEEP_HIGHEST, value=1)])

def disadvantage_expression(modifier: int = 0) -> DiceExpression:
    return create_dice_expression(2, 20, modifier, [Operation(type=OperationType.KEEP_LOWEST, value=1)])

def clamps_consistent(operations: List[Operation]) -> bool:
    """No minimum may exceed a maximum on the same pool."""
    floors = [op.value for op in operations if op.type is OperationType.MINIMUM]
    ceilings = [op.value for op in operations if op.type is OperationType.MAXIMUM]
    return not (floors and ceilings and max(floors) > min(ceilings))

def has_advantage(expression: DiceExpression) -> bool:
    parsed = expression.parsed
    return parsed.count == 2 and parsed.sides == 20 and parsed.has(OperationType.KEEP_HIGHEST)

def has_disadvantage(expression: DiceExpression) -> bool:
    parsed = expression.parsed
    return parsed.count == 2 and parsed.sides == 20 and parsed.has(OperationType.KEEP_LOWEST)

def expression_labels(expression: MultiDiceExpression) -> List[str]:
    return [e.label for e in expression.expressions if e.label]

dice_parser = DiceParser()
