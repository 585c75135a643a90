from typing import List
from pydantic import BaseModel, ConfigDict

from rollengine.models.schemas import OperationType

# ============================================================
# DICE EXPRESSIONS
# ============================================================

_OPERATION_PREFIXES = {
    OperationType.KEEP_HIGHEST: "kh",
    OperationType.KEEP_LOWEST: "kl",
    OperationType.DROP_HIGHEST: "dh",
    OperationType.DROP_LOWEST: "dl",
    OperationType.MINIMUM: "min",
    OperationType.MAXIMUM: "max",
}

class Operation(BaseModel):
    """One post-roll operation, e.g. kh1, r1, !, min2"""
    model_config = ConfigDict(frozen=True)

    type: OperationType
    value: int | List[int]
    recursive: bool = False                 # rr: reroll until the face is no longer matched

    def values(self) -> List[int]:
        return list(self.value) if isinstance(self.value, list) else [self.value]

    def notation(self, sides: int) -> str:
        if self.type is OperationType.REROLL:
            prefix = "rr" if self.recursive else "r"
            return "".join(f"{prefix}{v}" for v in self.values())
        if self.type is OperationType.EXPLODE:
            return "!" if self.value == sides else f"!{self.value}"
        return f"{_OPERATION_PREFIXES[self.type]}{self.value}"

class ParsedDice(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int                              # >= 1
    sides: int                              # >= 1
    modifier: int = 0                       # Flat +/- applied after the dice
    operations: List[Operation] = []        # In parsed order

    @property
    def is_flat(self) -> bool:
        """A 1d1 with no operations stands for the number 1 + modifier."""
        return self.count == 1 and self.sides == 1 and not self.operations

    def has(self, op_type: OperationType) -> bool:
        return any(op.type is op_type for op in self.operations)

    def notation(self) -> str:
        if self.is_flat:
            return str(1 + self.modifier)
        text = f"{self.count}d{self.sides}"
        text += "".join(op.notation(self.sides) for op in self.operations)
        if self.modifier > 0:
            text += f"+{self.modifier}"
        elif self.modifier < 0:
            text += str(self.modifier)
        return text

class DiceExpression(BaseModel):
    """A single parsed segment. Immutable once parsed."""
    model_config = ConfigDict(frozen=True)

    expression: str
    parsed: ParsedDice

    @classmethod
    def from_parsed(cls, parsed: ParsedDice) -> "DiceExpression":
        return cls(expression=parsed.notation(), parsed=parsed)

    @property
    def is_flat(self) -> bool:
        return self.parsed.is_flat

    def to_notation(self) -> str:
        return self.parsed.notation()

    def replace(self, **changes) -> "DiceExpression":
        """Copy with some of count/sides/modifier/operations swapped out."""
        return DiceExpression.from_parsed(self.parsed.model_copy(update=changes))

class LabeledDiceExpression(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str | None = None
    expression: DiceExpression

    def to_notation(self) -> str:
        body = self.expression.to_notation()
        return f"{self.label}:{body}" if self.label else body

class MultiDiceExpression(BaseModel):
    """Comma separated segments; order is kept into multi_results."""
    model_config = ConfigDict(frozen=True)

    full_expression: str
    expressions: List[LabeledDiceExpression]

    @classmethod
    def from_segments(cls, segments: List[LabeledDiceExpression]) -> "MultiDiceExpression":
        return cls(
            full_expression=",".join(s.to_notation() for s in segments),
            expressions=list(segments),
        )

    @property
    def labels(self) -> List[str | None]:
        return [e.label for e in self.expressions]

    def to_notation(self) -> str:
        return ",".join(e.to_notation() for e in self.expressions)

class DiceParseResult(BaseModel):
    """Outcome of DiceParser.parse(); never raised, callers check `valid`."""
    valid: bool
    expression: str
    error: str | None = None
    dice_expression: DiceExpression | None = None
