import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, List

from rollengine.core.exceptions import INVALID_RANDOM_VALUE, RollEngineError, RollTimeoutError
from rollengine.models import (
    AppliedOperation,
    DiceExpression,
    DiceRoll,
    DieResult,
    Operation,
    OperationType,
)

logger = logging.getLogger(__name__)

# (sides) -> int in [1, sides]
RandomSource = Callable[[int], int]


def make_rng(seed: int | None = None) -> RandomSource:
    """Uniform random source. Seeded sources are reproducible, which tests rely on."""
    rng = random.Random(seed)

    def roll(sides: int) -> int:
        return rng.randint(1, sides)

    return roll

# ============================================================
# DICE ROLLER
# ============================================================

# Operations run phase by phase; parsed order is kept inside a phase.
_PHASES = {
    OperationType.REROLL: 0,
    OperationType.EXPLODE: 0,
    OperationType.KEEP_HIGHEST: 1,
    OperationType.KEEP_LOWEST: 1,
    OperationType.DROP_HIGHEST: 1,
    OperationType.DROP_LOWEST: 1,
    OperationType.MINIMUM: 2,
    OperationType.MAXIMUM: 2,
}

@dataclass
class _Die:
    index: int
    sides: int
    value: int
    rolls: List[int] = field(default_factory=list)
    natural: int = 0
    rerolled: bool = False
    exploded: bool = False
    dropped: bool = False
    clamped: bool = False

    def to_result(self) -> DieResult:
        return DieResult(
            index=self.index,
            sides=self.sides,
            value=self.value,
            natural=self.natural,
            rolls=list(self.rolls),
            rerolled=self.rerolled,
            exploded=self.exploded,
            dropped=self.dropped,
            clamped=self.clamped,
        )


class DiceRoller:
    """
    Executes a parsed DiceExpression against an injected random source.

    Order of work:
        1. roll `count` dice
        2. reroll / explode, in parsed order
        3. keep / drop over the full post-reroll pool, in parsed order
        4. min / max clamps on the kept dice
        5. total = kept faces + flat modifier
    """

    DEFAULT_EXPLODE_CAP = 100

    def __init__(
        self,
        rng: RandomSource | None = None,
        explode_cap: int = DEFAULT_EXPLODE_CAP,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rng = rng or make_rng()
        self.explode_cap = explode_cap
        self._clock = clock

    def roll(
        self,
        expression: DiceExpression,
        rng: RandomSource | None = None,
        label: str | None = None,
        deadline: float | None = None,
    ) -> DiceRoll:
        draw = rng or self.rng
        parsed = expression.parsed
        notes: List[str] = []

        dice = []
        for i in range(parsed.count):
            face = self._draw(draw, parsed.sides, deadline)
            dice.append(_Die(index=i, sides=parsed.sides, value=face, rolls=[face], natural=face))

        applied: List[AppliedOperation] = []
        for op in sorted(parsed.operations, key=lambda o: _PHASES[o.type]):
            before = [d.value for d in dice]
            if op.type is OperationType.REROLL:
                affected = self._reroll(dice, op, draw, deadline)
                description = f"Rerolled {', '.join(map(str, op.values()))}" + (" until it stopped" if op.recursive else " once")
            elif op.type is OperationType.EXPLODE:
                affected = self._explode(dice, op, draw, deadline, notes)
                description = f"Exploded on {op.value}+"
            elif op.type in (OperationType.MINIMUM, OperationType.MAXIMUM):
                affected = self._clamp(dice, op)
                description = f"{'Minimum' if op.type is OperationType.MINIMUM else 'Maximum'} {op.value} per die"
            else:
                affected = self._keep_drop(dice, op)
                description = f"{op.type.value.replace('_', ' ').capitalize()} {op.value}"

            applied.append(AppliedOperation(
                type=op.type,
                value=op.value,
                original_rolls=before,
                final_rolls=[d.value for d in dice],
                affected_indices=affected,
                description=description,
            ))

        total = sum(d.value for d in dice if not d.dropped) + parsed.modifier
        return DiceRoll(
            expression=expression,
            label=label,
            dice=[d.to_result() for d in dice],
            operations=applied,
            modifier=parsed.modifier,
            total=total,
            notes=notes,
        )

    def _draw(self, draw: RandomSource, sides: int, deadline: float | None) -> int:
        if deadline is not None and self._clock() > deadline:
            raise RollTimeoutError("Roll exceeded its execution time limit")
        value = draw(sides)
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= sides:
            raise RollEngineError(
                f"Random source returned {value!r} for a d{sides}",
                code=INVALID_RANDOM_VALUE,
                context={"sides": sides, "value": value},
            )
        return value

    def _reroll(self, dice: List[_Die], op: Operation, draw: RandomSource, deadline) -> List[int]:
        targets = set(op.values())
        affected = []
        for die in dice:
            if die.dropped or die.value not in targets:
                continue
            attempts = 0
            while die.value in targets:
                die.value = self._draw(draw, die.sides, deadline)
                die.rolls.append(die.value)
                attempts += 1
                if not op.recursive or attempts >= self.explode_cap:
                    break
            die.natural = die.value
            die.rerolled = True
            affected.append(die.index)
        return affected

    def _explode(self, dice: List[_Die], op: Operation, draw: RandomSource, deadline, notes: List[str]) -> List[int]:
        affected = []
        i = 0
        while i < len(dice):
            if dice[i].value >= op.value:
                if len(dice) >= self.explode_cap:
                    notes.append(f"Explosions stopped at the {self.explode_cap} dice cap")
                    logger.info("Exploding roll hit the %d dice cap", self.explode_cap)
                    break
                face = self._draw(draw, dice[i].sides, deadline)
                die = _Die(index=len(dice), sides=dice[i].sides, value=face, rolls=[face], natural=face, exploded=True)
                dice.append(die)
                affected.append(die.index)
            i += 1
        return affected

    def _keep_drop(self, dice: List[_Die], op: Operation) -> List[int]:
        active = [d for d in dice if not d.dropped]
        amount = min(op.value, len(active))
        highest_first = sorted(active, key=lambda d: (-d.value, d.index))
        lowest_first = sorted(active, key=lambda d: (d.value, d.index))

        if op.type is OperationType.KEEP_HIGHEST:
            to_drop = highest_first[amount:]
        elif op.type is OperationType.KEEP_LOWEST:
            to_drop = lowest_first[amount:]
        elif op.type is OperationType.DROP_HIGHEST:
            to_drop = highest_first[:amount]
        else:
            to_drop = lowest_first[:amount]

        for die in to_drop:
            die.dropped = True
        return sorted(d.index for d in to_drop)

    def _clamp(self, dice: List[_Die], op: Operation) -> List[int]:
        affected = []
        for die in dice:
            if die.dropped:
                continue
            if op.type is OperationType.MINIMUM and die.value < op.value:
                die.value = op.value
            elif op.type is OperationType.MAXIMUM and die.value > op.value:
                die.value = op.value
            else:
                continue
            die.clamped = True
            affected.append(die.index)
        return affected
