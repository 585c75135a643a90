"""
Closed-form range estimates for parsed dice, used by the pre-roll preview.

Nothing here draws random numbers. Per-die face distributions are built
from the reroll operations, kept dice are handled with order statistics,
and clamps are applied to each kept order statistic. Exploding dice use
the geometric expectation bounded by the explode cap.
"""

from math import comb, floor
from typing import Dict, List, Tuple

from rollengine.models import DiceExpression, EstimatedRange, OperationType, ParsedDice

Distribution = Dict[int, float]

_KEEP_DROP = (
    OperationType.KEEP_HIGHEST,
    OperationType.KEEP_LOWEST,
    OperationType.DROP_HIGHEST,
    OperationType.DROP_LOWEST,
)


def face_distribution(parsed: ParsedDice) -> Distribution:
    """Distribution of a single die's face after every reroll operation."""
    uniform = {face: 1 / parsed.sides for face in range(1, parsed.sides + 1)}
    dist = dict(uniform)
    for op in parsed.operations:
        if op.type is not OperationType.REROLL:
            continue
        targets = set(op.values())
        hit = sum(p for face, p in dist.items() if face in targets)
        fresh_hit = sum(p for face, p in uniform.items() if face in targets)
        if op.recursive and fresh_hit >= 1:
            continue
        rerolled = {}
        for face, p in uniform.items():
            if op.recursive:
                # Rerolling until clear leaves the fresh draw conditioned on missing the targets
                fresh = 0.0 if face in targets else p / (1 - fresh_hit)
            else:
                fresh = p
            kept = 0.0 if face in targets else dist.get(face, 0.0)
            rerolled[face] = kept + hit * fresh
        dist = rerolled
    return {face: p for face, p in dist.items() if p > 0}


def _clamp_bounds(parsed: ParsedDice) -> Tuple[int | None, int | None]:
    floors = [op.value for op in parsed.operations if op.type is OperationType.MINIMUM]
    ceilings = [op.value for op in parsed.operations if op.type is OperationType.MAXIMUM]
    return (max(floors) if floors else None, min(ceilings) if ceilings else None)


def _clamp(value: int, low: int | None, high: int | None) -> int:
    if low is not None and value < low:
        value = low
    if high is not None and value > high:
        value = high
    return value


def _kept_ranks(parsed: ParsedDice, pool: int) -> List[int]:
    """Ranks (0 = lowest) that survive the keep/drop operations for a pool of `pool` dice."""
    ranks = list(range(pool))
    for op in parsed.operations:
        if op.type not in _KEEP_DROP:
            continue
        amount = min(op.value, len(ranks))
        if op.type is OperationType.KEEP_HIGHEST:
            ranks = ranks[len(ranks) - amount:]
        elif op.type is OperationType.KEEP_LOWEST:
            ranks = ranks[:amount]
        elif op.type is OperationType.DROP_HIGHEST:
            ranks = ranks[:len(ranks) - amount]
        else:
            ranks = ranks[amount:]
    return ranks


def order_statistic_means(dist: Distribution, n: int, ranks: List[int], low=None, high=None) -> float:
    """
    Sum over `ranks` of E[clamp(X_(r))] for n iid dice with face distribution `dist`.

    P(X_(r) <= x) is the chance that at least r+1 of the n dice show x or less.
    """
    faces = sorted(dist)
    wanted = set(ranks)
    previous = {r: 0.0 for r in wanted}
    cumulative = 0.0
    total = 0.0
    for face in faces:
        cumulative = min(1.0, cumulative + dist[face])
        pmf = [comb(n, k) * cumulative ** k * (1 - cumulative) ** (n - k) for k in range(n + 1)]
        tail = 0.0
        at_most = {}
        for k in range(n, -1, -1):
            tail += pmf[k]
            if k - 1 in wanted:
                at_most[k - 1] = tail
        for r in wanted:
            total += _clamp(face, low, high) * (at_most[r] - previous[r])
            previous[r] = at_most[r]
    return total


def estimate_dice(expression: DiceExpression, explode_cap: int = 100) -> EstimatedRange:
    """min/max/average of one parsed segment, flat modifier included."""
    parsed = expression.parsed
    dist = face_distribution(parsed)
    low, high = _clamp_bounds(parsed)
    min_face, max_face = min(dist), max(dist)

    explode = next((op for op in parsed.operations if op.type is OperationType.EXPLODE), None)
    if explode is None:
        ranks = _kept_ranks(parsed, parsed.count)
        minimum = len(ranks) * _clamp(min_face, low, high)
        maximum = len(ranks) * _clamp(max_face, low, high)
        if len(ranks) == parsed.count:
            mean = sum(_clamp(face, low, high) * p for face, p in dist.items())
            average = parsed.count * mean
        else:
            average = order_statistic_means(dist, parsed.count, ranks, low, high)
    else:
        trigger = sum(p for face, p in dist.items() if face >= explode.value)
        always = trigger >= 1
        min_pool = explode_cap if min_face >= explode.value else parsed.count
        max_pool = max(explode_cap, parsed.count)
        minimum = len(_kept_ranks(parsed, min_pool)) * _clamp(min_face, low, high)
        maximum = len(_kept_ranks(parsed, max_pool)) * _clamp(max_face, low, high)
        mean = sum(_clamp(face, low, high) * p for face, p in dist.items())
        if always:
            pool = explode_cap
        else:
            pool = min(explode_cap, parsed.count / (1 - trigger))
        if any(op.type in _KEEP_DROP for op in parsed.operations):
            kept = len(_kept_ranks(parsed, int(round(pool))))
        else:
            kept = pool
        average = kept * mean

    return EstimatedRange(
        min=minimum + parsed.modifier,
        max=maximum + parsed.modifier,
        average=round(average + parsed.modifier, 2),
    )


def combine(*ranges: EstimatedRange) -> EstimatedRange:
    return EstimatedRange(
        min=sum(r.min for r in ranges),
        max=sum(r.max for r in ranges),
        average=round(sum(r.average for r in ranges), 2),
    )


def scale(estimate: EstimatedRange, multiplier: float = 1, divider: float = 1) -> EstimatedRange:
    """Apply multipliers then floor-dividers the same way the engine does after rolling."""
    def apply(value):
        return floor(floor(value * multiplier) / divider)
    return EstimatedRange(
        min=apply(estimate.min),
        max=apply(estimate.max),
        average=round(estimate.average * multiplier / divider, 2),
    )
