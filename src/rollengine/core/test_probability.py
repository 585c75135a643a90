"""
Range estimates versus what the roller actually produces.
"""

import pytest

from rollengine.core.parser import dice_parser
from rollengine.core.probability import combine, estimate_dice, face_distribution, scale
from rollengine.core.roller import DiceRoller, make_rng
from rollengine.models import EstimatedRange


def estimate(notation, **kwargs):
    return estimate_dice(dice_parser.parse_expression(notation), **kwargs)


def test_simple_ranges():
    result = estimate("1d20+5")
    assert (result.min, result.max, result.average) == (6, 25, 15.5)

    result = estimate("2d6")
    assert (result.min, result.max, result.average) == (2, 12, 7.0)
    print("✓ Plain dice ranges exact")


def test_flat_number():
    result = estimate("4")
    assert (result.min, result.max, result.average) == (4, 4, 4.0)


def test_advantage_average():
    """E[max of 2d20] = 13.825"""
    assert estimate("2d20kh1").average == pytest.approx(13.82, abs=0.01)
    assert estimate("2d20kl1").average == pytest.approx(7.17, abs=0.01)


def test_four_d_six_drop_lowest():
    result = estimate("4d6dl1")
    assert (result.min, result.max) == (3, 18)
    assert result.average == pytest.approx(12.24, abs=0.01)


def test_reroll_distribution():
    """Rerolling 1s once lifts a d6 from 3.5 to 3.92."""
    dist = face_distribution(dice_parser.parse_expression("1d6r1").parsed)
    assert sum(dist.values()) == pytest.approx(1.0)
    assert estimate("2d6r1").average == pytest.approx(7.83, abs=0.01)


def test_recursive_reroll_never_shows_target():
    dist = face_distribution(dice_parser.parse_expression("1d6rr1").parsed)
    assert 1 not in dist
    assert estimate("1d6rr1").average == pytest.approx(4.0)


def test_clamped_ranges():
    result = estimate("2d6min3")
    assert result.min == 6
    assert result.max == 12


def test_explode_respects_cap():
    result = estimate("1d1!", explode_cap=100)
    assert result.min == result.max == 100
    assert estimate("1d6!").average == pytest.approx(4.2, abs=0.01)


def test_combine_and_scale():
    total = combine(EstimatedRange(min=1, max=8, average=4.5), EstimatedRange(min=3, max=3, average=3))
    assert (total.min, total.max, total.average) == (4, 11, 7.5)

    halved = scale(total, divider=2)
    assert (halved.min, halved.max) == (2, 5)
    doubled = scale(total, multiplier=2)
    assert (doubled.min, doubled.max, doubled.average) == (8, 22, 15.0)


@pytest.mark.parametrize("notation", ["2d6+3", "4d6dl1", "2d20kh1+5", "3d8r1", "4d6min2max5"])
def test_rolled_totals_converge_on_estimate(notation):
    """Every total stays inside [min, max]; the sample mean lands near the average."""
    expression = dice_parser.parse_expression(notation)
    expected = estimate_dice(expression)
    roller = DiceRoller(rng=make_rng(2024))

    totals = [roller.roll(expression).total for _ in range(4000)]
    assert min(totals) >= expected.min
    assert max(totals) <= expected.max
    assert sum(totals) / len(totals) == pytest.approx(expected.average, abs=0.35)
