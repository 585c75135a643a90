from rollengine.config.settings import settings
from rollengine.core.exceptions import (
    RollEngineError,
    DiceParseError,
    ModifierError,
    RollTimeoutError,
)
from rollengine.core.parser import DiceParser, dice_parser
from rollengine.core.roller import DiceRoller, RandomSource, make_rng
from rollengine.core.resolver import ModifierResolver
from rollengine.core.roll_log import RollLog
from rollengine.core.roll_engine import RollEngine
from rollengine.core.roll_controller import RollController
from rollengine.models import CriticalRules


def initialize_roll_controller(
    rules: CriticalRules | None = None,
    rng: RandomSource | None = None,
) -> RollController:
    """Instantiate all roll components from settings and return the RollController."""

    # Initialize core systems
    parser = DiceParser(
        max_dice=settings.max_dice,
        max_sides=settings.max_sides,
        max_modifier=settings.max_modifier,
    )
    resolver = ModifierResolver(
        parser=parser,
        enable_homebrew=settings.enable_homebrew,
        auto_resolve_abilities=settings.auto_resolve_abilities,
        auto_resolve_proficiency=settings.auto_resolve_proficiency,
    )
    engine = RollEngine(
        rules=rules or CriticalRules.from_settings(settings),
        parser=parser,
        roller=DiceRoller(rng=rng, explode_cap=settings.explode_cap),
        resolver=resolver,
        roll_log=RollLog(limit=settings.history_limit),
        rng=rng,
    )
    # Create and return the roll controller
    return RollController(engine=engine, gate_damage_on_hit=settings.gate_damage_on_hit)

__all__ = [
    'RollEngineError',
    'DiceParseError',
    'ModifierError',
    'RollTimeoutError',
    'DiceParser',
    'dice_parser',
    'DiceRoller',
    'RandomSource',
    'make_rng',
    'ModifierResolver',
    'RollLog',
    'RollEngine',
    'RollController',
    'initialize_roll_controller'
]
