"""Dice notation, modifier resolution and itemized rolls for tabletop RPGs."""

from rollengine.core import (
    DiceParseError,
    DiceParser,
    ModifierError,
    ModifierResolver,
    RollController,
    RollEngine,
    RollEngineError,
    RollTimeoutError,
    initialize_roll_controller,
)

__version__ = "0.1.0"

__all__ = [
    "DiceParseError",
    "DiceParser",
    "ModifierError",
    "ModifierResolver",
    "RollController",
    "RollEngine",
    "RollEngineError",
    "RollTimeoutError",
    "initialize_roll_controller",
]
