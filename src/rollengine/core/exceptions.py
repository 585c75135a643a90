from typing import Any, Dict

# ============================================================
# ROLL ENGINE EXCEPTIONS
# ============================================================

DICE_PARSE_ERROR = "DICE_PARSE_ERROR"
MODIFIER_ERROR = "MODIFIER_ERROR"
TIMEOUT = "TIMEOUT"
INVALID_RANDOM_VALUE = "INVALID_RANDOM_VALUE"


class RollEngineError(Exception):
    """Base exception for roll engine failures. `code` is stable for programmatic handling."""
    code = "ROLL_ENGINE_ERROR"

    def __init__(self, message: str, code: str | None = None, context: Dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context or {}


class DiceParseError(RollEngineError):
    """Dice notation could not be parsed"""
    code = DICE_PARSE_ERROR

    def __init__(self, expression: str, reason: str):
        super().__init__(
            f"Invalid dice expression '{expression}': {reason}",
            context={"expression": expression, "reason": reason},
        )
        self.expression = expression
        self.reason = reason


class ModifierError(RollEngineError):
    """A modifier could not be resolved or applied"""
    code = MODIFIER_ERROR

    def __init__(self, modifier_id: str, reason: str):
        super().__init__(
            f"Modifier '{modifier_id}' skipped: {reason}",
            context={"modifier_id": modifier_id, "reason": reason},
        )
        self.modifier_id = modifier_id
        self.reason = reason


class RollTimeoutError(RollEngineError):
    """A roll ran past max_execution_time"""
    code = TIMEOUT
