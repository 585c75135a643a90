from datetime import datetime, timezone
from typing import Dict, List
from pydantic import BaseModel, Field, model_validator

from rollengine.models.dice import DiceExpression
from rollengine.models.schemas import BreakdownType, ModifierType, OperationType, RollType

# ============================================================
# ROLLER OUTPUT
# ============================================================

class DieResult(BaseModel):
    index: int
    sides: int
    value: int                              # Face counted towards the total (after clamps)
    natural: int                            # Face before clamps, after rerolls
    rolls: List[int]                        # Every face this die showed, in order
    rerolled: bool = False
    exploded: bool = False                  # Added by an explosion
    dropped: bool = False
    clamped: bool = False

    @property
    def original(self) -> int:
        return self.rolls[0]

class AppliedOperation(BaseModel):
    type: OperationType
    value: int | List[int]
    original_rolls: List[int]
    final_rolls: List[int]
    affected_indices: List[int]
    description: str

class DiceRoll(BaseModel):
    expression: DiceExpression
    label: str | None = None
    dice: List[DieResult]
    operations: List[AppliedOperation] = []
    modifier: int = 0
    total: int
    notes: List[str] = []

    @property
    def kept(self) -> List[DieResult]:
        return [d for d in self.dice if not d.dropped]

# ============================================================
# RESULT BREAKDOWN
# ============================================================

class BreakdownDetails(BaseModel):
    original_roll: int | None = None
    sides: int | None = None
    source: str | None = None
    rerolled: bool = False
    dropped: bool = False
    exploded: bool = False
    rolls: List[int] = []
    is_flat_number: bool = False

class RollBreakdown(BaseModel):
    type: BreakdownType
    label: str
    value: int
    details: BreakdownDetails = Field(default_factory=BreakdownDetails)

class RollMetadata(BaseModel):
    roll_id: str
    definition_id: str
    name: str = ""
    roll_type: RollType
    label: str | None = None
    expression: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    modifiers_applied: List[str] = []
    advantage: bool = False
    disadvantage: bool = False
    critical_range: List[int] = []
    notes: List[str] = []
    execution_ms: float = 0.0

class RollResult(BaseModel):
    """Fully itemized result. total is the sum of every non-dropped breakdown line."""
    total: int
    breakdown: List[RollBreakdown]
    critical_success: bool = False
    critical_failure: bool = False
    success: bool | None = None
    target_number: int | None = None
    natural_roll: int | None = None
    additional_results: List["RollResult"] | None = None
    multi_results: List["RollResult"] | None = None
    metadata: RollMetadata

    @model_validator(mode="after")
    def _check_breakdown(self):
        if not self.breakdown:
            raise ValueError("breakdown must not be empty")
        counted = sum(item.value for item in self.breakdown if not item.details.dropped)
        if counted != self.total:
            raise ValueError(f"total {self.total} does not match breakdown sum {counted}")
        return self

    def items(self, item_type: BreakdownType) -> List[RollBreakdown]:
        return [item for item in self.breakdown if item.type is item_type]

class AttackDamageResult(BaseModel):
    attack_result: RollResult
    damage_result: RollResult | None = None

# ============================================================
# PRE-ROLL PREVIEW
# ============================================================

class EstimatedRange(BaseModel):
    min: int
    max: int
    average: float

class ActiveCondition(BaseModel):
    id: str
    name: str
    type: ModifierType
    description: str = ""

class PreRollInfo(BaseModel):
    """Advisory snapshot. Built without random draws."""
    definition_id: str
    breakdown: List[RollBreakdown]
    conditions: List[ActiveCondition] = []
    estimated_range: EstimatedRange
    label_ranges: Dict[str, EstimatedRange] = {}
    critical_range: List[int] = []
    critical_failure_range: List[int] = []
    notes: List[str] = []

# ============================================================
# ROLL LOG
# ============================================================

class RollLogEntry(BaseModel):
    id: str
    timestamp: datetime
    result: RollResult

class RollStats(BaseModel):
    total_rolls: int = 0
    critical_hits: int = 0
    critical_failures: int = 0
    average_roll: float = 0.0
