from pydantic_settings import BaseSettings
from pathlib import Path
from typing import List

class Settings(BaseSettings):
    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None
    enable_color: bool = True

    # Parser limits
    max_dice: int = 100
    max_sides: int = 1000
    max_modifier: int = 10000

    # Roller / engine guards
    explode_cap: int = 100                  # Total dice an exploding roll may reach
    max_execution_time: float = 5.0         # Seconds before an execute_roll call is aborted
    history_limit: int = 100                # Entries kept in the roll log

    # Critical hit rules
    crit_range: List[int] = [20]
    crit_failure_range: List[int] = [1]
    crit_damage_strategy: str = "double_dice"
    crit_affected_dice: str = "weapon_only"
    crit_additional_dice: str | None = None

    # Modifier resolution
    enable_homebrew: bool = True
    auto_resolve_abilities: bool = True
    auto_resolve_proficiency: bool = True

    # House rules
    gate_damage_on_hit: bool = False        # Skip damage when the attack misses

    class Config:
        env_file = ".env"
        env_prefix = "ROLL_"

settings = Settings()
