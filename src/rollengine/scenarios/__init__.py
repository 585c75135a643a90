from rollengine.scenarios.sample_party import (
    RAPIER,
    LONGSWORD,
    create_rogue_context,
    create_fighter_context,
    create_warlock_context,
)

__all__ = [
    'RAPIER',
    'LONGSWORD',
    'create_rogue_context',
    'create_fighter_context',
    'create_warlock_context'
]
