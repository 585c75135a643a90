from collections import deque
from datetime import datetime, timezone
from typing import Iterator, List
from uuid import uuid4

from rollengine.models import RollLogEntry, RollResult, RollStats, RollType


class RollLog:
    """
    Most-recent-first, in-memory record of executed rolls.
    Bounded; the oldest entries fall off once `limit` is reached.
    """

    def __init__(self, limit: int = 100):
        self.limit = limit
        self._entries: deque[RollLogEntry] = deque(maxlen=limit)

    def append(self, result: RollResult) -> RollLogEntry:
        entry = RollLogEntry(
            id=f"log_{uuid4().hex[:8]}",
            timestamp=datetime.now(timezone.utc),
            result=result,
        )
        self._entries.appendleft(entry)
        return entry

    @property
    def entries(self) -> List[RollLogEntry]:
        """Snapshot, newest first. Mutating the list does not touch the log."""
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def last(self, roll_type: RollType | None = None) -> RollResult | None:
        for entry in self._entries:
            if roll_type is None or entry.result.metadata.roll_type is roll_type:
                return entry.result
        return None

    def stats(self) -> RollStats:
        results = [entry.result for entry in self._entries]
        if not results:
            return RollStats()
        return RollStats(
            total_rolls=len(results),
            critical_hits=sum(1 for r in results if r.critical_success),
            critical_failures=sum(1 for r in results if r.critical_failure),
            average_roll=round(sum(r.total for r in results) / len(results), 2),
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RollLogEntry]:
        return iter(self.entries)
