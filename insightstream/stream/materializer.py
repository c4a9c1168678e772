"""InsightStream: Row Materializer & Progress."""

import re
from typing import Callable, List, Optional

from insightstream.models.entities import Buffer, Entity, KindPolicy, Progress, Row

KEY_SEPARATOR = "__"
_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T")

ProgressListener = Callable[[Progress], None]


def bucket_date(key: str) -> str:
    """Recover the date of a bucket key.

    ``2020-01-01T08:00:00+0000__mobile`` -> ``2020-01-01``; non-timestamp
    prefixes such as ``lifetime`` are returned as they are.
    """
    date = key.split(KEY_SEPARATOR, 1)[0]
    if _TIMESTAMP_RE.match(date):
        return date[:10]
    return date


def materialize(buffer: Buffer, entity: Entity, policy: KindPolicy) -> List[Row]:
    """One flat row per bucket of the entity's buffer."""
    rows: List[Row] = []
    for key, cells in buffer.items():
        row: Row = {
            "date": bucket_date(key),
            policy.id_column: entity.id,
            policy.name_column: entity.name,
        }
        row.update(cells)
        if policy.carries_created_time:
            row["created_time"] = entity.created_time
        rows.append(row)
    return rows


class ProgressTracker:
    """Counts completed entities and notifies listeners."""

    def __init__(self, kind: str, total: int = 0):
        self.kind = kind
        self.total = total
        self.loaded = 0
        self.last: Optional[Progress] = None
        self._listeners: List[ProgressListener] = []

    def subscribe(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def start(self, total: int) -> None:
        self.total = total
        self.loaded = 0

    def advance(self) -> Progress:
        self.loaded += 1
        remaining = self.total - self.loaded
        self.last = Progress(
            total=self.total,
            loaded=self.loaded,
            message=f"{remaining} {self.kind}s remaining",
        )
        for listener in self._listeners:
            listener(self.last)
        return self.last
