"""
leadflow/services/results.py — Uniform summary returned by every sweep.

One item's failure never aborts a sweep: it is recorded as an ItemError and
the sweep moves on to the next item.
"""

import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class ItemError:
    item_id: Any
    kind: str          # "transient" | "permanent" | "consistency" | "unexpected"
    message: str


@dataclass
class SweepResult:
    name: str
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[ItemError] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)
    stopped_early: bool = False

    def record_error(self, item_id: Any, kind: str, message: str) -> None:
        self.failed += 1
        self.errors.append(ItemError(item_id=item_id, kind=kind, message=message))

    def bump(self, key: str, n: int = 1) -> None:
        self.meta[key] = self.meta.get(key, 0) + n

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def stop_requested(stop_event: Optional[threading.Event]) -> bool:
    """True once a worker has been asked to stop; checked between items."""
    return stop_event is not None and stop_event.is_set()
