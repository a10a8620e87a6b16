"""
Per-phase and per-run result tracking.
"""

import time
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any

from ..core.exceptions import SyncDeadlineExceeded

# Errors kept per phase; the rest are only logged
MAX_RECORDED_ERRORS = 50

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_ABORTED = "aborted"
STATUS_SKIPPED = "skipped"


@dataclass
class PhaseResult:
    """Counters for one sync phase."""
    name: str
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    status: str = STATUS_RUNNING
    error: Optional[str] = None

    def record_failure(self, item: str, exc: Exception) -> None:
        self.failed += 1
        if len(self.errors) < MAX_RECORDED_ERRORS:
            self.errors.append(f"{item}: {exc}")

    def complete(self) -> 'PhaseResult':
        self.status = STATUS_COMPLETED
        return self

    def summary(self) -> str:
        return (
            f"{self.name}: {self.status} - processed={self.processed} created={self.created} "
            f"updated={self.updated} skipped={self.skipped} failed={self.failed}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncReport:
    """Outcome of one full run."""
    started_at: str
    finished_at: Optional[str] = None
    phases: List[PhaseResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.phases) and all(p.status == STATUS_COMPLETED for p in self.phases)

    def phase(self, name: str) -> Optional[PhaseResult]:
        for result in self.phases:
            if result.name == name:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'success': self.success,
            'phases': [p.to_dict() for p in self.phases],
        }


class Deadline:
    """Wall-clock budget for a run. None means unlimited."""

    def __init__(self, seconds: Optional[float] = None, clock=time.monotonic):
        self._clock = clock
        self.expires_at = clock() + seconds if seconds else None

    def expired(self) -> bool:
        return self.expires_at is not None and self._clock() >= self.expires_at

    def check(self, result: PhaseResult) -> None:
        """Abort the phase owning `result` if the budget is spent."""
        if self.expired():
            result.status = STATUS_ABORTED
            result.error = "run deadline exceeded"
            raise SyncDeadlineExceeded(result)


def check_deadline(deadline: Optional[Deadline], result: PhaseResult) -> None:
    if deadline is not None:
        deadline.check(result)
