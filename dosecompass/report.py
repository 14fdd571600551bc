# dosecompass/report.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import datetime as dt

from .carryover import calculate_carryover, recent_doses
from .models import Batch, CarryoverResult, CheckIn, DoseLog, Pattern, ThresholdRange, User
from .patterns import detect_patterns
from .threshold import calculate_threshold_range

NO_BATCH_MESSAGE = "Select a batch to estimate your range."


@dataclass
class AnalyticsReport:
    carryover: CarryoverResult
    patterns: List[Pattern]
    threshold: ThresholdRange
    batch_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carryover": self.carryover.to_dict(),
            "patterns": [p.to_dict() for p in self.patterns],
            "threshold": self.threshold.to_dict(),
            "batch_id": self.batch_id,
        }


def pick_batch(batches: Sequence[Batch]) -> Optional[Batch]:
    """The active batch; when several are active, the one with the most logged doses."""
    active = [b for b in batches if b.is_active]
    if not active:
        return None
    return min(active, key=lambda b: (-b.doses_logged, b.id))


def build_report(
    user: User,
    doses: Sequence[DoseLog],
    check_ins: Sequence[CheckIn],
    batch_id: Optional[str] = None,
    now: Optional[dt.datetime] = None,
) -> AnalyticsReport:
    """
    Run the three components in the order the app does, applying the
    host-side preconditions: the 14-day carryover window and the per-batch
    dose gate (handled inside calculate_threshold_range).
    """
    carryover = calculate_carryover(recent_doses(doses, now=now), user, now=now)
    patterns = detect_patterns(user, doses, check_ins)
    if batch_id is None:
        threshold = ThresholdRange(range=None, message=NO_BATCH_MESSAGE)
    else:
        threshold = calculate_threshold_range(doses, check_ins, batch_id)
    return AnalyticsReport(carryover=carryover, patterns=patterns, threshold=threshold, batch_id=batch_id)
