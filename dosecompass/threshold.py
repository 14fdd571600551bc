# dosecompass/threshold.py
from __future__ import annotations

from typing import Dict, List, Sequence
import logging

from .history import join_history
from .models import (
    CheckIn,
    DoseLog,
    DoseResponse,
    ThresholdPoint,
    ThresholdPoints,
    ThresholdRange,
)

logger = logging.getLogger(__name__)


# ----------------------------
# Tunable constants
# ----------------------------

MIN_BATCH_DOSES = 5
MIN_LINKED_CHECKINS = 5

MIN_EFFECT_OUTCOME = 3.0    # lowest mean outcome that counts as "effective"
DEGRADATION_MARGIN = 1.0    # drop from the sweet-spot mean that marks the ceiling

CONFIDENCE_BASE = 20
CONFIDENCE_PER_SAMPLE = 16

NEED_DOSES_MESSAGE = (
    "Log at least {need} doses from this batch to estimate your range ({have} so far)."
)
NEED_CHECKINS_MESSAGE = (
    "You have enough doses from this batch, but only {have} check-ins linked to them. "
    "Check in after {need} or more doses to estimate your range."
)
RANGE_MESSAGE = "Based on {checkins} check-ins across {doses} doses from this batch."


def point_confidence(count: int) -> int:
    return int(min(100, CONFIDENCE_BASE + CONFIDENCE_PER_SAMPLE * count))


def dose_response(outcomes_by_amount: Dict[float, List[float]]) -> List[DoseResponse]:
    return [
        DoseResponse(dose=amount, mean_outcome=sum(vals) / len(vals), count=len(vals))
        for amount, vals in sorted(outcomes_by_amount.items())
    ]


def pick_sweet(rows: Sequence[DoseResponse]) -> DoseResponse:
    # Best mean; ties prefer more evidence, then less substance.
    return min(rows, key=lambda r: (-r.mean_outcome, -r.count, r.dose))


def pick_low(rows: Sequence[DoseResponse]) -> DoseResponse:
    for r in rows:
        if r.mean_outcome >= MIN_EFFECT_OUTCOME:
            return r
    return rows[0]


def pick_high(rows: Sequence[DoseResponse], sweet: DoseResponse) -> DoseResponse:
    """Last amount at or above the sweet spot before outcomes degrade past the margin."""
    high = sweet
    for r in rows:
        if r.dose <= sweet.dose:
            continue
        if sweet.mean_outcome - r.mean_outcome > DEGRADATION_MARGIN:
            break
        high = r
    return high


def _point(r: DoseResponse) -> ThresholdPoint:
    return ThresholdPoint(dose=r.dose, confidence=point_confidence(r.count))


def calculate_threshold_range(doses: Sequence[DoseLog], check_ins: Sequence[CheckIn], batch_id: str) -> ThresholdRange:
    """
    Low / sweet-spot / high amounts for one batch.
    Check-ins are joined against every supplied dose before the batch filter,
    so an unlinked check-in following another batch's dose is not misattributed.
    """
    observations = [o for o in join_history(doses, check_ins) if o.dose.batch_id == batch_id]

    if len(observations) < MIN_BATCH_DOSES:
        logger.debug("threshold %s: %d doses, abstaining", batch_id, len(observations))
        return ThresholdRange(
            range=None,
            message=NEED_DOSES_MESSAGE.format(need=MIN_BATCH_DOSES, have=len(observations)),
        )

    linked = sum(len(o.check_ins) for o in observations)
    if linked < MIN_LINKED_CHECKINS:
        logger.debug("threshold %s: %d linked check-ins, abstaining", batch_id, linked)
        return ThresholdRange(
            range=None,
            message=NEED_CHECKINS_MESSAGE.format(need=MIN_LINKED_CHECKINS, have=linked),
        )

    outcomes_by_amount: Dict[float, List[float]] = {}
    for o in observations:
        if o.outcome is None:
            continue
        outcomes_by_amount.setdefault(o.dose.amount, []).append(o.outcome)

    rows = dose_response(outcomes_by_amount)
    sweet = pick_sweet(rows)
    low = pick_low(rows)
    high = pick_high(rows, sweet)

    return ThresholdRange(
        range=ThresholdPoints(low=_point(low), sweet=_point(sweet), high=_point(high)),
        message=RANGE_MESSAGE.format(checkins=linked, doses=len(observations)),
        dose_response=tuple(rows),
    )
