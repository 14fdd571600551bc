# dosecompass/carryover.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import datetime as dt
import logging
import math

from .models import (
    TIER_CLEAR,
    TIER_HIGH,
    TIER_MILD,
    TIER_MODERATE,
    CarryoverResult,
    DoseLog,
    User,
    as_utc,
)

logger = logging.getLogger(__name__)


# ----------------------------
# Tunable constants
# ----------------------------

CARRYOVER_WINDOW_DAYS = 14

ACTIVE_HALF_LIFE_HOURS = 24.0      # ~0.125 of a dose left after 72h
TOLERANCE_HALF_LIFE_HOURS = 48.0   # slow tail, negligible by 14 days
TOLERANCE_TAIL_WEIGHT = 0.15

# One typical microdose per unit of load.
TYPICAL_MICRODOSE: Dict[str, float] = {
    "psilocybin": 100.0,  # mg, typical range 50-200
    "lsd": 10.0,          # ug, typical range 5-20
}
DEFAULT_MICRODOSE = 100.0

SENSITIVITY_STEP = 0.10           # per point away from 3, per trait
CAFFEINE_SENSITIVITY_STEP = 0.05  # per point above 1

LOAD_SATURATION = 1.5             # score = 100 * (1 - exp(-load / LOAD_SATURATION))

# Tier contract points: score < threshold -> tier
TIER_THRESHOLDS = (
    (25.0, TIER_CLEAR),
    (50.0, TIER_MILD),
    (75.0, TIER_MODERATE),
)

MULTIPLIER_FLOOR = 0.5

RECOMMENDATIONS: Dict[str, str] = {
    TIER_CLEAR: "Clear to proceed. Carryover from recent doses is minimal.",
    TIER_MILD: "Mild carryover. A dose today may register slightly softer than usual.",
    TIER_MODERATE: "Consider waiting. Moderate carryover will blunt a dose taken now.",
    TIER_HIGH: "Consider waiting. Carryover is high; a rest day is recommended.",
}


# ----------------------------
# Helpers
# ----------------------------

def _clip(x: float, lo: float, hi: float) -> float:
    return lo if x < lo else hi if x > hi else x


def _now_utc(now: Optional[dt.datetime]) -> dt.datetime:
    return as_utc(now) if now is not None else dt.datetime.now(dt.timezone.utc)


def _linspace_datetimes(start: dt.datetime, end: dt.datetime, step_hours: float) -> List[dt.datetime]:
    out = []
    cur = start
    step = dt.timedelta(hours=step_hours)
    while cur <= end:
        out.append(cur)
        cur += step
    return out


def _half_life_decay(hours: float, half_life_hours: float) -> float:
    lam = math.log(2) / max(half_life_hours, 1e-6)
    return math.exp(-lam * hours)


def decay_kernel(elapsed_hours: float) -> float:
    """
    Share of a dose still contributing after elapsed_hours.
    1.0 at the moment of dosing; 0 in the future and past the 14-day window.
    """
    if elapsed_hours < 0 or elapsed_hours > CARRYOVER_WINDOW_DAYS * 24:
        return 0.0
    active = _half_life_decay(elapsed_hours, ACTIVE_HALF_LIFE_HOURS)
    tail = _half_life_decay(elapsed_hours, TOLERANCE_HALF_LIFE_HOURS)
    return (1.0 - TOLERANCE_TAIL_WEIGHT) * active + TOLERANCE_TAIL_WEIGHT * tail


def reference_amount(substance: Optional[str]) -> float:
    return TYPICAL_MICRODOSE.get(str(substance or "").strip().lower(), DEFAULT_MICRODOSE)


def personal_multiplier(user: User) -> float:
    s = user.sensitivity
    m = 1.0
    m += SENSITIVITY_STEP * (s.body_awareness - 3)
    m += SENSITIVITY_STEP * (s.emotional_reactivity - 3)
    return max(m, 0.1)


def _had_caffeine(d: DoseLog) -> bool:
    if d.caffeine_mg is not None and d.caffeine_mg > 0:
        return True
    timing = str(d.caffeine_timing or "").strip().lower()
    return timing not in ("", "none")


def _caffeine_multiplier(d: DoseLog, user: User) -> float:
    if not _had_caffeine(d):
        return 1.0
    return 1.0 + CAFFEINE_SENSITIVITY_STEP * (user.sensitivity.caffeine - 1)


def carryover_load(history: Sequence[DoseLog], user: User, now: dt.datetime) -> float:
    """Aggregate weighted, decayed load (in typical-dose units) at `now`."""
    if not history:
        return 0.0
    now = as_utc(now)
    ref = reference_amount(user.primary_substance)
    personal = personal_multiplier(user)
    # Fixed summation order keeps the result independent of input order.
    ordered = sorted(history, key=lambda d: (as_utc(d.timestamp), d.id))
    total = 0.0
    for d in ordered:
        elapsed_h = (now - as_utc(d.timestamp)).total_seconds() / 3600.0
        k = decay_kernel(elapsed_h)
        if k <= 0.0:
            continue
        total += (d.amount / ref) * k * personal * _caffeine_multiplier(d, user)
    return total


def score_for_load(load: float) -> float:
    if load <= 0:
        return 0.0
    score = 100.0 * (1.0 - math.exp(-load / LOAD_SATURATION))
    return round(_clip(score, 0.0, 100.0), 2)


def tier_for_score(score: float) -> str:
    for threshold, tier in TIER_THRESHOLDS:
        if score < threshold:
            return tier
    return TIER_HIGH


def multiplier_for_score(score: float) -> float:
    """1.0 at score 0, falling linearly to MULTIPLIER_FLOOR at 100."""
    s = _clip(score, 0.0, 100.0)
    return 1.0 - (1.0 - MULTIPLIER_FLOOR) * (s / 100.0)


def result_for_score(score: float) -> CarryoverResult:
    tier = tier_for_score(score)
    return CarryoverResult(
        score=score,
        tier=tier,
        recommendation=RECOMMENDATIONS[tier],
        effective_dose_multiplier=multiplier_for_score(score),
    )


# ----------------------------
# Public API
# ----------------------------

def recent_doses(doses: Sequence[DoseLog], now: Optional[dt.datetime] = None, days: int = CARRYOVER_WINDOW_DAYS) -> List[DoseLog]:
    """Host-side window filter: doses in the trailing `days`, newest first."""
    now_u = _now_utc(now)
    start = now_u - dt.timedelta(days=days)
    out = [d for d in doses if start <= as_utc(d.timestamp) <= now_u]
    out.sort(key=lambda d: (as_utc(d.timestamp), d.id), reverse=True)
    return out


def calculate_carryover(history: Sequence[DoseLog], user: User, now: Optional[dt.datetime] = None) -> CarryoverResult:
    """
    Residual load from recent doses.
    `history` is expected to hold the trailing 14 days, newest first; older
    doses are ignored by the kernel rather than rejected.
    """
    now_u = _now_utc(now)
    load = carryover_load(history, user, now_u)
    result = result_for_score(score_for_load(load))
    logger.debug("carryover: %d doses, load=%.4f, score=%.2f, tier=%s", len(history), load, result.score, result.tier)
    return result


def effective_dose(amount: float, carryover: CarryoverResult) -> float:
    return amount * carryover.effective_dose_multiplier


@dataclass
class CarryoverProjection:
    t: List[dt.datetime]
    score: List[float]
    tier: List[str]
    clear_at: Optional[dt.datetime]   # first grid point back in the clear tier


def project_carryover(
    history: Sequence[DoseLog],
    user: User,
    now: Optional[dt.datetime] = None,
    horizon_hours: float = 72.0,
    step_hours: float = 1.0,
) -> CarryoverProjection:
    """
    Carryover score on a time grid from `now` to `now + horizon_hours`,
    assuming no further doses.
    """
    start = _now_utc(now)
    t_grid = _linspace_datetimes(start, start + dt.timedelta(hours=horizon_hours), step_hours)

    scores: List[float] = []
    tiers: List[str] = []
    clear_at: Optional[dt.datetime] = None
    for t in t_grid:
        s = score_for_load(carryover_load(history, user, t))
        tier = tier_for_score(s)
        scores.append(s)
        tiers.append(tier)
        if clear_at is None and tier == TIER_CLEAR:
            clear_at = t

    return CarryoverProjection(t=t_grid, score=scores, tier=tiers, clear_at=clear_at)
