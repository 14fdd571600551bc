# dosecompass/patterns.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import logging

from .history import Observation, join_history
from .models import (
    ANTI_PATTERN,
    BODY_CLUSTER,
    CAFFEINE_TIMING,
    CYCLE_CORRELATION,
    DAY_CLUSTERING,
    ENVIRONMENT_CORRELATION,
    FOOD_CORRELATION,
    SLEEP_CORRELATION,
    CheckIn,
    DoseLog,
    Pattern,
    User,
    as_utc,
)

logger = logging.getLogger(__name__)


# ----------------------------
# Tunable constants
# ----------------------------

MIN_OBSERVATIONS = 8        # per detector, and again in the winning bucket
SIGNIFICANCE_MARGIN = 0.75  # |bucket mean - global mean| on the 1..5 scale
ANTI_PATTERN_MARGIN = 0.75

CONFIDENCE_BASE = 50
CONFIDENCE_PER_EXTRA_SAMPLE = 10
CONFIDENCE_PER_EFFECT_POINT = 10

SLEEP_LOW_BELOW_HOURS = 6.0
SLEEP_HIGH_FROM_HOURS = 8.0

# (last cycle day of phase, phase)
CYCLE_PHASES = (
    (5, "menstrual"),
    (13, "follicular"),
    (16, "ovulatory"),
)
CYCLE_LATE_PHASE = "luteal"

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

DIRECTION_POSITIVE = "positive"
DIRECTION_NEGATIVE = "negative"
DIRECTION_ANY = "any"


# ----------------------------
# Bucketing
# ----------------------------

def _clean(v) -> str:
    return str(v or "").strip().lower()


def _food_buckets(o: Observation, user: User) -> Tuple[str, ...]:
    key = _clean(o.dose.food_state)
    return (key,) if key else ()


def _day_buckets(o: Observation, user: User) -> Tuple[str, ...]:
    return (WEEKDAYS[as_utc(o.dose.timestamp).weekday()],)


def sleep_band(hours: float) -> str:
    if hours < SLEEP_LOW_BELOW_HOURS:
        return "low"
    if hours < SLEEP_HIGH_FROM_HOURS:
        return "medium"
    return "high"


def _sleep_buckets(o: Observation, user: User) -> Tuple[str, ...]:
    if o.dose.sleep_hours is None:
        return ()
    return (sleep_band(o.dose.sleep_hours),)


def _environment_buckets(o: Observation, user: User) -> Tuple[str, ...]:
    key = _clean(o.dose.environment)
    return (key,) if key else ()


def _caffeine_buckets(o: Observation, user: User) -> Tuple[str, ...]:
    key = _clean(o.dose.caffeine_timing)
    return (key,) if key else ()


def cycle_phase(cycle_day: int) -> str:
    for last_day, phase in CYCLE_PHASES:
        if cycle_day <= last_day:
            return phase
    return CYCLE_LATE_PHASE


def _cycle_buckets(o: Observation, user: User) -> Tuple[str, ...]:
    if not user.menstrual_tracking or o.dose.cycle_day is None or o.dose.cycle_day < 1:
        return ()
    return (cycle_phase(o.dose.cycle_day),)


def _body_buckets(o: Observation, user: User) -> Tuple[str, ...]:
    return o.body_map


# ----------------------------
# Phrasing
# ----------------------------

_FOOD_PHRASES = {
    "empty": "on an empty stomach",
    "light": "after a light meal",
    "full": "on a full stomach",
}

_SLEEP_PHRASES = {
    "low": "after under 6 hours of sleep",
    "medium": "after 6 to 8 hours of sleep",
    "high": "after 8 or more hours of sleep",
}

_CAFFEINE_PHRASES = {
    "none": "without caffeine",
    "before": "with caffeine before your dose",
    "with": "with caffeine alongside your dose",
    "after": "with caffeine after your dose",
}


def _food_phrase(key: str) -> str:
    return _FOOD_PHRASES.get(key, f"with food state '{key}'")


def _day_phrase(key: str) -> str:
    return f"on {key}s"


def _sleep_phrase(key: str) -> str:
    return _SLEEP_PHRASES[key]


def _environment_phrase(key: str) -> str:
    return f"in a '{key}' setting"


def _caffeine_phrase(key: str) -> str:
    return _CAFFEINE_PHRASES.get(key, f"with caffeine timing '{key}'")


def _cycle_phrase(key: str) -> str:
    return f"during your {key} phase"


def _body_phrase(key: str) -> str:
    return f"when you note '{key}'"


# ----------------------------
# Detector registry
# ----------------------------

Bucketer = Callable[[Observation, User], Tuple[str, ...]]
Phraser = Callable[[str], str]


@dataclass(frozen=True)
class Detector:
    pattern_type: str
    factor: str
    buckets: Bucketer
    phrase: Phraser
    direction: str = DIRECTION_POSITIVE


DETECTOR_REGISTRY: Dict[str, Detector] = {
    FOOD_CORRELATION: Detector(FOOD_CORRELATION, "food_state", _food_buckets, _food_phrase),
    DAY_CLUSTERING: Detector(DAY_CLUSTERING, "weekday", _day_buckets, _day_phrase),
    SLEEP_CORRELATION: Detector(SLEEP_CORRELATION, "sleep", _sleep_buckets, _sleep_phrase),
    ENVIRONMENT_CORRELATION: Detector(ENVIRONMENT_CORRELATION, "environment", _environment_buckets, _environment_phrase),
    CAFFEINE_TIMING: Detector(CAFFEINE_TIMING, "caffeine_timing", _caffeine_buckets, _caffeine_phrase),
    CYCLE_CORRELATION: Detector(CYCLE_CORRELATION, "cycle_phase", _cycle_buckets, _cycle_phrase),
    BODY_CLUSTER: Detector(BODY_CLUSTER, "body_map", _body_buckets, _body_phrase, direction=DIRECTION_ANY),
}


# ----------------------------
# Aggregation
# ----------------------------

@dataclass(frozen=True)
class BucketStat:
    detector: Detector
    key: str
    mean: float
    count: int
    global_mean: float

    @property
    def effect(self) -> float:
        return self.mean - self.global_mean

    @property
    def sort_key(self) -> str:
        return f"{self.detector.factor}={self.key}"


def bucket_stats(observations: Sequence[Observation], detector: Detector, user: User) -> Optional[List[BucketStat]]:
    """
    Per-bucket outcome means for one factor, or None when fewer than
    MIN_OBSERVATIONS joined observations carry the factor.
    """
    rows: List[Tuple[float, Tuple[str, ...]]] = []
    for o in observations:
        if o.outcome is None:
            continue
        keys = detector.buckets(o, user)
        if keys:
            rows.append((o.outcome, keys))
    if len(rows) < MIN_OBSERVATIONS:
        return None

    global_mean = sum(outcome for outcome, _ in rows) / len(rows)
    grouped: Dict[str, List[float]] = {}
    for outcome, keys in rows:
        for k in keys:
            grouped.setdefault(k, []).append(outcome)

    return [
        BucketStat(
            detector=detector,
            key=k,
            mean=sum(vals) / len(vals),
            count=len(vals),
            global_mean=global_mean,
        )
        for k, vals in sorted(grouped.items())
    ]


def _strength(stat: BucketStat, direction: str) -> float:
    if direction == DIRECTION_NEGATIVE:
        return -stat.effect
    if direction == DIRECTION_ANY:
        return abs(stat.effect)
    return stat.effect


def strongest_bucket(stats: Sequence[BucketStat], direction: str, margin: float) -> Optional[BucketStat]:
    """Strongest eligible bucket; ties go to the larger sample, then the smaller key."""
    eligible = [s for s in stats if s.count >= MIN_OBSERVATIONS]
    if not eligible:
        return None
    best = min(eligible, key=lambda s: (-_strength(s, direction), -s.count, s.sort_key))
    if _strength(best, direction) < margin:
        return None
    return best


def pattern_confidence(sample_size: int, effect: float) -> int:
    raw = (
        CONFIDENCE_BASE
        + CONFIDENCE_PER_EXTRA_SAMPLE * max(0, sample_size - MIN_OBSERVATIONS)
        + CONFIDENCE_PER_EFFECT_POINT * abs(effect)
    )
    return int(round(min(100.0, raw)))


def _describe(stat: BucketStat) -> str:
    return (
        f"Doses {stat.detector.phrase(stat.key)} average {stat.mean:.1f} on energy, clarity and stability, "
        f"against {stat.global_mean:.1f} overall ({stat.count} doses)."
    )


def _to_pattern(pattern_type: str, stat: BucketStat) -> Pattern:
    phrase = stat.detector.phrase(stat.key)
    if stat.effect >= 0:
        title = f"You respond best {phrase}"
    else:
        title = f"Outcomes dip {phrase}"
    return Pattern(
        type=pattern_type,
        title=title,
        description=_describe(stat),
        confidence=pattern_confidence(stat.count, stat.effect),
        bucket=stat.sort_key,
        sample_size=stat.count,
        effect=stat.effect,
    )


# ----------------------------
# Public API
# ----------------------------

def active_detectors(user: User) -> List[Detector]:
    out = []
    for pattern_type, det in DETECTOR_REGISTRY.items():
        if pattern_type == CYCLE_CORRELATION and not user.menstrual_tracking:
            continue
        out.append(det)
    return out


def detect_patterns(user: User, doses: Sequence[DoseLog], check_ins: Sequence[CheckIn]) -> List[Pattern]:
    """
    Run every detector over the joined history.
    At most one pattern per detector; detectors that lack data abstain.
    """
    observations = join_history(doses, check_ins)

    patterns: List[Pattern] = []
    all_stats: List[BucketStat] = []
    for det in active_detectors(user):
        stats = bucket_stats(observations, det, user)
        if stats is None:
            logger.debug("pattern %s: below %d observations, abstaining", det.pattern_type, MIN_OBSERVATIONS)
            continue
        all_stats.extend(stats)
        best = strongest_bucket(stats, det.direction, SIGNIFICANCE_MARGIN)
        if best is None:
            continue
        patterns.append(_to_pattern(det.pattern_type, best))

    worst = strongest_bucket(all_stats, DIRECTION_NEGATIVE, ANTI_PATTERN_MARGIN)
    if worst is not None:
        patterns.append(_to_pattern(ANTI_PATTERN, worst))

    logger.debug("patterns: %d observations, %d emitted", len(observations), len(patterns))
    return patterns
