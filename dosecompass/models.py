# dosecompass/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import datetime as dt


# ----------------------------
# Enumerations (plain string values, as stored by the host)
# ----------------------------

FOOD_STATES = ("empty", "light", "full")

TIER_CLEAR = "clear"
TIER_MILD = "mild"
TIER_MODERATE = "moderate"
TIER_HIGH = "high"
TIERS = (TIER_CLEAR, TIER_MILD, TIER_MODERATE, TIER_HIGH)

FOOD_CORRELATION = "food_correlation"
DAY_CLUSTERING = "day_clustering"
SLEEP_CORRELATION = "sleep_correlation"
ENVIRONMENT_CORRELATION = "environment_correlation"
CAFFEINE_TIMING = "caffeine_timing"
CYCLE_CORRELATION = "cycle_correlation"
BODY_CLUSTER = "body_cluster"
ANTI_PATTERN = "anti_pattern"
PATTERN_TYPES = (
    FOOD_CORRELATION,
    DAY_CLUSTERING,
    SLEEP_CORRELATION,
    ENVIRONMENT_CORRELATION,
    CAFFEINE_TIMING,
    CYCLE_CORRELATION,
    BODY_CLUSTER,
    ANTI_PATTERN,
)


def as_utc(t: dt.datetime) -> dt.datetime:
    """Naive timestamps are treated as UTC."""
    if t.tzinfo is None:
        return t.replace(tzinfo=dt.timezone.utc)
    return t.astimezone(dt.timezone.utc)


# ----------------------------
# Inputs
# ----------------------------

@dataclass(frozen=True)
class Sensitivity:
    """Self-reported sensitivity profile. All scores are 1..5, 3 = typical."""
    caffeine: int = 3
    cannabis: Optional[int] = None
    body_awareness: int = 3
    emotional_reactivity: int = 3
    medications: Tuple[str, ...] = ()


@dataclass(frozen=True)
class User:
    id: str
    sensitivity: Sensitivity = field(default_factory=Sensitivity)
    primary_substance: str = "psilocybin"
    north_star: Optional[str] = None
    guidance_level: str = "guided"
    menstrual_tracking: bool = False


@dataclass(frozen=True)
class Conditions:
    load: str = "med"       # low | med | high | mixed
    noise: str = "med"
    schedule: str = "mixed"


@dataclass(frozen=True)
class Signals:
    """Check-in signals, each an integer 1..5."""
    energy: int
    clarity: int
    stability: int


@dataclass(frozen=True)
class Batch:
    id: str
    user_id: str
    is_active: bool = True
    doses_logged: int = 0


@dataclass(frozen=True)
class CarryoverResult:
    score: float                      # 0..100
    tier: str                         # clear | mild | moderate | high
    recommendation: str
    effective_dose_multiplier: float  # (0, 1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "tier": self.tier,
            "recommendation": self.recommendation,
            "effective_dose_multiplier": self.effective_dose_multiplier,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CarryoverResult":
        return cls(
            score=float(d["score"]),
            tier=str(d["tier"]),
            recommendation=str(d.get("recommendation", "")),
            effective_dose_multiplier=float(d["effective_dose_multiplier"]),
        )


@dataclass(frozen=True)
class DoseLog:
    """
    Single logged dose. Optional context fields are None when not logged.
    - carryover is the snapshot taken when the dose was logged (display only).
    - caffeine_timing: e.g. "before" | "with" | "after" | "none"
    """
    id: str
    user_id: str
    batch_id: str
    amount: float
    timestamp: dt.datetime
    food_state: str = "empty"
    effective_dose: Optional[float] = None
    carryover: Optional[CarryoverResult] = None
    intention: Optional[str] = None
    sleep_hours: Optional[float] = None
    sleep_quality: Optional[int] = None
    stress_level: Optional[int] = None
    caffeine_mg: Optional[float] = None
    caffeine_timing: Optional[str] = None
    environment: Optional[str] = None
    cannabis: Optional[str] = None
    cycle_day: Optional[int] = None
    exercise: Optional[str] = None
    notes: Optional[str] = None
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CheckIn:
    id: str
    user_id: str
    timestamp: dt.datetime
    signals: Signals
    dose_id: Optional[str] = None  # weak reference; None = unlinked
    phase: str = "active"          # pre | active | integration | ...
    conditions: Conditions = field(default_factory=Conditions)
    body_map: Tuple[str, ...] = ()
    notes: Optional[str] = None


# ----------------------------
# Outputs
# ----------------------------

@dataclass(frozen=True)
class Pattern:
    type: str
    title: str
    description: str
    confidence: int   # 0..100
    bucket: str = ""
    sample_size: int = 0
    effect: float = 0.0  # bucket mean - global mean, 1..5 scale

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "bucket": self.bucket,
            "sample_size": self.sample_size,
            "effect": self.effect,
        }


@dataclass(frozen=True)
class ThresholdPoint:
    dose: float
    confidence: int   # 0..100


@dataclass(frozen=True)
class ThresholdPoints:
    low: ThresholdPoint
    sweet: ThresholdPoint
    high: ThresholdPoint


@dataclass(frozen=True)
class DoseResponse:
    """Outcome summary for one distinct amount within a batch."""
    dose: float
    mean_outcome: float
    count: int


@dataclass(frozen=True)
class ThresholdRange:
    range: Optional[ThresholdPoints]
    message: str
    dose_response: Tuple[DoseResponse, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        rng: Optional[Dict[str, Dict[str, float]]] = None
        if self.range is not None:
            rng = {
                name: {"dose": p.dose, "confidence": p.confidence}
                for name, p in (("low", self.range.low), ("sweet", self.range.sweet), ("high", self.range.high))
            }
        return {
            "range": rng,
            "message": self.message,
            "dose_response": [
                {"dose": r.dose, "mean_outcome": r.mean_outcome, "count": r.count}
                for r in self.dose_response
            ],
        }


def patterns_to_dicts(patterns: List[Pattern]) -> List[Dict[str, Any]]:
    return [p.to_dict() for p in patterns]
