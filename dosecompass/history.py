# dosecompass/history.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import bisect
import datetime as dt

from .models import CheckIn, DoseLog, as_utc


# An unlinked check-in attaches to the latest dose at most this long before it.
UNLINKED_JOIN_WINDOW_HOURS = 72.0

SIGNAL_FLOOR = 1
FLOOR_PENALTY = 0.5   # any signal at the floor reads as overshoot / adverse effect
MIN_OUTCOME = 1.0


@dataclass(frozen=True)
class Observation:
    """A dose joined to the check-ins that followed it."""
    dose: DoseLog
    check_ins: Tuple[CheckIn, ...]
    outcome: Optional[float]   # None when no check-in is attached

    @property
    def body_map(self) -> Tuple[str, ...]:
        entries = set()
        for c in self.check_ins:
            for e in c.body_map:
                key = str(e or "").strip().lower()
                if key:
                    entries.add(key)
        return tuple(sorted(entries))


def checkin_outcome(c: CheckIn) -> float:
    """Mean of energy/clarity/stability, penalized when any signal sits at the floor."""
    s = c.signals
    values = (s.energy, s.clarity, s.stability)
    score = sum(values) / 3.0
    if min(values) <= SIGNAL_FLOOR:
        score -= FLOOR_PENALTY
    return max(score, MIN_OUTCOME)


def _dose_sort_key(d: DoseLog):
    return (as_utc(d.timestamp), d.id)


def _checkin_sort_key(c: CheckIn):
    return (as_utc(c.timestamp), c.id)


def assign_check_ins(doses: Sequence[DoseLog], check_ins: Sequence[CheckIn]) -> Dict[str, List[CheckIn]]:
    """
    Map dose id -> attached check-ins (oldest first).
    - dose_id present and known: attach to that dose
    - dose_id present but unknown: dropped (dose outside the supplied slice)
    - dose_id absent: latest dose at or before the check-in, within the join window
    """
    ordered_doses = sorted(doses, key=_dose_sort_key)
    by_id = {d.id: d for d in ordered_doses}
    times = [as_utc(d.timestamp) for d in ordered_doses]
    window = dt.timedelta(hours=UNLINKED_JOIN_WINDOW_HOURS)

    out: Dict[str, List[CheckIn]] = {d.id: [] for d in ordered_doses}
    for c in sorted(check_ins, key=_checkin_sort_key):
        if c.dose_id:
            if c.dose_id in by_id:
                out[c.dose_id].append(c)
            continue
        ts = as_utc(c.timestamp)
        idx = bisect.bisect_right(times, ts) - 1
        if idx < 0:
            continue
        if ts - times[idx] > window:
            continue
        out[ordered_doses[idx].id].append(c)
    return out


def join_history(doses: Sequence[DoseLog], check_ins: Sequence[CheckIn]) -> List[Observation]:
    """One Observation per dose, oldest first, regardless of input order."""
    attached = assign_check_ins(doses, check_ins)
    observations: List[Observation] = []
    for d in sorted(doses, key=_dose_sort_key):
        cs = tuple(attached.get(d.id, ()))
        outcome: Optional[float] = None
        if cs:
            outcome = sum(checkin_outcome(c) for c in cs) / len(cs)
        observations.append(Observation(dose=d, check_ins=cs, outcome=outcome))
    return observations
