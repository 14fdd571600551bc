# shared/records.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
import datetime as dt
import json
import re

from dosecompass.models import (
    Batch,
    CarryoverResult,
    CheckIn,
    Conditions,
    DoseLog,
    Sensitivity,
    Signals,
    User,
)

_ROW_ERRORS = (KeyError, TypeError, ValueError)

# fromisoformat before 3.11 only takes 3 or 6 fractional digits
_FRACTION_RE = re.compile(r"(\d{2}:\d{2}:\d{2})\.(\d+)")


def _pad_fraction(m: re.Match) -> str:
    return f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}"


def parse_timestamp(v: Any) -> dt.datetime:
    if isinstance(v, dt.datetime):
        t = v
    else:
        s = str(v).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        t = dt.datetime.fromisoformat(_FRACTION_RE.sub(_pad_fraction, s))
    if t.tzinfo is None:
        t = t.replace(tzinfo=dt.timezone.utc)
    return t


def _opt_float(v: Any) -> Optional[float]:
    if v is None or v == "":
        return None
    return float(v)


def _opt_int(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    return int(v)


def _opt_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _truthy(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v or "false").strip().lower() in ("1", "true", "t", "yes", "y")


def _str_tuple(v: Any) -> Tuple[str, ...]:
    if not v:
        return ()
    if isinstance(v, str):
        v = [v]
    return tuple(str(x) for x in v if str(x).strip())


def _pick(row: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    # Host rows mix camelCase (JSON profile columns) and snake_case.
    for k in keys:
        if k in row and row[k] is not None:
            return row[k]
    return default


def sensitivity_from_row(row: Optional[Dict[str, Any]]) -> Sensitivity:
    row = row or {}
    return Sensitivity(
        caffeine=int(_pick(row, "caffeine", default=3)),
        cannabis=_opt_int(_pick(row, "cannabis")),
        body_awareness=int(_pick(row, "bodyAwareness", "body_awareness", default=3)),
        emotional_reactivity=int(_pick(row, "emotionalReactivity", "emotional_reactivity", default=3)),
        medications=_str_tuple(_pick(row, "medications", default=[])),
    )


def user_from_row(row: Dict[str, Any]) -> User:
    north_star = row.get("north_star")
    if isinstance(north_star, dict):
        north_star = north_star.get("custom") or north_star.get("type")
    sensitivity = row.get("sensitivity")
    if isinstance(sensitivity, str):
        sensitivity = json.loads(sensitivity or "{}")
    return User(
        id=str(row.get("id", "")),
        sensitivity=sensitivity_from_row(sensitivity),
        primary_substance=str(row.get("primary_substance") or "psilocybin"),
        north_star=_opt_str(north_star),
        guidance_level=str(row.get("guidance_level") or "guided"),
        menstrual_tracking=_truthy(row.get("menstrual_tracking", False)),
    )


def carryover_from_row(row: Any) -> Optional[CarryoverResult]:
    if not row:
        return None
    if isinstance(row, str):
        row = json.loads(row)
    return CarryoverResult.from_dict(row)


def dose_from_row(row: Dict[str, Any]) -> DoseLog:
    return DoseLog(
        id=str(row["id"]),
        user_id=str(row.get("user_id", "")),
        batch_id=str(row.get("batch_id") or ""),
        amount=float(_pick(row, "amount", "amount_mg")),
        timestamp=parse_timestamp(_pick(row, "timestamp", "created_at")),
        food_state=str(row.get("food_state") or "empty").strip().lower(),
        effective_dose=_opt_float(row.get("effective_dose")),
        carryover=carryover_from_row(row.get("carryover")),
        intention=_opt_str(row.get("intention")),
        sleep_hours=_opt_float(row.get("sleep_hours")),
        sleep_quality=_opt_int(row.get("sleep_quality")),
        stress_level=_opt_int(row.get("stress_level")),
        caffeine_mg=_opt_float(row.get("caffeine_mg")),
        caffeine_timing=_opt_str(row.get("caffeine_timing")),
        environment=_opt_str(row.get("environment")),
        cannabis=_opt_str(row.get("cannabis")),
        cycle_day=_opt_int(row.get("cycle_day")),
        exercise=_opt_str(row.get("exercise")),
        notes=_opt_str(row.get("notes")),
        tags=_str_tuple(row.get("tags")),
    )


def check_in_from_row(row: Dict[str, Any]) -> CheckIn:
    signals = row["signals"]
    conditions = row.get("conditions") or {}
    return CheckIn(
        id=str(row["id"]),
        user_id=str(row.get("user_id", "")),
        timestamp=parse_timestamp(_pick(row, "timestamp", "created_at")),
        signals=Signals(
            energy=int(signals["energy"]),
            clarity=int(signals["clarity"]),
            stability=int(signals["stability"]),
        ),
        dose_id=_opt_str(row.get("dose_id")),
        phase=str(row.get("phase") or "active"),
        conditions=Conditions(
            load=str(conditions.get("load", "med")),
            noise=str(conditions.get("noise", "med")),
            schedule=str(conditions.get("schedule", "mixed")),
        ),
        body_map=_str_tuple(row.get("body_map")),
        notes=_opt_str(row.get("notes")),
    )


def batch_from_row(row: Dict[str, Any]) -> Batch:
    return Batch(
        id=str(row["id"]),
        user_id=str(row.get("user_id", "")),
        is_active=_truthy(row.get("is_active", True)),
        doses_logged=int(row.get("doses_logged") or 0),
    )


def doses_from_rows(rows: List[Any]) -> List[DoseLog]:
    """Rows that fail to parse, or log a non-positive amount, are skipped."""
    out: List[DoseLog] = []
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        try:
            d = dose_from_row(row)
        except _ROW_ERRORS:
            continue
        if d.amount <= 0:
            continue
        out.append(d)
    return out


def _signal_ok(v: int) -> bool:
    return 1 <= v <= 5


def check_ins_from_rows(rows: List[Any]) -> List[CheckIn]:
    """Rows that fail to parse, or carry signals outside 1..5, are skipped."""
    out: List[CheckIn] = []
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        try:
            c = check_in_from_row(row)
        except _ROW_ERRORS:
            continue
        s = c.signals
        if not (_signal_ok(s.energy) and _signal_ok(s.clarity) and _signal_ok(s.stability)):
            continue
        out.append(c)
    return out


def batches_from_rows(rows: List[Any]) -> List[Batch]:
    out: List[Batch] = []
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        try:
            out.append(batch_from_row(row))
        except _ROW_ERRORS:
            continue
    return out


def carryover_to_json(c: CarryoverResult) -> str:
    return json.dumps(c.to_dict(), ensure_ascii=False)
