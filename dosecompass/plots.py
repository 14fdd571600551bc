# dosecompass/plots.py
from __future__ import annotations

from typing import List, Optional, Tuple
import datetime as dt

import matplotlib.pyplot as plt

from .carryover import TIER_THRESHOLDS, CarryoverProjection
from .models import ThresholdRange


def _tier_spans(t: List[dt.datetime], tiers: List[str], tier: str) -> List[Tuple[dt.datetime, dt.datetime]]:
    """Convert the per-point tier list to (start, end) spans of one tier."""
    spans = []
    if not t or len(t) != len(tiers):
        return spans

    start = None
    for i in range(len(tiers)):
        if tiers[i] == tier and start is None:
            start = t[i]
        elif tiers[i] != tier and start is not None:
            spans.append((start, t[i]))
            start = None

    if start is not None:
        spans.append((start, t[-1]))
    return spans


def plot_carryover_projection(
    proj: CarryoverProjection,
    title: str = "Carryover projection",
    ax: Optional[plt.Axes] = None,
):
    """
    Plot projected score (0..100) with tier boundaries and the clear point.
    Returns matplotlib Figure.
    """
    if ax is None:
        fig, ax = plt.subplots()
    else:
        fig = ax.figure

    ax.plot(proj.t, proj.score, label="score")

    for threshold, tier in TIER_THRESHOLDS:
        ax.axhline(threshold, linestyle=":", alpha=0.4, label=f"_{tier}")

    for (s, e) in _tier_spans(proj.t, proj.tier, "clear"):
        ax.axvspan(s, e, alpha=0.12, label="_clear")

    if proj.clear_at is not None:
        ax.axvline(proj.clear_at, linestyle="--", alpha=0.6, label="clear from")

    ax.set_title(title)
    ax.set_ylim(-2, 102)
    ax.set_ylabel("Carryover score")
    ax.set_xlabel("Time")
    ax.grid(True, alpha=0.2)
    fig.autofmt_xdate()
    ax.legend(loc="upper right")
    return fig


def plot_dose_response(
    result: ThresholdRange,
    title: str = "Dose response",
    ax: Optional[plt.Axes] = None,
):
    """Mean outcome per amount, marker size by sample count, with low/sweet/high marks."""
    if ax is None:
        fig, ax = plt.subplots()
    else:
        fig = ax.figure

    rows = list(result.dose_response)
    if rows:
        xs = [r.dose for r in rows]
        ys = [r.mean_outcome for r in rows]
        ax.plot(xs, ys, alpha=0.5)
        ax.scatter(xs, ys, s=[20 + 20 * r.count for r in rows], label="mean outcome")

    if result.range is not None:
        for name, point in (("low", result.range.low), ("sweet", result.range.sweet), ("high", result.range.high)):
            ax.axvline(point.dose, linestyle="--", alpha=0.5, label=f"{name} ({point.confidence})")

    ax.set_title(title)
    ax.set_ylim(0.5, 5.5)
    ax.set_ylabel("Outcome (1..5)")
    ax.set_xlabel("Amount")
    ax.grid(True, alpha=0.2)
    if rows or result.range is not None:
        ax.legend(loc="lower left")
    return fig
