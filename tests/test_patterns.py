from __future__ import annotations

import datetime as dt
import random
import unittest

from dosecompass.history import Observation
from dosecompass.models import CheckIn, DoseLog, Signals, User
from dosecompass.patterns import (
    DETECTOR_REGISTRY,
    BucketStat,
    cycle_phase,
    detect_patterns,
    pattern_confidence,
    sleep_band,
    strongest_bucket,
)
from shared.records import parse_timestamp

T0 = dt.datetime(2026, 3, 2, 9, 0, tzinfo=dt.timezone.utc)  # a Monday
KST = dt.timezone(dt.timedelta(hours=9))

GOOD = (5, 5, 5)
FLAT = (3, 3, 3)
POOR = (2, 2, 2)


def _dated_history(rows):
    """rows: list of (timestamp, dose kwargs, signals, body_map); each dose gets a linked check-in 3h later."""
    doses = []
    checks = []
    for i, (ts, kw, signals, body_map) in enumerate(rows):
        doses.append(DoseLog(id=f"d{i:02d}", user_id="u1", batch_id="b1", amount=100.0, timestamp=ts, **kw))
        checks.append(
            CheckIn(
                id=f"c{i:02d}",
                user_id="u1",
                timestamp=ts + dt.timedelta(hours=3),
                signals=Signals(*signals),
                dose_id=f"d{i:02d}",
                body_map=tuple(body_map),
            )
        )
    return doses, checks


def _history(rows):
    """rows: list of (dose kwargs, signals, body_map); one dose per day."""
    return _dated_history([(T0 + dt.timedelta(days=i), kw, s, b) for i, (kw, s, b) in enumerate(rows)])


def _weekly(weeks: int, start: dt.datetime = T0, tz: dt.tzinfo = dt.timezone.utc):
    """Good Mondays, flat Wednesdays and Fridays."""
    rows = []
    for w in range(weeks):
        monday = start + dt.timedelta(days=7 * w)
        rows.append((monday.astimezone(tz), {}, GOOD, ()))
        rows.append(((monday + dt.timedelta(days=2)).astimezone(tz), {}, FLAT, ()))
        rows.append(((monday + dt.timedelta(days=4)).astimezone(tz), {}, FLAT, ()))
    return _dated_history(rows)


class PatternDetectorTests(unittest.TestCase):
    def setUp(self):
        self.user = User(id="u1")

    def test_no_patterns_below_sample_floor(self):
        doses, checks = _history([({"food_state": "empty"}, GOOD, ())] * 3)
        self.assertEqual(detect_patterns(self.user, doses, checks[:2]), [])

    def test_small_winning_bucket_is_not_reported(self):
        rows = (
            [({"food_state": "empty"}, GOOD, ())] * 4
            + [({"food_state": "light"}, FLAT, ())] * 4
            + [({"food_state": "full"}, FLAT, ())] * 4
        )
        doses, checks = _history(rows)
        self.assertEqual(detect_patterns(self.user, doses, checks), [])

    def test_food_correlation_on_empty_stomach(self):
        rows = (
            [({"food_state": "empty"}, GOOD, ())] * 9
            + [({"food_state": "light"}, FLAT, ())] * 4
            + [({"food_state": "full"}, FLAT, ())] * 4
        )
        doses, checks = _history(rows)
        patterns = detect_patterns(self.user, doses, checks)
        self.assertEqual([p.type for p in patterns], ["food_correlation"])
        p = patterns[0]
        self.assertEqual(p.title, "You respond best on an empty stomach")
        self.assertEqual(p.bucket, "food_state=empty")
        self.assertEqual(p.sample_size, 9)
        self.assertAlmostEqual(p.effect, 5.0 - 69.0 / 17.0)
        self.assertEqual(p.confidence, 69)

    def test_order_independent(self):
        rows = (
            [({"food_state": "empty", "sleep_hours": 8.5}, GOOD, ("warmth",))] * 8
            + [({"food_state": "light", "sleep_hours": 5.0}, POOR, ("nausea",))] * 8
            + [({"food_state": "full", "sleep_hours": 7.0}, FLAT, ())] * 4
        )
        doses, checks = _history(rows)
        expected = [p.to_dict() for p in detect_patterns(self.user, doses, checks)]
        self.assertTrue(expected)
        rng = random.Random(7)
        for _ in range(5):
            d2, c2 = list(doses), list(checks)
            rng.shuffle(d2)
            rng.shuffle(c2)
            got = [p.to_dict() for p in detect_patterns(self.user, d2, c2)]
            self.assertEqual(got, expected)

    def test_day_clustering_on_mondays(self):
        doses, checks = _weekly(8)
        patterns = detect_patterns(self.user, doses, checks)
        self.assertEqual([p.type for p in patterns], ["day_clustering"])
        p = patterns[0]
        self.assertEqual(p.title, "You respond best on Mondays")
        self.assertEqual(p.bucket, "weekday=Monday")
        self.assertEqual(p.sample_size, 8)
        self.assertEqual(p.confidence, 63)

    def test_day_clustering_needs_eight_in_the_bucket(self):
        doses, checks = _weekly(7)
        self.assertEqual(detect_patterns(self.user, doses, checks), [])

    def test_day_clustering_uses_utc_weekday(self):
        # 16:00 UTC on Mondays is already Tuesday 01:00 at +09:00
        doses, checks = _weekly(8, start=T0 + dt.timedelta(hours=7), tz=KST)
        self.assertEqual(doses[0].timestamp.weekday(), 1)
        patterns = detect_patterns(self.user, doses, checks)
        self.assertEqual([p.bucket for p in patterns], ["weekday=Monday"])

    def test_same_instant_lands_on_same_weekday(self):
        det = DETECTOR_REGISTRY["day_clustering"]
        a = parse_timestamp("2026-03-02T01:00:00+09:00")
        b = parse_timestamp("2026-03-01T16:00:00Z")
        self.assertEqual(a, b)
        keys = [
            det.buckets(Observation(dose=DoseLog(id="d", user_id="u1", batch_id="b1", amount=100.0, timestamp=t), check_ins=(), outcome=None), self.user)
            for t in (a, b)
        ]
        self.assertEqual(keys[0], keys[1])
        self.assertEqual(keys[0], ("Sunday",))

    def test_caffeine_timing_pattern(self):
        rows = [({"caffeine_timing": "none"}, GOOD, ())] * 8 + [({"caffeine_timing": "before"}, FLAT, ())] * 8
        doses, checks = _history(rows)
        patterns = detect_patterns(self.user, doses, checks)
        self.assertEqual([p.type for p in patterns], ["caffeine_timing", "anti_pattern"])
        self.assertEqual(patterns[0].title, "You respond best without caffeine")
        self.assertEqual(patterns[0].confidence, 60)
        self.assertEqual(patterns[1].bucket, "caffeine_timing=before")
        self.assertEqual(patterns[1].title, "Outcomes dip with caffeine before your dose")

    def test_caffeine_timing_abstains_when_rarely_logged(self):
        rows = (
            [({"caffeine_timing": "none"}, GOOD, ())] * 4
            + [({"caffeine_timing": "before"}, FLAT, ())] * 3
            + [({}, FLAT, ())] * 9
        )
        doses, checks = _history(rows)
        self.assertEqual(detect_patterns(self.user, doses, checks), [])

    def test_anti_pattern_flags_short_sleep(self):
        rows = (
            [({"sleep_hours": 5.0}, POOR, ())] * 8
            + [({"sleep_hours": 7.0}, (4, 4, 4), ())] * 4
            + [({"sleep_hours": 9.0}, (4, 4, 4), ())] * 4
        )
        doses, checks = _history(rows)
        patterns = detect_patterns(self.user, doses, checks)
        self.assertEqual([p.type for p in patterns], ["anti_pattern"])
        anti = patterns[0]
        self.assertEqual(anti.bucket, "sleep=low")
        self.assertEqual(anti.title, "Outcomes dip after under 6 hours of sleep")
        self.assertLess(anti.effect, -0.75)

    def test_body_cluster_takes_strongest_either_direction(self):
        rows = [({}, GOOD, ("warmth",))] * 9 + [({}, POOR, ("nausea",))] * 8
        doses, checks = _history(rows)
        patterns = detect_patterns(self.user, doses, checks)
        body = [p for p in patterns if p.type == "body_cluster"]
        self.assertEqual(len(body), 1)
        self.assertEqual(body[0].bucket, "body_map=nausea")
        self.assertTrue(body[0].title.startswith("Outcomes dip"))

    def test_cycle_detector_requires_tracking(self):
        rows = (
            [({"cycle_day": d}, GOOD, ()) for d in (1, 2, 3, 4, 5, 1, 2, 3)]
            + [({"cycle_day": d}, FLAT, ()) for d in (8, 9, 10, 11, 8, 9, 10, 11)]
        )
        doses, checks = _history(rows)
        off = detect_patterns(self.user, doses, checks)
        self.assertNotIn("cycle_correlation", [p.type for p in off])

        tracking = User(id="u1", menstrual_tracking=True)
        on = detect_patterns(tracking, doses, checks)
        cycle = [p for p in on if p.type == "cycle_correlation"]
        self.assertEqual(len(cycle), 1)
        self.assertEqual(cycle[0].bucket, "cycle_phase=menstrual")
        self.assertEqual(cycle[0].confidence, 60)

    def test_unlinked_checkins_join_by_time(self):
        rows = (
            [({"environment": "nature"}, GOOD, ())] * 8
            + [({"environment": "office"}, FLAT, ())] * 8
        )
        doses, checks = _history(rows)
        unlinked = [
            CheckIn(id=c.id, user_id=c.user_id, timestamp=c.timestamp, signals=c.signals)
            for c in checks
        ]
        patterns = detect_patterns(self.user, doses, unlinked)
        env = [p for p in patterns if p.type == "environment_correlation"]
        self.assertEqual(len(env), 1)
        self.assertEqual(env[0].title, "You respond best in a 'nature' setting")

    def test_strongest_bucket_tie_breaks(self):
        det = DETECTOR_REGISTRY["environment_correlation"]
        a = BucketStat(detector=det, key="a", mean=4.0, count=8, global_mean=3.0)
        b = BucketStat(detector=det, key="b", mean=4.0, count=10, global_mean=3.0)
        c = BucketStat(detector=det, key="c", mean=4.0, count=10, global_mean=3.0)
        self.assertIs(strongest_bucket([a, c, b], "positive", 0.75), b)
        small = BucketStat(detector=det, key="z", mean=5.0, count=7, global_mean=3.0)
        self.assertIsNone(strongest_bucket([small], "positive", 0.75))
        weak = BucketStat(detector=det, key="w", mean=3.5, count=12, global_mean=3.0)
        self.assertIsNone(strongest_bucket([weak], "positive", 0.75))

    def test_confidence_is_bounded(self):
        self.assertEqual(pattern_confidence(8, 0.75), 58)
        self.assertEqual(pattern_confidence(10, 1.0), 80)
        self.assertEqual(pattern_confidence(30, 2.0), 100)

    def test_band_helpers(self):
        self.assertEqual(sleep_band(5.9), "low")
        self.assertEqual(sleep_band(6.0), "medium")
        self.assertEqual(sleep_band(8.0), "high")
        self.assertEqual(cycle_phase(5), "menstrual")
        self.assertEqual(cycle_phase(14), "ovulatory")
        self.assertEqual(cycle_phase(22), "luteal")


if __name__ == "__main__":
    unittest.main()
