# tests/test_reconciliation.py
"""Unit tests for movement reconciliation (pure, no database)."""

import json
import random
from datetime import datetime, timedelta

from hostel_gate.services.reconciliation import (
    GateEvent, MATCHED, OPEN, UNMATCHED_IN, UNMATCHED_OUT, UNKNOWN_TYPE,
    normalize_type, normalize_request_type, pair_student_events, reconcile, reconcile_segment,
)

SEGMENTS = {
    "Boys": ["D-Block", "E-Block"],
    "Women": ["Womens-Block", "Girls-Block"],
}

DAY = datetime(2026, 3, 2)


def at(hour, minute=0):
    return DAY + timedelta(hours=hour, minutes=minute)


def ev(id, hour, type, student="S1", block="D-Block", minute=0, **kw):
    return GateEvent(id=id, scanned_at=at(hour, minute), student_ref=student, type=type,
                     hostel_block=block, **kw)


class TestNormalize:
    def test_type_aliases(self):
        assert normalize_type("OUT") == "OUT"
        assert normalize_type("exit") == "OUT"
        assert normalize_type(" outgoing ") == "OUT"
        assert normalize_type("in") == "IN"
        assert normalize_type("ENTRY") == "IN"
        assert normalize_type("Incoming") == "IN"

    def test_unknown_type(self):
        assert normalize_type("SIDEWAYS") == "UNKNOWN"
        assert normalize_type(None) == "UNKNOWN"

    def test_request_type_defaults_to_outing(self):
        assert normalize_request_type(None) == "outing"
        assert normalize_request_type("") == "outing"
        assert normalize_request_type(" Home-Permission ") == "home-permission"


class TestPairing:
    def test_fifo_example(self):
        events = [ev(1, 9, "OUT"), ev(2, 10, "OUT"), ev(3, 12, "IN"), ev(4, 13, "IN")]
        sessions, anomalies = pair_student_events(events)

        assert [(s.kind, s.out_event_id, s.in_event_id) for s in sessions] == [
            (UNMATCHED_OUT, 1, None),
            (MATCHED, 2, 3),
            (UNMATCHED_IN, None, 4),
        ]
        assert [a.kind for a in anomalies] == [UNMATCHED_OUT, UNMATCHED_IN]

    def test_trailing_out_is_open(self):
        sessions, anomalies = pair_student_events([ev(1, 9, "OUT")])
        assert [s.kind for s in sessions] == [OPEN]
        assert sessions[0].is_out
        assert anomalies == []

    def test_same_timestamp_ordered_by_id(self):
        sessions, _ = pair_student_events([ev(7, 9, "IN"), ev(3, 9, "OUT")])
        assert [(s.kind, s.out_event_id, s.in_event_id) for s in sessions] == [(MATCHED, 3, 7)]

    def test_unknown_type_never_pairs(self):
        sessions, anomalies = pair_student_events([ev(1, 9, "OUT"), ev(2, 10, "??"), ev(3, 11, "IN")])
        assert [(s.kind, s.out_event_id, s.in_event_id) for s in sessions] == [(MATCHED, 1, 3)]
        assert [(a.kind, a.event_id) for a in anomalies] == [(UNKNOWN_TYPE, 2)]

    def test_session_takes_purpose_from_exit_and_block_from_entry(self):
        events = [ev(1, 9, "OUT", purpose="Shopping"), ev(2, 18, "IN", block="E-Block")]
        session = pair_student_events(events)[0][0]
        assert session.purpose == "Shopping"
        assert session.block == "E-Block"


class TestReconcile:
    def test_completed_round_trip(self):
        events = [ev(1, 9, "OUT"), ev(2, 18, "IN", minute=30)]
        result = reconcile(events, SEGMENTS, start=DAY, end=DAY + timedelta(days=1))

        boys = result.segments["Boys"]
        assert (boys.stats.total_out, boys.stats.total_in, boys.stats.currently_out) == (1, 1, 0)
        assert [s.kind for s in boys.sessions] == [MATCHED]
        assert boys.sessions[0].out_time == at(9)
        assert boys.sessions[0].in_time == at(18, 30)

        women = result.segments["Women"]
        assert (women.stats.total_out, women.stats.total_in, women.stats.currently_out) == (0, 0, 0)

    def test_student_still_out(self):
        result = reconcile([ev(1, 9, "OUT")], SEGMENTS)
        boys = result.segments["Boys"]
        assert boys.stats.currently_out == 1
        assert boys.sessions[0].kind == OPEN
        assert boys.sessions[0].in_time is None

    def test_segment_counts_add_up(self):
        events = [
            ev(1, 8, "OUT", student="S1"), ev(2, 9, "OUT", student="S1"),
            ev(3, 10, "IN", student="S2"), ev(4, 11, "bogus", student="S3"),
            ev(5, 12, "IN", student="S1"), ev(6, 13, "OUT", student="S4", block="E-Block"),
        ]
        boys = reconcile(events, SEGMENTS).segments["Boys"]
        s = boys.stats
        assert boys.event_count == 6
        assert s.total_out + s.total_in + s.anomaly_count == boys.event_count
        assert s.anomaly_count == 1
        assert s.currently_out == sum(1 for x in boys.sessions if x.in_time is None)

    def test_blocks_match_case_insensitively(self):
        events = [ev(1, 9, "OUT", block="d-block"), ev(2, 9, "OUT", student="S2", block=" GIRLS-BLOCK ")]
        result = reconcile(events, SEGMENTS)
        assert result.segments["Boys"].stats.total_out == 1
        assert result.segments["Women"].stats.total_out == 1
        assert result.unassigned_count == 0

    def test_unassigned_events_counted(self):
        events = [ev(1, 9, "OUT"), ev(2, 9, "OUT", student="S2", block="Annex"), ev(3, 9, "IN", student="S3", block=None)]
        result = reconcile(events, SEGMENTS)
        assert result.unassigned_count == 2
        assert result.segments["Boys"].event_count == 1

    def test_request_type_filter(self):
        events = [
            ev(1, 9, "OUT", request_type="outing"),
            ev(2, 9, "OUT", student="S2", request_type="home-permission"),
            ev(3, 9, "OUT", student="S3"),
        ]
        outings = reconcile(events, SEGMENTS, request_type="outing").segments["Boys"]
        home = reconcile(events, SEGMENTS, request_type="Home-Permission").segments["Boys"]
        everything = reconcile(events, SEGMENTS).segments["Boys"]

        assert outings.stats.total_out == 2
        assert home.stats.total_out == 1
        assert everything.stats.total_out == 3

    def test_window_is_half_open(self):
        events = [ev(1, 8, "OUT"), ev(2, 9, "OUT", student="S2"), ev(3, 17, "IN", student="S2")]
        boys = reconcile(events, SEGMENTS, start=at(9), end=at(17)).segments["Boys"]
        assert boys.event_count == 1
        assert [s.out_event_id for s in boys.sessions] == [2]

    def test_sessions_sorted_most_recent_first(self):
        events = [
            ev(1, 8, "OUT", student="A"), ev(2, 9, "IN", student="A"),
            ev(3, 11, "OUT", student="B"),
            ev(4, 10, "IN", student="C"),
        ]
        boys = reconcile(events, SEGMENTS).segments["Boys"]
        assert [s.student_ref for s in boys.sessions] == ["B", "C", "A"]

    def test_missing_student_ref_grouped_as_unknown(self):
        boys = reconcile([ev(1, 9, "OUT", student=None)], SEGMENTS).segments["Boys"]
        assert boys.sessions[0].student_ref == "unknown"

    def test_input_order_does_not_matter(self):
        events = [
            ev(1, 8, "OUT", student="A"), ev(2, 9, "OUT", student="A"), ev(3, 10, "IN", student="A"),
            ev(4, 8, "IN", student="B"), ev(5, 12, "OUT", student="C", block="Girls-Block"),
            ev(6, 12, "IN", student="C", block="Girls-Block"),
        ]
        expected = reconcile(events, SEGMENTS).to_json()
        shuffled = list(events)
        random.Random(42).shuffle(shuffled)
        assert reconcile(shuffled, SEGMENTS).to_json() == expected

    def test_to_json_is_stable(self):
        events = [ev(1, 9, "OUT"), ev(2, 18, "IN")]
        first = reconcile(events, SEGMENTS).to_json()
        assert reconcile(events, SEGMENTS).to_json() == first

        data = json.loads(first)
        assert data["segments"]["Boys"]["sessions"][0]["out_time"] == "2026-03-02T09:00:00"
        assert data["unassigned_count"] == 0

    def test_segments_keep_configured_order(self):
        result = reconcile([], {"Women": ["Girls-Block"], "Boys": ["D-Block"]})
        assert list(result.segments) == ["Women", "Boys"]

    def test_reconcile_segment_empty(self):
        result = reconcile_segment("Boys", [])
        assert result.sessions == []
        assert result.stats.total_out == 0
        assert result.event_count == 0
