# hostel_gate/services/reconciliation.py
"""
Movement reconciliation: folds the flat scan log into per-student
"out → in" sessions and per-segment counts.

Pure and deterministic. Takes any sequence of objects shaped like ScanEvent
(ORM rows or GateEvent records), never touches the database or the credential
store, and returns fresh objects on every call.

Pairing is FIFO per student over events sorted by (scanned_at, id):
  OUT with an open OUT  → the open one is closed as unmatched_out
  IN  with an open OUT  → matched session
  IN  with no open OUT  → unmatched_in (manual entry with no logged exit)
  open OUT left over    → open session (student still out)
Unknown event types never pair; they are counted as anomalies instead.
"""

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

from hostel_gate.utils.logger import get_logger

logger = get_logger(__name__)

OUT = "OUT"
IN = "IN"
UNKNOWN = "UNKNOWN"

_OUT_ALIASES = {"OUT", "OUTGOING", "EXIT"}
_IN_ALIASES = {"IN", "INCOMING", "ENTRY"}

DEFAULT_REQUEST_TYPE = "outing"
UNKNOWN_STUDENT = "unknown"

MATCHED = "matched"
UNMATCHED_OUT = "unmatched_out"
UNMATCHED_IN = "unmatched_in"
UNKNOWN_TYPE = "unknown_type"
OPEN = "open"


@dataclass(frozen=True)
class GateEvent:
    """Plain scan record, for callers that do not hold ORM rows."""
    id: int
    scanned_at: datetime
    student_ref: Optional[str]
    type: Optional[str]
    hostel_block: Optional[str] = None
    room_number: Optional[str] = None
    request_type: Optional[str] = None
    category: Optional[str] = None
    purpose: Optional[str] = None
    location: Optional[str] = None
    is_suspicious: bool = False
    suspicious_comment: Optional[str] = None


@dataclass
class MovementSession:
    student_ref: str
    out_time: Optional[datetime]
    in_time: Optional[datetime]
    block: Optional[str]
    room: Optional[str]
    purpose: Optional[str]
    request_type: Optional[str]
    kind: str
    out_event_id: Optional[int] = None
    in_event_id: Optional[int] = None

    @property
    def last_activity(self) -> datetime:
        return self.out_time or self.in_time

    @property
    def is_out(self) -> bool:
        return self.in_time is None


@dataclass
class AnomalyWarning:
    """Non-fatal data issue surfaced alongside results instead of failing the report."""
    kind: str           # unknown_type | unmatched_out | unmatched_in
    event_id: Optional[int]
    student_ref: str
    detail: str


@dataclass
class SegmentStats:
    total_out: int = 0
    total_in: int = 0
    currently_out: int = 0
    anomaly_count: int = 0


@dataclass
class SegmentResult:
    name: str
    sessions: list = field(default_factory=list)
    stats: SegmentStats = field(default_factory=SegmentStats)
    anomalies: list = field(default_factory=list)
    event_count: int = 0


@dataclass
class ReconciliationResult:
    segments: dict = field(default_factory=dict)    # name → SegmentResult, in configured order
    unassigned_count: int = 0                         # in-window events whose block matched no segment

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def normalize_type(value) -> str:
    s = str(value or "").strip().upper()
    if s in _OUT_ALIASES:
        return OUT
    if s in _IN_ALIASES:
        return IN
    return UNKNOWN


def normalize_request_type(value) -> str:
    return str(value or DEFAULT_REQUEST_TYPE).strip().lower()


def _in_window(event, start: Optional[datetime], end: Optional[datetime]) -> bool:
    ts = event.scanned_at
    if ts is None:
        return False
    if start is not None and ts < start:
        return False
    if end is not None and ts >= end:
        return False
    return True


def _event_order(event):
    return (event.scanned_at, event.id if event.id is not None else 0)


def _student_key(event) -> str:
    ref = event.student_ref
    return str(ref) if ref not in (None, "") else UNKNOWN_STUDENT


def _session_from(out_ev, in_ev, kind: str) -> MovementSession:
    anchor = in_ev if out_ev is None else out_ev
    return MovementSession(
        student_ref=_student_key(anchor),
        out_time=out_ev.scanned_at if out_ev is not None else None,
        in_time=in_ev.scanned_at if in_ev is not None else None,
        block=(in_ev if in_ev is not None else out_ev).hostel_block,
        room=(in_ev if in_ev is not None else out_ev).room_number,
        purpose=(out_ev.purpose if out_ev is not None else None) or (in_ev.purpose if in_ev is not None else None),
        request_type=(out_ev.request_type if out_ev is not None else None)
        or (in_ev.request_type if in_ev is not None else None),
        kind=kind,
        out_event_id=out_ev.id if out_ev is not None else None,
        in_event_id=in_ev.id if in_ev is not None else None,
    )


def pair_student_events(events: Sequence) -> tuple[list, list]:
    """
    FIFO sweep over one student's events. Returns (sessions, anomalies).
    Events are sorted here, so callers may pass them in any order.
    """
    sessions: list[MovementSession] = []
    anomalies: list[AnomalyWarning] = []
    open_out = None

    for ev in sorted(events, key=_event_order):
        kind = normalize_type(ev.type)
        if kind == OUT:
            if open_out is not None:
                sessions.append(_session_from(open_out, None, UNMATCHED_OUT))
                anomalies.append(AnomalyWarning(
                    UNMATCHED_OUT, open_out.id, _student_key(open_out),
                    f"exit at {open_out.scanned_at.isoformat()} has no return before the next exit",
                ))
            open_out = ev
        elif kind == IN:
            if open_out is not None:
                sessions.append(_session_from(open_out, ev, MATCHED))
                open_out = None
            else:
                sessions.append(_session_from(None, ev, UNMATCHED_IN))
                anomalies.append(AnomalyWarning(
                    UNMATCHED_IN, ev.id, _student_key(ev),
                    f"entry at {ev.scanned_at.isoformat()} has no recorded exit",
                ))
        else:
            anomalies.append(AnomalyWarning(
                UNKNOWN_TYPE, ev.id, _student_key(ev), f"unrecognised scan type {ev.type!r}",
            ))

    if open_out is not None:
        sessions.append(_session_from(open_out, None, OPEN))
    return sessions, anomalies


def _session_order(s: MovementSession):
    return (s.last_activity, s.student_ref, s.out_event_id or 0, s.in_event_id or 0)


def reconcile_segment(name: str, events: Sequence) -> SegmentResult:
    """Pair and count one segment's events (already filtered to that segment)."""
    result = SegmentResult(name=name, event_count=len(events))

    by_student: dict[str, list] = {}
    for ev in sorted(events, key=_event_order):
        kind = normalize_type(ev.type)
        if kind == OUT:
            result.stats.total_out += 1
        elif kind == IN:
            result.stats.total_in += 1
        else:
            result.stats.anomaly_count += 1
        by_student.setdefault(_student_key(ev), []).append(ev)

    for student_ref in sorted(by_student):
        sessions, anomalies = pair_student_events(by_student[student_ref])
        result.sessions.extend(sessions)
        result.anomalies.extend(anomalies)

    result.sessions.sort(key=_session_order, reverse=True)
    result.stats.currently_out = sum(1 for s in result.sessions if s.is_out)
    return result


def reconcile(
    events: Iterable,
    segments: Mapping[str, Sequence[str]],
    request_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> ReconciliationResult:
    """
    Build sessions and stats for every segment.

    events:       ScanEvent-like objects; not mutated.
    segments:     {"Boys": ["D-Block", "E-Block"], ...}; block match is case-insensitive.
    request_type: "outing" / "home-permission", or None for all. Events without a
                  request type count as outings.
    start, end:   half-open window [start, end) on scanned_at.
    """
    wanted_type = normalize_request_type(request_type) if request_type else None
    in_scope = [
        ev for ev in events
        if _in_window(ev, start, end)
        and (wanted_type is None or normalize_request_type(ev.request_type) == wanted_type)
    ]

    block_sets = {
        name: {b.strip().lower() for b in blocks if b}
        for name, blocks in segments.items()
    }

    result = ReconciliationResult()
    assigned_ids = set()
    for name, blocks in block_sets.items():
        members = [ev for ev in in_scope if (ev.hostel_block or "").strip().lower() in blocks]
        assigned_ids.update(id(ev) for ev in members)
        result.segments[name] = reconcile_segment(name, members)

    result.unassigned_count = sum(1 for ev in in_scope if id(ev) not in assigned_ids)

    logger.debug(
        f"[RECONCILE] {len(in_scope)} events in scope, "
        + ", ".join(
            f"{n}: out={r.stats.total_out} in={r.stats.total_in} "
            f"current={r.stats.currently_out} anomalies={r.stats.anomaly_count}"
            for n, r in result.segments.items()
        )
        + f", unassigned={result.unassigned_count}"
    )
    return result
