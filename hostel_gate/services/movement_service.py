# hostel_gate/services/movement_service.py
"""
Read side of the gate: loads committed scan events for a window and hands
them to the reconciliation engine. Only reads scan_events (and credentials
for return deadlines); never writes.
"""

from datetime import datetime, date, time, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from hostel_gate.config import settings
from hostel_gate.models.credential import Credential
from hostel_gate.models.scan_event import ScanEvent
from hostel_gate.services import reconciliation
from hostel_gate.services.reconciliation import OPEN, IN, OUT, ReconciliationResult
from hostel_gate.utils.clock import utcnow
from hostel_gate.utils.logger import get_logger

logger = get_logger(__name__)


def load_events(db: Session, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list:
    q = db.query(ScanEvent)
    if start is not None:
        q = q.filter(ScanEvent.scanned_at >= start)
    if end is not None:
        q = q.filter(ScanEvent.scanned_at < end)
    return q.order_by(ScanEvent.scanned_at.asc(), ScanEvent.id.asc()).all()


def reconcile_window(db: Session, start: Optional[datetime], end: Optional[datetime],
                     request_type: Optional[str] = None, segments: Optional[dict] = None) -> ReconciliationResult:
    events = load_events(db, start, end)
    result = reconciliation.reconcile(events, segments or settings.SEGMENTS, request_type, start, end)
    logger.info(
        f"[RECONCILE] window={start}→{end} type={request_type or 'all'} events={len(events)} "
        f"segments={list(result.segments)} unassigned={result.unassigned_count}"
    )
    return result


def _open_sessions(events: list) -> list:
    by_student: dict[str, list] = {}
    for ev in events:
        by_student.setdefault(ev.student_ref, []).append(ev)

    still_out = []
    for student_ref in sorted(by_student):
        sessions, _ = reconciliation.pair_student_events(by_student[student_ref])
        still_out.extend(s for s in sessions if s.kind == OPEN)
    return still_out


def currently_out(db: Session, request_type: Optional[str] = None,
                  now: Optional[datetime] = None) -> list[dict]:
    """
    Students whose latest exit has no return yet, most recent exit first.
    Earlier exits superseded by a later one are not listed.
    """
    now = now or utcnow()
    since = now - timedelta(days=settings.CURRENTLY_OUT_LOOKBACK_DAYS)
    events = load_events(db, since, None)
    if request_type:
        wanted = reconciliation.normalize_request_type(request_type)
        events = [e for e in events if reconciliation.normalize_request_type(e.request_type) == wanted]

    by_id = {e.id: e for e in events}
    rows = []
    for s in _open_sessions(events):
        ev = by_id[s.out_event_id]
        rows.append({
            "student_ref": s.student_ref,
            "student_name": ev.student_name,
            "roll_number": ev.roll_number,
            "hostel_block": ev.hostel_block,
            "room_number": ev.room_number,
            "request_id": ev.request_id,
            "request_type": ev.request_type,
            "category": ev.category,
            "purpose": ev.purpose,
            "out_time": s.out_time,
        })
    rows.sort(key=lambda r: (r["out_time"], r["student_ref"]), reverse=True)
    return rows


def dashboard_summary(db: Session, day: Optional[date] = None, now: Optional[datetime] = None) -> dict:
    """
    Gate dashboard counters:
      students_out / students_in  raw OUT / IN scans on `day`
      currently_out               students still out (lookback window)
      pending_return              of those, normal requests past their declared return
      activity                    latest scans on `day`, newest first
    """
    now = now or utcnow()
    day = day or now.date()
    day_start = datetime.combine(day, time.min)
    day_end = day_start + timedelta(days=1)

    todays = load_events(db, day_start, day_end)
    students_out = sum(1 for e in todays if reconciliation.normalize_type(e.type) == OUT)
    students_in = sum(1 for e in todays if reconciliation.normalize_type(e.type) == IN)

    activity = sorted(todays, key=lambda e: (e.scanned_at, e.id), reverse=True)[:settings.DASHBOARD_ACTIVITY_LIMIT]

    still_out = currently_out(db, now=now)
    request_ids = {r["request_id"] for r in still_out if r["request_id"]}
    overdue_requests = set()
    if request_ids:
        overdue_requests = {
            rid for (rid,) in db.query(Credential.request_id)
            .filter(
                Credential.request_id.in_(request_ids),
                Credential.return_due_at.isnot(None),
                Credential.return_due_at < now,
            )
            .distinct()
        }
    pending_return = sum(
        1 for r in still_out
        if r["request_id"] in overdue_requests and (r["category"] or "normal") != "emergency"
    )

    return {
        "date": day.isoformat(),
        "students_out": students_out,
        "students_in": students_in,
        "currently_out": len(still_out),
        "pending_return": pending_return,
        "activity": activity,
        "last_updated": now,
    }


_SEARCH_FIELDS = ("student_name", "roll_number", "hostel_block", "room_number")


def search_students(db: Session, query: str, limit: Optional[int] = None) -> list[dict]:
    """
    Find students by name, roll number or student_ref across issued passes and
    recorded scans, for operators doing a manual check-in. One row per student,
    details from the most recent snapshot, most recently seen first.
    """
    query = (query or "").strip()
    if not query:
        return []
    limit = limit or settings.STUDENT_SEARCH_LIMIT
    pattern = f"%{query}%"

    creds = (
        db.query(Credential)
        .filter(or_(
            Credential.student_name.ilike(pattern),
            Credential.roll_number.ilike(pattern),
            Credential.student_ref.ilike(pattern),
        ))
        .order_by(Credential.issued_at.desc(), Credential.id.desc())
        .limit(limit * 5)
        .all()
    )
    events = (
        db.query(ScanEvent)
        .filter(or_(
            ScanEvent.student_name.ilike(pattern),
            ScanEvent.roll_number.ilike(pattern),
            ScanEvent.student_ref.ilike(pattern),
        ))
        .order_by(ScanEvent.scanned_at.desc(), ScanEvent.id.desc())
        .limit(limit * 5)
        .all()
    )

    last_scan: dict[str, ScanEvent] = {}
    for ev in events:
        last_scan.setdefault(ev.student_ref, ev)

    snapshots = sorted(
        [(c.issued_at, c) for c in creds] + [(e.scanned_at, e) for e in events],
        key=lambda pair: pair[0],
        reverse=True,
    )
    rows: dict[str, dict] = {}
    for _, src in snapshots:
        row = rows.get(src.student_ref)
        if row is None:
            if len(rows) >= limit:
                continue
            scan = last_scan.get(src.student_ref)
            row = rows[src.student_ref] = {
                "student_ref": src.student_ref,
                "last_scan_type": scan.type if scan else None,
                "last_scan_at": scan.scanned_at if scan else None,
            }
        # Newest snapshot wins; older ones fill fields it lacks
        for f in _SEARCH_FIELDS:
            if row.get(f) is None:
                row[f] = getattr(src, f)

    logger.debug(f"[SEARCH] q={query!r} → {len(rows)} students")
    return list(rows.values())
