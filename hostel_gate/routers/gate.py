# hostel_gate/routers/gate.py
"""
Gate terminal endpoints.
POST /gate/qr/validate    — inspect a scanned QR (no side effects)
POST /gate/scan           — confirm the crossing (consumes the QR)
POST /gate/manual-checkin — operator check-in without a QR
GET  /gate/movements      — paired in/out sessions per segment
GET  /gate/currently-out  — students still outside
GET  /gate/dashboard      — today's counters and recent scans
GET  /gate/search-students — find a student for a manual check-in
"""

from datetime import datetime, date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hostel_gate.database import get_db
from hostel_gate.schemas.movement import (
    CurrentlyOutRow, DashboardOut, MovementsOut, SegmentOut, StudentSearchRow,
)
from hostel_gate.schemas.scan import (
    ManualCheckInRequest, QRScanRequest, QRValidateRequest, ScanEventOut, ValidationResultOut,
)
from hostel_gate.services import movement_service, scan_protocol
from hostel_gate.utils.clock import as_naive_utc
from hostel_gate.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/gate/qr/validate", response_model=ValidationResultOut, summary="Validate a scanned QR")
def validate_qr(body: QRValidateRequest, db: Session = Depends(get_db)):
    """Read-only. Safe to call as often as the terminal likes."""
    result = scan_protocol.validate(db, body.qr_data)
    return ValidationResultOut(**result.to_dict())


@router.post("/gate/scan", response_model=ScanEventOut, status_code=201, summary="Confirm a gate crossing")
async def confirm_scan(body: QRScanRequest, db: Session = Depends(get_db)):
    """
    Consumes the QR and records the exit/entry. A second call with the same QR
    is rejected with already_used. On a timeout, query
    /credentials/request/{id} instead of assuming success.
    """
    return await scan_protocol.confirm(db, body.qr_data, body.location)


@router.post("/gate/manual-checkin", response_model=ScanEventOut, status_code=201,
             summary="Manual check-in without a QR")
async def manual_checkin(body: ManualCheckInRequest, db: Session = Depends(get_db)):
    return await scan_protocol.manual_override(
        db, body.student_ref, body.location, body.is_suspicious, body.suspicious_comment,
    )


@router.get("/gate/movements", response_model=MovementsOut, summary="Paired in/out movements by segment")
def get_movements(start: Optional[datetime] = None, end: Optional[datetime] = None,
                  request_type: Optional[str] = "outing", db: Session = Depends(get_db)):
    start = as_naive_utc(start) if start else None
    end = as_naive_utc(end) if end else None
    result = movement_service.reconcile_window(db, start, end, request_type)
    return MovementsOut(
        start=start,
        end=end,
        request_type=request_type,
        segments=[SegmentOut.model_validate(seg) for seg in result.segments.values()],
        unassigned_count=result.unassigned_count,
    )


@router.get("/gate/currently-out", response_model=list[CurrentlyOutRow], summary="Students currently out")
def get_currently_out(request_type: Optional[str] = None, db: Session = Depends(get_db)):
    return movement_service.currently_out(db, request_type)


@router.get("/gate/dashboard", response_model=DashboardOut, summary="Gate dashboard counters")
def get_dashboard(day: Optional[date] = None, db: Session = Depends(get_db)):
    summary = movement_service.dashboard_summary(db, day)
    summary["activity"] = [ScanEventOut.model_validate(e) for e in summary["activity"]]
    return summary


@router.get("/gate/search-students", response_model=list[StudentSearchRow], summary="Search students by name or roll number")
def search_students(q: str = "", db: Session = Depends(get_db)):
    """Matches name, roll number or student_ref. An empty query returns nothing."""
    return movement_service.search_students(db, q)
