# hostel_gate/schemas/movement.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from hostel_gate.schemas.scan import ScanEventOut


class SessionOut(BaseModel):
    student_ref: str
    out_time: Optional[datetime]
    in_time: Optional[datetime]
    block: Optional[str]
    room: Optional[str]
    purpose: Optional[str]
    request_type: Optional[str]
    kind: str                          # matched | unmatched_out | unmatched_in | open
    out_event_id: Optional[int] = None
    in_event_id: Optional[int] = None

    class Config:
        from_attributes = True


class SegmentStatsOut(BaseModel):
    total_out: int
    total_in: int
    currently_out: int
    anomaly_count: int

    class Config:
        from_attributes = True


class AnomalyOut(BaseModel):
    kind: str
    event_id: Optional[int]
    student_ref: str
    detail: str

    class Config:
        from_attributes = True


class SegmentOut(BaseModel):
    name: str
    sessions: list[SessionOut]
    stats: SegmentStatsOut
    anomalies: list[AnomalyOut]
    event_count: int

    class Config:
        from_attributes = True


class MovementsOut(BaseModel):
    start: Optional[datetime]
    end: Optional[datetime]
    request_type: Optional[str]
    segments: list[SegmentOut]
    unassigned_count: int


class CurrentlyOutRow(BaseModel):
    student_ref: str
    student_name: Optional[str]
    roll_number: Optional[str]
    hostel_block: Optional[str]
    room_number: Optional[str]
    request_id: Optional[str]
    request_type: Optional[str]
    category: Optional[str]
    purpose: Optional[str]
    out_time: datetime


class DashboardOut(BaseModel):
    date: str
    students_out: int
    students_in: int
    currently_out: int
    pending_return: int
    activity: list[ScanEventOut] = []
    last_updated: datetime


class StudentSearchRow(BaseModel):
    student_ref: str
    student_name: Optional[str]
    roll_number: Optional[str]
    hostel_block: Optional[str]
    room_number: Optional[str]
    last_scan_type: Optional[str] = None   # OUT | IN, None if never scanned
    last_scan_at: Optional[datetime] = None
