# hostel_gate/schemas/scan.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class QRValidateRequest(BaseModel):
    qr_data: str


class QRScanRequest(BaseModel):
    qr_data: str
    location: Optional[str] = None


class ManualCheckInRequest(BaseModel):
    student_ref: str
    location: Optional[str] = None
    is_suspicious: bool = False
    suspicious_comment: Optional[str] = None


class ValidationResultOut(BaseModel):
    student: dict
    request: dict
    direction: str
    scan_type: str
    category: str
    is_emergency: bool
    valid_until: datetime


class ScanEventOut(BaseModel):
    id: int
    scanned_at: datetime
    student_ref: str
    student_name: Optional[str]
    roll_number: Optional[str]
    type: str
    hostel_block: Optional[str]
    room_number: Optional[str]
    request_id: Optional[str]
    request_type: Optional[str]
    category: Optional[str]
    purpose: Optional[str]
    location: str
    is_manual: bool
    is_suspicious: bool
    suspicious_comment: Optional[str]

    class Config:
        from_attributes = True
