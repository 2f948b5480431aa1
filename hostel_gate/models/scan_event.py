# hostel_gate/models/scan_event.py
"""
Append-only gate scan log.
Every confirmed QR scan and every manual check-in writes exactly one row.
Rows are never updated or deleted; they are the audit trail that movement
reconciliation reads.
"""

from sqlalchemy import Boolean, Column, Integer, String, DateTime, Text, Index
from hostel_gate.database import Base

OUT = "OUT"
IN = "IN"


class ScanEvent(Base):
    __tablename__ = "scan_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scanned_at = Column(DateTime, nullable=False)
    student_ref = Column(String(64), nullable=False)
    student_name = Column(String(120))
    roll_number = Column(String(50))
    type = Column(String(20), nullable=False)                # OUT | IN
    hostel_block = Column(String(50))
    room_number = Column(String(20))
    request_id = Column(String(64))                          # NULL for manual check-ins
    request_type = Column(String(20), default="outing")      # outing | home-permission
    category = Column(String(20), default="normal")          # normal | emergency
    purpose = Column(String(255))
    location = Column(String(100), nullable=False)
    is_manual = Column(Boolean, nullable=False, default=False)
    is_suspicious = Column(Boolean, nullable=False, default=False)
    suspicious_comment = Column(Text)
    credential_id = Column(Integer, unique=True)             # gate_credentials.id, NULL for manual

    __table_args__ = (
        Index("ix_scan_events_window", "scanned_at", "hostel_block", "student_ref"),
    )

    def __repr__(self):
        return f"<ScanEvent {self.id} student={self.student_ref} type={self.type}>"
