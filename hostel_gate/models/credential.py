# hostel_gate/models/credential.py
"""
Gate credential table — one row per QR pass for one direction of one request.
Student and request details are snapshotted at issue time so a scan can be
validated from this row alone.
"""

from sqlalchemy import Column, Integer, String, DateTime, Index, text
from hostel_gate.database import Base

OUTGOING = "OUTGOING"
INCOMING = "INCOMING"
DIRECTIONS = (OUTGOING, INCOMING)

PENDING_ACTIVATION = "PENDING_ACTIVATION"
ACTIVE = "ACTIVE"
CONSUMED = "CONSUMED"
EXPIRED = "EXPIRED"


class Credential(Base):
    __tablename__ = "gate_credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(String(64), nullable=False, unique=True)   # jti carried inside the QR payload
    request_id = Column(String(64), nullable=False, index=True)
    direction = Column(String(10), nullable=False)               # OUTGOING | INCOMING
    state = Column(String(20), nullable=False, default=PENDING_ACTIVATION)
    issued_at = Column(DateTime, nullable=False)
    activates_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime)
    consumed_event_id = Column(Integer)                          # scan_events.id written on confirm

    # Student snapshot
    student_ref = Column(String(64), nullable=False, index=True)
    student_name = Column(String(120))
    roll_number = Column(String(50))
    hostel_block = Column(String(50))
    floor = Column(String(20))
    room_number = Column(String(20))
    phone_number = Column(String(30))
    parent_phone_number = Column(String(30))

    # Request snapshot
    request_type = Column(String(20), nullable=False, default="outing")   # outing | home-permission
    category = Column(String(20), nullable=False, default="normal")       # normal | emergency
    purpose = Column(String(255))
    out_date = Column(String(20))
    out_time = Column(String(20))
    return_time = Column(String(20))
    return_due_at = Column(DateTime)                             # declared return, when known

    __table_args__ = (
        # At most one live (non-expired) credential per request leg
        Index(
            "uq_gate_credentials_live", "request_id", "direction", unique=True,
            postgresql_where=text("state != 'EXPIRED'"),
            sqlite_where=text("state != 'EXPIRED'"),
        ),
    )

    def __repr__(self):
        return f"<Credential {self.id} request={self.request_id} dir={self.direction} state={self.state}>"
