# hostel_gate/schemas/credential.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class StudentSnapshotIn(BaseModel):
    student_ref: str
    student_name: Optional[str] = None
    roll_number: Optional[str] = None
    hostel_block: Optional[str] = None
    floor: Optional[str] = None
    room_number: Optional[str] = None
    phone_number: Optional[str] = None
    parent_phone_number: Optional[str] = None


class RequestSnapshotIn(BaseModel):
    request_type: str = "outing"      # outing | home-permission
    category: str = "normal"          # normal | emergency
    purpose: Optional[str] = None
    out_date: Optional[str] = None
    out_time: Optional[str] = None
    return_time: Optional[str] = None


class CredentialIssue(BaseModel):
    request_id: str
    direction: str                    # OUTGOING | INCOMING
    activates_at: datetime
    expires_at: datetime
    student: StudentSnapshotIn
    request: RequestSnapshotIn = RequestSnapshotIn()


class ApprovedRequestIssue(BaseModel):
    request_id: str
    returns_at: datetime
    student: StudentSnapshotIn
    request: RequestSnapshotIn = RequestSnapshotIn()


class CredentialOut(BaseModel):
    id: int
    token_id: str
    request_id: str
    direction: str
    state: str                        # effective state at response time
    issued_at: datetime
    activates_at: datetime
    expires_at: datetime
    consumed_at: Optional[datetime]
    consumed_event_id: Optional[int]
    student_ref: str
    category: str
    request_type: str
    payload: Optional[str] = None

    class Config:
        from_attributes = True


class RequestCredentialsOut(BaseModel):
    request_id: str
    fulfilled: bool
    credentials: list[CredentialOut]
