# hostel_gate/services/scan_protocol.py
"""
Two-phase gate scan protocol.

  validate(payload)          → read-only inspection, safe to repeat
  confirm(payload, location) → consumes the credential and appends a ScanEvent,
                               exactly once per credential
  manual_override(...)       → operator check-in without a QR (always an IN event)

confirm() never trusts an earlier validate(): it re-checks the credential and
relies on the store's compare-and-swap, so two terminals confirming the same QR
get one ScanEvent and one AlreadyUsed between them. The credential update and
the event insert share one transaction.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hostel_gate.config import settings
from hostel_gate.models.credential import (
    Credential, OUTGOING, PENDING_ACTIVATION, CONSUMED, EXPIRED,
)
from hostel_gate.models.scan_event import ScanEvent, OUT, IN
from hostel_gate.services import credential_store
from hostel_gate.services.alert_service import create_alert, CREDENTIAL_REUSE, SUSPICIOUS_ENTRY
from hostel_gate.services.errors import AlreadyUsed, Expired, NotFoundError, NotYetActive, ValidationError
from hostel_gate.utils.clock import utcnow
from hostel_gate.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ValidationResult:
    student: dict
    request: dict
    direction: str          # OUTGOING | INCOMING
    scan_type: str          # OUT | IN
    category: str           # normal | emergency
    is_emergency: bool
    valid_until: datetime

    def to_dict(self) -> dict:
        return asdict(self)


def _scan_type(direction: str) -> str:
    return OUT if direction == OUTGOING else IN


def _raise_for_state(credential: Credential, state: str):
    label = f"{credential.direction.lower()} pass for request {credential.request_id}"
    if state == CONSUMED:
        used = credential.consumed_at.isoformat() if credential.consumed_at else "earlier"
        raise AlreadyUsed(f"This QR code has already been used ({label}, scanned {used})")
    if state == EXPIRED:
        raise Expired(f"This QR code has expired ({label}, expired {credential.expires_at.isoformat()})")
    if state == PENDING_ACTIVATION:
        raise NotYetActive(f"This QR code is not active yet ({label}, valid from {credential.activates_at.isoformat()})")


def _resolve_active(db: Session, payload: str, now: datetime) -> Credential:
    credential = credential_store.lookup(db, payload)
    _raise_for_state(credential, credential_store.effective_state(credential, now))
    return credential


def validate(db: Session, payload: str, now: Optional[datetime] = None) -> ValidationResult:
    """Inspect a scanned QR. Raises AlreadyUsed, Expired, NotYetActive or NotFoundError."""
    now = now or utcnow()
    try:
        c = _resolve_active(db, payload, now)
    except Exception as e:
        logger.warning(f"[VALIDATE] Rejected: {e}")
        raise

    logger.info(f"[VALIDATE] request={c.request_id} dir={c.direction} student={c.student_ref} ok")
    return ValidationResult(
        student={
            "student_ref": c.student_ref,
            "name": c.student_name,
            "roll_number": c.roll_number,
            "hostel_block": c.hostel_block,
            "floor": c.floor,
            "room_number": c.room_number,
            "phone_number": c.phone_number,
            "parent_phone_number": c.parent_phone_number,
        },
        request={
            "request_id": c.request_id,
            "request_type": c.request_type,
            "date": c.out_date,
            "out_time": c.out_time,
            "return_time": c.return_time,
            "purpose": c.purpose,
        },
        direction=c.direction,
        scan_type=_scan_type(c.direction),
        category=c.category,
        is_emergency=c.category == "emergency",
        valid_until=c.expires_at,
    )


async def confirm(db: Session, payload: str, location: Optional[str] = None,
                  now: Optional[datetime] = None) -> ScanEvent:
    """
    Consume the credential behind `payload` and record the gate crossing.
    A repeated or concurrent call for the same payload raises AlreadyUsed and
    writes no ScanEvent.
    """
    now = now or utcnow()
    location = location or settings.DEFAULT_GATE_LOCATION

    try:
        credential = _resolve_active(db, payload, now)
    except AlreadyUsed as e:
        logger.warning(f"[CONFIRM] Replay rejected at {location}: {e}")
        await _report_reuse(db, payload, location, str(e))
        raise
    except Exception as e:
        logger.warning(f"[CONFIRM] Rejected at {location}: {e}")
        raise

    try:
        if not credential_store.consume(db, credential, now):
            db.rollback()
            db.refresh(credential)
            state = credential_store.effective_state(credential, now)
            logger.warning(f"[CONFIRM] Lost consume race for credential {credential.id} (now {state})")
            _raise_for_state(credential, state)
            raise AlreadyUsed("This QR code has already been used")

        event = ScanEvent(
            scanned_at=now,
            student_ref=credential.student_ref,
            student_name=credential.student_name,
            roll_number=credential.roll_number,
            type=_scan_type(credential.direction),
            hostel_block=credential.hostel_block,
            room_number=credential.room_number,
            request_id=credential.request_id,
            request_type=credential.request_type,
            category=credential.category,
            purpose=credential.purpose,
            location=location,
            is_manual=False,
            is_suspicious=False,
            credential_id=credential.id,
        )
        db.add(event)
        db.flush()
        db.query(Credential).filter(Credential.id == credential.id).update(
            {Credential.consumed_event_id: event.id}, synchronize_session=False
        )
        db.commit()
    except AlreadyUsed as e:
        await _report_reuse(db, payload, location, str(e))
        raise
    except IntegrityError as e:
        # credential_id is unique on scan_events: a second event for this pass cannot land
        db.rollback()
        logger.warning(f"[CONFIRM] Duplicate scan event blocked for credential {credential.id}")
        message = "This QR code has already been used"
        await _report_reuse(db, payload, location, message)
        raise AlreadyUsed(message) from e
    except Exception:
        db.rollback()
        raise

    db.refresh(event)
    logger.info(
        f"[CONFIRM] {event.type} student={event.student_ref} request={event.request_id} "
        f"category={event.category} at {location} → event {event.id}"
    )
    return event


async def _report_reuse(db: Session, payload: str, location: str, description: str):
    credential = None
    try:
        credential = credential_store.lookup(db, payload)
    except NotFoundError:
        logger.debug("[CONFIRM] Reuse alert without credential context")
    await create_alert(
        db, CREDENTIAL_REUSE, location, description,
        student_ref=credential.student_ref if credential else None,
        request_id=credential.request_id if credential else None,
    )


async def manual_override(db: Session, student_ref: str, location: Optional[str] = None,
                          is_suspicious: bool = False, comment: Optional[str] = None,
                          now: Optional[datetime] = None) -> ScanEvent:
    """
    Operator check-in without a QR (lost phone, dead battery). Always records
    an IN event. A suspicious check-in needs a non-empty comment.
    """
    now = now or utcnow()
    location = location or settings.DEFAULT_GATE_LOCATION
    comment = comment.strip() if comment else None
    student_ref = str(student_ref).strip() if student_ref else ""

    if not student_ref:
        raise ValidationError("student_ref is required for a manual check-in")
    if is_suspicious and not comment:
        raise ValidationError("A comment is required when flagging suspicious activity")

    # Carry block/room/request details over from the student's last exit, if any
    last_out = (
        db.query(ScanEvent)
        .filter(ScanEvent.student_ref == student_ref, ScanEvent.type == OUT)
        .order_by(ScanEvent.scanned_at.desc(), ScanEvent.id.desc())
        .first()
    )
    source = last_out or (
        db.query(Credential)
        .filter(Credential.student_ref == student_ref)
        .order_by(Credential.issued_at.desc(), Credential.id.desc())
        .first()
    )

    event = ScanEvent(
        scanned_at=now,
        student_ref=student_ref,
        student_name=getattr(source, "student_name", None),
        roll_number=getattr(source, "roll_number", None),
        type=IN,
        hostel_block=getattr(source, "hostel_block", None),
        room_number=getattr(source, "room_number", None),
        request_id=getattr(source, "request_id", None),
        request_type=getattr(source, "request_type", None) or "outing",
        category=getattr(source, "category", None) or "normal",
        purpose=getattr(source, "purpose", None),
        location=location,
        is_manual=True,
        is_suspicious=bool(is_suspicious),
        suspicious_comment=comment if is_suspicious else None,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    logger.info(f"[OVERRIDE] Manual IN student={student_ref} at {location} suspicious={event.is_suspicious} → event {event.id}")

    if event.is_suspicious:
        await create_alert(
            db, SUSPICIOUS_ENTRY, location,
            f"Suspicious manual check-in for student {student_ref}: {comment}",
            student_ref=student_ref, request_id=event.request_id,
        )
    return event
