# hostel_gate/services/credential_store.py
"""
Credential Store — lifecycle of QR gate passes.

  issue    → persists a credential (PENDING_ACTIVATION or ACTIVE)
  lookup   → decodes a payload and loads the row, read-only
  consume  → single conditional UPDATE (compare-and-swap on state), no commit

Activation and expiry are evaluated lazily against `now`; the stored state is
only trusted after effective_state() has reconciled it with the clock.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hostel_gate.models.credential import (
    Credential, DIRECTIONS, PENDING_ACTIVATION, ACTIVE, CONSUMED, EXPIRED,
)
from hostel_gate.services.errors import ConflictError, NotFoundError, ValidationError
from hostel_gate.services.qr_token import decode_payload, encode_payload, new_token_id
from hostel_gate.utils.clock import utcnow, as_naive_utc
from hostel_gate.utils.logger import get_logger

logger = get_logger(__name__)

REQUEST_TYPES = {"outing", "home-permission"}
CATEGORIES = {"normal", "emergency"}


@dataclass
class CredentialSnapshot:
    """Student and request details frozen onto the credential at issue time."""
    student_ref: str
    student_name: Optional[str] = None
    roll_number: Optional[str] = None
    hostel_block: Optional[str] = None
    floor: Optional[str] = None
    room_number: Optional[str] = None
    phone_number: Optional[str] = None
    parent_phone_number: Optional[str] = None
    request_type: str = "outing"
    category: str = "normal"
    purpose: Optional[str] = None
    out_date: Optional[str] = None
    out_time: Optional[str] = None
    return_time: Optional[str] = None
    return_due_at: Optional[datetime] = None


def effective_state(credential: Credential, now: Optional[datetime] = None) -> str:
    """Stored state reconciled against the clock. CONSUMED wins over expiry."""
    now = now or utcnow()
    if credential.state == CONSUMED or credential.consumed_at is not None:
        return CONSUMED
    if credential.state == EXPIRED or now >= credential.expires_at:
        return EXPIRED
    if now < credential.activates_at:
        return PENDING_ACTIVATION
    return ACTIVE


def render_payload(credential: Credential) -> str:
    return encode_payload(credential.token_id, credential.request_id, credential.direction)


def issue(
    db: Session,
    request_id: str,
    direction: str,
    activates_at: datetime,
    expires_at: datetime,
    snapshot: CredentialSnapshot,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> Credential:
    """
    Issue a credential for one leg of an approved request.
    Raises ConflictError if a non-expired credential already exists for the
    (request_id, direction) pair. Stale expired ones are marked EXPIRED and
    left in place as history.

    With commit=False the row is only flushed; the caller owns the
    transaction and must commit or roll back.
    """
    now = now or utcnow()
    activates_at = as_naive_utc(activates_at)
    expires_at = as_naive_utc(expires_at)
    request_id = str(request_id)

    if direction not in DIRECTIONS:
        raise ValidationError(f"Unknown direction '{direction}'")
    if expires_at <= activates_at:
        raise ValidationError("expires_at must be later than activates_at")
    if snapshot.request_type not in REQUEST_TYPES:
        raise ValidationError(f"Unknown request type '{snapshot.request_type}'")
    if snapshot.category not in CATEGORIES:
        raise ValidationError(f"Unknown category '{snapshot.category}'")

    existing = (
        db.query(Credential)
        .filter(
            Credential.request_id == request_id,
            Credential.direction == direction,
            Credential.state != EXPIRED,
        )
        .all()
    )
    for old in existing:
        state = effective_state(old, now)
        if state != EXPIRED:
            logger.warning(f"[ISSUE] Refused reissue request={request_id} dir={direction} existing={state}")
            raise ConflictError(
                f"A {state.lower().replace('_', ' ')} {direction.lower()} pass already exists for request {request_id}"
            )
        old.state = EXPIRED
    if existing:
        db.flush()  # retire stale rows before the insert hits the live index

    credential = Credential(
        token_id=new_token_id(),
        request_id=request_id,
        direction=direction,
        state=ACTIVE if activates_at <= now else PENDING_ACTIVATION,
        issued_at=now,
        activates_at=activates_at,
        expires_at=expires_at,
        student_ref=snapshot.student_ref,
        student_name=snapshot.student_name,
        roll_number=snapshot.roll_number,
        hostel_block=snapshot.hostel_block,
        floor=snapshot.floor,
        room_number=snapshot.room_number,
        phone_number=snapshot.phone_number,
        parent_phone_number=snapshot.parent_phone_number,
        request_type=snapshot.request_type,
        category=snapshot.category,
        purpose=snapshot.purpose,
        out_date=snapshot.out_date,
        out_time=snapshot.out_time,
        return_time=snapshot.return_time,
        return_due_at=as_naive_utc(snapshot.return_due_at) if snapshot.return_due_at else None,
    )
    db.add(credential)
    try:
        if commit:
            db.commit()
        else:
            db.flush()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"[ISSUE] Concurrent issue lost for request={request_id} dir={direction}")
        raise ConflictError(f"A {direction.lower()} pass already exists for request {request_id}") from e
    if commit:
        db.refresh(credential)

    logger.info(
        f"[ISSUE] request={request_id} dir={direction} student={snapshot.student_ref} "
        f"state={credential.state} window={activates_at.isoformat()}→{expires_at.isoformat()}"
    )
    return credential


def lookup(db: Session, payload: str) -> Credential:
    """Resolve a payload to its credential. Never mutates state."""
    claims = decode_payload(payload)
    credential = db.query(Credential).filter(Credential.token_id == claims.token_id).first()
    if credential is None:
        raise NotFoundError("QR code does not match any gate pass")
    if credential.request_id != claims.request_id or credential.direction != claims.direction:
        logger.warning(f"[LOOKUP] Payload claims do not match credential {credential.id}")
        raise NotFoundError("QR code does not match any gate pass")
    return credential


def consume(db: Session, credential: Credential, now: Optional[datetime] = None) -> bool:
    """
    Atomically move a credential to CONSUMED. Returns False if another caller
    already consumed it or its window closed. The caller commits.
    """
    now = now or utcnow()
    updated = (
        db.query(Credential)
        .filter(
            Credential.id == credential.id,
            Credential.state.in_((PENDING_ACTIVATION, ACTIVE)),
            Credential.consumed_at.is_(None),
            Credential.activates_at <= now,
            Credential.expires_at > now,
        )
        .update({Credential.state: CONSUMED, Credential.consumed_at: now}, synchronize_session=False)
    )
    return updated == 1


def live_state(db: Session, request_id: str, direction: str, now: Optional[datetime] = None) -> Optional[str]:
    """Effective state of the live credential for this leg, or None if the leg is free to issue."""
    now = now or utcnow()
    rows = (
        db.query(Credential)
        .filter(
            Credential.request_id == str(request_id),
            Credential.direction == direction,
            Credential.state != EXPIRED,
        )
        .all()
    )
    for c in rows:
        state = effective_state(c, now)
        if state != EXPIRED:
            return state
    return None


def find_for_request(db: Session, request_id: str, now: Optional[datetime] = None) -> list[tuple[Credential, str]]:
    """All credentials of a request with their effective states, oldest first."""
    now = now or utcnow()
    rows = (
        db.query(Credential)
        .filter(Credential.request_id == str(request_id))
        .order_by(Credential.issued_at.asc(), Credential.id.asc())
        .all()
    )
    return [(c, effective_state(c, now)) for c in rows]
