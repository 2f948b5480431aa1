# hostel_gate/services/issuance_policy.py
"""
Credential windows for an approved request, and request fulfilment.

Called on behalf of the approval system once a request is approved (or
fast-tracked as an emergency):
  OUTGOING  live immediately, until the declared return time
  INCOMING  normal:    live INCOMING_ACTIVATION_LEAD_MINUTES before the return time
            emergency: live immediately when EMERGENCY_IMMEDIATE_INCOMING is set
            both stay valid INCOMING_GRACE_HOURS past the return time
Emergency requests are fulfilled once the student has left; normal ones need
both legs scanned.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from hostel_gate.config import settings
from hostel_gate.models.credential import Credential, OUTGOING, INCOMING, CONSUMED
from hostel_gate.services import credential_store
from hostel_gate.services.credential_store import CredentialSnapshot
from hostel_gate.services.errors import ConflictError, ValidationError
from hostel_gate.utils.clock import utcnow, as_naive_utc
from hostel_gate.utils.logger import get_logger

logger = get_logger(__name__)

EMERGENCY = "emergency"


def credential_windows(category: str, returns_at: datetime,
                       now: Optional[datetime] = None) -> dict[str, tuple[datetime, datetime]]:
    now = now or utcnow()
    returns_at = as_naive_utc(returns_at)
    if returns_at <= now:
        raise ValidationError("Return time must be in the future")

    grace = timedelta(hours=settings.INCOMING_GRACE_HOURS)
    if category == EMERGENCY and settings.EMERGENCY_IMMEDIATE_INCOMING:
        incoming_from = now
    else:
        incoming_from = max(now, returns_at - timedelta(minutes=settings.INCOMING_ACTIVATION_LEAD_MINUTES))

    return {
        OUTGOING: (now, returns_at),
        INCOMING: (incoming_from, returns_at + grace),
    }


def issue_for_approved_request(db: Session, request_id: str, snapshot: CredentialSnapshot,
                               returns_at: datetime, now: Optional[datetime] = None) -> list[Credential]:
    """
    Issue both legs of an approved request, all or nothing.
    ConflictError if either leg already has a live pass; nothing is written then.
    """
    now = now or utcnow()
    windows = credential_windows(snapshot.category, returns_at, now)
    snapshot = replace(snapshot, return_due_at=as_naive_utc(returns_at))

    for direction in (OUTGOING, INCOMING):
        state = credential_store.live_state(db, request_id, direction, now)
        if state:
            logger.warning(f"[ISSUE] Refused approval request={request_id}: {direction} leg already {state}")
            raise ConflictError(
                f"A {state.lower().replace('_', ' ')} {direction.lower()} pass already exists for request {request_id}"
            )

    issued = []
    try:
        for direction in (OUTGOING, INCOMING):
            activates_at, expires_at = windows[direction]
            issued.append(credential_store.issue(
                db, request_id, direction, activates_at, expires_at, snapshot, now=now, commit=False,
            ))
        db.commit()
    except Exception:
        db.rollback()
        raise
    for c in issued:
        db.refresh(c)

    logger.info(f"[ISSUE] Approved request={request_id} category={snapshot.category} → {len(issued)} passes")
    return issued


def is_request_fulfilled(category: str, credential_states: Iterable[tuple[Credential, str]]) -> bool:
    consumed = {c.direction for c, state in credential_states if state == CONSUMED}
    if category == EMERGENCY:
        return OUTGOING in consumed
    return OUTGOING in consumed and INCOMING in consumed
