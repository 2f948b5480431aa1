# hostel_gate/routers/credentials.py
"""
Credential issuance endpoints — called by the approval system, not by gate terminals.
POST /credentials                   — issue one leg with an explicit window
POST /credentials/approved-request  — issue both legs from the configured policy
GET  /credentials/request/{id}      — current state of a request's passes
GET  /credentials/{token_id}/qr.png — QR image for a pass
"""

from io import BytesIO

import qrcode
from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from hostel_gate.database import get_db
from hostel_gate.models.credential import Credential
from hostel_gate.schemas.credential import (
    ApprovedRequestIssue, CredentialIssue, CredentialOut, RequestCredentialsOut,
)
from hostel_gate.services import credential_store, issuance_policy
from hostel_gate.services.credential_store import CredentialSnapshot
from hostel_gate.utils.clock import utcnow

router = APIRouter()


def _snapshot(student, request) -> CredentialSnapshot:
    return CredentialSnapshot(**student.model_dump(), **request.model_dump())


def _credential_out(c: Credential, state: str, with_payload: bool = True) -> CredentialOut:
    out = CredentialOut.model_validate(c)
    return out.model_copy(update={
        "state": state,
        "payload": credential_store.render_payload(c) if with_payload else None,
    })


@router.post("/credentials", response_model=CredentialOut, status_code=201, summary="Issue a gate pass")
def issue_credential(body: CredentialIssue, db: Session = Depends(get_db)):
    """Issue one leg of an approved request. 409 if a live pass already exists for that leg."""
    now = utcnow()
    c = credential_store.issue(
        db, body.request_id, body.direction, body.activates_at, body.expires_at,
        _snapshot(body.student, body.request), now=now,
    )
    return _credential_out(c, credential_store.effective_state(c, now))


@router.post("/credentials/approved-request", response_model=list[CredentialOut], status_code=201,
             summary="Issue outgoing + incoming passes for an approved request")
def issue_for_request(body: ApprovedRequestIssue, db: Session = Depends(get_db)):
    now = utcnow()
    issued = issuance_policy.issue_for_approved_request(
        db, body.request_id, _snapshot(body.student, body.request), body.returns_at, now=now,
    )
    return [_credential_out(c, credential_store.effective_state(c, now)) for c in issued]


@router.get("/credentials/request/{request_id}", response_model=RequestCredentialsOut,
            summary="Passes of a request with their current state")
def get_request_credentials(request_id: str, db: Session = Depends(get_db)):
    """Use this after a confirm timeout to learn whether the scan went through."""
    rows = credential_store.find_for_request(db, request_id)
    if not rows:
        raise HTTPException(status_code=404, detail=f"No passes for request '{request_id}'")
    category = rows[-1][0].category
    return RequestCredentialsOut(
        request_id=request_id,
        fulfilled=issuance_policy.is_request_fulfilled(category, rows),
        credentials=[_credential_out(c, state, with_payload=False) for c, state in rows],
    )


@router.get("/credentials/{token_id}/qr.png", summary="QR image for a pass")
def get_credential_qr(token_id: str, db: Session = Depends(get_db)):
    c = db.query(Credential).filter(Credential.token_id == token_id).first()
    if not c:
        raise HTTPException(status_code=404, detail="Pass not found")
    img = qrcode.make(credential_store.render_payload(c))
    buf = BytesIO()
    img.save(buf, format="PNG")
    return Response(content=buf.getvalue(), media_type="image/png")
