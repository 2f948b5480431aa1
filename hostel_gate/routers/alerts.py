# hostel_gate/routers/alerts.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from hostel_gate.database import get_db
from hostel_gate.models.alert import Alert
from hostel_gate.schemas.alert import AlertOut
from hostel_gate.utils.clock import utcnow
from typing import Optional

router = APIRouter()


@router.get("/alerts", response_model=list[AlertOut], summary="Security alerts — filterable by type")
def get_all_alerts(
    alert_type: Optional[str] = None,
    is_resolved: Optional[int] = None,
    limit: int = 50,
    db: Session = Depends(get_db)
):
    """Filter by alert_type (credential_reuse, suspicious_entry) or is_resolved."""
    q = db.query(Alert)
    if alert_type:
        q = q.filter(Alert.alert_type == alert_type)
    if is_resolved is not None:
        q = q.filter(Alert.is_resolved == is_resolved)
    return q.order_by(Alert.triggered_at.desc()).limit(limit).all()


@router.put("/alerts/{alert_id}/resolve", response_model=AlertOut, summary="Mark an alert resolved")
def resolve_alert(alert_id: int, db: Session = Depends(get_db)):
    alert = db.query(Alert).filter(Alert.id == alert_id).first()
    if not alert:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
    if not alert.is_resolved:
        alert.is_resolved = 1
        alert.resolved_at = utcnow()
        db.commit()
        db.refresh(alert)
    return alert
