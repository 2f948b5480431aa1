# hostel_gate/services/alert_service.py
"""
Shared alert creation service.
Used by scan_protocol for credential reuse attempts and suspicious manual check-ins.
Extend here to add push notifications, SMS, email, etc.
"""

from sqlalchemy.orm import Session
from hostel_gate.models.alert import Alert
from hostel_gate.utils.clock import utcnow
from hostel_gate.utils.logger import get_logger

logger = get_logger(__name__)

CREDENTIAL_REUSE = "credential_reuse"
SUSPICIOUS_ENTRY = "suspicious_entry"


async def create_alert(db: Session, alert_type, location, description, student_ref=None, request_id=None):
    """Create and persist an alert record. Always commits immediately."""
    alert = Alert(alert_type=alert_type, location=location, student_ref=student_ref,
                  request_id=request_id, description=description,
                  is_resolved=0, triggered_at=utcnow())
    db.add(alert)
    db.commit()
    logger.warning(f"[ALERT][{alert_type.upper()}] {description}")
    return alert
