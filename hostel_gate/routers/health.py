# hostel_gate/routers/health.py
"""
System health check endpoint.
Returns status of backend + DB, plus a few gate readiness signals.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func, text
from hostel_gate.config import settings
from hostel_gate.database import get_db
from hostel_gate.models.scan_event import ScanEvent
from hostel_gate.utils.clock import utcnow

router = APIRouter()

_DEFAULT_QR_SECRET = "change-me-in-production-use-a-long-random-value"


@router.get("/health", summary="System health check")
def health_check(db: Session = Depends(get_db)):
    """
    - Database connectivity
    - Whether QR passes are signed with the shipped default secret
    - Time of the last recorded gate scan
    """
    result = {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "backend": "ok",
        "database": "unknown",
        "qr_signing": "default-secret" if settings.QR_SECRET == _DEFAULT_QR_SECRET else "configured",
        "segments": list(settings.SEGMENTS.keys()),
        "last_scan_at": None,
    }

    try:
        db.execute(text("SELECT 1"))
        result["database"] = "ok"
        last = db.query(func.max(ScanEvent.scanned_at)).scalar()
        result["last_scan_at"] = last.isoformat() if last else None
    except Exception as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "degraded"

    return result
