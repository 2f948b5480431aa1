# hostel_gate/models/alert.py
"""
Alerts table — security alerts raised at the gate
(credential reuse attempts, suspicious manual check-ins).
"""

from sqlalchemy import Column, Integer, String, DateTime, Text
from hostel_gate.database import Base


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_type = Column(String(50), nullable=False, index=True)   # credential_reuse | suspicious_entry
    location = Column(String(100))
    student_ref = Column(String(64))
    request_id = Column(String(64))
    description = Column(Text)
    is_resolved = Column(Integer, default=0, nullable=False)
    triggered_at = Column(DateTime, nullable=False, index=True)
    resolved_at = Column(DateTime)

    def __repr__(self):
        return f"<Alert {self.id} type={self.alert_type} resolved={self.is_resolved}>"
