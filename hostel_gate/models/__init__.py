# Hostel Gate: database models
# Import all models here for SQLAlchemy discovery

from hostel_gate.models.credential import Credential   # noqa
from hostel_gate.models.scan_event import ScanEvent    # noqa
from hostel_gate.models.alert import Alert             # noqa
