# hostel_gate/services/errors.py
"""
Gate pass error taxonomy.
Services raise these; main.py turns them into JSON responses. Credential
failures are flagged security_alert so gate terminals show them as security
warnings rather than ordinary form errors.
"""


class GatePassError(Exception):
    code = "gate_error"
    status_code = 400
    security_alert = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            "success": False,
            "code": self.code,
            "message": self.message,
            "security_alert": self.security_alert,
        }


class ConflictError(GatePassError):
    code = "conflict"
    status_code = 409


class NotFoundError(GatePassError):
    code = "not_found"
    status_code = 404
    security_alert = True


class NotYetActive(GatePassError):
    code = "not_yet_active"
    status_code = 425
    security_alert = True


class Expired(GatePassError):
    code = "expired"
    status_code = 410
    security_alert = True


class AlreadyUsed(GatePassError):
    code = "already_used"
    status_code = 409
    security_alert = True


class ValidationError(GatePassError):
    code = "validation_error"
    status_code = 422
