"""Domain error taxonomy shared by every clinic service"""

from typing import Optional


class ClinicError(Exception):
    """Base class; carries the HTTP status the API layer should answer with"""

    status_code = 400

    def __init__(self, detail: str, payload: Optional[dict] = None):
        super().__init__(detail)
        self.detail = detail
        self.payload = payload

    def to_dict(self) -> dict:
        body = {"error": self.detail}
        if self.payload:
            body["conflictDetails"] = self.payload
        return body


class ValidationError(ClinicError):
    status_code = 400


class Unauthorized(ClinicError):
    status_code = 403


class NotFound(ClinicError):
    status_code = 404


class Conflict(ClinicError):
    status_code = 409


class AlreadyQueued(Conflict):
    pass


class InsufficientFunds(ClinicError):
    status_code = 400


class NotAvailable(ClinicError):
    status_code = 400


class ScheduleFull(NotAvailable):
    status_code = 409


class AlreadyResolved(ClinicError):
    status_code = 409
