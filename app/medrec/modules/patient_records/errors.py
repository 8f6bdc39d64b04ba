from __future__ import annotations


class RecordError(RuntimeError):
    """Base for every failure an access-engine operation can report."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class NotFound(RecordError):
    kind = "not_found"
    status_code = 404


class Unauthorized(RecordError):
    kind = "unauthorized"
    status_code = 403


class Conflict(RecordError):
    kind = "conflict"
    status_code = 409


class InvalidArgument(RecordError):
    kind = "invalid_argument"
    status_code = 400
