"""
Error taxonomy for HackMate

Services raise these; main.py turns each one into a JSON notice for the client.
"""
from pymongo.errors import DuplicateKeyError, OperationFailure

# Mongo error codes meaning the caller is not allowed to run the operation
AUTH_ERROR_CODES = {13, 18, 8000}


class HackMateError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class PermissionDenied(HackMateError):
    kind = "permission_denied"
    status_code = 403


class ValidationFailure(HackMateError):
    kind = "validation_failure"
    status_code = 422


class NotFound(HackMateError):
    kind = "not_found"
    status_code = 404


class DuplicateRequest(HackMateError):
    kind = "duplicate_request"
    status_code = 409


class TransientIOFailure(HackMateError):
    kind = "transient_io_failure"
    status_code = 503


def translate_store_error(exc: Exception) -> HackMateError:
    """Map a pymongo failure onto the taxonomy."""
    if isinstance(exc, HackMateError):
        return exc
    if isinstance(exc, DuplicateKeyError):
        return DuplicateRequest("A matching record already exists")
    if isinstance(exc, OperationFailure) and exc.code in AUTH_ERROR_CODES:
        return PermissionDenied(str(exc))
    return TransientIOFailure(str(exc)[:200])
