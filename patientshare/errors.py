# /patientshare/errors.py
"""Typed errors raised by the access-control services.

Controllers never catch these; the handler registered in
``patientshare.utils.error_handlers`` renders them as JSON with the
status code carried by the exception class.
"""


class AccessControlError(Exception):
    status_code = 500
    code = 'access_control_error'

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class ValidationError(AccessControlError):
    status_code = 400
    code = 'validation_error'


class NotFound(AccessControlError):
    status_code = 404
    code = 'not_found'


class Unauthorized(AccessControlError):
    status_code = 401
    code = 'unauthorized'


class Forbidden(AccessControlError):
    status_code = 403
    code = 'forbidden'


class AccessDenied(Forbidden):
    """Raised when the access decision for a patient is negative."""
    code = 'access_denied'


class InvalidState(AccessControlError):
    status_code = 409
    code = 'invalid_state'


class Conflict(AccessControlError):
    status_code = 409
    code = 'conflict'


class Expired(AccessControlError):
    status_code = 410
    code = 'expired'


class AuditWriteError(AccessControlError):
    """The share-token access log could not be written; the access must fail."""
    status_code = 500
    code = 'audit_write_failed'


class TokenGenerationError(AccessControlError):
    status_code = 500
    code = 'token_generation_failed'
