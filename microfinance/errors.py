"""
Error Taxonomy

Typed errors raised by the loan core. Validation, state and authorization
errors are expected and client-correctable; dependency errors wrap failures
of the data store or the verification service and carry a generic message.
"""

from typing import Optional


class MicrofinanceError(Exception):
    """Base class for all errors raised by the loan core"""
    code = "error"
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


# Validation errors (400)

class ValidationError(MicrofinanceError):
    """Client-correctable input error, surfaced verbatim"""
    code = "validation_error"
    status_code = 400


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class BelowMinimumInstallment(ValidationError):
    code = "below_minimum_installment"


class ExceedsOutstandingBalance(ValidationError):
    code = "exceeds_outstanding_balance"


class MissingField(ValidationError):
    code = "missing_field"


class MalformedDuration(ValidationError):
    code = "malformed_duration"


# Lifecycle state errors (409)

class StateError(MicrofinanceError):
    """Operation not permitted in the loan's current lifecycle state"""
    code = "state_error"
    status_code = 409


class InvalidTransition(StateError):
    code = "invalid_transition"


class LoanNotActive(StateError):
    code = "loan_not_active"


class ConcurrentUpdate(StateError):
    """The record changed underneath us on every retry"""
    code = "concurrent_update"


# Authentication / authorization (401 / 403)

class AuthenticationError(MicrofinanceError):
    code = "not_authenticated"
    status_code = 401


class AuthorizationError(MicrofinanceError):
    code = "authorization_error"
    status_code = 403


class Forbidden(AuthorizationError):
    code = "forbidden"


# Lookup (404)

class NotFoundError(MicrofinanceError):
    code = "not_found"
    status_code = 404


# External dependencies (502)

GENERIC_DEPENDENCY_MESSAGE = "Service temporarily unavailable, please try again"


class DependencyError(MicrofinanceError):
    """Data store or verification service failed; details are logged, not surfaced"""
    code = "dependency_error"
    status_code = 502

    def __init__(self, message: str = GENERIC_DEPENDENCY_MESSAGE, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
