"""
Error taxonomy of the billing engine.

Every error carries the HTTP status and machine code the API layer renders,
so services raise domain errors and never HTTPException.
"""


class BillingError(Exception):
    status_code = 400
    code = "billing_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(BillingError):
    """Firm-level configuration is incomplete (e.g. a missing default rate)."""
    status_code = 500
    code = "configuration_error"


class ValidationError(BillingError):
    """Input rejected before any write."""
    status_code = 422
    code = "validation_error"


class CaseArchivedError(ValidationError):
    """Archived cases have a frozen billing configuration."""
    code = "case_archived"


class PermissionDeniedError(BillingError):
    status_code = 403
    code = "permission_denied"


class CaseNotApprovedError(BillingError):
    """Billable time logged against a case that has not been approved."""
    status_code = 409
    code = "case_not_approved"


class NotFoundError(BillingError):
    status_code = 404
    code = "not_found"


class ConcurrencyError(BillingError):
    """Serialization conflict or lock timeout; the request may be retried as-is."""
    status_code = 409
    code = "concurrency_conflict"
    retryable = True
