# Overview: Error taxonomy shared by the pricing and ledger services.

"""
Ledger error taxonomy.

Every failure raised inside the pricing/ledger core derives from
LedgerError and carries a stable `code` used in JSON responses. Services
that mutate the ledger convert these into LedgerResult failures at their
boundary (see results.py); only the pure pricing math raises them to the
caller directly.

"Already refunded" is deliberately absent: it is a successful no-op,
reported through LedgerResult.status.
"""


class LedgerError(Exception):
    """Base class for pricing and ledger failures."""
    code = "LEDGER_ERROR"
    http_status = 400
    manual_intervention_required = False

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        if self.manual_intervention_required:
            payload["manual_intervention_required"] = True
        return payload


class InvalidInput(LedgerError, ValueError):
    """Malformed amount, ratio or request; rejected before any write."""
    code = "INVALID_INPUT"


class RatioDomainError(InvalidInput, ZeroDivisionError):
    """A -100% ratio makes the base price undefined."""
    code = "RATIO_DOMAIN_ERROR"


class NoSupervisorFound(LedgerError):
    """Dual write requested but no supervisor (admin) user resolves."""
    code = "NO_SUPERVISOR_FOUND"
    http_status = 409


class OriginalTransactionNotFound(LedgerError):
    """Refund cannot locate the original debit it must mirror."""
    code = "ORIGINAL_TRANSACTION_NOT_FOUND"
    http_status = 404


class PartialWriteFailure(LedgerError):
    """Atomic write failed and its rollback failed too."""
    code = "MANUAL_INTERVENTION_REQUIRED"
    http_status = 500
    manual_intervention_required = True


class WriteFailed(LedgerError):
    """Atomic write failed and was rolled back cleanly."""
    code = "WRITE_FAILED"
    http_status = 500


class ExternalApiError(LedgerError):
    """Carrier or insurance API failure after the retry policy."""
    code = "EXTERNAL_API_ERROR"
    http_status = 502


class OrderNotFound(LedgerError):
    code = "ORDER_NOT_FOUND"
    http_status = 404


class InvalidOrderState(LedgerError):
    code = "INVALID_ORDER_STATE"
    http_status = 400


class CertificateNotFound(LedgerError):
    code = "CERTIFICATE_NOT_FOUND"
    http_status = 404


class UserNotFound(LedgerError):
    code = "USER_NOT_FOUND"
    http_status = 404


class PermissionDenied(LedgerError):
    code = "PERMISSION_DENIED"
    http_status = 403
