class ServiceError(Exception):
    status = 400

    def __init__(self, code="SERVICE_ERROR", message="Service error", details=None, status=None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status is not None:
            self.status = status
        super().__init__(message)


class ValidationError(ServiceError):
    status = 400

    def __init__(self, code="validation_error", message="Invalid request", details=None):
        super().__init__(code, message, details)


class Unauthorized(ServiceError):
    status = 401

    def __init__(self, message="Authentication required", details=None):
        super().__init__("UNAUTHORIZED", message, details)


class Forbidden(ServiceError):
    status = 403

    def __init__(self, message="Access denied", details=None):
        super().__init__("FORBIDDEN", message, details)


class NotFound(ServiceError):
    status = 404

    def __init__(self, message="Resource not found", details=None):
        super().__init__("NOT_FOUND", message, details)


class InvalidStateTransition(ServiceError):
    status = 409

    def __init__(self, message, details=None):
        super().__init__("invalid_state", message, details)


class InsufficientBalance(ServiceError):
    status = 400

    def __init__(self, message="Insufficient balance", details=None):
        super().__init__("insufficient_balance", message, details)


class ConcurrentModification(ServiceError):
    """Wallet version kept changing underneath us; safe for the caller to retry."""
    status = 500

    def __init__(self, message="Wallet is busy, please try again", details=None):
        super().__init__("CONCURRENT_MODIFICATION", message, details)


class ExternalGatewayError(ServiceError):
    status = 502

    def __init__(self, message="External gateway call failed", details=None, code="GATEWAY_ERROR"):
        super().__init__(code, message, details)


class PayoutDeclined(ExternalGatewayError):
    """The payout gateway answered and refused the transfer."""

    def __init__(self, reason, details=None):
        super().__init__(reason, details, code="PAYOUT_FAILED")
        self.reason = reason


class PayoutTimeout(ExternalGatewayError):
    """No usable answer from the payout gateway; the transfer may or may not exist."""

    def __init__(self, message="Payout gateway did not respond in time", details=None):
        super().__init__(message, details, code="PAYOUT_UNKNOWN")


class CourierError(ExternalGatewayError):
    def __init__(self, message, details=None):
        super().__init__(message, details, code="COURIER_ERROR")


class ReconciliationRequired(ServiceError):
    status = 409

    def __init__(self, message, details=None, code="RECONCILIATION_REQUIRED"):
        super().__init__(code, message, details)


class ReversalAfterRelease(ReconciliationRequired):
    def __init__(self, order_id, details=None):
        super().__init__(
            f"Order {order_id} was already released to available balance; flagged for manual review",
            details,
            code="REVERSAL_AFTER_RELEASE",
        )
        self.order_id = order_id
