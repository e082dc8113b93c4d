"""
Domain error taxonomy.

Every error carries a stable ``kind`` and the HTTP status the API layer
renders it with.
"""
from typing import Optional


class FulfillmentError(Exception):
    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str = "Something went wrong", details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "status": "error",
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(FulfillmentError):
    kind = "validation_error"
    status_code = 400


class InsufficientStock(FulfillmentError):
    kind = "insufficient_stock"
    status_code = 409


class InvalidUnitState(FulfillmentError):
    kind = "invalid_unit_state"
    status_code = 409


class InvalidTransition(FulfillmentError):
    kind = "invalid_transition"
    status_code = 400


class TerminalStateViolation(FulfillmentError):
    kind = "terminal_state_violation"
    status_code = 409


class NoEligibleCounterparties(FulfillmentError):
    kind = "no_eligible_counterparties"
    status_code = 404

    def __init__(self, message: str = "No eligible counterparties found", retryable: bool = False,
                 details: Optional[dict] = None):
        super().__init__(message, details)
        # Set when matching timed out rather than genuinely finding nothing
        self.retryable = retryable
        self.details.setdefault("retryable", retryable)


class NotFound(FulfillmentError):
    kind = "not_found"
    status_code = 404


class UpstreamTimeout(FulfillmentError):
    kind = "upstream_timeout"
    status_code = 504


class ConcurrentModification(FulfillmentError):
    kind = "concurrent_modification"
    status_code = 409
