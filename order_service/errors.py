"""
Order Service — error taxonomy

Expected business failures travel as values (Failure / OrderResult) up to the
handlers. Only infrastructure faults are raised: GatewayError when the payment
API cannot be reached or rejects a call, SignatureError for unauthenticated
webhooks.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INSUFFICIENT_STOCK = "insufficient_stock"
    INVALID_STATE = "invalid_state"


_STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INSUFFICIENT_STOCK: 400,
    ErrorKind.INVALID_STATE: 400,
}


@dataclass(frozen=True, slots=True)
class Failure:
    """A business-rule failure with the HTTP status it maps to."""

    kind: ErrorKind
    message: str

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]


class GatewayError(Exception):
    """
    The payment gateway call failed.

    status_code is 400 when the gateway answered with a message the caller can
    act on, 500 when the call itself failed (network, timeout, bad payload).
    """

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SignatureError(Exception):
    """Webhook signature missing or not matching the request body."""
