"""Error taxonomy for subscription billing.

ValidationError   → malformed email/amount/event; rejected at the boundary.
DuplicateKeyError → unique-key hit during an upsert; handled inside the store.
GatewayError      → outbound Paystack call failed; surfaced to the caller.
StoreError        → durable write/read failure unrelated to uniqueness.
"""

from typing import Optional


class NetpassError(Exception):
    """Base exception for netpass billing errors."""

    pass


class ValidationError(NetpassError):
    """Raised when an entity or gateway event fails validation."""

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class DuplicateKeyError(NetpassError):
    """Raised by the store when an insert hits the email unique key."""

    def __init__(self, table: str, email: str):
        super().__init__(f"{table}: duplicate key for email")
        self.table = table
        self.email = email


class GatewayError(NetpassError):
    """Raised when a Paystack call fails (non-2xx, network, or status=false).

    ``message`` is the gateway's own message when one was returned,
    otherwise a generic transport message.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StoreError(NetpassError):
    """Raised when a store operation fails for a reason other than uniqueness."""

    def __init__(self, message: str, *, operation: str):
        super().__init__(message)
        self.message = message
        self.operation = operation
