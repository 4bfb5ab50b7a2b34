"""Request context management for observability.

Context variables for request tracking across async boundaries.
"""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Gateway reference of the payment currently being reconciled
reference_var: ContextVar[str] = ContextVar("reference", default="")

# Webhook event kind currently being reconciled (charge.success, ...)
event_kind_var: ContextVar[str] = ContextVar("event_kind", default="")
