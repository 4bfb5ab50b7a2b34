"""Utility functions and helpers."""

from netpass_api.utils.logging import JSONFormatter, configure_json_logging
from netpass_api.utils.sanitize import mask_email, payload_hash_bytes, sanitize_str

__all__ = [
    "JSONFormatter",
    "configure_json_logging",
    "mask_email",
    "payload_hash_bytes",
    "sanitize_str",
]
