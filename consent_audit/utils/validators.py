"""
Validators for the Consent Audit Service

Checks applied inside the core, after the HTTP layer has validated
request shapes.
"""

from typing import Any

from ..consent.models import ConsentStatus
from ..exceptions import InvalidStatusError


def validate_consent_status(status: Any) -> ConsentStatus:
    """
    Validate a consent status value.

    Args:
        status: Raw status, usually a string from a request body

    Returns:
        The matching ConsentStatus

    Raises:
        InvalidStatusError: If the value is not granted, denied or withdrawn
    """
    if isinstance(status, ConsentStatus):
        return status

    if not isinstance(status, str):
        raise InvalidStatusError(status, [s.value for s in ConsentStatus])

    try:
        return ConsentStatus(status.strip().lower())
    except ValueError:
        raise InvalidStatusError(status, [s.value for s in ConsentStatus])


def sanitize_audit_message(message: str, max_length: int = 1000) -> str:
    """
    Sanitize a message for an audit log entry.

    Args:
        message: Message to sanitize
        max_length: Maximum allowed length

    Returns:
        Single-line printable message
    """
    if not message:
        return ""

    if len(message) > max_length:
        message = message[:max_length] + "...[truncated]"

    # Remove potential log injection characters
    message = message.replace("\n", " ").replace("\r", " ")

    return "".join(c for c in message if c.isprintable())
