"""
Security Logging Utilities for the authorization engine
Prevents log injection (CWE-117) when caller-supplied identifiers reach the logs.

Tenant ids, actor ids, resource ids and action names all arrive from
collaborators (routing layer, authentication layer, domain storage) and are
logged on every denial, so every one of them passes through here first.
"""

import re
from typing import Any, Optional

# Patterns for detecting potentially malicious content
LOG_INJECTION_PATTERNS = [
    r"[\r\n]",  # CRLF injection
    r"%0[ad]",  # URL-encoded CRLF
    r"\x00",  # Null bytes
    r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]",  # Control characters
]

SAFE_LOG_PATTERN = re.compile(r"^[a-zA-Z0-9._:@\-\s]+$")
UUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def sanitize_for_log(value: Optional[Any], max_length: int = 100, allow_special: bool = False) -> str:
    """
    Sanitize any value for safe logging.

    Args:
        value: Value to sanitize
        max_length: Maximum length of output
        allow_special: Whether to keep characters outside the safe set

    Returns:
        str: Sanitized string safe for logging
    """
    if value is None:
        return "null"

    str_value = str(value)

    if len(str_value) > max_length:
        str_value = str_value[:max_length] + "..."

    for pattern in LOG_INJECTION_PATTERNS:
        str_value = re.sub(pattern, "", str_value)

    if not allow_special and not SAFE_LOG_PATTERN.match(str_value):
        str_value = re.sub(r"[^a-zA-Z0-9._:@\-\s]", "", str_value)

    if not str_value.strip():
        return "[sanitized]"

    return str_value.strip()


def sanitize_id_for_log(id_value: Optional[Any]) -> str:
    """Sanitize actor, tenant and resource identifiers."""
    if id_value is None:
        return "[no_id]"

    str_id = str(id_value)
    if UUID_PATTERN.match(str_id) or str_id.isdigit():
        return str_id

    return sanitize_for_log(str_id, max_length=64)


def sanitize_error_message_for_log(error_msg: Optional[Any]) -> str:
    """
    Sanitize error messages (e.g. storage driver errors from an audit sink)
    so connection strings and credentials never land in the logs.
    """
    if not error_msg:
        return "[no_error_message]"

    str_msg = str(error_msg)

    sensitive_patterns = [
        (r"password[=:\s]+[^\s]+", "password=[REDACTED]"),
        (r"token[=:\s]+[^\s]+", "token=[REDACTED]"),
        (r"secret[=:\s]+[^\s]+", "secret=[REDACTED]"),
        (r"://[^:/\s]+:[^@/\s]+@", "://[REDACTED]@"),  # credentials in DSNs
    ]
    for pattern, replacement in sensitive_patterns:
        str_msg = re.sub(pattern, replacement, str_msg, flags=re.IGNORECASE)

    return sanitize_for_log(str_msg, max_length=500, allow_special=True)


def describe_check_for_log(
    actor_id: Optional[Any],
    tenant_id: Optional[Any],
    resource_type: Optional[Any],
    action: Optional[Any],
    resource_id: Optional[Any] = None,
) -> str:
    """Render one authorization check as ``actor@tenant action resource_type:resource_id``."""
    resource = sanitize_for_log(resource_type) if resource_type else "unknown_type"
    if resource_id is not None:
        resource = f"{resource}:{sanitize_id_for_log(resource_id)}"
    return (
        f"{sanitize_id_for_log(actor_id)}@{sanitize_id_for_log(tenant_id)} "
        f"{sanitize_for_log(action)} {resource}"
    )
