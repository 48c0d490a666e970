"""Shared helpers for the authorization engine."""

from .logging_security import (  # noqa: F401
    describe_check_for_log,
    sanitize_error_message_for_log,
    sanitize_for_log,
    sanitize_id_for_log,
)
