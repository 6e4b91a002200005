"""
Call-site helper for writing formatted audit entries.
"""

import logging

from audittrail.config import settings
from audittrail.scope import AuditScope

logger = logging.getLogger("audittrail.echo")


class AuditFormatError(ValueError):
    """Raised when an audit message template cannot be formatted."""


def audit_log(scope: AuditScope, template: str, *args, **kwargs) -> None:
    """
    Format a message and record it on scope.

    The template uses str.format() syntax, so literal braces must be
    doubled. A bad template is a programming error: it raises instead of
    recording a broken or empty entry.

    Args:
        scope: Scope to record into
        template: str.format() template
        *args, **kwargs: Values for the template

    Raises:
        AuditFormatError: If the template does not match the arguments

    Example:
        >>> audit_log(au, "user {} logged in from {addr}", "admin", addr="10.0.0.1")
    """
    try:
        message = template.format(*args, **kwargs)
    except (IndexError, KeyError, ValueError, AttributeError, TypeError) as e:
        raise AuditFormatError(f"Cannot format audit message {template!r}: {e}") from e

    if settings.debug_echo:
        logger.info(f"DEBUG AUDIT -> {message}")

    scope.log_event(message)
