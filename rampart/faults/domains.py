"""
Domain-specific faults raised by Rampart components.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from .core import Fault, FaultDomain, Severity


# ============================================================================
# Security Faults
# ============================================================================

class SecurityFault(Fault):
    """Base class for security faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        public: bool = True,
        status: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.SECURITY,
            severity=severity,
            public=public,
            status=status,
            metadata=metadata,
        )


class CSRFReason(str, Enum):
    """Why a CSRF check rejected the request."""
    MISSING_COOKIE = "missing_cookie"
    MISMATCH = "mismatch"


class CSRFError(SecurityFault):
    """
    CSRF validation fault.

    Raised by the CSRF stage; rendered as ``419`` by the exception stage.
    The message is the same for every reason so the wire response does not
    reveal which check failed.
    """

    status = 419

    def __init__(self, reason: CSRFReason = CSRFReason.MISMATCH, **kwargs):
        self.reason = CSRFReason(reason)
        super().__init__(
            code="CSRF_VIOLATION",
            message="CSRF token is invalid",
            severity=Severity.WARN,
            public=True,
            metadata={"reason": self.reason.value, **kwargs.get("metadata", {})},
        )


# ============================================================================
# I/O Faults
# ============================================================================

class InvalidHeaderError(Fault):
    """Header name or value contains characters that allow injection."""
    code = "INVALID_HEADER"
    message = "Invalid header"
    domain = FaultDomain.IO

    def __init__(self, message: str | None = None, **metadata):
        super().__init__(
            code=self.code,
            message=message or self.message,
            metadata=metadata,
        )


# ============================================================================
# Config Faults
# ============================================================================

class ConfigError(Fault):
    """Configuration could not be loaded or failed validation."""
    code = "CONFIG_INVALID"
    message = "Invalid configuration"
    domain = FaultDomain.CONFIG

    def __init__(self, message: str | None = None, **metadata):
        super().__init__(
            code=self.code,
            message=message or self.message,
            metadata=metadata,
        )
