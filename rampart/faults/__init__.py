"""
RampartFaults - Typed fault signals.

Faults are exceptions with a stable code, a domain and an HTTP status. They
are raised where a problem is detected and rendered in exactly one place,
the exception stage of the pipeline.
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

from .domains import (
    SecurityFault,
    CSRFError,
    CSRFReason,
    InvalidHeaderError,
    ConfigError,
)

__all__ = [
    "Fault",
    "FaultDomain",
    "Severity",
    "SecurityFault",
    "CSRFError",
    "CSRFReason",
    "InvalidHeaderError",
    "ConfigError",
]
