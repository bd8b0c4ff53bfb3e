"""
Rampart - CSRF protection as a stage of an async request pipeline.

Complete integration of:
- Tokens: CSPRNG token minting and the X-Csrf-Token cookie
- CSRF: Double-submit-cookie verification with per-response rotation
- Middleware: Ordered, immutable pipeline driven by an index cursor
- Faults: Typed failures rendered in a single exception stage
- ASGI: Adapter for uvicorn and any other ASGI server
"""

__version__ = "0.1.0"

from ._datastructures import Headers, MultiDict
from .request import Request
from .response import Response
from .faults import (
    Fault,
    FaultDomain,
    Severity,
    SecurityFault,
    CSRFError,
    CSRFReason,
    InvalidHeaderError,
    ConfigError,
)
from .tokens import IssuedToken, TokenCodec
from .middleware import (
    ExceptionMiddleware,
    LoggingMiddleware,
    MiddlewarePipeline,
    MiddlewareStack,
    Next,
    RequestIdMiddleware,
)
from .csrf import CSRFConfig, VerifyCSRFToken
from .config import ConfigLoader, ServerConfig
from .asgi import ASGIAdapter
from .server import RampartServer, build_pipeline, load_handler

__all__ = [
    "__version__",
    # Data
    "Headers",
    "MultiDict",
    "Request",
    "Response",
    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
    "SecurityFault",
    "CSRFError",
    "CSRFReason",
    "InvalidHeaderError",
    "ConfigError",
    # Tokens & CSRF
    "IssuedToken",
    "TokenCodec",
    "CSRFConfig",
    "VerifyCSRFToken",
    # Pipeline
    "ExceptionMiddleware",
    "LoggingMiddleware",
    "MiddlewarePipeline",
    "MiddlewareStack",
    "Next",
    "RequestIdMiddleware",
    # Serving
    "ASGIAdapter",
    "ConfigLoader",
    "ServerConfig",
    "RampartServer",
    "build_pipeline",
    "load_handler",
]
