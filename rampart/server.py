"""
Server assembly - builds the standard pipeline around a terminal handler
and runs it under uvicorn.
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import Optional

from .asgi import ASGIAdapter
from .config import ConfigLoader, ServerConfig
from .csrf import CSRFConfig, VerifyCSRFToken
from .middleware import (
    ExceptionMiddleware,
    Handler,
    LoggingMiddleware,
    MiddlewarePipeline,
    MiddlewareStack,
    RequestIdMiddleware,
)


logger = logging.getLogger("rampart.server")


def build_pipeline(
    handler: Handler,
    csrf_config: Optional[CSRFConfig] = None,
    *,
    debug: bool = False,
    request_id: bool = True,
    access_log: bool = True,
) -> MiddlewarePipeline:
    """
    Assemble the standard stage order around ``handler``.

    Order: request_id, access_log, exceptions, csrf. The exception stage sits
    outside the CSRF stage so a CSRF failure is rendered as a 419, and inside
    the request-id and access-log stages so failed requests still get an id
    and an access line.
    """
    stack = MiddlewareStack()
    if request_id:
        stack.add(RequestIdMiddleware(), priority=0, name="request_id")
    if access_log:
        stack.add(LoggingMiddleware(), priority=10, name="access_log")
    stack.add(ExceptionMiddleware(debug=debug), priority=20, name="exceptions")
    stack.add(VerifyCSRFToken(csrf_config), priority=30, name="csrf")
    return stack.build(handler)


def load_handler(target: str) -> Handler:
    """
    Import ``module:attribute`` and return the terminal handler.

    Raises:
        ValueError: If ``target`` is malformed or the attribute is missing
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Handler must look like 'module:attribute', got {target!r}")

    if "" not in sys.path:
        sys.path.insert(0, "")

    module = importlib.import_module(module_name)
    handler = module
    for part in attr.split("."):
        try:
            handler = getattr(handler, part)
        except AttributeError:
            raise ValueError(f"{module_name!r} has no attribute {attr!r}")
    if not callable(handler):
        raise ValueError(f"{target!r} is not callable")
    return handler


class RampartServer:
    """
    Couples a terminal handler with configuration.

    Example::

        server = RampartServer(handler, ConfigLoader.load("rampart.yaml"))
        server.run()
    """

    def __init__(self, handler: Handler, config: Optional[ConfigLoader] = None):
        self.config = config or ConfigLoader.load()
        self.server_config: ServerConfig = self.config.server_config()
        self.pipeline = build_pipeline(
            handler,
            self.config.csrf_config(),
            debug=self.server_config.debug,
        )
        self.app = ASGIAdapter(self.pipeline)

    def run(self, **overrides) -> None:
        """
        Start uvicorn in this process.

        uvicorn can only fork workers from an import string, so this runs a
        single worker; ``rampart serve --workers N`` covers the multi-worker
        case.
        """
        import uvicorn

        options = {
            "host": self.server_config.host,
            "port": self.server_config.port,
            "log_level": self.server_config.log_level,
        }
        options.update(overrides)

        logger.info("Starting Rampart on %s:%s", options["host"], options["port"])
        uvicorn.run(app=self.app, **options)
