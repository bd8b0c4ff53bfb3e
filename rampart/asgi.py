"""
ASGI adapter - Bridges the ASGI protocol to a Rampart pipeline.

The pipeline is built once and shared; every HTTP request gets its own
Request, cursor chain and Response.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from .faults import Fault
from .middleware import MiddlewarePipeline
from .request import Request
from .response import Response


class ASGIAdapter:
    """
    ASGI 3 application wrapping a MiddlewarePipeline.

    Handles ``http`` and ``lifespan`` scopes; websocket connections are
    refused. Anything that escapes the pipeline is logged and answered with
    a plain ``500 Internal Server Error`` so one request can never take the
    server down.
    """

    __slots__ = ("pipeline", "max_body_size", "on_startup", "on_shutdown", "logger")

    def __init__(
        self,
        pipeline: MiddlewarePipeline,
        *,
        max_body_size: int = 1_048_576,
        on_startup: Optional[Callable[[], Awaitable[None]]] = None,
        on_shutdown: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.pipeline = pipeline
        self.max_body_size = max_body_size
        self.on_startup = on_startup
        self.on_shutdown = on_shutdown
        self.logger = logging.getLogger("rampart.asgi")

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        scope_type = scope["type"]
        if scope_type == "http":
            await self.handle_http(scope, receive, send)
        elif scope_type == "lifespan":
            await self.handle_lifespan(scope, receive, send)
        elif scope_type == "websocket":
            self.logger.warning("WebSocket connection attempt refused")
            await send({"type": "websocket.close", "code": 1003})

    async def handle_http(self, scope: dict, receive: Callable, send: Callable):
        try:
            request = await Request.from_asgi(scope, receive, max_body_size=self.max_body_size)
        except Fault as fault:
            # Raised before the pipeline runs, so the exception stage never sees it
            self.logger.warning("Rejected request %s %s: %s", scope.get("method"), scope.get("path"), fault)
            response = Response.json(
                {"error": {"code": fault.code, "message": fault.message}},
                status=fault.status,
            )
            await response.send_asgi(send)
            return

        try:
            response = await self.pipeline.handle(request)
        except Exception as e:
            self.logger.error(f"Critical error in request pipeline: {e}", exc_info=True)
            response = Response.text("Internal Server Error", status=500)

        await response.send_asgi(send)

    async def handle_lifespan(self, scope: dict, receive: Callable, send: Callable):
        """Handle ASGI lifespan events."""
        while True:
            message = await receive()

            if message["type"] == "lifespan.startup":
                try:
                    if self.on_startup:
                        await self.on_startup()
                    await send({"type": "lifespan.startup.complete"})
                except Exception as e:
                    self.logger.error(f"Startup error: {e}", exc_info=True)
                    await send({"type": "lifespan.startup.failed", "message": str(e)})
                    raise

            elif message["type"] == "lifespan.shutdown":
                try:
                    if self.on_shutdown:
                        await self.on_shutdown()
                    await send({"type": "lifespan.shutdown.complete"})
                except Exception as e:
                    self.logger.error(f"Shutdown error: {e}", exc_info=True)
                    await send({"type": "lifespan.shutdown.failed", "message": str(e)})
                break
