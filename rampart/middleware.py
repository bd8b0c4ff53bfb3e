"""
Middleware system - Ordered async pipeline with an index cursor.

A stage is any ``async (request, next) -> Response`` callable. ``next`` is a
``Next`` cursor pointing at the following stage; awaiting it runs the rest
of the chain. A stage short-circuits by returning without awaiting it.
"""

from __future__ import annotations

import logging
import os
import time
import traceback
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, List, Optional, Sequence, Tuple

from .faults import CSRFError
from .request import Request
from .response import Response

Handler = Callable[[Request], Awaitable[Response]]
Stage = Callable[[Request, "Next"], Awaitable[Response]]


class Next:
    """
    Continuation cursor: runs ``stages[index:]`` then the terminal handler.

    One chain of cursors is created per request; the stage tuple it points
    at is shared and never modified.
    """

    __slots__ = ("_stages", "_handler", "_index")

    def __init__(self, stages: Tuple[Stage, ...], handler: Handler, index: int = 0):
        self._stages = stages
        self._handler = handler
        self._index = index

    @property
    def index(self) -> int:
        return self._index

    async def __call__(self, request: Request) -> Response:
        if self._index < len(self._stages):
            stage = self._stages[self._index]
            return await stage(request, Next(self._stages, self._handler, self._index + 1))
        return await self._handler(request)


class MiddlewarePipeline:
    """
    Immutable ordered chain of stages ending in a terminal handler.

    ``stages[0]`` is outermost: it sees the request first and the response
    last.
    """

    __slots__ = ("_stages", "_handler")

    def __init__(self, stages: Sequence[Stage], handler: Handler):
        self._stages: Tuple[Stage, ...] = tuple(stages)
        self._handler = handler

    @property
    def stages(self) -> Tuple[Stage, ...]:
        return self._stages

    @property
    def handler(self) -> Handler:
        return self._handler

    async def handle(self, request: Request) -> Response:
        """Run the whole chain for one request."""
        return await Next(self._stages, self._handler)(request)

    def partial(self, start: int) -> Next:
        """Cursor over the chain starting at ``stages[start]``."""
        if not 0 <= start <= len(self._stages):
            raise IndexError(f"Pipeline has {len(self._stages)} stages, cannot start at {start}")
        return Next(self._stages, self._handler, start)

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[Stage]:
        return iter(self._stages)

    def __repr__(self) -> str:
        names = [_stage_name(stage) for stage in self._stages]
        return f"MiddlewarePipeline({' -> '.join(names + [_stage_name(self._handler)])})"


def _stage_name(obj) -> str:
    return getattr(obj, "__name__", None) or type(obj).__name__


@dataclass
class MiddlewareDescriptor:
    """Descriptor for middleware registration."""
    middleware: Stage
    priority: int
    name: str


class MiddlewareStack:
    """
    Mutable registry used while assembling a pipeline.

    Stages are ordered by priority (lower runs first, ties keep insertion
    order). ``build`` freezes the current order into a MiddlewarePipeline;
    later ``add`` calls do not affect pipelines already built.
    """

    def __init__(self):
        self.middlewares: List[MiddlewareDescriptor] = []

    def add(
        self,
        middleware: Stage,
        priority: int = 50,
        name: Optional[str] = None,
    ) -> "MiddlewareStack":
        if name is None:
            name = _stage_name(middleware)
        self.middlewares.append(MiddlewareDescriptor(middleware, priority, name))
        return self

    def names(self) -> List[str]:
        return [desc.name for desc in sorted(self.middlewares, key=lambda d: d.priority)]

    def build(self, final_handler: Handler) -> MiddlewarePipeline:
        ordered = sorted(self.middlewares, key=lambda d: d.priority)
        return MiddlewarePipeline([desc.middleware for desc in ordered], final_handler)


# ============================================================================
# Default stages
# ============================================================================

class ExceptionMiddleware:
    """
    Converts faults escaping the rest of the chain into responses.

    ``CSRFError`` becomes its status (419); anything else becomes a 500.
    The fault is not re-raised. Bodies never include tracebacks unless
    ``debug`` is set.
    """

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.logger = logging.getLogger("rampart.exceptions")

    async def __call__(self, request: Request, next: Next) -> Response:
        try:
            return await next(request)

        except CSRFError as e:
            self.logger.warning(
                "CSRF check failed (%s): %s %s",
                e.reason.value, request.method, request.path,
            )
            return Response.json(
                {"error": {"code": e.code, "message": e.message}},
                status=e.status,
            )

        except Exception as e:
            self.logger.error(
                "Unhandled exception in %s %s: %s",
                request.method, request.path, e, exc_info=True,
            )
            error_data = {"error": "Internal server error"}
            if self.debug:
                error_data["detail"] = str(e)
                error_data["traceback"] = traceback.format_exc()
            return Response.json(error_data, status=500)


class RequestIdMiddleware:
    """Reuses or generates ``X-Request-ID`` and echoes it on the response."""

    def __init__(self, header_name: str = "X-Request-ID"):
        self.header_name = header_name

    async def __call__(self, request: Request, next: Next) -> Response:
        request_id = request.header(self.header_name)
        if not request_id:
            request_id = os.urandom(16).hex()
            request = request.with_header(self.header_name, request_id)

        response = await next(request)
        response.set_header(self.header_name, request_id)
        return response


class LoggingMiddleware:
    """Logs request/response with timing.

    Checks ``logger.isEnabledFor(INFO)`` first and skips all work when
    access logging is off.
    """

    def __init__(self, slow_threshold_ms: float = 1000.0):
        self.logger = logging.getLogger("rampart.requests")
        self.slow_threshold_ms = slow_threshold_ms

    async def __call__(self, request: Request, next: Next) -> Response:
        if not self.logger.isEnabledFor(logging.INFO):
            return await next(request)

        start = time.monotonic()
        response = await next(request)
        elapsed_ms = (time.monotonic() - start) * 1000.0

        self.logger.info(
            "%s %s - %d (%.1fms)",
            request.method, request.path, response.status, elapsed_ms,
        )

        if elapsed_ms > self.slow_threshold_ms:
            self.logger.warning(
                "Slow request: %s %s took %.1fms",
                request.method, request.path, elapsed_ms,
            )

        return response
