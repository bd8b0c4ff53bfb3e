"""
Shared test fixtures and helpers for the Rampart test suite.
"""

from typing import Any, Dict, List, Optional

import pytest

from rampart.csrf import CSRFConfig
from rampart.request import Request
from rampart.response import Response
from rampart.tokens import TokenCodec


# ============================================================================
# ASGI Helpers
# ============================================================================


def make_scope(
    method: str = "GET",
    path: str = "/",
    query_string: str = "",
    headers: Optional[List[tuple]] = None,
    scheme: str = "http",
    client: Optional[tuple] = None,
) -> dict:
    """Build a minimal ASGI HTTP scope."""
    raw_headers = []
    if headers:
        for name, value in headers:
            raw_headers.append(
                (name.encode("latin-1") if isinstance(name, str) else name,
                 value.encode("latin-1") if isinstance(value, str) else value)
            )
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": query_string.encode("utf-8"),
        "headers": raw_headers,
        "scheme": scheme,
        "server": ("127.0.0.1", 8000),
        "client": client or ("127.0.0.1", 12345),
        "root_path": "",
    }


def make_receive(body: bytes = b"", *, chunks: Optional[List[bytes]] = None):
    """Create an ASGI receive callable from body bytes or chunked list."""
    if chunks:
        messages = [
            {"type": "http.request", "body": chunk, "more_body": i < len(chunks) - 1}
            for i, chunk in enumerate(chunks)
        ]
    else:
        messages = [{"type": "http.request", "body": body, "more_body": False}]

    idx = 0

    async def receive():
        nonlocal idx
        if idx < len(messages):
            msg = messages[idx]
            idx += 1
            return msg
        return {"type": "http.disconnect"}

    return receive


class SendRecorder:
    """ASGI send callable that keeps every message."""

    def __init__(self):
        self.messages: List[dict] = []

    async def __call__(self, message: dict) -> None:
        self.messages.append(message)

    @property
    def status(self) -> int:
        return self.messages[0]["status"]

    @property
    def headers(self) -> List[tuple]:
        return [
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in self.messages[0]["headers"]
        ]

    @property
    def body(self) -> bytes:
        return b"".join(m.get("body", b"") for m in self.messages[1:])


# ============================================================================
# Request Helpers
# ============================================================================


def make_request(
    method: str = "GET",
    path: str = "/submit",
    *,
    cookie: Optional[str] = None,
    headers: Optional[Dict[str, Any]] = None,
    form: Optional[Dict[str, Any]] = None,
    scheme: str = "http",
) -> Request:
    """Request carrying ``cookie`` as the X-Csrf-Token cookie (if given)."""
    headers = dict(headers or {})
    if cookie is not None:
        headers["Cookie"] = f"X-Csrf-Token={cookie}"
    return Request(method, path, headers=headers, form=form, scheme=scheme)


def make_handler(status: int = 200, body: Any = None, headers: Optional[dict] = None):
    """Terminal handler returning a fixed response and recording every call."""
    calls: List[Request] = []

    async def handler(request: Request) -> Response:
        calls.append(request)
        return Response.json(body if body is not None else {"ok": True}, status=status, headers=headers)

    handler.calls = calls
    return handler


def issued_tokens(response: Response) -> List[str]:
    """Values of every X-Csrf-Token cookie set on ``response``."""
    return [
        issued.value
        for issued in (TokenCodec.parse(c) for c in response.cookies())
        if issued.name == "X-Csrf-Token"
    ]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def token() -> str:
    return TokenCodec.mint()


@pytest.fixture
def csrf_config() -> CSRFConfig:
    return CSRFConfig()


@pytest.fixture
def handler():
    return make_handler()
