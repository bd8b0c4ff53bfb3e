"""
Request - Immutable request value passed along the pipeline.

Provides:
- Method, path, case-insensitive headers, cookies and parsed form fields
- Path pattern matching with ``*`` wildcards
- Copy-on-write helpers (``replace``, ``with_header``, ``with_form``)
- ``from_asgi`` builder that reads and parses the body once
"""

from __future__ import annotations

import json as stdlib_json
import re
from functools import lru_cache
from typing import (
    Any, Awaitable, Callable, Mapping, Optional, Pattern, Tuple, Union
)
from urllib.parse import parse_qsl

from ._datastructures import Headers, MultiDict
from .faults import Fault, FaultDomain, Severity


HTTP_METHODS = frozenset({
    "GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT",
})


# ============================================================================
# Request Faults
# ============================================================================

class RequestFault(Fault):
    """Base class for request-related faults."""
    domain = FaultDomain.IO
    severity = Severity.WARN


class BadRequest(RequestFault):
    """Malformed request (400)."""
    code = "BAD_REQUEST"
    message = "Bad request"
    status = 400

    def __init__(self, message: str = None, **metadata):
        super().__init__(
            code=self.code,
            message=message or self.message,
            public=True,
            metadata=metadata,
        )


class PayloadTooLarge(RequestFault):
    """Request payload exceeds limits (413)."""
    code = "PAYLOAD_TOO_LARGE"
    message = "Payload too large"
    status = 413

    def __init__(self, message: str = None, **metadata):
        super().__init__(
            code=self.code,
            message=message or self.message,
            public=True,
            metadata=metadata,
        )


# ============================================================================
# Path patterns
# ============================================================================

@lru_cache(maxsize=256)
def _compile_pattern(pattern: str) -> Pattern[str]:
    """``*`` matches any run of characters (including ``/``); the rest is literal."""
    normalized = "/" + pattern.lstrip("/")
    parts = [re.escape(part) for part in normalized.split("*")]
    return re.compile(".*".join(parts))


def path_matches(path: str, pattern: str) -> bool:
    """Exact-or-wildcard match of ``pattern`` against ``path``."""
    return _compile_pattern(pattern).fullmatch("/" + path.lstrip("/")) is not None


def _parse_cookies(cookie_header: str) -> dict:
    """
    Parse a ``Cookie`` header pair by pair.

    A malformed pair is skipped without dropping the others; the first
    occurrence of a name wins.
    """
    cookies = {}
    for pair in cookie_header.split(";"):
        name, sep, value = pair.partition("=")
        name = name.strip()
        if not sep or not name:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        cookies.setdefault(name, value)
    return cookies


# ============================================================================
# Request Class
# ============================================================================

class Request:
    """
    Immutable request view.

    A stage that wants to change what later stages see builds a new
    Request with ``replace()``/``with_header()``/``with_form()`` and passes
    that one on; the original is left untouched.
    """

    __slots__ = (
        "_method", "_path", "_headers", "_cookies", "_form",
        "_query_string", "_client", "_scheme",
    )

    def __init__(
        self,
        method: str = "GET",
        path: str = "/",
        *,
        headers: Optional[Union[Headers, Mapping[str, Any]]] = None,
        cookies: Optional[Mapping[str, str]] = None,
        form: Optional[Union[MultiDict, Mapping[str, Any]]] = None,
        query_string: str = "",
        client: Optional[Tuple[str, int]] = None,
        scheme: str = "http",
    ):
        method = method.upper()
        if method not in HTTP_METHODS:
            raise BadRequest(f"Unsupported method {method!r}", method=method)

        if not isinstance(headers, Headers):
            headers = Headers.from_mapping(headers)
        if cookies is None:
            # HTTP/2 may split cookies across several headers
            cookies = _parse_cookies("; ".join(headers.get_all("cookie")))
        if not isinstance(form, MultiDict):
            form = MultiDict(form)

        object.__setattr__(self, "_method", method)
        object.__setattr__(self, "_path", path or "/")
        object.__setattr__(self, "_headers", headers)
        object.__setattr__(self, "_cookies", dict(cookies))
        object.__setattr__(self, "_form", form)
        object.__setattr__(self, "_query_string", query_string)
        object.__setattr__(self, "_client", client)
        object.__setattr__(self, "_scheme", scheme)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Request is immutable; use replace()")

    def __repr__(self) -> str:
        return f"Request({self._method} {self._path})"

    # ========================================================================
    # Basic Properties
    # ========================================================================

    @property
    def method(self) -> str:
        return self._method

    @property
    def path(self) -> str:
        return self._path

    @property
    def query_string(self) -> str:
        return self._query_string

    @property
    def client(self) -> Optional[Tuple[str, int]]:
        return self._client

    @property
    def scheme(self) -> str:
        return self._scheme

    @property
    def headers(self) -> Headers:
        return self._headers

    @property
    def cookies(self) -> Mapping[str, str]:
        return dict(self._cookies)

    @property
    def form(self) -> MultiDict:
        """Parsed body fields (urlencoded form or top-level JSON object)."""
        return self._form

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get single header (case-insensitive)."""
        return self._headers.get(name, default)

    def header_line(self, name: str) -> str:
        """Every value of ``name`` joined with ``", "``; ``""`` when absent."""
        return self._headers.line(name)

    def cookie(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self._cookies.get(name, default)

    def path_is(self, *patterns: str) -> bool:
        """True if the path matches any of ``patterns`` (``*`` is a wildcard)."""
        return any(path_matches(self._path, pattern) for pattern in patterns)

    # ========================================================================
    # Copy-on-write
    # ========================================================================

    def replace(self, **changes: Any) -> "Request":
        """Return a new Request with the given fields replaced."""
        fields = {
            "method": self._method,
            "path": self._path,
            "headers": self._headers,
            "cookies": self._cookies,
            "form": self._form,
            "query_string": self._query_string,
            "client": self._client,
            "scheme": self._scheme,
        }
        unknown = set(changes) - set(fields)
        if unknown:
            raise TypeError(f"Unknown request fields: {', '.join(sorted(unknown))}")
        fields.update(changes)
        return Request(fields.pop("method"), fields.pop("path"), **fields)

    def with_header(self, name: str, value: str) -> "Request":
        return self.replace(headers=self._headers.with_header(name, value))

    def with_form(self, form: Union[MultiDict, Mapping[str, Any]]) -> "Request":
        return self.replace(form=form)

    # ========================================================================
    # ASGI
    # ========================================================================

    @classmethod
    async def from_asgi(
        cls,
        scope: Mapping[str, Any],
        receive: Callable[[], Awaitable[dict]],
        *,
        max_body_size: int = 1_048_576,
    ) -> "Request":
        """
        Build a Request from an ASGI HTTP scope, reading the whole body.

        Raises:
            PayloadTooLarge: If the body exceeds ``max_body_size``
            BadRequest: If a JSON body is malformed
        """
        headers = Headers(scope.get("headers", []))
        body = await _read_body(receive, max_body_size)

        return cls(
            scope.get("method", "GET"),
            scope.get("path", "/"),
            headers=headers,
            form=_parse_body(headers.get("content-type", ""), body),
            query_string=scope.get("query_string", b"").decode("latin-1"),
            client=tuple(scope["client"]) if scope.get("client") else None,
            scheme=scope.get("scheme", "http"),
        )


async def _read_body(receive: Callable[[], Awaitable[dict]], limit: int) -> bytes:
    chunks = []
    total = 0
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            break
        chunk = message.get("body", b"")
        total += len(chunk)
        if total > limit:
            raise PayloadTooLarge(max_allowed=limit)
        chunks.append(chunk)
        if not message.get("more_body", False):
            break
    return b"".join(chunks)


def _parse_body(content_type: str, body: bytes) -> MultiDict:
    """Parse urlencoded forms and JSON objects into string fields."""
    if not body:
        return MultiDict()

    media_type, _, params = content_type.partition(";")
    media_type = media_type.strip().lower()
    charset = "utf-8"
    for param in params.split(";"):
        key, _, value = param.strip().partition("=")
        if key.lower() == "charset" and value:
            charset = value.strip('"')

    is_json = media_type == "application/json" or media_type.endswith("+json")
    if media_type != "application/x-www-form-urlencoded" and not is_json:
        return MultiDict()

    try:
        text = body.decode(charset, errors="strict" if is_json else "replace")
    except LookupError:
        raise BadRequest("Unsupported charset", charset=charset)
    except UnicodeDecodeError as e:
        raise BadRequest("Malformed JSON body", error=str(e))

    if not is_json:
        return MultiDict(parse_qsl(text, keep_blank_values=True))

    try:
        data = stdlib_json.loads(text)
    except ValueError as e:
        raise BadRequest("Malformed JSON body", error=str(e))
    if isinstance(data, dict):
        return MultiDict({k: v for k, v in data.items() if isinstance(v, str)})
    return MultiDict()
