"""
Response - HTTP response value built by the terminal handler and decorated
on the way back out of the pipeline.

Provides:
- Multi-value headers (repeated ``Set-Cookie`` survive)
- JSON / text factories
- RFC 6265 cookie rendering
- Header injection validation
- ASGI 3 sending
"""

from __future__ import annotations

import json
from datetime import datetime
from email.utils import formatdate
from typing import (
    Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union
)

from .faults import InvalidHeaderError


def _json_default_serializer(o):
    """Default JSON serializer for non-standard types."""
    if isinstance(o, (set, tuple)):
        return list(o)
    if hasattr(o, "isoformat"):
        return o.isoformat()
    return str(o)


class Response:
    """
    HTTP response.

    Mutable until sent. Ownership travels back up the chain: whichever stage
    last returned it may add headers before returning it in turn.
    """

    def __init__(
        self,
        content: Union[bytes, str, Mapping, Sequence] = b"",
        status: int = 200,
        headers: Optional[Mapping[str, Union[str, Sequence[str]]]] = None,
        media_type: Optional[str] = None,
        *,
        encoding: str = "utf-8",
        validate_headers: bool = True,
    ):
        """
        Initialize Response.

        Args:
            content: Response body (bytes, str, dict/list as JSON)
            status: HTTP status code
            headers: Response headers (supports multi-value)
            media_type: Content-Type override
            encoding: Text encoding (default utf-8)
            validate_headers: Validate headers against injection attacks
        """
        self.status = status
        self._content = content
        self.encoding = encoding
        self.validate_headers = validate_headers

        self._headers: Dict[str, Union[str, List[str]]] = {}
        if headers:
            for key, value in headers.items():
                if isinstance(value, (list, tuple)):
                    for v in value:
                        self.add_header(key, v)
                else:
                    self.add_header(key, value)

        if media_type:
            self._headers["content-type"] = media_type
        elif "content-type" not in self._headers:
            self._headers["content-type"] = self._detect_media_type(content)

    @property
    def headers(self) -> Dict[str, Union[str, List[str]]]:
        return self._headers

    @property
    def body(self) -> bytes:
        """Encoded body bytes."""
        return self._encode_body(self._content)

    def _detect_media_type(self, content: Any) -> str:
        if isinstance(content, (dict, list)):
            return "application/json; charset=utf-8"
        elif isinstance(content, str):
            return "text/plain; charset=utf-8"
        return "application/octet-stream"

    # ========================================================================
    # Factory Methods
    # ========================================================================

    @classmethod
    def json(
        cls,
        obj: Any,
        status: int = 200,
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "Response":
        """Create JSON response."""
        content = json.dumps(obj, default=_json_default_serializer, separators=(",", ":"))
        return cls(
            content=content.encode("utf-8"),
            status=status,
            headers=headers,
            media_type="application/json; charset=utf-8",
        )

    @classmethod
    def text(cls, content: str, status: int = 200, **kwargs) -> "Response":
        """Create plain text response."""
        return cls(
            content=content,
            status=status,
            media_type="text/plain; charset=utf-8",
            **kwargs
        )

    # ========================================================================
    # Cookie Helpers
    # ========================================================================

    def set_cookie(
        self,
        name: str,
        value: str,
        *,
        max_age: Optional[int] = None,
        expires: Optional[datetime] = None,
        path: str = "/",
        domain: Optional[str] = None,
        secure: bool = True,
        httponly: bool = True,
        samesite: Optional[str] = "Lax",
    ) -> None:
        """Append a ``Set-Cookie`` header (existing cookies are kept)."""
        self.add_header("set-cookie", render_cookie(
            name,
            value,
            max_age=max_age,
            expires=expires,
            path=path,
            domain=domain,
            secure=secure,
            httponly=httponly,
            samesite=samesite,
        ))

    def cookies(self) -> List[str]:
        """Every ``Set-Cookie`` value, in the order they were added."""
        value = self._headers.get("set-cookie", [])
        return list(value) if isinstance(value, list) else [value]

    # ========================================================================
    # Header Helpers
    # ========================================================================

    def set_header(self, name: str, value: str) -> None:
        """Set header (replaces existing)."""
        if self.validate_headers:
            self._validate_header(name, value)
        self._headers[name.lower()] = value

    def add_header(self, name: str, value: str) -> None:
        """Add header (supports multiple values)."""
        if self.validate_headers:
            self._validate_header(name, value)

        name_lower = name.lower()
        if name_lower in self._headers:
            existing = self._headers[name_lower]
            if isinstance(existing, list):
                existing.append(value)
            else:
                self._headers[name_lower] = [existing, value]
        else:
            self._headers[name_lower] = value

    def _validate_header(self, name: str, value: str) -> None:
        """Raise InvalidHeaderError on control characters (header splitting)."""
        for char in name:
            if ord(char) < 32 or ord(char) == 127 or char == ":":
                raise InvalidHeaderError(f"Invalid character in header name: {name!r}")
        for char in value:
            if char in ("\r", "\n", "\x00"):
                raise InvalidHeaderError(f"Invalid character in value of header {name!r}")

    # ========================================================================
    # ASGI Send
    # ========================================================================

    async def send_asgi(self, send: Callable[[dict], Awaitable[None]]) -> None:
        """Send response via ASGI (``http.response.start`` then one body message)."""
        body = self.body
        if "content-length" not in self._headers:
            self._headers["content-length"] = str(len(body))

        await send({
            "type": "http.response.start",
            "status": self.status,
            "headers": self._prepare_headers(),
        })
        await send({
            "type": "http.response.body",
            "body": body,
            "more_body": False,
        })

    def _prepare_headers(self) -> List[tuple]:
        """Convert headers to the ASGI list of byte tuples."""
        headers_list = []
        for name, value in self._headers.items():
            name_bytes = name.encode("latin-1")
            if isinstance(value, list):
                for v in value:
                    headers_list.append((name_bytes, v.encode("latin-1")))
            else:
                headers_list.append((name_bytes, value.encode("latin-1")))
        return headers_list

    def _encode_body(self, content: Any) -> bytes:
        if isinstance(content, bytes):
            return content
        elif isinstance(content, str):
            return content.encode(self.encoding)
        elif isinstance(content, (dict, list)):
            return json.dumps(content, default=_json_default_serializer).encode(self.encoding)
        return str(content).encode(self.encoding)

    def __repr__(self) -> str:
        return f"Response(status={self.status})"


def render_cookie(
    name: str,
    value: str,
    *,
    max_age: Optional[int] = None,
    expires: Optional[datetime] = None,
    path: str = "/",
    domain: Optional[str] = None,
    secure: bool = True,
    httponly: bool = True,
    samesite: Optional[str] = "Lax",
) -> str:
    """Render a ``Set-Cookie`` header value."""
    cookie_parts = [f"{name}={value}"]

    if expires is not None:
        cookie_parts.append(f"Expires={formatdate(expires.timestamp(), usegmt=True)}")

    if max_age is not None:
        cookie_parts.append(f"Max-Age={max_age}")

    cookie_parts.append(f"Path={path}")

    if domain:
        cookie_parts.append(f"Domain={domain}")

    if secure:
        cookie_parts.append("Secure")

    if httponly:
        cookie_parts.append("HttpOnly")

    if samesite:
        cookie_parts.append(f"SameSite={samesite}")

    return "; ".join(cookie_parts)

