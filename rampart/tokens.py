"""
CSRF token minting and the cookie that carries it.

Tokens are 32 bytes from the OS CSPRNG, rendered as 64 lowercase hex
characters. The server keeps no copy: a token is only ever compared with
the value the client echoes back.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from .response import render_cookie


TOKEN_BYTES = 32
DEFAULT_COOKIE_NAME = "X-Csrf-Token"
DEFAULT_EXPIRES = 9 * 3600


@dataclass(frozen=True)
class IssuedToken:
    """A token as read back from a ``Set-Cookie`` value."""
    name: str
    value: str
    expires: Optional[datetime] = None
    max_age: Optional[int] = None
    path: Optional[str] = None
    secure: bool = False
    httponly: bool = False
    samesite: Optional[str] = None


class TokenCodec:
    """
    Mints tokens and renders/parses the transport cookie.

    Args:
        cookie_name: Cookie the token travels in.
        expires: Lifetime in seconds from issuance.
        path: Cookie ``Path``.
        domain: Cookie ``Domain`` (omitted when None).
        secure: Default ``Secure`` flag; ``render`` may override per request.
        samesite: ``SameSite`` policy.
    """

    __slots__ = ("cookie_name", "expires", "path", "domain", "secure", "samesite")

    def __init__(
        self,
        cookie_name: str = DEFAULT_COOKIE_NAME,
        expires: int = DEFAULT_EXPIRES,
        *,
        path: str = "/",
        domain: Optional[str] = None,
        secure: bool = False,
        samesite: Optional[str] = "Lax",
    ):
        self.cookie_name = cookie_name
        self.expires = expires
        self.path = path
        self.domain = domain
        self.secure = secure
        self.samesite = samesite

    @staticmethod
    def mint() -> str:
        """New token: 32 CSPRNG bytes as lowercase hex."""
        return secrets.token_bytes(TOKEN_BYTES).hex()

    def render(
        self,
        token: str,
        *,
        issued_at: Optional[float] = None,
        secure: Optional[bool] = None,
    ) -> str:
        """
        Render the ``Set-Cookie`` value for ``token``.

        Never ``HttpOnly``: client script has to read the cookie to echo it
        in a header.
        """
        if issued_at is None:
            issued_at = time.time()
        return render_cookie(
            self.cookie_name,
            token,
            expires=datetime.fromtimestamp(issued_at + self.expires, tz=timezone.utc),
            max_age=self.expires,
            path=self.path,
            domain=self.domain,
            secure=self.secure if secure is None else secure,
            httponly=False,
            samesite=self.samesite,
        )

    @staticmethod
    def parse(set_cookie: str) -> IssuedToken:
        """
        Parse a rendered ``Set-Cookie`` value.

        Raises:
            ValueError: If the value has no ``name=value`` pair.
        """
        pair, *attributes = [part.strip() for part in set_cookie.split(";")]
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"Not a cookie: {set_cookie!r}")

        fields = {"name": name.strip(), "value": value.strip()}
        for attribute in attributes:
            key, _, attr_value = attribute.partition("=")
            key = key.strip().lower()
            if key == "expires":
                fields["expires"] = parsedate_to_datetime(attr_value.strip())
            elif key == "max-age":
                fields["max_age"] = int(attr_value)
            elif key == "path":
                fields["path"] = attr_value.strip()
            elif key == "samesite":
                fields["samesite"] = attr_value.strip()
            elif key == "secure":
                fields["secure"] = True
            elif key == "httponly":
                fields["httponly"] = True
        return IssuedToken(**fields)
