"""
CSRF protection - Double Submit Cookie.

The server issues a random token in the ``X-Csrf-Token`` cookie on every
response. A state-changing request must echo the current cookie value in a
header (``X-Csrf-Token`` or ``X-Xsrf-Token``) or in the ``__token`` form
field. Cross-origin pages can make the browser send the cookie but cannot
read it, so they cannot produce the matching echo.

Protection Flow:
    1. ``should_verify``: method is POST/PUT/PATCH and the path is not
       excepted.
    2. Missing cookie -> ``CSRFError(MISSING_COOKIE)``.
    3. Empty or different submitted token -> ``CSRFError(MISMATCH)``.
    4. Run the rest of the chain.
    5. Always append a freshly minted token cookie to the response, also
       when verification was skipped.

The stage raises; rendering the 419 is the exception stage's job, so that
stage must sit outside this one.

Example::

    pipeline = MiddlewarePipeline(
        [ExceptionMiddleware(), VerifyCSRFToken(CSRFConfig(except_paths=("/",)))],
        handler,
    )
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple

from .faults import CSRFError, CSRFReason
from .middleware import Next
from .request import Request, path_matches
from .response import Response
from .tokens import DEFAULT_COOKIE_NAME, DEFAULT_EXPIRES, TokenCodec


logger = logging.getLogger("rampart.csrf")


@dataclass(frozen=True)
class CSRFConfig:
    """
    Immutable CSRF settings, shared by every request.

    Attributes:
        cookie_name: Cookie carrying the issued token.
        header_names: Headers checked for the echoed token, in order.
        field_name: Form field checked when no header carries a token.
        except_paths: Path patterns never verified (``*`` wildcard).
        expires: Cookie lifetime in seconds.
        verify_methods: Methods that require verification.
        cookie_path: Cookie ``Path``.
        cookie_domain: Cookie ``Domain``.
        cookie_secure: ``Secure`` flag; None follows the request scheme.
        cookie_samesite: ``SameSite`` policy.
    """

    cookie_name: str = DEFAULT_COOKIE_NAME
    header_names: Tuple[str, ...] = ("X-Csrf-Token", "X-Xsrf-Token")
    field_name: str = "__token"
    except_paths: Tuple[str, ...] = ("/",)
    expires: int = DEFAULT_EXPIRES
    verify_methods: FrozenSet[str] = frozenset({"POST", "PUT", "PATCH"})
    cookie_path: str = "/"
    cookie_domain: Optional[str] = None
    cookie_secure: Optional[bool] = None
    cookie_samesite: Optional[str] = "Lax"

    def __post_init__(self):
        # Accept lists/sets from config files while keeping the value hashable
        object.__setattr__(self, "header_names", tuple(self.header_names))
        object.__setattr__(self, "except_paths", tuple(self.except_paths))
        object.__setattr__(
            self, "verify_methods", frozenset(m.upper() for m in self.verify_methods)
        )
        if self.expires <= 0:
            raise ValueError("expires must be positive")

    def codec(self) -> TokenCodec:
        return TokenCodec(
            self.cookie_name,
            self.expires,
            path=self.cookie_path,
            domain=self.cookie_domain,
            secure=bool(self.cookie_secure),
            samesite=self.cookie_samesite,
        )


class VerifyCSRFToken:
    """
    Pipeline stage enforcing the double-submit check and rotating the token.

    Args:
        config: CSRF settings; defaults match the wire contract.
    """

    def __init__(self, config: Optional[CSRFConfig] = None):
        self.config = config or CSRFConfig()
        self.codec = self.config.codec()

    # ── Exemption ────────────────────────────────────────────────────────

    def should_verify(self, request: Request) -> bool:
        if request.method not in self.config.verify_methods:
            return False
        return not any(
            path_matches(request.path, pattern) for pattern in self.config.except_paths
        )

    # ── Extraction ───────────────────────────────────────────────────────

    def parse_token(self, request: Request) -> str:
        """Echoed token: first non-empty header, else the form field, else ``""``."""
        for name in self.config.header_names:
            token = request.header_line(name)
            if token:
                return token
        return request.form.get(self.config.field_name) or ""

    # ── Validation ───────────────────────────────────────────────────────

    def verify(self, request: Request) -> None:
        """
        Raises:
            CSRFError: MISSING_COOKIE when no token cookie was sent,
                MISMATCH when the echo is empty or differs.
        """
        previous = request.cookie(self.config.cookie_name)
        if previous is None:
            raise CSRFError(CSRFReason.MISSING_COOKIE)

        token = self.parse_token(request)
        if not token or not hmac.compare_digest(
            token.encode("utf-8"), previous.encode("utf-8")
        ):
            raise CSRFError(CSRFReason.MISMATCH)

    # ── Main Handler ─────────────────────────────────────────────────────

    async def __call__(self, request: Request, next: Next) -> Response:
        if self.should_verify(request):
            self.verify(request)
        else:
            logger.debug("CSRF check skipped: %s %s", request.method, request.path)

        response = await next(request)
        self.add_cookie_to_response(request, response)
        return response

    def add_cookie_to_response(self, request: Request, response: Response) -> Response:
        """Append a freshly minted token cookie."""
        secure = self.config.cookie_secure
        if secure is None:
            secure = request.scheme == "https"
        response.add_header("set-cookie", self.codec.render(self.codec.mint(), secure=secure))
        return response
