"""
Tests for the double-submit-cookie stage (csrf.py).

The stage is driven both on its own (with a fake ``next``) and inside a
pipeline behind the exception stage, which is how it runs in production.
"""

import pytest

from rampart.csrf import CSRFConfig, VerifyCSRFToken
from rampart.faults import CSRFError, CSRFReason
from rampart.middleware import ExceptionMiddleware, MiddlewarePipeline
from rampart.response import Response
from rampart.tokens import TokenCodec

from tests.conftest import issued_tokens, make_handler, make_request


def make_pipeline(handler, config=None):
    return MiddlewarePipeline(
        [ExceptionMiddleware(), VerifyCSRFToken(config or CSRFConfig())],
        handler,
    )


# ============================================================================
# CSRFConfig
# ============================================================================

class TestCSRFConfig:

    def test_defaults_match_wire_contract(self):
        config = CSRFConfig()
        assert config.cookie_name == "X-Csrf-Token"
        assert config.header_names == ("X-Csrf-Token", "X-Xsrf-Token")
        assert config.field_name == "__token"
        assert config.except_paths == ("/",)
        assert config.expires == 32400
        assert config.verify_methods == frozenset({"POST", "PUT", "PATCH"})

    def test_is_frozen(self):
        config = CSRFConfig()
        with pytest.raises(Exception):
            config.expires = 10

    def test_normalises_sequences(self):
        config = CSRFConfig(except_paths=["/a", "/b"], verify_methods=["post", "delete"])
        assert config.except_paths == ("/a", "/b")
        assert config.verify_methods == frozenset({"POST", "DELETE"})

    def test_rejects_non_positive_expiry(self):
        with pytest.raises(ValueError):
            CSRFConfig(expires=0)


# ============================================================================
# should_verify
# ============================================================================

class TestShouldVerify:

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH"])
    def test_state_changing_methods_are_verified(self, method):
        assert VerifyCSRFToken().should_verify(make_request(method, "/submit"))

    @pytest.mark.parametrize("method", ["GET", "HEAD", "OPTIONS", "DELETE"])
    def test_other_methods_are_not_verified(self, method):
        assert not VerifyCSRFToken().should_verify(make_request(method, "/submit"))

    def test_root_is_excepted_by_default(self):
        assert not VerifyCSRFToken().should_verify(make_request("POST", "/"))

    def test_wildcard_exception(self):
        csrf = VerifyCSRFToken(CSRFConfig(except_paths=("/webhooks/*",)))
        assert not csrf.should_verify(make_request("POST", "/webhooks/stripe"))
        assert not csrf.should_verify(make_request("POST", "/webhooks/a/b"))
        assert csrf.should_verify(make_request("POST", "/webhook"))
        assert csrf.should_verify(make_request("POST", "/"))

    def test_exact_exception_does_not_match_prefix(self):
        csrf = VerifyCSRFToken(CSRFConfig(except_paths=("/api",)))
        assert not csrf.should_verify(make_request("POST", "/api"))
        assert csrf.should_verify(make_request("POST", "/api/users"))

    def test_empty_exception_set_verifies_everything(self):
        csrf = VerifyCSRFToken(CSRFConfig(except_paths=()))
        assert csrf.should_verify(make_request("POST", "/"))

    def test_exemption_check_is_idempotent(self):
        csrf = VerifyCSRFToken()
        for path in ("/", "/submit"):
            request = make_request("POST", path)
            assert csrf.should_verify(request) == csrf.should_verify(request)


# ============================================================================
# parse_token
# ============================================================================

class TestParseToken:

    def test_csrf_header_wins(self):
        request = make_request(
            "POST",
            headers={"X-Csrf-Token": "a", "X-Xsrf-Token": "b"},
            form={"__token": "c"},
        )
        assert VerifyCSRFToken().parse_token(request) == "a"

    def test_xsrf_header_second(self):
        request = make_request("POST", headers={"X-Xsrf-Token": "b"}, form={"__token": "c"})
        assert VerifyCSRFToken().parse_token(request) == "b"

    def test_empty_header_falls_through(self):
        request = make_request("POST", headers={"X-Csrf-Token": ""}, form={"__token": "c"})
        assert VerifyCSRFToken().parse_token(request) == "c"

    def test_header_lookup_is_case_insensitive(self):
        request = make_request("POST", headers={"x-csrf-token": "a"})
        assert VerifyCSRFToken().parse_token(request) == "a"

    def test_nothing_submitted_is_empty_string(self):
        assert VerifyCSRFToken().parse_token(make_request("POST")) == ""


# ============================================================================
# verify
# ============================================================================

class TestVerify:

    def test_missing_cookie(self, token):
        request = make_request("POST", headers={"X-Csrf-Token": token})
        with pytest.raises(CSRFError) as exc_info:
            VerifyCSRFToken().verify(request)
        assert exc_info.value.reason is CSRFReason.MISSING_COOKIE

    def test_mismatch(self, token):
        request = make_request("POST", cookie=token, headers={"X-Csrf-Token": TokenCodec.mint()})
        with pytest.raises(CSRFError) as exc_info:
            VerifyCSRFToken().verify(request)
        assert exc_info.value.reason is CSRFReason.MISMATCH

    def test_empty_submission_never_matches_empty_cookie(self):
        request = make_request("POST", headers={"Cookie": "X-Csrf-Token="})
        assert request.cookie("X-Csrf-Token") == ""
        with pytest.raises(CSRFError) as exc_info:
            VerifyCSRFToken().verify(request)
        assert exc_info.value.reason is CSRFReason.MISMATCH

    def test_match(self, token):
        request = make_request("POST", cookie=token, headers={"X-Csrf-Token": token})
        VerifyCSRFToken().verify(request)

    def test_comparison_uses_compare_digest(self, token, monkeypatch):
        import rampart.csrf as csrf_mod
        calls = []
        real = csrf_mod.hmac.compare_digest

        def spy(a, b):
            calls.append((a, b))
            return real(a, b)

        monkeypatch.setattr(csrf_mod.hmac, "compare_digest", spy)
        VerifyCSRFToken().verify(make_request("POST", cookie=token, headers={"X-Csrf-Token": token}))
        assert calls


# ============================================================================
# Stage behaviour
# ============================================================================

class TestStage:

    @pytest.mark.asyncio
    async def test_raises_instead_of_rendering(self, token):
        csrf = VerifyCSRFToken()
        handler = make_handler()
        with pytest.raises(CSRFError):
            await csrf(make_request("POST", cookie=token, headers={"X-Csrf-Token": "x"}), handler)
        assert handler.calls == []

    @pytest.mark.asyncio
    async def test_appends_cookie_without_dropping_existing_ones(self, token):
        csrf = VerifyCSRFToken()

        async def next_handler(request):
            response = Response.json({"ok": True})
            response.set_cookie("session", "s1")
            return response

        response = await csrf(make_request("GET"), next_handler)
        cookies = response.cookies()
        assert len(cookies) == 2
        assert cookies[0].startswith("session=s1")
        assert cookies[1].startswith("X-Csrf-Token=")

    @pytest.mark.asyncio
    async def test_secure_follows_scheme_when_unset(self):
        csrf = VerifyCSRFToken()
        https = await csrf(make_request("GET", scheme="https"), make_handler())
        http = await csrf(make_request("GET", scheme="http"), make_handler())
        assert TokenCodec.parse(https.cookies()[0]).secure is True
        assert TokenCodec.parse(http.cookies()[0]).secure is False

    @pytest.mark.asyncio
    async def test_secure_forced_by_config(self):
        csrf = VerifyCSRFToken(CSRFConfig(cookie_secure=True))
        response = await csrf(make_request("GET", scheme="http"), make_handler())
        assert TokenCodec.parse(response.cookies()[0]).secure is True

    @pytest.mark.asyncio
    async def test_custom_expiry_is_rendered(self):
        csrf = VerifyCSRFToken(CSRFConfig(expires=120))
        response = await csrf(make_request("GET"), make_handler())
        assert TokenCodec.parse(response.cookies()[0]).max_age == 120


# ============================================================================
# Through the pipeline
# ============================================================================

class TestPipelineBehaviour:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["GET", "HEAD", "OPTIONS", "DELETE"])
    async def test_safe_methods_skip_verification_and_rotate(self, method):
        handler = make_handler()
        request = make_request(method, cookie="stale", headers={"X-Csrf-Token": "other"})
        response = await make_pipeline(handler).handle(request)
        assert response.status == 200
        assert len(handler.calls) == 1
        tokens = issued_tokens(response)
        assert len(tokens) == 1
        assert tokens[0] != "stale"

    @pytest.mark.asyncio
    async def test_excepted_path_skips_verification(self):
        handler = make_handler()
        response = await make_pipeline(handler).handle(make_request("POST", "/"))
        assert response.status == 200
        assert len(handler.calls) == 1
        assert len(issued_tokens(response)) == 1

    @pytest.mark.asyncio
    async def test_header_match_reaches_handler_and_rotates(self, token):
        handler = make_handler(status=201)
        request = make_request("POST", cookie=token, headers={"X-Csrf-Token": token})
        response = await make_pipeline(handler).handle(request)
        assert response.status == 201
        assert len(handler.calls) == 1
        tokens = issued_tokens(response)
        assert len(tokens) == 1
        assert tokens[0] != token

    @pytest.mark.asyncio
    async def test_xsrf_header_match(self, token):
        handler = make_handler()
        request = make_request("PUT", cookie=token, headers={"X-Xsrf-Token": token})
        response = await make_pipeline(handler).handle(request)
        assert response.status == 200

    @pytest.mark.asyncio
    async def test_mismatch_is_419_and_handler_not_reached(self, token):
        handler = make_handler()
        request = make_request("POST", cookie=token, headers={"X-Csrf-Token": TokenCodec.mint()})
        response = await make_pipeline(handler).handle(request)
        assert response.status == 419
        assert handler.calls == []
        assert issued_tokens(response) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("other_cookies", ['pref={"a":1}', "theme=light dark"])
    async def test_unusual_neighbour_cookies_do_not_hide_token(self, token, other_cookies):
        handler = make_handler()
        request = make_request(
            "POST",
            headers={
                "Cookie": f"{other_cookies}; X-Csrf-Token={token}",
                "X-Csrf-Token": token,
            },
        )
        response = await make_pipeline(handler).handle(request)
        assert response.status == 200
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_body_fallback(self, token):
        handler = make_handler()
        request = make_request("POST", cookie=token, form={"__token": token})
        response = await make_pipeline(handler).handle(request)
        assert response.status == 200
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_wrong_header_beats_right_body(self, token):
        handler = make_handler()
        request = make_request(
            "POST", cookie=token,
            headers={"X-Csrf-Token": "wrong"},
            form={"__token": token},
        )
        response = await make_pipeline(handler).handle(request)
        assert response.status == 419
        assert handler.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("submission", [
        {"headers": {"X-Csrf-Token": "anything"}},
        {"form": {"__token": "anything"}},
        {},
    ])
    async def test_no_cookie_is_419(self, submission):
        handler = make_handler()
        response = await make_pipeline(handler).handle(make_request("PATCH", **submission))
        assert response.status == 419
        assert handler.calls == []

    @pytest.mark.asyncio
    async def test_419_body_does_not_leak_reason(self, token):
        missing = await make_pipeline(make_handler()).handle(make_request("POST"))
        mismatch = await make_pipeline(make_handler()).handle(
            make_request("POST", cookie=token, headers={"X-Csrf-Token": "x"})
        )
        assert missing.body == mismatch.body
        assert b"CSRF_VIOLATION" in missing.body
        assert b"missing_cookie" not in missing.body

    @pytest.mark.asyncio
    async def test_unrelated_fault_is_500_not_419(self, token):
        async def broken(request):
            raise RuntimeError("database down")

        request = make_request("POST", cookie=token, headers={"X-Csrf-Token": token})
        response = await make_pipeline(broken).handle(request)
        assert response.status == 500
        assert b"database down" not in response.body
