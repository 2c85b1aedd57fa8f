"""Tests for authentication providers."""

import json
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest

from vrt.auth.providers import (
    BasicAuth,
    NoAuth,
    OktaAuth,
    build_auth_provider,
    check_session,
)
from vrt.errors import AuthenticationError
from vrt.models.config import (
    BasicCredentials,
    Environment,
    FrameworkConfig,
    OktaCredentials,
)
from vrt.models.failure import FailureSource

OKTA = OktaCredentials(
    domain="login.example.com",
    username="qa@example.com",
    password="pw",
    answer="blue",
    client_id="abc123",
    redirect_uri="https://staging.example.com/callback",
)

VERIFY_URL = "https://login.example.com/api/v1/authn/factors/q1/verify"


def okta_handler(calls, verify_status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((str(request.url), json.loads(request.content)))
        if request.url.path == "/api/v1/authn":
            return httpx.Response(200, json={
                "stateToken": "state-1",
                "_embedded": {"factors": [{"_links": {"verify": {"href": VERIFY_URL}}}]},
            })
        return httpx.Response(verify_status, json={"sessionToken": "session-1"})
    return handler


@pytest.fixture
def okta_browser():
    page = AsyncMock()
    context = AsyncMock()
    context.new_page = AsyncMock(return_value=page)
    browser = AsyncMock()
    browser.new_context = AsyncMock(return_value=context)
    return browser, context, page


class TestBuildProvider:

    def test_per_environment(self):
        config = FrameworkConfig(authentication={"baseline": "BASIC", "comparison": "OKTA"})
        assert isinstance(build_auth_provider(config, Environment.BASELINE), BasicAuth)
        assert isinstance(build_auth_provider(config, Environment.COMPARISON), OktaAuth)
        assert isinstance(build_auth_provider(FrameworkConfig(), Environment.BASELINE), NoAuth)


class TestBasicAuth:

    @pytest.mark.asyncio
    async def test_credentials_from_env(self, monkeypatch):
        monkeypatch.setenv("HTTP_USERNAME", "qa")
        monkeypatch.setenv("HTTP_PASSWORD", "s3cret")
        session = await BasicAuth(BasicCredentials()).prepare(None)
        assert session.http_credentials == {"username": "qa", "password": "s3cret"}
        assert session.storage_state is None

    @pytest.mark.asyncio
    async def test_missing_env_is_auth_error(self, monkeypatch):
        monkeypatch.delenv("HTTP_USERNAME", raising=False)
        with pytest.raises(AuthenticationError, match="BASIC authentication failed") as exc_info:
            await BasicAuth(BasicCredentials()).prepare(None)
        assert exc_info.value.failure_source == FailureSource.AUTH_PROVIDER


class TestOktaAuth:

    @pytest.mark.asyncio
    async def test_login_flow(self, tmp_path, okta_browser):
        browser, context, page = okta_browser
        calls = []
        state_path = tmp_path / "auth" / "user.json"
        async with httpx.AsyncClient(transport=httpx.MockTransport(okta_handler(calls))) as client:
            session = await OktaAuth(OKTA, state_path, client=client).prepare(browser)

        assert calls[0] == ("https://login.example.com/api/v1/authn", {
            "username": "qa@example.com",
            "password": "pw",
            "options": {"multiOptionalFactorEnroll": False, "warnBeforePasswordExpired": False},
        })
        assert calls[1] == (VERIFY_URL, {"stateToken": "state-1", "answer": "blue"})

        authorize = page.goto.await_args.args[0]
        assert authorize.startswith("https://login.example.com/oauth2/default/v1/authorize?")
        assert "sessionToken=session-1" in authorize
        assert "client_id=abc123" in authorize
        context.storage_state.assert_awaited_once_with(path=str(state_path))
        context.close.assert_awaited_once()
        assert session.storage_state == str(state_path)
        assert state_path.parent.is_dir()

    @pytest.mark.asyncio
    async def test_rejected_answer(self, tmp_path, okta_browser):
        browser, _, _ = okta_browser
        async with httpx.AsyncClient(transport=httpx.MockTransport(okta_handler([], verify_status=403))) as client:
            with pytest.raises(AuthenticationError, match="HTTP 403"):
                await OktaAuth(OKTA, tmp_path / "user.json", client=client).prepare(browser)
        browser.new_context.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_response_shape(self, tmp_path, okta_browser):
        browser, _, _ = okta_browser

        def handler(request):
            return httpx.Response(200, json={"status": "LOCKED_OUT"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(AuthenticationError, match="OKTA"):
                await OktaAuth(OKTA, tmp_path / "user.json", client=client).prepare(browser)

    @pytest.mark.asyncio
    async def test_browser_step_failure_is_auth_error(self, tmp_path, okta_browser):
        browser, context, page = okta_browser
        page.goto = AsyncMock(side_effect=Exception("Page.goto: net::ERR_CONNECTION_RESET"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(okta_handler([]))) as client:
            with pytest.raises(AuthenticationError, match="browser session capture failed") as exc_info:
                await OktaAuth(OKTA, tmp_path / "user.json", client=client).prepare(browser)

        assert exc_info.value.failure_source == FailureSource.AUTH_PROVIDER
        context.close.assert_awaited_once()

    def test_needs_session_check(self):
        assert OktaAuth(OKTA, Path("user.json")).needs_session_check is True
        assert BasicAuth(BasicCredentials()).needs_session_check is False


class TestCheckSession:

    def _context(self, cookies):
        page = AsyncMock()
        context = AsyncMock()
        context.new_page = AsyncMock(return_value=page)
        context.cookies = AsyncMock(return_value=cookies)
        return context, page

    @pytest.mark.asyncio
    async def test_matching_cookie(self):
        context, page = self._context([{"name": "sid", "domain": ".example.com"},
                                       {"name": "other", "domain": "tracker.net"}])
        assert await check_session(context, "https://www.example.com/page-1") == 1
        page.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_cookies(self):
        context, page = self._context([])
        with pytest.raises(AuthenticationError, match="no cookies found for domain www.example.com"):
            await check_session(context, "https://www.example.com/page-1")
        page.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        context, page = self._context([])
        page.goto = AsyncMock(side_effect=Exception("net::ERR_NAME_NOT_RESOLVED"))
        with pytest.raises(AuthenticationError, match="could not load"):
            await check_session(context, "https://www.example.com/page-1", provider="OKTA")
