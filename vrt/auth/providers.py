"""Authentication providers: produce the session a capture context runs with.

* NONE: nothing to do.
* BASIC: HTTP credentials applied to every context.
* OKTA: API login (password + security question), then a browser visit of
  the OAuth authorize URL with the session token; the browser storage
  state is saved and loaded into every later context.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

import httpx
from playwright.async_api import Browser, BrowserContext

from vrt.errors import AuthenticationError
from vrt.models.config import (
    AuthMethod,
    BasicCredentials,
    Environment,
    FrameworkConfig,
    OktaCredentials,
)
from vrt.url_utils import cookie_matches_domain, hostname

logger = logging.getLogger(__name__)


@dataclass
class AuthSession:
    """What a browser context needs to act as an authenticated user."""
    storage_state: Optional[str] = None
    http_credentials: Optional[dict] = None


class AuthProvider(ABC):
    method: AuthMethod

    @abstractmethod
    async def prepare(self, browser: Browser) -> AuthSession:
        """Authenticate once and return the session for capture contexts."""

    @property
    def needs_session_check(self) -> bool:
        return False


class NoAuth(AuthProvider):
    method = AuthMethod.NONE

    async def prepare(self, browser: Browser) -> AuthSession:
        return AuthSession()


class BasicAuth(AuthProvider):
    method = AuthMethod.BASIC

    def __init__(self, credentials: BasicCredentials):
        self.credentials = credentials

    async def prepare(self, browser: Browser) -> AuthSession:
        try:
            resolved = self.credentials.resolved()
        except ValueError as e:
            raise AuthenticationError(self.method.value, str(e)) from e
        logger.info("Using HTTP basic authentication as %s", resolved["username"])
        return AuthSession(http_credentials={
            "username": resolved["username"],
            "password": resolved["password"],
        })


class OktaAuth(AuthProvider):
    method = AuthMethod.OKTA

    def __init__(
        self,
        credentials: OktaCredentials,
        state_path: Path,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.credentials = credentials
        self.state_path = state_path
        self._client = client
        self.timeout = timeout

    @property
    def needs_session_check(self) -> bool:
        return True

    async def _session_token(self, client: httpx.AsyncClient, creds: dict[str, str]) -> str:
        logger.info("Authenticating with the Okta API at %s", creds["domain"])
        response = await client.post(
            f"https://{creds['domain']}/api/v1/authn",
            json={
                "username": creds["username"],
                "password": creds["password"],
                "options": {
                    "multiOptionalFactorEnroll": False,
                    "warnBeforePasswordExpired": False,
                },
            },
        )
        response.raise_for_status()
        authn = response.json()

        logger.debug("Answering security question factor")
        verify_url = authn["_embedded"]["factors"][0]["_links"]["verify"]["href"]
        response = await client.post(
            verify_url,
            json={"stateToken": authn["stateToken"], "answer": creds["answer"]},
        )
        response.raise_for_status()
        return response.json()["sessionToken"]

    @staticmethod
    def authorize_url(creds: dict[str, str], session_token: str) -> str:
        query = urlencode({
            "client_id": creds["client_id"],
            "response_type": "code",
            "scope": "openid profile email groups",
            "redirect_uri": creds["redirect_uri"],
            "sessionToken": session_token,
        })
        return f"https://{creds['domain']}/oauth2/default/v1/authorize?{query}"

    async def prepare(self, browser: Browser) -> AuthSession:
        try:
            creds = self.credentials.resolved()
            if self._client is not None:
                token = await self._session_token(self._client, creds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    token = await self._session_token(client, creds)
        except httpx.HTTPStatusError as e:
            raise AuthenticationError(
                self.method.value, f"HTTP {e.response.status_code} from {e.request.url}"
            ) from e
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            raise AuthenticationError(self.method.value, str(e) or type(e).__name__) from e

        logger.info("Capturing Okta browser session")
        try:
            context = await browser.new_context()
            try:
                page = await context.new_page()
                await page.goto(self.authorize_url(creds, token))
                self.state_path.parent.mkdir(parents=True, exist_ok=True)
                await context.storage_state(path=str(self.state_path))
            finally:
                await context.close()
        except Exception as e:
            raise AuthenticationError(
                self.method.value, f"browser session capture failed: {e}"
            ) from e
        logger.info("Saved authenticated session to %s", self.state_path)
        return AuthSession(storage_state=str(self.state_path))


def build_auth_provider(config: FrameworkConfig, environment: Environment) -> AuthProvider:
    method = config.authentication.for_env(environment)
    if method == AuthMethod.BASIC:
        return BasicAuth(config.basic_auth)
    if method == AuthMethod.OKTA:
        return OktaAuth(config.okta, Path(config.auth_state_path))
    return NoAuth()


async def check_session(context: BrowserContext, url: str, provider: str = "OKTA") -> int:
    """Visit ``url`` and require at least one cookie for its domain.

    Returns the number of matching cookies; raises ``AuthenticationError``
    when there are none or the page cannot be reached.
    """
    domain = hostname(url)
    page = await context.new_page()
    try:
        logger.info("Checking authentication with %s", url)
        try:
            await page.goto(url)
        except Exception as e:
            raise AuthenticationError(provider, f"could not load {url}: {e}") from e

        cookies = await context.cookies()
        matching = [c for c in cookies if cookie_matches_domain(c.get("domain", ""), domain)]
        logger.info("Found %d cookie(s) for domain %s", len(matching), domain)
        if not matching:
            raise AuthenticationError(provider, f"no cookies found for domain {domain}")
        return len(matching)
    finally:
        await page.close()
