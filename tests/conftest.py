"""Shared pytest configuration."""

from __future__ import annotations

from urllib.parse import parse_qs

import httpx
import pytest

from captive_portal.oauth.clock import FixedClock
from captive_portal.oauth.config import OAuthConfig


def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at 2023-01-01T00:00:00Z."""
    return FixedClock(1_672_531_200.0)


class FakeProvider:
    """``httpx.MockTransport`` handler standing in for the identity provider.

    Responses can be swapped per test via the ``token_response``,
    ``userinfo_response`` and ``revoke_response`` attributes.
    """

    TOKEN_URL = "https://auth.example.com/o/token/"
    REVOKE_URL = "https://auth.example.com/o/revoke_token/"
    USERINFO_URL = "https://auth.example.com/o/userinfo/"

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_response: httpx.Response | Exception = httpx.Response(
            200,
            json={
                "access_token": "access-1",
                "refresh_token": "refresh-1",
                "token_type": "Bearer",
                "expires_in": 3600,
            },
        )
        self.userinfo_response: httpx.Response | Exception = httpx.Response(
            200, json={"id": 7, "email": "member@example.com", "name": "Member"}
        )
        self.revoke_response: httpx.Response | Exception = httpx.Response(200)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == self.TOKEN_URL:
            response = self.token_response
        elif url == self.USERINFO_URL:
            response = self.userinfo_response
        elif url == self.REVOKE_URL:
            response = self.revoke_response
        else:
            return httpx.Response(404)
        if isinstance(response, Exception):
            raise response
        return response

    def calls(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        body = parse_qs(request.content.decode(), keep_blank_values=True)
        return {k: v[0] for k, v in body.items()}


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def oauth_config() -> OAuthConfig:
    return OAuthConfig(
        client_id="portal-client",
        client_secret="portal-secret",
        redirect_uri="https://portal.example.com/api/auth/callback",
        authorize_url="https://auth.example.com/o/authorize/",
        token_url=FakeProvider.TOKEN_URL,
        revoke_url=FakeProvider.REVOKE_URL,
        userinfo_url=FakeProvider.USERINFO_URL,
    )
