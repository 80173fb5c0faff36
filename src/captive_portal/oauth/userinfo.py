"""User-info endpoint client."""

from __future__ import annotations

import logging

import httpx

from captive_portal.oauth.config import OAuthConfig
from captive_portal.oauth.errors import NetworkError, UserInfoFetchError
from captive_portal.oauth.models import UserIdentity

_LOG = logging.getLogger("captive-portal.oauth.userinfo")


class UserInfoFetcher:
    """Resolves an access token to the member it was issued for."""

    def __init__(self, config: OAuthConfig, *, http_client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.http_timeout)
        )

    async def fetch_user_info(self, access_token: str, token_type: str = "Bearer") -> UserIdentity:
        """GET the user-info endpoint with ``Authorization: <type> <token>``.

        Raises:
            UserInfoFetchError: Non-2xx status or malformed body.
            NetworkError: Transport failure or timeout.
        """
        headers = {
            "Accept": "application/json",
            "Authorization": f"{token_type or 'Bearer'} {access_token}",
        }
        try:
            response = await self._http_client.get(
                self.config.userinfo_url, headers=headers, timeout=self.config.http_timeout
            )
        except httpx.TimeoutException as exc:
            raise NetworkError("User-info endpoint timed out", reason="timeout") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(
                f"User-info endpoint unreachable: {exc}", reason=type(exc).__name__
            ) from exc

        if not response.is_success:
            _LOG.warning("User-info endpoint returned %s", response.status_code)
            raise UserInfoFetchError(
                f"User-info endpoint returned {response.status_code}",
                reason=f"http_{response.status_code}",
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UserInfoFetchError(
                "User-info response is not JSON", reason="invalid_json"
            ) from exc
        if not isinstance(payload, dict):
            raise UserInfoFetchError("User-info response is not an object", reason="invalid_json")

        try:
            identity = UserIdentity.from_response(payload)
        except KeyError as exc:
            raise UserInfoFetchError("User-info response has no id", reason="missing_id") from exc

        _LOG.debug("Resolved user id=%s", identity.id)
        return identity

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()
