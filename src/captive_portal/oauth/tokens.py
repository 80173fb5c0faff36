"""Token endpoint client: code exchange, refresh and revocation.

All requests use ``application/x-www-form-urlencoded`` bodies as required by
RFC 6749 and are sent through an ``httpx.AsyncClient`` bounded by the
configured timeout.  Nothing is retried here: authorization codes and refresh
tokens are single-use, so any retry policy belongs to the caller.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from captive_portal.oauth.clock import Clock, default_clock
from captive_portal.oauth.config import OAuthConfig
from captive_portal.oauth.errors import NetworkError, TokenExchangeError
from captive_portal.oauth.models import TokenSet
from captive_portal.utils.logging import mask_sensitive

_LOG = logging.getLogger("captive-portal.oauth.tokens")

_FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class TokenExchanger:
    """Talks to the provider's token and revoke endpoints."""

    def __init__(
        self,
        config: OAuthConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = default_clock,
    ) -> None:
        self.config = config
        self._clock = clock
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.http_timeout)
        )

    async def exchange_code(
        self, code: str, code_verifier: str, *, redirect_uri: str | None = None
    ) -> TokenSet:
        """Exchange an authorization *code* for tokens (RFC 6749 §4.1.3).

        Args:
            code: Authorization code from the callback.
            code_verifier: PKCE verifier stored when the login started.
            redirect_uri: Redirect URI used in the authorize request
                (defaults to the configured one).

        Returns:
            TokenSet: Tokens issued by the provider.

        Raises:
            TokenExchangeError: Provider rejected the code/verifier pair.
            NetworkError: Transport failure or timeout.
        """
        form_data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or self.config.redirect_uri,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code_verifier": code_verifier,
        }
        _LOG.debug(
            "Exchanging authorization code=%s client_id=%s",
            mask_sensitive(code, 4),
            self.config.client_id,
        )
        return await self._request_tokens(form_data, action="code exchange")

    async def refresh(self, refresh_token: str) -> TokenSet:
        """Obtain a new access token with *refresh_token* (RFC 6749 §6)."""
        form_data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        _LOG.debug("Refreshing access token refresh_token=%s", mask_sensitive(refresh_token, 4))
        return await self._request_tokens(form_data, action="token refresh")

    async def revoke(self, token: str) -> bool:
        """Revoke *token*; returns whether the provider answered with 2xx.

        A provider-side refusal (e.g. token already invalid) is reported as
        ``False``; only transport failures raise.
        """
        form_data = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "token": token,
        }
        response = await self._post(self.config.revoke_url, form_data, action="revocation")
        if not response.is_success:
            _LOG.info("Revoke endpoint returned %s", response.status_code)
        return response.is_success

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http_client.aclose()

    # ---------------- internal helpers --------------------------------- #
    async def _post(self, url: str, form_data: dict[str, str], *, action: str) -> httpx.Response:
        try:
            return await self._http_client.post(
                url,
                data=form_data,
                headers=_FORM_HEADERS,
                timeout=self.config.http_timeout,
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(
                f"Token endpoint timed out during {action}", reason="timeout"
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(
                f"Token endpoint unreachable during {action}: {exc}",
                reason=type(exc).__name__,
            ) from exc

    async def _request_tokens(self, form_data: dict[str, str], *, action: str) -> TokenSet:
        response = await self._post(self.config.token_url, form_data, action=action)
        data = self._parse_body(response, action=action)

        error = data.get("error")
        if error or not response.is_success:
            reason = str(error or f"http_{response.status_code}")
            _LOG.warning(
                "Token %s failed with %s: %s",
                action,
                response.status_code,
                data.get("error_description") or reason,
            )
            raise TokenExchangeError(f"Token {action} rejected: {reason}", reason=reason)

        try:
            tokens = TokenSet.from_response(data, obtained_at=self._clock())
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenExchangeError(
                f"Token response missing or invalid field: {exc}",
                reason="invalid_token_response",
            ) from exc

        _LOG.info("Token %s successful (expires in %ss)", action, tokens.expires_in)
        return tokens

    @staticmethod
    def _parse_body(response: httpx.Response, *, action: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            reason = (
                f"http_{response.status_code}" if not response.is_success else "invalid_json"
            )
            raise TokenExchangeError(
                f"Token endpoint returned an unreadable body during {action} "
                f"({response.status_code}): {response.text[:200]}",
                reason=reason,
            )
        return data
