"""OAuth2 client-credentials grant. Built once at startup, reused for every upstream call."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import httpx

from mindsight_agent.errors import AuthError

log = logging.getLogger(__name__)

DEFAULT_TOKEN_URL = "https://mindsight.auth0.com/oauth/token/"
DEFAULT_AUDIENCE = "https://api.mindsight.io/"
CLIENT_CREDS_GRANT_TYPE = "client_credentials"

# Refresh a little before the provider says the token expires
EXPIRY_LEEWAY_SECONDS = 60.0


class ClientCredentialsGrant:
    """Fetches and caches a bearer token for the agent's client credentials."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        token_url: str = DEFAULT_TOKEN_URL,
        audience: str = DEFAULT_AUDIENCE,
        timeout_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._audience = audience
        self._clock = clock
        self._client = httpx.Client(timeout=timeout_seconds)
        self._token: Optional[str] = None
        self._expires_at = 0.0

    @property
    def token_url(self) -> str:
        return self._token_url

    def get_access_token(self) -> str:
        """Return a valid access token, requesting a new one if needed.

        Raises:
            AuthError: If the token endpoint can't be reached or refuses the grant.
        """
        if self._token is not None and self._clock() < self._expires_at:
            return self._token

        payload = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "audience": self._audience,
            "grant_type": CLIENT_CREDS_GRANT_TYPE,
        }
        try:
            response = self._client.post(self._token_url, json=payload)
        except httpx.HTTPError as exc:
            raise AuthError(f"request access token from {self._token_url}: {exc}") from exc

        if response.status_code < 200 or response.status_code > 299:
            raise AuthError(
                f"request access token: response status: {response.status_code}, "
                f"body: {response.text}"
            )

        try:
            body = response.json()
            token = body["access_token"]
            expires_in = float(body.get("expires_in") or 0)
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise AuthError("request access token: malformed token response") from exc

        self._token = token
        # No expiry given: use the token for this call only
        self._expires_at = self._clock() + max(0.0, expires_in - EXPIRY_LEEWAY_SECONDS)
        log.debug("Obtained access token, expires in %.0fs", expires_in)
        return token

    def close(self):
        self._client.close()
