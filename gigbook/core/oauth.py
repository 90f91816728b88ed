"""Google OAuth token endpoint client.

Covers the two grants gigbook needs:

* ``exchange_code()`` turns the consent-screen ``code`` into tokens when the
  user links their Google account (``gigbook connect``).
* ``refresh()`` mints a new access token from a stored refresh token; the
  token guardian calls it whenever the stored token is stale.

Both return a :class:`TokenGrant`. Failures raise :class:`TokenEndpointError`
with the provider's OAuth ``error`` code so callers can tell a revoked grant
from a transient outage without inspecting response shapes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import requests

from gigbook.core.constants import CALENDAR_SCOPES, GOOGLE_AUTH_URI, GOOGLE_TOKEN_URI
from gigbook.core.models import TokenGrant

logger = logging.getLogger("gigbook.core.oauth")

_REVOCATION_CODES = {"invalid_grant"}
_REVOCATION_PHRASES = ("expired or revoked", "token has been revoked")


class TokenEndpointError(RuntimeError):
    """Raised when the token endpoint refuses or cannot serve a grant."""

    def __init__(self, code: str, description: str = "", status: Optional[int] = None) -> None:
        self.code = code
        self.description = description
        self.status = status
        message = f"{code}: {description}" if description else code
        super().__init__(message)

    @property
    def is_revocation(self) -> bool:
        """True when the grant itself is invalid and the user must reconnect."""
        if self.code in _REVOCATION_CODES:
            return True
        lowered = self.description.lower()
        return any(phrase in lowered for phrase in _REVOCATION_PHRASES)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GoogleOAuthClient:
    """Explicitly constructed client for Google's OAuth 2.0 endpoints."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_uri: str = GOOGLE_TOKEN_URI,
        auth_uri: str = GOOGLE_AUTH_URI,
        timeout_seconds: int = 15,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_uri = token_uri
        self.auth_uri = auth_uri
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    def create_auth_url(self, redirect_uri: str, state: str = "") -> str:
        """Build the consent URL requesting offline (refreshable) access."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{self.auth_uri}?{urlencode(params)}"

    def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        return self._post(
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            }
        )

    def refresh(self, refresh_token: str) -> TokenGrant:
        return self._post(
            {
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            }
        )

    def _post(self, form: Dict[str, str]) -> TokenGrant:
        grant_type = form["grant_type"]
        try:
            response = requests.post(
                self.token_uri,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise TokenEndpointError("network_error", str(exc)) from exc

        try:
            payload: Any = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 500:
            raise TokenEndpointError("server_error", response.text[:200], response.status_code)

        if not isinstance(payload, dict):
            raise TokenEndpointError(
                "invalid_response",
                "token endpoint returned non-JSON body",
                response.status_code,
            )

        if response.status_code >= 400 or "error" in payload:
            code = str(payload.get("error") or f"http_{response.status_code}")
            description = str(payload.get("error_description") or "")
            logger.warning("Token endpoint rejected %s grant: %s", grant_type, code)
            raise TokenEndpointError(code, description, response.status_code)

        return self._grant_from_payload(payload)

    def _grant_from_payload(self, payload: Dict[str, Any]) -> TokenGrant:
        expires_at: Optional[datetime] = None
        expires_in = payload.get("expires_in")
        if expires_in is not None:
            try:
                expires_at = self._clock() + timedelta(seconds=int(expires_in))
            except (TypeError, ValueError):
                expires_at = None

        return TokenGrant(
            access_token=payload.get("access_token") or None,
            expires_at=expires_at,
            refresh_token=payload.get("refresh_token") or None,
            scope=payload.get("scope") or None,
        )
