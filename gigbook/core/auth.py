"""Access-token lifecycle for the connected Google account.

:class:`TokenGuardian` hands out access tokens that are safe to use right
away, refreshing them shortly before they expire, and wraps calendar calls so
a token the provider unexpectedly rejects is refreshed once and the call is
retried once.

Refresh is not serialized: two callers racing on the same expired credential
may both refresh and both write the store. Callers that need single-flight
refresh must hold their own per-user lock around these methods.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol, TypeVar

from gigbook.core.api import AuthorizationError
from gigbook.core.constants import DEFAULT_TOKEN_LIFETIME, PROVIDER_GOOGLE, TOKEN_EXPIRY_BUFFER
from gigbook.core.models import OAuthCredential, TokenGrant
from gigbook.core.oauth import TokenEndpointError
from gigbook.core.store import CredentialStore

logger = logging.getLogger("gigbook.core.auth")

T = TypeVar("T")


class TokenError(RuntimeError):
    """Base class for access-token failures."""

    requires_reconnect = True


class NotConnected(TokenError):
    """No usable credential exists; the user must connect the account."""


class RefreshUnavailable(TokenError):
    """A refresh is needed but no refresh token is stored."""


class RefreshFailed(TokenError):
    """The provider did not issue a new access token."""

    def __init__(self, message: str, requires_reconnect: bool = False) -> None:
        super().__init__(message)
        self.requires_reconnect = requires_reconnect


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenEndpoint(Protocol):
    """Refresh side of the provider token endpoint (see GoogleOAuthClient)."""

    def refresh(self, refresh_token: str) -> TokenGrant:
        ...


class TokenGuardian:
    """Keeps one provider credential per user usable."""

    def __init__(
        self,
        store: CredentialStore,
        endpoint: TokenEndpoint,
        provider_id: str = PROVIDER_GOOGLE,
        clock: Callable[[], datetime] = _utc_now,
        expiry_buffer: timedelta = TOKEN_EXPIRY_BUFFER,
        default_lifetime: timedelta = DEFAULT_TOKEN_LIFETIME,
    ) -> None:
        self.store = store
        self.endpoint = endpoint
        self.provider_id = provider_id
        self._clock = clock
        self.expiry_buffer = expiry_buffer
        self.default_lifetime = default_lifetime

    def _load(self, user_id: str) -> OAuthCredential:
        credential = self.store.read(user_id, self.provider_id)
        if credential is None:
            raise NotConnected(f"{self.provider_id} account not connected for user {user_id}")
        if not credential.access_token and not credential.refresh_token:
            raise NotConnected(f"{self.provider_id} credential for user {user_id} holds no tokens")
        return credential

    def needs_refresh(self, credential: OAuthCredential) -> bool:
        """True when the access token is missing, undated, or inside the buffer."""
        if not credential.access_token:
            return True
        expires_at = credential.access_token_expires_at
        if expires_at is None:
            return True
        return self._clock() >= expires_at - self.expiry_buffer

    def get_valid_access_token(self, user_id: str) -> str:
        """Return an access token valid for immediate use."""
        credential = self._load(user_id)
        if not self.needs_refresh(credential):
            return str(credential.access_token)

        if not credential.refresh_token:
            raise RefreshUnavailable(
                f"No refresh token for user {user_id}. Please reconnect Google Calendar."
            )
        return self.refresh(credential)

    def refresh(self, credential: OAuthCredential) -> str:
        """Exchange the refresh token and persist the new access token."""
        if not credential.refresh_token:
            raise RefreshUnavailable(f"Account {credential.account_id} has no refresh token")

        try:
            grant = self.endpoint.refresh(credential.refresh_token)
        except TokenEndpointError as exc:
            if exc.is_revocation:
                logger.warning("Refresh token revoked for account %s", credential.account_id)
                raise RefreshFailed(
                    "Google authorization has been revoked. Please reconnect Google Calendar.",
                    requires_reconnect=True,
                ) from exc
            logger.warning("Token refresh failed for account %s: %s", credential.account_id, exc.code)
            raise RefreshFailed(f"Failed to refresh Google token: {exc}") from exc

        if not grant.access_token:
            raise RefreshFailed("Failed to refresh token: no access token returned")

        expires_at = grant.expires_at or self._clock() + self.default_lifetime
        fields = {
            "access_token": grant.access_token,
            "access_token_expires_at": expires_at,
        }
        # Only overwrite on rotation; never drop the stored refresh token.
        if grant.refresh_token:
            fields["refresh_token"] = grant.refresh_token
        self.store.write(credential.account_id, fields)

        logger.info("Refreshed access token for account %s", credential.account_id)
        return grant.access_token

    def force_refresh(self, user_id: str) -> str:
        """Refresh regardless of the stored expiry, re-reading the store first."""
        credential = self._load(user_id)
        if not credential.refresh_token:
            raise RefreshUnavailable(
                f"No refresh token for user {user_id}. Please reconnect Google Calendar."
            )
        return self.refresh(credential)

    def with_valid_token(self, user_id: str, operation: Callable[[str], T]) -> T:
        """Run ``operation`` with a valid token, retrying once on rejection."""
        token = self.get_valid_access_token(user_id)
        try:
            return operation(token)
        except AuthorizationError as exc:
            logger.info("Auth error (%s) for user %s, forcing token refresh", exc.status, user_id)

        token = self.force_refresh(user_id)
        return operation(token)
