"""Access-token provider for the Google Calendar API."""
import asyncio
import logging
import time
from typing import Callable, Optional

import requests

from processor.errors import AuthRequired, ProviderError
from processor.models import AuthTokens
from storage.token_store import TokenStore

logger = logging.getLogger(__name__)


class TokenProvider:
    """
    Single-writer cache of the user's OAuth tokens.

    Callers ask for a valid access token; expired tokens are refreshed with
    the stored refresh token. Concurrent callers during a refresh wait for
    it and reuse its result.
    """

    TOKEN_URL = 'https://oauth2.googleapis.com/token'
    REVOKE_URL = 'https://oauth2.googleapis.com/revoke'
    EXPIRY_BUFFER_SECONDS = 5 * 60

    def __init__(self, store: TokenStore, client_id: Optional[str] = None,
                 client_secret: Optional[str] = None, timeout: int = 30,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the token provider.

        Args:
            store: Token persistence
            client_id: OAuth client id, required for refreshing
            client_secret: OAuth client secret, if the client has one
            timeout: HTTP request timeout in seconds (default: 30)
            clock: Returns the current time as epoch seconds
        """
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.clock = clock
        self._lock: Optional[asyncio.Lock] = None

    def set_tokens(self, tokens: AuthTokens) -> None:
        """Store tokens obtained from a completed sign-in."""
        self.store.save(tokens)

    def is_authenticated(self) -> bool:
        """Check that an access token exists and is not about to expire."""
        return self._is_valid(self.store.load())

    async def get_valid_access_token(self) -> str:
        """
        Return a usable access token, refreshing it when expired.

        Raises:
            AuthRequired: If there is no token or it cannot be refreshed
        """
        tokens = await asyncio.to_thread(self.store.load)
        if not tokens or not tokens.access_token:
            raise AuthRequired('Not authenticated. Please sign in first.')
        if self._is_valid(tokens):
            return tokens.access_token

        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            # Another caller may have refreshed while we waited
            tokens = await asyncio.to_thread(self.store.load)
            if tokens and self._is_valid(tokens):
                return tokens.access_token

            logger.info("Access token expired, refreshing")
            refreshed = await asyncio.to_thread(self._refresh, tokens)
            await asyncio.to_thread(self.store.save, refreshed)
            return refreshed.access_token

    async def sign_out(self) -> None:
        """Revoke the access token (best effort) and clear stored tokens."""
        tokens = await asyncio.to_thread(self.store.load)
        if tokens and tokens.access_token:
            try:
                await asyncio.to_thread(self._revoke, tokens.access_token)
            except requests.RequestException as e:
                logger.warning(f"Failed to revoke token: {e}")

        await asyncio.to_thread(self.store.clear)

    def _is_valid(self, tokens: Optional[AuthTokens]) -> bool:
        if not tokens or not tokens.access_token:
            return False
        if tokens.expiry_date is None:
            return True
        return self.clock() < tokens.expiry_date - self.EXPIRY_BUFFER_SECONDS

    def _refresh(self, tokens: Optional[AuthTokens]) -> AuthTokens:
        if not tokens or not tokens.refresh_token or not self.client_id:
            raise AuthRequired('Session expired. Please sign in again.')

        data = {
            'client_id': self.client_id,
            'refresh_token': tokens.refresh_token,
            'grant_type': 'refresh_token'
        }
        if self.client_secret:
            data['client_secret'] = self.client_secret

        try:
            response = requests.post(self.TOKEN_URL, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderError(f"Token refresh failed: {e}") from e

        if response.status_code in (400, 401):
            logger.warning(f"Refresh token rejected: {response.text}")
            self.store.clear()
            raise AuthRequired('Session expired. Please sign in again.')
        if not response.ok:
            raise ProviderError(
                f"Token refresh failed: {response.status_code} {response.reason}",
                status_code=response.status_code
            )

        payload = response.json()
        return AuthTokens(
            access_token=payload['access_token'],
            token_type=payload.get('token_type') or 'Bearer',
            scope=payload.get('scope') or tokens.scope,
            expiry_date=self.clock() + int(payload.get('expires_in', 3600)),
            refresh_token=payload.get('refresh_token') or tokens.refresh_token
        )

    def _revoke(self, access_token: str) -> None:
        response = requests.post(
            self.REVOKE_URL,
            params={'token': access_token},
            headers={'Content-Type': 'application/x-www-form-urlencoded'},
            timeout=self.timeout
        )
        if not response.ok:
            logger.warning(f"Token revocation returned {response.status_code}")
