"""Unit tests for TokenProvider."""
import asyncio
import time
from unittest.mock import patch
from urllib.parse import parse_qs

import pytest
import requests
import responses

from auth.token_provider import TokenProvider
from processor.errors import AuthRequired, ProviderError
from processor.models import AuthTokens
from storage.token_store import InMemoryTokenStore

NOW = 1700000000.0


def make_provider(tokens=None, client_id='client-1', client_secret='secret-1'):
    store = InMemoryTokenStore(tokens)
    provider = TokenProvider(
        store, client_id=client_id, client_secret=client_secret, clock=lambda: NOW
    )
    return provider, store


def expired_tokens(refresh_token='refresh-1'):
    return AuthTokens(
        access_token='old-access', expiry_date=NOW - 10, refresh_token=refresh_token
    )


class TestTokenProvider:
    """Test cases for TokenProvider."""

    def test_no_tokens(self):
        """Test callers without tokens must sign in."""
        provider, _ = make_provider()

        assert provider.is_authenticated() is False
        with pytest.raises(AuthRequired, match='Please sign in first'):
            asyncio.run(provider.get_valid_access_token())

    def test_valid_token_returned(self):
        """Test an unexpired token is returned without refreshing."""
        provider, _ = make_provider(AuthTokens(access_token='a', expiry_date=NOW + 3600))

        with patch('auth.token_provider.requests.post') as mock_post:
            token = asyncio.run(provider.get_valid_access_token())

        assert token == 'a'
        assert provider.is_authenticated() is True
        mock_post.assert_not_called()

    def test_token_without_expiry_is_valid(self):
        """Test tokens with no expiry never need refreshing."""
        provider, _ = make_provider(AuthTokens(access_token='a'))

        assert asyncio.run(provider.get_valid_access_token()) == 'a'

    def test_expiry_buffer(self):
        """Test tokens within five minutes of expiry count as expired."""
        provider, _ = make_provider(AuthTokens(access_token='a', expiry_date=NOW + 299))

        assert provider.is_authenticated() is False

    @responses.activate
    def test_refresh(self):
        """Test an expired token is refreshed and stored."""
        responses.add(
            responses.POST, TokenProvider.TOKEN_URL,
            json={'access_token': 'new-access', 'expires_in': 3599, 'token_type': 'Bearer'}
        )
        provider, store = make_provider(expired_tokens())

        token = asyncio.run(provider.get_valid_access_token())

        assert token == 'new-access'
        stored = store.load()
        assert stored.access_token == 'new-access'
        assert stored.expiry_date == NOW + 3599
        assert stored.refresh_token == 'refresh-1'
        form = parse_qs(responses.calls[0].request.body)
        assert form == {
            'client_id': ['client-1'],
            'client_secret': ['secret-1'],
            'refresh_token': ['refresh-1'],
            'grant_type': ['refresh_token'],
        }

    @responses.activate
    def test_refresh_rotates_refresh_token(self):
        """Test a new refresh token replaces the old one."""
        responses.add(
            responses.POST, TokenProvider.TOKEN_URL,
            json={'access_token': 'new-access', 'refresh_token': 'refresh-2'}
        )
        provider, store = make_provider(expired_tokens())

        asyncio.run(provider.get_valid_access_token())

        assert store.load().refresh_token == 'refresh-2'
        assert store.load().expiry_date == NOW + 3600

    @responses.activate
    def test_concurrent_callers_share_one_refresh(self):
        """Test simultaneous callers trigger a single refresh."""
        responses.add(
            responses.POST, TokenProvider.TOKEN_URL,
            json={'access_token': 'new-access', 'expires_in': 3600}
        )
        provider, _ = make_provider(expired_tokens())

        async def fetch_all():
            return await asyncio.gather(
                *(provider.get_valid_access_token() for _ in range(5))
            )

        tokens = asyncio.run(fetch_all())

        assert tokens == ['new-access'] * 5
        assert len(responses.calls) == 1

    def test_expired_without_refresh_token(self):
        """Test expiry with nothing to refresh requires sign-in."""
        provider, _ = make_provider(expired_tokens(refresh_token=None))

        with pytest.raises(AuthRequired, match='Session expired'):
            asyncio.run(provider.get_valid_access_token())

    def test_expired_without_client_id(self):
        """Test refreshing needs a configured client id."""
        provider, _ = make_provider(expired_tokens(), client_id=None)

        with pytest.raises(AuthRequired):
            asyncio.run(provider.get_valid_access_token())

    @responses.activate
    def test_rejected_refresh_clears_tokens(self):
        """Test a revoked refresh token clears the session."""
        responses.add(
            responses.POST, TokenProvider.TOKEN_URL,
            json={'error': 'invalid_grant'}, status=400
        )
        provider, store = make_provider(expired_tokens())

        with pytest.raises(AuthRequired):
            asyncio.run(provider.get_valid_access_token())

        assert store.load() is None

    @responses.activate
    def test_refresh_server_error(self):
        """Test token endpoint outages are provider errors."""
        responses.add(responses.POST, TokenProvider.TOKEN_URL, status=503)
        provider, store = make_provider(expired_tokens())

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(provider.get_valid_access_token())

        assert exc_info.value.status_code == 503
        assert store.load() is not None

    @responses.activate
    def test_sign_out_revokes_and_clears(self):
        """Test sign-out revokes the access token and clears the store."""
        responses.add(responses.POST, TokenProvider.REVOKE_URL, status=200)
        provider, store = make_provider(AuthTokens(access_token='a', expiry_date=NOW + 3600))

        asyncio.run(provider.sign_out())

        assert store.load() is None
        assert 'token=a' in responses.calls[0].request.url

    @responses.activate
    def test_sign_out_when_revoke_fails(self):
        """Test sign-out still clears tokens if revocation fails."""
        responses.add(
            responses.POST, TokenProvider.REVOKE_URL,
            body=requests.ConnectionError('offline')
        )
        provider, store = make_provider(AuthTokens(access_token='a'))

        asyncio.run(provider.sign_out())

        assert store.load() is None

    def test_set_tokens(self):
        """Test sign-in tokens are persisted."""
        provider, store = make_provider()

        provider.set_tokens(AuthTokens(access_token='fresh'))

        assert store.load().access_token == 'fresh'
        assert provider.is_authenticated() is True


class SlowTokenStore(InMemoryTokenStore):
    """In-memory store whose reads block like a network round trip."""

    def __init__(self, tokens=None, delay=0.2):
        super().__init__(tokens)
        self.delay = delay

    def load(self):
        time.sleep(self.delay)
        return super().load()


def test_store_reads_do_not_block_other_callers():
    """Test concurrent token lookups overlap while the store is slow."""
    store = SlowTokenStore(AuthTokens(access_token='a', expiry_date=NOW + 3600))
    provider = TokenProvider(store, client_id='client-1', clock=lambda: NOW)

    async def fetch_all():
        return await asyncio.gather(
            *(provider.get_valid_access_token() for _ in range(5))
        )

    started = time.monotonic()
    tokens = asyncio.run(fetch_all())
    elapsed = time.monotonic() - started

    assert tokens == ['a'] * 5
    assert elapsed < 0.5
