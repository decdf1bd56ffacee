"""
Tests for the Helpship client credentials flow and the in-memory token cache.
"""
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from ordersync.exceptions import HelpshipAPIError
from ordersync.helpship.auth import TokenCache, request_client_credentials_token


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def token_response(ok=True, status_code=200, data=None, text=""):
    response = Mock()
    response.ok = ok
    response.status_code = status_code
    response.text = text
    response.json.return_value = data or {}
    return response


# ==============================================================================
# TokenCache
# ==============================================================================

class TestTokenCache:

    @pytest.fixture
    def clock(self):
        return FakeClock(datetime(2025, 3, 1, 12, 0, 0))

    def test_empty_cache_returns_none(self, clock):
        assert TokenCache(clock=clock).get() is None

    def test_token_served_until_refresh_buffer(self, clock):
        """A one hour token is reused for 55 minutes, then treated as expiring."""
        cache = TokenCache(refresh_buffer_seconds=300, clock=clock)
        cache.store("abc", expires_in=3600)

        clock.advance(minutes=54, seconds=59)
        assert cache.get() == "abc"

        clock.advance(seconds=1)
        assert cache.get() is None
        assert cache.is_expiring() is True

    def test_expires_at(self, clock):
        cache = TokenCache(clock=clock)
        cache.store("abc", expires_in=3600)

        assert cache.expires_at == datetime(2025, 3, 1, 13, 0, 0)

    def test_invalidate(self, clock):
        cache = TokenCache(clock=clock)
        cache.store("abc", expires_in=3600)

        cache.invalidate()

        assert cache.get() is None
        assert cache.expires_at is None


# ==============================================================================
# Token request
# ==============================================================================

class TestClientCredentialsRequest:

    def test_form_encoded_request(self):
        session = Mock()
        session.post.return_value = token_response(data={"access_token": "tok", "expires_in": 1800})

        token, expires_in = request_client_credentials_token(
            session, "https://auth.example/connect/token", "client", "secret", scope="helpship.api", timeout=10
        )

        assert (token, expires_in) == ("tok", 1800)
        args, kwargs = session.post.call_args
        assert args == ("https://auth.example/connect/token",)
        assert kwargs["data"] == {
            "grant_type": "client_credentials",
            "client_id": "client",
            "client_secret": "secret",
            "scope": "helpship.api",
        }
        assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
        assert kwargs["timeout"] == 10

    def test_missing_expires_in_defaults_to_an_hour(self):
        session = Mock()
        session.post.return_value = token_response(data={"access_token": "tok"})

        _, expires_in = request_client_credentials_token(session, "https://auth", "c", "s")

        assert expires_in == 3600

    def test_rejected_credentials(self):
        session = Mock()
        session.post.return_value = token_response(ok=False, status_code=400, text='{"error":"invalid_client"}')

        with pytest.raises(HelpshipAPIError) as excinfo:
            request_client_credentials_token(session, "https://auth", "c", "bad")

        assert excinfo.value.status_code == 400
        assert "invalid_client" in excinfo.value.body

    def test_response_without_token(self):
        session = Mock()
        session.post.return_value = token_response(data={"token_type": "Bearer"})

        with pytest.raises(HelpshipAPIError):
            request_client_credentials_token(session, "https://auth", "c", "s")
