"""Tests for session token validation."""

import pytest

from stocksync.auth.session import SessionAuthenticator
from stocksync.services.context import Actor
from stocksync.utils.exceptions import SessionTokenError


class TestSessionAuthenticator:
    """Tests for SessionAuthenticator."""

    @pytest.fixture
    def clock(self):
        class Clock:
            now = 1_700_000_000.0

            def __call__(self):
                return self.now

        return Clock()

    @pytest.fixture
    def authenticator(self, clock):
        return SessionAuthenticator(secret="test_secret", clock=clock)

    @pytest.fixture
    def actor(self):
        return Actor(id="user-1", display_name="alice@example.com", role="manager")

    def test_round_trip(self, authenticator, actor):
        token = authenticator.issue_token(actor)

        assert authenticator.authenticate(f"Bearer {token}") == actor

    def test_bare_token(self, authenticator, actor):
        token = authenticator.issue_token(actor)

        assert authenticator.authenticate(token).id == "user-1"

    def test_missing_header(self, authenticator):
        with pytest.raises(SessionTokenError, match="Unauthorized"):
            authenticator.authenticate(None)

    def test_malformed(self, authenticator):
        with pytest.raises(SessionTokenError, match="Malformed"):
            authenticator.authenticate("Bearer not-a-token")

    def test_forged_signature(self, authenticator, actor, clock):
        forged = SessionAuthenticator(secret="other_secret", clock=clock).issue_token(actor)

        with pytest.raises(SessionTokenError, match="Invalid session signature"):
            authenticator.authenticate(forged)

    def test_tampered_payload(self, authenticator, actor):
        token = authenticator.issue_token(actor)
        signature = token.split(".")[1]
        admin = authenticator.issue_token(Actor(id="user-1", display_name="x", role="admin")).split(".")[0]

        with pytest.raises(SessionTokenError, match="Invalid session signature"):
            authenticator.authenticate(f"{admin}.{signature}")

    def test_expired(self, authenticator, actor, clock):
        token = authenticator.issue_token(actor, ttl_seconds=60)
        clock.now += 61

        with pytest.raises(SessionTokenError, match="Session expired"):
            authenticator.authenticate(token)

    def test_error_is_unauthorized(self, authenticator):
        with pytest.raises(SessionTokenError) as exc_info:
            authenticator.authenticate("")

        assert exc_info.value.status_code == 401
