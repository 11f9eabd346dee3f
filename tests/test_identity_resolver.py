"""Unit tests for identity resolution."""

import pytest

from rate_guard.core.errors import ValidationAppError
from rate_guard.services.identity import (
    LOOPBACK_ADDRESS,
    IdentityResolver,
    RequestMetadata,
    last_forwarded_hop,
)


class TestLastForwardedHop:
    """Test X-Forwarded-For parsing."""

    def test_takes_last_entry(self) -> None:
        assert last_forwarded_hop("198.51.100.7, 10.0.0.1, 203.0.113.4") == "203.0.113.4"

    def test_single_entry(self) -> None:
        assert last_forwarded_hop("203.0.113.4") == "203.0.113.4"

    def test_skips_trailing_blank_entries(self) -> None:
        assert last_forwarded_hop("198.51.100.7, ") == "198.51.100.7"

    @pytest.mark.parametrize("value", [None, "", " , ,"])
    def test_empty_values(self, value) -> None:
        assert last_forwarded_hop(value) is None


class TestAddressPrecedence:
    """Test precedence of the address dimension."""

    def test_explicit_identifier_wins(self) -> None:
        resolver = IdentityResolver()
        metadata = RequestMetadata(forwarded_for="198.51.100.7", remote_address="10.0.0.1")

        resolved = resolver.resolve(metadata, identifier="user-42")

        assert resolved.address == "user-42"

    def test_forwarded_for_beats_socket_address(self) -> None:
        resolver = IdentityResolver()
        metadata = RequestMetadata(
            forwarded_for="1.1.1.1, 203.0.113.4",
            remote_address="10.0.0.1",
            real_ip="192.0.2.1",
        )

        assert resolver.resolve(metadata).address == "203.0.113.4"

    def test_socket_address_then_real_ip_then_client_ip(self) -> None:
        resolver = IdentityResolver()

        assert resolver.resolve(
            RequestMetadata(remote_address="10.0.0.1", real_ip="192.0.2.1")
        ).address == "10.0.0.1"
        assert resolver.resolve(
            RequestMetadata(real_ip="192.0.2.1", client_ip="192.0.2.2")
        ).address == "192.0.2.1"
        assert resolver.resolve(RequestMetadata(client_ip="192.0.2.2")).address == "192.0.2.2"

    def test_falls_back_to_loopback(self) -> None:
        resolver = IdentityResolver()

        assert resolver.resolve(RequestMetadata()).address == LOOPBACK_ADDRESS

    def test_identifier_without_metadata(self) -> None:
        resolver = IdentityResolver()

        assert resolver.resolve(None, identifier="svc-a").address == "svc-a"

    @pytest.mark.parametrize("identifier", [None, "", "   "])
    def test_missing_metadata_and_identifier_raises(self, identifier) -> None:
        resolver = IdentityResolver()

        with pytest.raises(ValidationAppError) as exc_info:
            resolver.resolve(None, identifier=identifier)

        assert exc_info.value.code == "rate_limit_identity_missing"


class TestSessionDimension:
    """Test session key resolution."""

    def test_sessions_disabled(self) -> None:
        resolver = IdentityResolver(session_enabled=False)

        resolved = resolver.resolve(RequestMetadata(session_key="abc"))

        assert resolved.session_key is None
        assert resolved.minted_session_key is None

    def test_reuses_existing_session_key(self) -> None:
        resolver = IdentityResolver(session_enabled=True, session_factory=lambda: "new")

        resolved = resolver.resolve(RequestMetadata(session_key="existing"))

        assert resolved.session_key == "existing"
        assert resolved.minted_session_key is None

    def test_mints_missing_session_key(self) -> None:
        resolver = IdentityResolver(session_enabled=True, session_factory=lambda: "minted-1")

        resolved = resolver.resolve(RequestMetadata(remote_address="10.0.0.1"))

        assert resolved.session_key == "minted-1"
        assert resolved.minted_session_key == "minted-1"

    def test_default_session_keys_are_random(self) -> None:
        resolver = IdentityResolver(session_enabled=True)

        first = resolver.resolve(RequestMetadata()).minted_session_key
        second = resolver.resolve(RequestMetadata()).minted_session_key

        assert first and second
        assert first != second
