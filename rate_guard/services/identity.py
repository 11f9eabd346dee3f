"""Identity resolution for rate limiting.

Turns request metadata into the values each rate limit dimension counts:
the caller's network address and, optionally, a session key.

Address precedence:
1. An explicit identifier supplied by the caller.
2. The last hop of X-Forwarded-For (added by the proxy nearest to us; earlier
   entries are client-controlled and trivially spoofed).
3. The socket peer address, then X-Real-IP, then X-Client-IP.
4. ``127.0.0.1`` when nothing else is available.

A missing session key is minted here and handed back to the caller, who is
responsible for persisting it (e.g. as a cookie).
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Callable, Iterator

from rate_guard.core.errors import ValidationAppError

LOOPBACK_ADDRESS = "127.0.0.1"


def _default_session_factory() -> str:
    return secrets.token_urlsafe(24)


def last_forwarded_hop(forwarded_for: str | None) -> str | None:
    """Return the last non-empty entry of an X-Forwarded-For value.

    Examples:
        >>> last_forwarded_hop("198.51.100.7, 203.0.113.4")
        '203.0.113.4'
        >>> last_forwarded_hop(" , ") is None
        True
    """
    if not forwarded_for:
        return None
    hops = [hop.strip() for hop in forwarded_for.split(",")]
    hops = [hop for hop in hops if hop]
    return hops[-1] if hops else None


@dataclass(frozen=True)
class RequestMetadata:
    """Request attributes the resolver understands.

    Attributes:
        forwarded_for: Raw X-Forwarded-For header value.
        remote_address: Socket peer address as seen by the server.
        real_ip: X-Real-IP header value.
        client_ip: X-Client-IP header value.
        session_key: Session key already carried by the request.
    """

    forwarded_for: str | None = None
    remote_address: str | None = None
    real_ip: str | None = None
    client_ip: str | None = None
    session_key: str | None = None

    def network_address_candidates(self) -> Iterator[str]:
        """Yield address candidates in precedence order, skipping blanks."""
        for candidate in (
            last_forwarded_hop(self.forwarded_for),
            self.remote_address,
            self.real_ip,
            self.client_ip,
        ):
            if candidate and candidate.strip():
                yield candidate.strip()


@dataclass(frozen=True)
class ResolvedIdentity:
    """Identity values for one request.

    Attributes:
        address: Value counted on the address dimension.
        session_key: Value counted on the session dimension, if enabled.
        minted_session_key: Set when the session key was generated for this
            request and must be persisted by the caller.
    """

    address: str
    session_key: str | None = None
    minted_session_key: str | None = None


class IdentityResolver:
    """Derive rate limit identities from request metadata."""

    def __init__(
        self,
        *,
        session_enabled: bool = False,
        session_factory: Callable[[], str] = _default_session_factory,
    ) -> None:
        self._session_enabled = session_enabled
        self._session_factory = session_factory

    def resolve(
        self,
        metadata: RequestMetadata | None,
        *,
        identifier: str | None = None,
    ) -> ResolvedIdentity:
        """Resolve the identities of one request.

        Args:
            metadata: Request attributes, or None when the caller only has an
                explicit identifier.
            identifier: Explicit identifier overriding the network address.

        Returns:
            ResolvedIdentity with the address and, when sessions are enabled,
            the session key.

        Raises:
            ValidationAppError: If neither metadata nor identifier is given.
        """
        identifier = identifier.strip() if identifier else None

        if metadata is None and not identifier:
            raise ValidationAppError(
                code="rate_limit_identity_missing",
                message="Either request metadata or an identifier is required",
                details={"hint": "Pass the request metadata or an explicit identifier"},
            )

        address = identifier or self.resolve_address(metadata)

        if not self._session_enabled:
            return ResolvedIdentity(address=address)

        existing = metadata.session_key if metadata is not None else None
        if existing:
            return ResolvedIdentity(address=address, session_key=existing)

        minted = self._session_factory()
        return ResolvedIdentity(address=address, session_key=minted, minted_session_key=minted)

    @staticmethod
    def resolve_address(metadata: RequestMetadata | None) -> str:
        if metadata is None:
            return LOOPBACK_ADDRESS
        return next(metadata.network_address_candidates(), LOOPBACK_ADDRESS)
