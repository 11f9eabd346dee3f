"""Factory for shared counter clients."""

from __future__ import annotations

import logging
from urllib.parse import urlsplit

from rate_guard.adapters.rate_limit.base import AbstractSharedCounter
from rate_guard.adapters.rate_limit.redis_counter import RedisSharedCounter
from rate_guard.adapters.rate_limit.upstash_rest import UpstashRestSharedCounter
from rate_guard.core.config import LimiterConfig
from rate_guard.core.errors import ValidationAppError

logger = logging.getLogger(__name__)

_REDIS_SCHEMES = {"redis", "rediss", "unix"}
_REST_SCHEMES = {"http", "https"}


def create_shared_counter(config: LimiterConfig) -> AbstractSharedCounter | None:
    """Instantiate the shared counter client described by ``config``.

    The backend is chosen from the URL scheme: ``redis://``, ``rediss://`` and
    ``unix://`` use the native Redis protocol, ``http(s)://`` the REST API.

    Returns:
        A shared counter, or None when shared mode is disabled or its
        connection parameters are incomplete.

    Raises:
        ValidationAppError: If the URL scheme is not supported.
    """
    if not config.shared_mode_enabled:
        return None

    url = config.shared_backend_url
    if not url:
        logger.warning(
            "rate_limit.shared_mode_unconfigured",
            extra={"reason": "missing_url"},
        )
        return None

    scheme = urlsplit(url).scheme.lower()

    if scheme in _REDIS_SCHEMES:
        return RedisSharedCounter.from_url(
            url,
            password=config.shared_backend_token,
            timeout_seconds=config.shared_timeout_seconds,
            prefix=config.key_prefix,
            analytics=config.analytics_enabled,
            max_pending_tasks=config.max_pending_tasks,
        )

    if scheme in _REST_SCHEMES:
        if not config.shared_backend_token:
            logger.warning(
                "rate_limit.shared_mode_unconfigured",
                extra={"reason": "missing_token", "scheme": scheme},
            )
            return None
        return UpstashRestSharedCounter(
            url,
            config.shared_backend_token,
            timeout_seconds=config.shared_timeout_seconds,
            prefix=config.key_prefix,
            analytics=config.analytics_enabled,
            max_pending_tasks=config.max_pending_tasks,
        )

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=(
            f"Unsupported shared backend scheme: '{scheme}'. "
            "Supported schemes: redis, rediss, unix, http, https"
        ),
    )
