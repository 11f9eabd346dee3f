"""Structured logging for the limiter and its HTTP host.

Rate limit events are dotted names (``rate_limit.allowed``,
``rate_limit.exceeded``, ``rate_limit.shared_unavailable``...) whose context
travels in ``extra``. Identities never appear in clear: callers log
``hash_key_for_log(key)`` as ``key_hash``, and the filters below strip
session keys, backend tokens and the credentials embedded in backend URLs
from anything else that slips into a record.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping
from urllib.parse import urlsplit, urlunsplit

from rate_guard.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

# Exact field names whose values never reach the sink
SENSITIVE_KEYS_DEFAULT: set[str] = {
    "authorization",
    "cookie",
    "set-cookie",
    "password",
    "token",
    "identifier",
    "session_key",
    "minted_session_key",
}

# Any field ending like this is a credential (shared_token, shared_backend_token...)
SENSITIVE_SUFFIXES: tuple[str, ...] = ("_token", "_password", "_secret")

# Fields ending like this hold connection URLs; only their userinfo is masked
URL_SUFFIXES: tuple[str, ...] = ("_url",)

# Attributes of every LogRecord, never treated as structured context
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_key_for_log(key: str) -> str:
    """Short, stable digest of a limiter key, safe to log."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def mask_url_credentials(url: str) -> str:
    """Replace the userinfo of a connection URL (``redis://:pw@host``)."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return REDACTED
    if "@" not in parts.netloc:
        return url
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit(parts._replace(netloc=f"***@{host}"))


def _is_sensitive_key(key: str, sensitive_keys: set[str]) -> bool:
    lowered = key.lower()
    return lowered in sensitive_keys or lowered.endswith(SENSITIVE_SUFFIXES)


def _redact(key: str, value: Any, sensitive_keys: set[str]) -> Any:
    if _is_sensitive_key(key, sensitive_keys):
        return REDACTED
    if isinstance(value, str) and key.lower().endswith(URL_SUFFIXES):
        return mask_url_credentials(value)
    if isinstance(value, Mapping):
        return {k: _redact(str(k), v, sensitive_keys) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_redact("", v, sensitive_keys) for v in value)
    return value


def _record_context(record: LogRecord, sensitive_keys: set[str]) -> dict[str, Any]:
    """The ``extra`` fields of a record, redacted."""
    return {
        key: _redact(key, value, sensitive_keys)
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class RequestIdFilter(logging.Filter):
    """Stamp records with the id of the request being served, if any."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact record context in place, so every formatter sees clean values."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = {k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT)}

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in _record_context(record, self.sensitive_keys).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: level, logger, event name, then context."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.sensitive_keys = {k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT)}
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        payload.update(_record_context(record, self.sensitive_keys))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    file_path = Path(log_settings.file_path or "logs/rate_guard.log")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if log_settings.max_bytes:
        return RotatingFileHandler(
            file_path,
            maxBytes=log_settings.max_bytes,
            backupCount=log_settings.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(file_path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install a single redacting handler on the root logger.

    Args:
        log_settings: Logging settings; the global ``settings.log`` when omitted.
    """

    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())

    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))
