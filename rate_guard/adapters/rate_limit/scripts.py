"""Lua scripts executed atomically by the shared counter store.

Both scripts take window lengths in milliseconds. Keys are bucketed by the
caller as ``<prefix>:<key>:<bucket>`` where ``bucket = now_ms // window_ms``.
"""

from __future__ import annotations

import math

# KEYS[1]: current bucket. ARGV[1]: window (ms).
# Returns the bucket count after the increment.
FIXED_WINDOW_SCRIPT = """
local key = KEYS[1]
local window = tonumber(ARGV[1])

local count = redis.call("INCR", key)
if count == 1 then
  redis.call("PEXPIRE", key, window)
end

return count
"""

# KEYS[1]: current bucket, KEYS[2]: previous bucket.
# ARGV[1]: limit, ARGV[2]: now (ms), ARGV[3]: window (ms).
# Returns the remaining budget, or -1 when the request is rejected.
SLIDING_WINDOW_SCRIPT = """
local current_key = KEYS[1]
local previous_key = KEYS[2]
local limit = tonumber(ARGV[1])
local now = tonumber(ARGV[2])
local window = tonumber(ARGV[3])

local current = tonumber(redis.call("GET", current_key) or "0")
local previous = tonumber(redis.call("GET", previous_key) or "0")

local elapsed = (now % window) / window
local weighted_previous = math.floor((1 - elapsed) * previous)

if weighted_previous + current >= limit then
  return -1
end

local count = redis.call("INCR", current_key)
if count == 1 then
  redis.call("PEXPIRE", current_key, window * 2 + 1000)
end

return limit - (count + weighted_previous)
"""

ANALYTICS_TTL_SECONDS = 90 * 24 * 60 * 60


def window_ms(window_seconds: float) -> int:
    return max(1, int(round(window_seconds * 1000)))


def bucket_for(now_ms: int, window_milliseconds: int) -> int:
    return now_ms // window_milliseconds


def bucket_reset_at(bucket: int, window_milliseconds: int) -> int:
    """Epoch seconds (rounded up) at which ``bucket`` ends."""
    return int(math.ceil((bucket + 1) * window_milliseconds / 1000))


def analytics_key(prefix: str, now_ms: int) -> str:
    day = now_ms // (24 * 60 * 60 * 1000)
    return f"{prefix}:analytics:{day}"


def analytics_field(key: str, success: bool) -> str:
    return f"{key}:{'success' if success else 'blocked'}"
