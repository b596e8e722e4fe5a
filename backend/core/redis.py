from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Dict

import redis
from django.conf import settings

logger = logging.getLogger(__name__)

STREAM_MAXLEN = 1000


@lru_cache(maxsize=1)
def get_redis_client() -> "redis.Redis":
    """
    Return a Redis client configured from settings.REDIS_URL.
    Safe to call from views and Celery tasks.
    """
    url = getattr(settings, "REDIS_URL", None)
    if not url:
        raise RuntimeError("REDIS_URL is not configured")
    return redis.Redis.from_url(url)


def user_stream_key(user_id: int) -> str:
    return f"events:user:{int(user_id)}"


def push_event(user_id: int, event_type: str, payload: Dict[str, Any]) -> str:
    """
    Append a push event to the user's Redis stream, where the client-facing
    event feed picks it up.

    Returns the stream entry ID. Redis errors propagate so the caller can log
    the failed delivery.
    """
    data = {
        "type": event_type,
        "payload": json.dumps(payload or {}, separators=(",", ":"), default=str),
    }
    entry_id = get_redis_client().xadd(
        user_stream_key(user_id), data, maxlen=STREAM_MAXLEN, approximate=True
    )
    if isinstance(entry_id, bytes):
        entry_id = entry_id.decode("utf-8")
    return str(entry_id)
