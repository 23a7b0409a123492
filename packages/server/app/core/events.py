"""
Lifecycle event publishing over Redis Pub/Sub.

The notification fan-out (push, email) lives outside this service and
subscribes to ``REDIS_PUBSUB_CHANNEL``. Publishing is best-effort: the
database is the source of truth, so a Redis outage is logged and the
request that triggered the event still succeeds.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import structlog
from redis.exceptions import RedisError

from app.core.redis import get_redis

log = structlog.get_logger()

REDIS_PUBSUB_CHANNEL = "cb:events:pubsub"


def build_event(
    event_type: str,
    payload: dict[str, Any],
    actor_id: str | None = None,
) -> dict[str, Any]:
    return {
        "type": event_type,
        "actor_id": actor_id,
        "payload": payload,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def publish_event(
    event_type: str,
    payload: dict[str, Any],
    actor_id: str | None = None,
) -> bool:
    """Publish a lifecycle event. Returns False when Redis was unreachable."""
    event = build_event(event_type, payload, actor_id)
    try:
        redis = await get_redis()
        await redis.publish(REDIS_PUBSUB_CHANNEL, json.dumps(event, default=str))
    except (RedisError, OSError) as exc:
        log.warning("events.publish_failed", type=event_type, error=str(exc))
        return False
    return True
