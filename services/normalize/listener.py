from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping

import redis

from .config import NormalizeConfig

logger = logging.getLogger(__name__)


def listen_for_uploads(
    config: NormalizeConfig,
    enqueue_fn: Callable[[Mapping[str, Any]], object],
    stop_event=None,
) -> None:
    """Forward storage notifications published on the redis channel to the queue."""
    client = redis.Redis(
        host=config.redis_host, port=config.redis_port, db=config.redis_db
    )
    pubsub = client.pubsub()
    pubsub.subscribe(config.redis_channel)
    logger.info("Listening for upload events on channel %r", config.redis_channel)
    for message in pubsub.listen():
        if stop_event and stop_event.is_set():
            break
        if message.get("type") != "message":
            continue
        try:
            payload = json.loads(message["data"])
        except (TypeError, json.JSONDecodeError):
            logger.warning("Ignoring undecodable upload event")
            continue
        if not isinstance(payload, dict):
            continue
        if "Records" not in payload and not payload.get("bucket"):
            continue
        logger.info("New upload event on %r", config.redis_channel)
        enqueue_fn(payload)
