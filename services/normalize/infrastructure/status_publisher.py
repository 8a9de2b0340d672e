"""Publishes processing records so the gallery can refresh without polling."""

from __future__ import annotations

import json
import logging

from redis import Redis
from redis.exceptions import RedisError

from services.normalize.domain.media import RecordOutcome

logger = logging.getLogger(__name__)


class RecordStatusPublisher:
    def __init__(self, client: Redis, *, channel: str) -> None:
        self._redis = client
        self._channel = channel

    def publish(self, outcome: RecordOutcome) -> None:
        payload = {
            "event": "media_processed",
            "bucket": outcome.ref.bucket,
            "key": outcome.ref.key,
            "record": outcome.record.to_dict() if outcome.record else None,
            "error": outcome.error,
        }
        try:
            self._redis.publish(self._channel, json.dumps(payload))
        except RedisError as exc:
            logger.error(
                "Failed to publish processing status for %s/%s: %s",
                outcome.ref.bucket,
                outcome.ref.key,
                exc,
            )
