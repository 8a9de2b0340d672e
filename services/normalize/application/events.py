"""Parsing of storage-change notifications into object references."""

from __future__ import annotations

import logging
from typing import Any, Iterator, Mapping
from urllib.parse import unquote_plus

from services.normalize.domain.media import ObjectRef

logger = logging.getLogger(__name__)


def decode_key(raw_key: str) -> str:
    return unquote_plus(raw_key)


def _is_created_event(event_name: Any) -> bool:
    if not event_name:
        return True
    name = str(event_name)
    return name.startswith("ObjectCreated") or name.startswith("s3:ObjectCreated")


def iter_object_refs(event: Mapping[str, Any]) -> Iterator[ObjectRef]:
    """Yield one ref per usable notification in an S3/MinIO or flat payload.

    Keys inside ``Records`` arrive URL-encoded; flat payloads carry plain keys.
    """
    records = event.get("Records")
    if records is None:
        bucket = event.get("bucket")
        key = event.get("key") or event.get("object_key")
        if bucket and key:
            yield ObjectRef(bucket=str(bucket), key=str(key))
        else:
            logger.warning("Ignoring notification without bucket/key")
        return

    for record in records:
        if not isinstance(record, Mapping):
            logger.warning("Ignoring malformed notification record")
            continue
        if not _is_created_event(record.get("eventName")):
            logger.info("Ignoring %s notification", record.get("eventName"))
            continue
        s3 = record.get("s3") or {}
        bucket = (s3.get("bucket") or {}).get("name")
        obj = s3.get("object") or {}
        key = obj.get("key")
        if not bucket or not key:
            logger.warning("Ignoring notification record without bucket/key")
            continue
        yield ObjectRef(bucket=str(bucket), key=decode_key(str(key)))
