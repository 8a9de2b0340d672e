from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Protocol

from services.normalize.domain.media import MediaInfo


class EncodeProfile(str, Enum):
    MP4 = "mp4"
    MP4_SILENT = "mp4_silent"
    WEBM = "webm"
    POSTER = "poster"
    POSTER_FIRST_FRAME = "poster_first_frame"
    JPEG = "jpeg"


class ObjectStore(Protocol):
    def get(self, bucket: str, key: str) -> bytes: ...

    def put(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str,
        cache_control: str | None = None,
    ) -> None: ...

    def delete(self, local_path: str) -> None: ...


class MediaProber(Protocol):
    def probe(self, path: Path) -> MediaInfo:
        """Never raises; returns ``MediaInfo.unknown()`` when the tool fails."""
        ...


class MediaEncoder(Protocol):
    def encode(
        self,
        source: Path,
        destination: Path,
        profile: EncodeProfile,
        *,
        timeout: float | None = None,
    ) -> Path: ...
