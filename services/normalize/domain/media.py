from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Mapping

RecordStatus = Literal["completed", "failed"]

HEIF_BRANDS = frozenset({"heic", "heix", "heif", "mif1", "msf1", "avif"})

# ffprobe demuxer name -> MIME subtype of the still image it reads.
IMAGE_DEMUXERS = {
    "jpeg_pipe": "jpeg",
    "png_pipe": "png",
    "webp_pipe": "webp",
    "gif": "gif",
    "gif_pipe": "gif",
    "bmp_pipe": "bmp",
    "tiff_pipe": "tiff",
    "heif": "heic",
}

# image2 reads any still format, so its subtype comes from the codec.
GENERIC_IMAGE_DEMUXERS = frozenset({"image2"})

_IMAGE_CODECS = {
    "mjpeg": "jpeg",
    "png": "png",
    "webp": "webp",
    "gif": "gif",
    "bmp": "bmp",
    "tiff": "tiff",
}


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MediaInfo:
    """What the prober learned about one local file."""

    media_type: MediaType = MediaType.UNKNOWN
    format_name: str | None = None
    brand: str | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    has_video: bool = False
    has_audio: bool = False
    video_codec: str | None = None

    @classmethod
    def unknown(cls) -> "MediaInfo":
        return cls()

    @property
    def is_unknown(self) -> bool:
        return self.media_type is MediaType.UNKNOWN

    @property
    def is_heic(self) -> bool:
        descriptor = f"{self.format_name or ''} {self.brand or ''}".lower()
        return "heic" in descriptor or "heif" in descriptor

    @property
    def mime_type(self) -> str | None:
        if self.media_type is MediaType.VIDEO:
            return "video/mp4"
        if self.media_type is not MediaType.IMAGE:
            return None
        if self.is_heic:
            return "image/heic"
        for name in _format_names(self.format_name):
            if name in IMAGE_DEMUXERS:
                return f"image/{IMAGE_DEMUXERS[name]}"
        if self.video_codec in _IMAGE_CODECS:
            return f"image/{_IMAGE_CODECS[self.video_codec]}"
        return None

    @property
    def image_extension(self) -> str:
        subtype = (self.mime_type or "").partition("/")[2]
        if not subtype or subtype == "jpeg":
            return "jpg"
        return subtype


def _format_names(format_name: str | None) -> list[str]:
    if not format_name:
        return []
    return [part.strip().lower() for part in format_name.split(",") if part.strip()]


def classify(
    format_name: str | None,
    *,
    brand: str | None = None,
    has_video: bool = False,
    has_audio: bool = False,
) -> MediaType:
    """Decide image vs video from probe output, ignoring the file name."""
    names = _format_names(format_name)
    if not names and not has_video and not has_audio:
        return MediaType.UNKNOWN
    if brand and brand.strip().lower() in HEIF_BRANDS:
        return MediaType.IMAGE
    for name in names:
        if (
            name in IMAGE_DEMUXERS
            or name in GENERIC_IMAGE_DEMUXERS
            or name.endswith("_pipe")
        ):
            return MediaType.IMAGE
        if "heic" in name or "heif" in name:
            return MediaType.IMAGE
    if has_video or has_audio:
        return MediaType.VIDEO
    return MediaType.UNKNOWN


@dataclass(frozen=True)
class ObjectRef:
    bucket: str
    key: str


@dataclass(frozen=True)
class MediaKey:
    """Structure of a raw upload key: ``<group_id>/<raw>/<file_id>.<ext>``."""

    group_id: str
    file_id: str
    extension: str
    raw_key: str

    @classmethod
    def parse(cls, key: str, raw_segment: str = "raw") -> "MediaKey | None":
        if f"/{raw_segment}/" not in key:
            return None
        parts = key.split("/")
        file_name = parts[-1]
        if not file_name or not parts[0]:
            return None
        file_id = file_name.split(".")[0]
        if not file_id:
            return None
        extension = file_name.rsplit(".", 1)[1].lower() if "." in file_name else ""
        return cls(
            group_id=parts[0], file_id=file_id, extension=extension, raw_key=key
        )

    def processed_key(self, processed_segment: str, extension: str) -> str:
        return f"{self.group_id}/{processed_segment}/{self.file_id}.{extension}"


@dataclass(frozen=True)
class Artifact:
    path: Path
    extension: str
    content_type: str


@dataclass(frozen=True)
class TranscodeOutput:
    media_type: MediaType
    poster: Artifact
    primary: Artifact
    secondary: Artifact | None = None
    width: int = 0
    height: int = 0
    duration: float | None = None

    @property
    def has_webm(self) -> bool:
        return self.secondary is not None

    def artifacts(self) -> list[Artifact]:
        """Artifacts in publish order; the poster wins a shared key."""
        items = [self.secondary] if self.secondary is not None else []
        if self.primary.extension != self.poster.extension:
            items.append(self.primary)
        items.append(self.poster)
        return items


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class ProcessingRecord:
    id: str
    original_key: str
    type: MediaType
    status: RecordStatus
    width: int = 0
    height: int = 0
    duration: float | None = None
    has_webm: bool = False
    error: str | None = None
    created_at: str = field(default_factory=_utc_timestamp)

    @classmethod
    def completed(
        cls, media_key: MediaKey, output: TranscodeOutput
    ) -> "ProcessingRecord":
        return cls(
            id=media_key.file_id,
            original_key=media_key.raw_key,
            type=output.media_type,
            status="completed",
            width=output.width,
            height=output.height,
            duration=output.duration if output.media_type is MediaType.VIDEO else None,
            has_webm=output.has_webm,
        )

    @classmethod
    def failed(
        cls, media_key: MediaKey, media_type: MediaType, error: str
    ) -> "ProcessingRecord":
        return cls(
            id=media_key.file_id,
            original_key=media_key.raw_key,
            type=media_type,
            status="failed",
            error=error or "Unknown error",
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "originalKey": self.original_key,
            "width": self.width,
            "height": self.height,
        }
        if self.duration is not None:
            payload["duration"] = self.duration
        payload.update(
            {
                "hasWebm": self.has_webm,
                "type": self.type.value,
                "status": self.status,
            }
        )
        if self.error is not None:
            payload["error"] = self.error
        payload["createdAt"] = self.created_at
        return payload

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ProcessingRecord":
        return cls(
            id=str(payload["id"]),
            original_key=str(payload["originalKey"]),
            type=MediaType(payload["type"]),
            status=payload["status"],
            width=int(payload.get("width") or 0),
            height=int(payload.get("height") or 0),
            duration=payload.get("duration"),
            has_webm=bool(payload.get("hasWebm", False)),
            error=payload.get("error"),
            created_at=str(payload["createdAt"]),
        )


@dataclass(frozen=True)
class RecordOutcome:
    """Result of one notification in a batch; exceptions never cross records."""

    ref: ObjectRef
    record: ProcessingRecord | None = None
    error: str | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and (self.record is None or self.record.status == "completed")
        )
