"""Video and image normalization on top of the probe/encode capabilities."""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Callable

from services.normalize.application.interfaces import (
    EncodeProfile,
    MediaEncoder,
    MediaProber,
)
from services.normalize.domain.errors import SecondaryTranscodeError, TranscodeError
from services.normalize.domain.media import (
    Artifact,
    MediaInfo,
    MediaType,
    TranscodeOutput,
)

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024

_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "tiff": "image/tiff",
    "mp4": "video/mp4",
    "webm": "video/webm",
}


def content_type_for(extension: str) -> str:
    return _CONTENT_TYPES.get(extension.lower(), "application/octet-stream")


class MediaTranscoder:
    def __init__(
        self,
        *,
        encoder: MediaEncoder,
        prober: MediaProber,
        webm_max_bytes: int = 100 * _BYTES_PER_MB,
        timeout_base_seconds: float = 300,
        timeout_seconds_per_mb: float = 10,
        min_secondary_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._encoder = encoder
        self._prober = prober
        self._webm_max_bytes = webm_max_bytes
        self._timeout_base = timeout_base_seconds
        self._timeout_per_mb = timeout_seconds_per_mb
        self._min_secondary_seconds = min_secondary_seconds
        self._clock = clock

    def transcode(
        self,
        source: Path,
        workdir: Path,
        info: MediaInfo,
        media_type: MediaType,
        *,
        deadline: float | None = None,
    ) -> TranscodeOutput:
        """Produce the artifacts for one upload.

        ``deadline`` is a ``clock()`` value by which encoding must finish; every
        ffmpeg timeout is capped to the time left before it.
        """
        if media_type is MediaType.IMAGE:
            return self.transcode_image(source, workdir, info, deadline=deadline)
        return self.transcode_video(source, workdir, info, deadline=deadline)

    def transcode_video(
        self,
        source: Path,
        workdir: Path,
        info: MediaInfo,
        *,
        deadline: float | None = None,
    ) -> TranscodeOutput:
        logger.info("Processing video file %s", source.name)
        source_size = source.stat().st_size
        timeout = self._video_timeout(source_size)

        mp4_path = self._encode_primary(
            source, workdir / "output.mp4", timeout, deadline
        )
        poster_path = self._extract_poster(mp4_path, workdir / "poster.jpg", deadline)

        secondary = None
        remaining = self._remaining(deadline)
        if source_size >= self._webm_max_bytes:
            logger.info(
                "Skipping WebM for %s: %d bytes is over the %d byte limit",
                source.name,
                source_size,
                self._webm_max_bytes,
            )
        elif remaining is not None and remaining < self._min_secondary_seconds:
            logger.warning(
                "Skipping WebM for %s: only %.0fs left before the job deadline",
                source.name,
                remaining,
            )
        else:
            try:
                webm_path = self._encode_secondary(
                    source,
                    workdir / "output.webm",
                    timeout if remaining is None else min(timeout, remaining),
                )
                secondary = Artifact(webm_path, "webm", content_type_for("webm"))
            except SecondaryTranscodeError as exc:
                logger.warning(
                    "WebM generation failed, continuing with MP4 only: %s", exc
                )

        final = self._prober.probe(mp4_path)
        return TranscodeOutput(
            media_type=MediaType.VIDEO,
            poster=Artifact(poster_path, "jpg", content_type_for("jpg")),
            primary=Artifact(mp4_path, "mp4", content_type_for("mp4")),
            secondary=secondary,
            width=_first_known(final.width, info.width),
            height=_first_known(final.height, info.height),
            duration=final.duration or info.duration,
        )

    def transcode_image(
        self,
        source: Path,
        workdir: Path,
        info: MediaInfo,
        *,
        deadline: float | None = None,
    ) -> TranscodeOutput:
        logger.info("Processing image file %s", source.name)
        poster_path = workdir / "poster.jpg"
        self._encoder.encode(
            source,
            poster_path,
            EncodeProfile.JPEG,
            timeout=self._bounded(self._timeout_base, deadline, "JPEG"),
        )
        poster = Artifact(poster_path, "jpg", content_type_for("jpg"))

        if info.is_heic:
            logger.info("Converted HEIC/HEIF %s to JPEG", source.name)
            primary = poster
        else:
            extension = info.image_extension
            primary_path = workdir / f"primary.{extension}"
            shutil.copyfile(source, primary_path)
            primary = Artifact(primary_path, extension, content_type_for(extension))

        final = self._prober.probe(poster_path)
        return TranscodeOutput(
            media_type=MediaType.IMAGE,
            poster=poster,
            primary=primary,
            width=_first_known(final.width, info.width),
            height=_first_known(final.height, info.height),
        )

    def _encode_primary(
        self,
        source: Path,
        destination: Path,
        timeout: float,
        deadline: float | None,
    ) -> Path:
        try:
            return self._encoder.encode(
                source,
                destination,
                EncodeProfile.MP4,
                timeout=self._bounded(timeout, deadline, "MP4"),
            )
        except TranscodeError as exc:
            logger.warning("MP4 encode failed, retrying without audio: %s", exc)
        return self._encoder.encode(
            source,
            destination,
            EncodeProfile.MP4_SILENT,
            timeout=self._bounded(timeout, deadline, "silent MP4"),
        )

    def _extract_poster(
        self, mp4_path: Path, destination: Path, deadline: float | None
    ) -> Path:
        try:
            return self._encoder.encode(
                mp4_path,
                destination,
                EncodeProfile.POSTER,
                timeout=self._bounded(self._timeout_base, deadline, "poster"),
            )
        except TranscodeError as exc:
            logger.warning("Poster at 1s failed, using first frame: %s", exc)
        return self._encoder.encode(
            mp4_path,
            destination,
            EncodeProfile.POSTER_FIRST_FRAME,
            timeout=self._bounded(self._timeout_base, deadline, "poster"),
        )

    def _encode_secondary(self, source: Path, destination: Path, timeout: float) -> Path:
        try:
            return self._encoder.encode(
                source, destination, EncodeProfile.WEBM, timeout=timeout
            )
        except TranscodeError as exc:
            raise SecondaryTranscodeError(str(exc)) from exc

    def _video_timeout(self, size_bytes: int) -> float:
        return self._timeout_base + self._timeout_per_mb * (size_bytes / _BYTES_PER_MB)

    def _remaining(self, deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return deadline - self._clock()

    def _bounded(self, timeout: float, deadline: float | None, stage: str) -> float:
        remaining = self._remaining(deadline)
        if remaining is None:
            return timeout
        if remaining <= 0:
            raise TranscodeError(f"No time left before the job deadline for the {stage} encode")
        return min(timeout, remaining)


def _first_known(*values: int | None) -> int:
    for value in values:
        if value:
            return value
    return 0
