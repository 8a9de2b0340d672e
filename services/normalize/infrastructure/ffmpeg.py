from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from services.normalize.application.interfaces import EncodeProfile, MediaEncoder
from services.normalize.config import NormalizeConfig
from services.normalize.domain.errors import TranscodeError

logger = logging.getLogger(__name__)

_H264_ARGS = [
    "-c:v",
    "libx264",
    "-profile:v",
    "high",
    "-level",
    "4.1",
    "-preset",
    "veryfast",
    "-crf",
    "23",
    "-pix_fmt",
    "yuv420p",
]


class FFmpegMediaEncoder(MediaEncoder):
    def __init__(
        self,
        *,
        binary: str = "ffmpeg",
        max_width: int = 1280,
        log_level: str = "error",
    ) -> None:
        self._binary = binary
        self._max_width = max_width
        self._log_level = log_level

    def encode(
        self,
        source: Path,
        destination: Path,
        profile: EncodeProfile,
        *,
        timeout: float | None = None,
    ) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        cmd = self._build_command(source, destination, profile)
        logger.debug("Running %s: %s", profile.value, " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            raise TranscodeError(
                f"ffmpeg {profile.value} timed out after {timeout}s for {source.name}"
            ) from exc
        except OSError as exc:
            raise TranscodeError(f"ffmpeg could not be started: {exc}") from exc
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="ignore")
            raise TranscodeError(
                f"ffmpeg {profile.value} failed for {source.name}: {stderr.strip() or 'unknown error'}"
            )
        if not destination.exists() or destination.stat().st_size == 0:
            raise TranscodeError(
                f"ffmpeg {profile.value} produced no output for {source.name}"
            )
        return destination

    def _scale_filter(self) -> str:
        # shrink-only; -2 keeps the aspect ratio with an even height
        return f"scale='min({self._max_width},iw)':-2"

    def _build_command(
        self, source: Path, destination: Path, profile: EncodeProfile
    ) -> list[str]:
        cmd = [self._binary, "-y", "-hide_banner", "-loglevel", self._log_level]
        if profile is EncodeProfile.POSTER:
            cmd.extend(["-ss", "1"])
        cmd.extend(["-i", source.as_posix()])

        if profile in (EncodeProfile.MP4, EncodeProfile.MP4_SILENT):
            cmd.extend(["-vf", f"{self._scale_filter()},format=yuv420p", *_H264_ARGS])
            if profile is EncodeProfile.MP4:
                cmd.extend(["-c:a", "aac", "-b:a", "128k"])
            else:
                cmd.append("-an")
            cmd.extend(["-movflags", "+faststart"])
        elif profile is EncodeProfile.WEBM:
            cmd.extend(
                [
                    "-vf",
                    self._scale_filter(),
                    "-c:v",
                    "libvpx-vp9",
                    "-crf",
                    "33",
                    "-b:v",
                    "0",
                    "-c:a",
                    "libopus",
                ]
            )
        elif profile in (
            EncodeProfile.POSTER,
            EncodeProfile.POSTER_FIRST_FRAME,
            EncodeProfile.JPEG,
        ):
            cmd.extend(["-vframes", "1", "-q:v", "2"])
        else:
            raise ValueError(f"Unsupported encode profile: {profile}")

        cmd.append(destination.as_posix())
        return cmd


def create_media_encoder(config: NormalizeConfig) -> MediaEncoder:
    return FFmpegMediaEncoder(
        binary=config.ffmpeg_path, max_width=config.video_max_width
    )
