from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any

from services.normalize.application.interfaces import MediaProber
from services.normalize.config import NormalizeConfig
from services.normalize.domain.errors import ProbeDegraded
from services.normalize.domain.media import MediaInfo, classify

logger = logging.getLogger(__name__)


class FFprobeMediaProber(MediaProber):
    """Classifies a local file with ffprobe; failures degrade to unknown."""

    def __init__(self, *, binary: str = "ffprobe", timeout_seconds: float = 30) -> None:
        self._binary = binary
        self._timeout = timeout_seconds

    def probe(self, path: Path) -> MediaInfo:
        try:
            data = self._run(path)
            return _parse(data)
        except ProbeDegraded as exc:
            logger.warning("Could not detect file type for %s: %s", path.name, exc)
            return MediaInfo.unknown()

    def _run(self, path: Path) -> dict[str, Any]:
        cmd = [
            self._binary,
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            path.as_posix(),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            raise ProbeDegraded(f"ffprobe timed out after {self._timeout}s") from exc
        except OSError as exc:
            raise ProbeDegraded(f"ffprobe could not be started: {exc}") from exc
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="ignore")
            raise ProbeDegraded(
                f"ffprobe exited with {result.returncode}: {stderr.strip() or 'unknown error'}"
            )
        try:
            data = json.loads(result.stdout)
        except (TypeError, ValueError) as exc:
            raise ProbeDegraded("ffprobe returned malformed JSON") from exc
        if not isinstance(data, dict):
            raise ProbeDegraded("ffprobe returned an unexpected document")
        return data


def _parse(data: dict[str, Any]) -> MediaInfo:
    streams = data.get("streams") or []
    fmt = data.get("format") or {}
    if not isinstance(streams, list) or not isinstance(fmt, dict):
        raise ProbeDegraded("ffprobe output is missing streams/format")
    streams = [s for s in streams if isinstance(s, dict)]

    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
    format_name = fmt.get("format_name") or None
    tags = fmt.get("tags") if isinstance(fmt.get("tags"), dict) else {}
    brand = tags.get("major_brand")
    if not isinstance(brand, str) or not brand.strip():
        brand = None
    else:
        brand = brand.strip()

    return MediaInfo(
        media_type=classify(
            format_name,
            brand=brand,
            has_video=video is not None,
            has_audio=audio is not None,
        ),
        format_name=format_name,
        brand=brand,
        width=_positive_int(video.get("width")) if video else None,
        height=_positive_int(video.get("height")) if video else None,
        duration=_duration(fmt.get("duration")),
        has_video=video is not None,
        has_audio=audio is not None,
        video_codec=video.get("codec_name") if video else None,
    )


def _positive_int(value: Any) -> int | None:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _duration(value: Any) -> float | None:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    # ffprobe reports N/A or 0 for stills
    if seconds != seconds or seconds <= 0:
        return None
    return seconds


def create_media_prober(config: NormalizeConfig) -> MediaProber:
    return FFprobeMediaProber(
        binary=config.ffprobe_path, timeout_seconds=config.probe_timeout_seconds
    )
