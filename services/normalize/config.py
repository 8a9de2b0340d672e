from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

UNDETECTED_MEDIA_POLICIES = ("video", "image", "fail")


def _load_repo_env() -> None:
    """Load the nearest .env starting from this file upward."""
    current = Path(__file__).resolve()
    for candidate in [current.parent, *current.parents]:
        env_file = candidate / ".env"
        if env_file.exists():
            load_dotenv(env_file)
            return


_load_repo_env()


@dataclass(frozen=True)
class NormalizeConfig:
    storage_endpoint_url: str | None
    storage_region: str
    storage_access_key: str | None
    storage_secret_key: str | None
    raw_segment: str
    processed_segment: str
    cache_control: str
    webm_max_bytes: int
    video_max_width: int
    scratch_dir: str
    ffmpeg_path: str
    ffprobe_path: str
    probe_timeout_seconds: int
    encode_timeout_base_seconds: int
    encode_timeout_seconds_per_mb: int
    undetected_media_policy: str
    redis_host: str
    redis_port: int
    redis_db: int
    redis_queue_name: str
    redis_channel: str
    status_channel: str | None
    job_timeout_seconds: int
    publish_reserve_seconds: int
    log_level: str


def _env_optional(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_policy(name: str, default: str) -> str:
    value = (os.getenv(name) or default).strip().lower()
    if value not in UNDETECTED_MEDIA_POLICIES:
        raise ValueError(
            f"Environment variable {name} must be one of {', '.join(UNDETECTED_MEDIA_POLICIES)}"
        )
    return value


def load_config() -> NormalizeConfig:
    return NormalizeConfig(
        storage_endpoint_url=_env_optional("NORMALIZE_STORAGE_ENDPOINT_URL"),
        storage_region=os.getenv(
            "NORMALIZE_STORAGE_REGION", os.getenv("AWS_REGION", "us-east-1")
        ),
        storage_access_key=_env_optional("NORMALIZE_STORAGE_ACCESS_KEY"),
        storage_secret_key=_env_optional("NORMALIZE_STORAGE_SECRET_KEY"),
        raw_segment=os.getenv("NORMALIZE_RAW_SEGMENT", "raw"),
        processed_segment=os.getenv("NORMALIZE_PROCESSED_SEGMENT", "processed"),
        cache_control=os.getenv(
            "NORMALIZE_CACHE_CONTROL", "public, max-age=31536000, immutable"
        ),
        webm_max_bytes=_env_int("NORMALIZE_WEBM_MAX_BYTES", 100 * 1024 * 1024),
        video_max_width=_env_int("NORMALIZE_VIDEO_MAX_WIDTH", 1280),
        scratch_dir=os.getenv("NORMALIZE_SCRATCH_DIR", tempfile.gettempdir()),
        ffmpeg_path=os.getenv("NORMALIZE_FFMPEG_PATH", "ffmpeg"),
        ffprobe_path=os.getenv("NORMALIZE_FFPROBE_PATH", "ffprobe"),
        probe_timeout_seconds=_env_int("NORMALIZE_PROBE_TIMEOUT_SECONDS", 30),
        encode_timeout_base_seconds=_env_int(
            "NORMALIZE_ENCODE_TIMEOUT_BASE_SECONDS", 300
        ),
        encode_timeout_seconds_per_mb=_env_int(
            "NORMALIZE_ENCODE_TIMEOUT_SECONDS_PER_MB", 10
        ),
        undetected_media_policy=_env_policy(
            "NORMALIZE_UNDETECTED_MEDIA_POLICY", "video"
        ),
        redis_host=os.getenv("NORMALIZE_REDIS_HOST", "localhost"),
        redis_port=_env_int("NORMALIZE_REDIS_PORT", 6379),
        redis_db=_env_int("NORMALIZE_REDIS_DB", 0),
        redis_queue_name=os.getenv("NORMALIZE_REDIS_QUEUE_NAME", "media"),
        redis_channel=os.getenv("NORMALIZE_REDIS_CHANNEL", "media_uploaded"),
        status_channel=_env_optional("NORMALIZE_STATUS_CHANNEL")
        if "NORMALIZE_STATUS_CHANNEL" in os.environ
        else "media_processed",
        job_timeout_seconds=_env_int("NORMALIZE_JOB_TIMEOUT_SECONDS", 1800),
        publish_reserve_seconds=_env_int("NORMALIZE_PUBLISH_RESERVE_SECONDS", 120),
        log_level=os.getenv("NORMALIZE_LOG_LEVEL", "INFO").upper(),
    )
