from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

from services.normalize.application.interfaces import EncodeProfile
from services.normalize.application.transcoding import MediaTranscoder
from services.normalize.application.use_cases.dispatch_batch import (
    DispatchBatchUseCase,
)
from services.normalize.application.use_cases.normalize_media import (
    NormalizeMediaUseCase,
)
from services.normalize.domain.errors import NotFoundOrEmptyError, TranscodeError, UploadError
from services.normalize.domain.media import MediaInfo, MediaType

WEBM_LIMIT = 64

MOV_INFO = MediaInfo(
    media_type=MediaType.VIDEO,
    format_name="mov,mp4,m4a,3gp,3g2,mj2",
    brand="qt",
    width=1920,
    height=1080,
    duration=12.5,
    has_video=True,
    has_audio=True,
    video_codec="h264",
)
HEIC_INFO = MediaInfo(
    media_type=MediaType.IMAGE,
    format_name="mov,mp4,m4a,3gp,3g2,mj2",
    brand="heic",
    width=4032,
    height=3024,
    has_video=True,
    video_codec="hevc",
)
PNG_INFO = MediaInfo(
    media_type=MediaType.IMAGE,
    format_name="png_pipe",
    width=800,
    height=600,
    has_video=True,
    video_codec="png",
)
NORMALIZED_MP4_INFO = MediaInfo(
    media_type=MediaType.VIDEO,
    format_name="mov,mp4,m4a,3gp,3g2,mj2",
    width=1280,
    height=720,
    duration=12.48,
    has_video=True,
    has_audio=True,
    video_codec="h264",
)
POSTER_INFO = MediaInfo(
    media_type=MediaType.IMAGE,
    format_name="image2",
    width=4032,
    height=3024,
    has_video=True,
    video_codec="mjpeg",
)


class FakeStorage:
    def __init__(self, objects: dict[tuple[str, str], bytes] | None = None) -> None:
        self.objects: dict[tuple[str, str], bytes] = dict(objects or {})
        self.puts: list[tuple[str, str, str, str | None]] = []
        self.deleted: list[str] = []
        self.fail_put_keys: set[str] = set()

    def get(self, bucket: str, key: str) -> bytes:
        data = self.objects.get((bucket, key))
        if not data:
            raise NotFoundOrEmptyError(f"Empty response body for {bucket}/{key}")
        return data

    def put(self, bucket, key, body, content_type, cache_control=None) -> None:
        if key in self.fail_put_keys:
            raise UploadError(f"Could not write {bucket}/{key}: denied")
        self.objects[(bucket, key)] = body
        self.puts.append((bucket, key, content_type, cache_control))

    def delete(self, local_path: str) -> None:
        self.deleted.append(local_path)
        if os.path.isdir(local_path):
            shutil.rmtree(local_path)
        elif os.path.exists(local_path):
            os.unlink(local_path)

    def keys(self, bucket: str = "bucket") -> set[str]:
        return {key for (b, key) in self.objects if b == bucket}


class FakeEncoder:
    """Writes a marker file per profile; payloads starting with b"corrupt" fail."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, EncodeProfile, float | None]] = []
        self.fail_profiles: set[EncodeProfile] = set()
        self.on_encode = None

    def encode(self, source: Path, destination: Path, profile, *, timeout=None) -> Path:
        self.calls.append((source.name, profile, timeout))
        if self.on_encode is not None:
            self.on_encode(profile)
        if profile in self.fail_profiles:
            raise TranscodeError(f"ffmpeg {profile.value} failed for {source.name}")
        if source.read_bytes().startswith(b"corrupt"):
            raise TranscodeError(f"ffmpeg {profile.value} failed for {source.name}: invalid data")
        destination.write_bytes(f"{profile.value}:{source.name}".encode())
        return destination

    def profiles(self) -> list[EncodeProfile]:
        return [profile for _, profile, _ in self.calls]


class FakeProber:
    def __init__(self) -> None:
        self.by_content: dict[bytes, MediaInfo] = {}
        self.by_name: dict[str, MediaInfo] = {
            "output.mp4": NORMALIZED_MP4_INFO,
            "poster.jpg": POSTER_INFO,
        }
        self.probed: list[str] = []

    def probe(self, path: Path) -> MediaInfo:
        self.probed.append(path.name)
        if path.name in self.by_name:
            return self.by_name[path.name]
        data = path.read_bytes()
        for prefix, info in self.by_content.items():
            if data.startswith(prefix):
                return info
        return MediaInfo.unknown()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def prober() -> FakeProber:
    fake = FakeProber()
    fake.by_content = {
        b"mov": MOV_INFO,
        b"heic": HEIC_INFO,
        b"png": PNG_INFO,
    }
    return fake


@pytest.fixture
def transcoder(encoder, prober) -> MediaTranscoder:
    return MediaTranscoder(
        encoder=encoder,
        prober=prober,
        webm_max_bytes=WEBM_LIMIT,
        timeout_base_seconds=60,
        timeout_seconds_per_mb=5,
    )


@pytest.fixture
def scratch_dir(tmp_path) -> Path:
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def normalizer(storage, prober, transcoder, scratch_dir) -> NormalizeMediaUseCase:
    return NormalizeMediaUseCase(
        storage=storage,
        prober=prober,
        transcoder=transcoder,
        scratch_dir=scratch_dir.as_posix(),
    )


@pytest.fixture
def dispatcher(normalizer) -> DispatchBatchUseCase:
    return DispatchBatchUseCase(normalizer=normalizer)


@pytest.fixture
def make_event():
    def _make(*keys: str, bucket: str = "bucket") -> dict:
        return {
            "Records": [
                {
                    "eventName": "ObjectCreated:Put",
                    "s3": {"bucket": {"name": bucket}, "object": {"key": key, "size": 10}},
                }
                for key in keys
            ]
        }

    return _make
