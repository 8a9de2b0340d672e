from __future__ import annotations

import logging
import tempfile
from enum import Enum
from pathlib import Path

from services.normalize.application.interfaces import MediaProber, ObjectStore
from services.normalize.application.transcoding import MediaTranscoder
from services.normalize.domain.errors import UndetectedMediaError
from services.normalize.domain.media import (
    MediaInfo,
    MediaKey,
    MediaType,
    ObjectRef,
    ProcessingRecord,
    TranscodeOutput,
)

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    STARTED = "started"
    DOWNLOADED = "downloaded"
    PROBED = "probed"
    TRANSCODED = "transcoded"
    PUBLISHED = "published"
    FAILED = "failed"
    CLEANED_UP = "cleaned_up"


_TRANSITIONS = {
    PipelineStage.STARTED: {PipelineStage.DOWNLOADED},
    PipelineStage.DOWNLOADED: {PipelineStage.PROBED},
    PipelineStage.PROBED: {PipelineStage.TRANSCODED},
    PipelineStage.TRANSCODED: {PipelineStage.PUBLISHED},
    PipelineStage.PUBLISHED: {PipelineStage.CLEANED_UP},
    PipelineStage.FAILED: {PipelineStage.CLEANED_UP},
    PipelineStage.CLEANED_UP: set(),
}


class PipelineAttempt:
    """Tracks one key through Downloaded → Probed → Transcoded → Published → CleanedUp."""

    def __init__(self, media_key: MediaKey) -> None:
        self.media_key = media_key
        self.stage = PipelineStage.STARTED
        self.media_type = MediaType.UNKNOWN
        self.history = [PipelineStage.STARTED]

    def advance(self, stage: PipelineStage) -> None:
        # any live stage may abort into FAILED
        allowed = _TRANSITIONS[self.stage]
        if stage is PipelineStage.FAILED and self.stage not in (
            PipelineStage.FAILED,
            PipelineStage.CLEANED_UP,
        ):
            allowed = {PipelineStage.FAILED}
        if stage not in allowed:
            raise RuntimeError(
                f"Invalid pipeline transition {self.stage.value} -> {stage.value}"
            )
        logger.debug(
            "%s: %s -> %s", self.media_key.raw_key, self.stage.value, stage.value
        )
        self.stage = stage
        self.history.append(stage)


class NormalizeMediaUseCase:
    def __init__(
        self,
        *,
        storage: ObjectStore,
        prober: MediaProber,
        transcoder: MediaTranscoder,
        raw_segment: str = "raw",
        processed_segment: str = "processed",
        cache_control: str = "public, max-age=31536000, immutable",
        scratch_dir: str | None = None,
        undetected_media_policy: str = "video",
    ) -> None:
        self._storage = storage
        self._prober = prober
        self._transcoder = transcoder
        self._raw_segment = raw_segment
        self._processed_segment = processed_segment
        self._cache_control = cache_control
        self._scratch_dir = scratch_dir
        self._undetected_media_policy = undetected_media_policy

    def execute(
        self, ref: ObjectRef, *, deadline: float | None = None
    ) -> ProcessingRecord:
        """Normalize one raw upload; failures become a failed record.

        Only an error while writing the failure record itself propagates.
        ``deadline`` bounds the encoders, see ``MediaTranscoder.transcode``.
        """
        media_key = MediaKey.parse(ref.key, self._raw_segment)
        if media_key is None:
            raise ValueError(f"Not a raw upload key: {ref.key}")

        attempt = PipelineAttempt(media_key)
        workdir = Path(
            tempfile.mkdtemp(
                prefix=f"normalize_{media_key.file_id}_", dir=self._scratch_dir
            )
        )
        logger.info("Processing file %s/%s", ref.bucket, ref.key)
        try:
            try:
                record = self._run(ref, media_key, workdir, attempt, deadline)
            except Exception as exc:
                logger.exception("Error processing %s", ref.key)
                attempt.advance(PipelineStage.FAILED)
                record = ProcessingRecord.failed(
                    media_key,
                    self._failure_type(attempt),
                    str(exc) or exc.__class__.__name__,
                )
                self._publish_record(ref.bucket, media_key, record, cache_control=None)
            else:
                logger.info("Successfully processed %s", ref.key)
            return record
        finally:
            self._cleanup(workdir)
            attempt.advance(PipelineStage.CLEANED_UP)

    def _run(
        self,
        ref: ObjectRef,
        media_key: MediaKey,
        workdir: Path,
        attempt: PipelineAttempt,
        deadline: float | None = None,
    ) -> ProcessingRecord:
        input_path = workdir / f"input_{media_key.file_id}"
        input_path.write_bytes(self._storage.get(ref.bucket, ref.key))
        attempt.advance(PipelineStage.DOWNLOADED)

        info = self._prober.probe(input_path)
        attempt.media_type = self._resolve_type(info, ref.key)
        attempt.advance(PipelineStage.PROBED)

        output = self._transcoder.transcode(
            input_path, workdir, info, attempt.media_type, deadline=deadline
        )
        attempt.advance(PipelineStage.TRANSCODED)

        record = ProcessingRecord.completed(media_key, output)
        self._publish(ref.bucket, media_key, output, record)
        attempt.advance(PipelineStage.PUBLISHED)
        return record

    def _resolve_type(self, info: MediaInfo, key: str) -> MediaType:
        if not info.is_unknown:
            return info.media_type
        if self._undetected_media_policy == "fail":
            raise UndetectedMediaError(f"Could not detect media type of {key}")
        fallback = MediaType(self._undetected_media_policy)
        logger.warning("Could not classify %s, treating it as %s", key, fallback.value)
        return fallback

    def _failure_type(self, attempt: PipelineAttempt) -> MediaType:
        if attempt.media_type is not MediaType.UNKNOWN:
            return attempt.media_type
        if self._undetected_media_policy == "image":
            return MediaType.IMAGE
        return MediaType.VIDEO

    def _publish(
        self,
        bucket: str,
        media_key: MediaKey,
        output: TranscodeOutput,
        record: ProcessingRecord,
    ) -> None:
        # media first, metadata last
        for artifact in output.artifacts():
            key = media_key.processed_key(self._processed_segment, artifact.extension)
            self._storage.put(
                bucket,
                key,
                artifact.path.read_bytes(),
                artifact.content_type,
                self._cache_control,
            )
            logger.info("Uploaded %s/%s", bucket, key)
        self._publish_record(bucket, media_key, record, cache_control=self._cache_control)

    def _publish_record(
        self,
        bucket: str,
        media_key: MediaKey,
        record: ProcessingRecord,
        *,
        cache_control: str | None,
    ) -> None:
        key = media_key.processed_key(self._processed_segment, "json")
        self._storage.put(
            bucket, key, record.to_json(), "application/json", cache_control
        )
        logger.info("Wrote %s record to %s/%s", record.status, bucket, key)

    def _cleanup(self, workdir: Path) -> None:
        if workdir.is_dir():
            for path in sorted(workdir.iterdir()):
                self._storage.delete(path.as_posix())
        self._storage.delete(workdir.as_posix())
