import json
import logging
import shutil
import threading
import time
from typing import Any, Mapping, Optional

from .application.transcoding import MediaTranscoder
from .application.use_cases.dispatch_batch import DispatchBatchUseCase
from .application.use_cases.normalize_media import NormalizeMediaUseCase
from .config import load_config, NormalizeConfig
from .domain.media import RecordOutcome
from .infrastructure.ffmpeg import create_media_encoder
from .infrastructure.ffprobe import create_media_prober
from .infrastructure.queue import (
    create_queue as build_queue,
    create_redis_connection,
    create_worker as build_worker,
)
from .infrastructure.status_publisher import RecordStatusPublisher
from .infrastructure.storage import (
    create_s3_client as build_s3_client,
    create_object_store,
)
from .listener import listen_for_uploads

logger = logging.getLogger(__name__)

_CONFIG: NormalizeConfig | None = None
_S3_CLIENT: Any = None
_DISPATCHER: DispatchBatchUseCase | None = None
_STATUS_PUBLISHER: RecordStatusPublisher | None = None


def get_config() -> NormalizeConfig:
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def create_s3_client():
    cfg = get_config()
    return build_s3_client(cfg)


def get_s3_client():
    """Process-wide client, reused across invocations."""
    global _S3_CLIENT
    if _S3_CLIENT is None:
        _S3_CLIENT = create_s3_client()
    return _S3_CLIENT


def get_status_publisher() -> RecordStatusPublisher | None:
    global _STATUS_PUBLISHER
    cfg = get_config()
    if not cfg.status_channel:
        return None
    if _STATUS_PUBLISHER is None:
        _STATUS_PUBLISHER = RecordStatusPublisher(
            create_redis_connection(cfg), channel=cfg.status_channel
        )
    return _STATUS_PUBLISHER


def publish_outcome(outcome: RecordOutcome) -> None:
    publisher = get_status_publisher()
    if publisher is not None:
        publisher.publish(outcome)


def get_normalizer() -> NormalizeMediaUseCase:
    cfg = get_config()
    prober = create_media_prober(cfg)
    transcoder = MediaTranscoder(
        encoder=create_media_encoder(cfg),
        prober=prober,
        webm_max_bytes=cfg.webm_max_bytes,
        timeout_base_seconds=cfg.encode_timeout_base_seconds,
        timeout_seconds_per_mb=cfg.encode_timeout_seconds_per_mb,
    )
    return NormalizeMediaUseCase(
        storage=create_object_store(cfg, client=get_s3_client()),
        prober=prober,
        transcoder=transcoder,
        raw_segment=cfg.raw_segment,
        processed_segment=cfg.processed_segment,
        cache_control=cfg.cache_control,
        scratch_dir=cfg.scratch_dir,
        undetected_media_policy=cfg.undetected_media_policy,
    )


def get_dispatcher() -> DispatchBatchUseCase:
    global _DISPATCHER
    if _DISPATCHER is None:
        _DISPATCHER = DispatchBatchUseCase(
            normalizer=get_normalizer(),
            raw_segment=get_config().raw_segment,
            on_outcome=publish_outcome,
        )
    return _DISPATCHER


def job_deadline(cfg: NormalizeConfig) -> float:
    """Monotonic time after which no encode may run.

    The last ``publish_reserve_seconds`` of the rq job timeout stay free for
    uploads and the record write.
    """
    budget = max(cfg.job_timeout_seconds - cfg.publish_reserve_seconds, 0)
    return time.monotonic() + budget


def process_event(event: Mapping[str, Any]) -> list[RecordOutcome]:
    """Run one notification batch through the pipeline."""
    logger.debug("Processing storage event: %s", json.dumps(event, default=str))
    deadline = job_deadline(get_config())
    outcomes = get_dispatcher().execute(event, deadline=deadline)
    for outcome in outcomes:
        if outcome.error is not None:
            logger.error("Record %s errored: %s", outcome.ref.key, outcome.error)
    return outcomes


def summarize(outcomes: list[RecordOutcome]) -> dict[str, Any]:
    return {
        "processed": sum(1 for o in outcomes if o.record is not None),
        "completed": sum(
            1 for o in outcomes if o.record is not None and o.record.status == "completed"
        ),
        "failed": sum(
            1 for o in outcomes if o.record is not None and o.record.status == "failed"
        ),
        "skipped": sum(1 for o in outcomes if o.skipped),
        "errors": [
            {"key": o.ref.key, "error": o.error} for o in outcomes if o.error is not None
        ],
    }


def handler(event: Mapping[str, Any], context: Any = None) -> dict[str, Any]:
    """Lambda-style entry point; never fails the whole batch for one record."""
    return summarize(process_event(event))


def enqueue(event: Mapping[str, Any], queue_name: Optional[str] = None):
    cfg = get_config()
    queue = build_queue(cfg, queue_name=queue_name)
    job = queue.enqueue(process_event, dict(event), job_timeout=cfg.job_timeout_seconds)
    logger.info("Enqueued job id=%s", getattr(job, "id", "unknown"))
    return job


def ensure_tools(cfg: NormalizeConfig) -> None:
    missing = [
        binary
        for binary in (cfg.ffmpeg_path, cfg.ffprobe_path)
        if shutil.which(binary) is None
    ]
    if missing:
        raise RuntimeError(f"Media tools not found on PATH: {', '.join(missing)}")


def run_worker(queue_name: Optional[str] = None):
    cfg = get_config()
    ensure_tools(cfg)
    worker = build_worker(cfg, queue_name=queue_name)
    logger.info(
        "Starting worker for queue %s (job timeout %ss, %ss reserved for publishing)",
        queue_name or cfg.redis_queue_name,
        cfg.job_timeout_seconds,
        cfg.publish_reserve_seconds,
    )
    worker.work()


def _start_listener(
    cfg: NormalizeConfig, queue_name: Optional[str], stop_event: threading.Event
) -> threading.Thread:
    thread = threading.Thread(
        target=listen_for_uploads,
        args=(cfg, lambda payload: enqueue(payload, queue_name=queue_name), stop_event),
        name="upload-listener",
        daemon=True,
    )
    thread.start()
    logger.info("Listening for uploads on %s", cfg.redis_channel)
    return thread


def run_worker_service(
    queue_name: Optional[str] = None,
    enable_listener: bool = True,
):
    """Run the rq worker, feeding it from the upload channel when enabled."""
    stop_event = threading.Event()
    cfg = get_config()
    listener_thread = _start_listener(cfg, queue_name, stop_event) if enable_listener else None

    try:
        run_worker(queue_name=queue_name)
    except KeyboardInterrupt:
        logger.info("Shutting down worker...")
    finally:
        stop_event.set()
        if listener_thread is not None and listener_thread.is_alive():
            listener_thread.join(timeout=2)
