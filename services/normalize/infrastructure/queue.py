from __future__ import annotations

import os
import socket

from redis import Redis
from rq import Queue, Worker as RQWorker

from ..config import NormalizeConfig


def create_redis_connection(config: NormalizeConfig) -> Redis:
    return Redis(host=config.redis_host, port=config.redis_port, db=config.redis_db)


def create_queue(config: NormalizeConfig, queue_name: str | None = None) -> Queue:
    redis_conn = create_redis_connection(config)
    return Queue(
        queue_name or config.redis_queue_name,
        connection=redis_conn,
        default_timeout=config.job_timeout_seconds,
    )


def create_worker(config: NormalizeConfig, queue_name: str | None = None) -> RQWorker:
    queue = create_queue(config, queue_name)
    return RQWorker([queue], connection=queue.connection, name=_worker_name(queue.name))


def _worker_name(queue_name: str) -> str:
    # rq requires unique names per live worker
    return f"normalize-{queue_name}-{socket.gethostname()}-{os.getpid()}"
