"""Job queue factory."""

from enum import Enum
from typing import Optional

import structlog

from candidate_search.common.config import BaseConfig

from .base import JobQueue
from .memory import InMemoryJobQueue
from .redis_queue import RedisJobQueue

logger = structlog.get_logger("jobs.factory")


class JobQueueType(Enum):
    """Supported queue transports."""
    REDIS = "redis"
    MEMORY = "memory"


def create_job_queue(config: BaseConfig, visibility_timeout: Optional[float] = None) -> JobQueue:
    """Create the queue named by ``cs_job_queue_backend``."""
    try:
        queue_type = JobQueueType(config.cs_job_queue_backend.lower())
    except ValueError:
        raise ValueError(f"Unsupported job queue backend: {config.cs_job_queue_backend}")

    if visibility_timeout is None:
        visibility_timeout = getattr(config, "cs_job_visibility_timeout_seconds", 300.0)

    if queue_type == JobQueueType.REDIS:
        queue = RedisJobQueue(
            config.cs_redis_url,
            queue_name=config.cs_job_queue_name,
            visibility_timeout=visibility_timeout
        )
    else:
        queue = InMemoryJobQueue(visibility_timeout=visibility_timeout)

    logger.info("Job queue created", backend=queue_type.value, queue_name=config.cs_job_queue_name)
    return queue
