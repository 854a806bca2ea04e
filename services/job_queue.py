"""
Job queue used by the campaign pipeline

Campaign execution and per-recipient sends are enqueued by job name. The
Celery implementation maps each name to a registered task and turns the
throttle delay into a countdown.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

EXECUTE_CAMPAIGN = 'execute-campaign'
SEND_MESSAGE = 'send-message'

JOB_TASKS = {
    EXECUTE_CAMPAIGN: 'tasks.campaign_tasks.execute_campaign',
    SEND_MESSAGE: 'tasks.campaign_tasks.send_message',
}


class JobQueue(ABC):
    """Delayed, at-least-once job queue"""

    @abstractmethod
    def enqueue(self, job_name: str, payload: Dict[str, Any], delay_ms: float = 0) -> Optional[str]:
        """
        Enqueue a job.

        Args:
            job_name: One of the JOB_TASKS names
            payload: Keyword arguments for the job
            delay_ms: Milliseconds to wait before the job may run

        Returns:
            Queue-assigned job id, if any
        """


class CeleryJobQueue(JobQueue):
    """Job queue backed by Celery ``send_task``"""

    def __init__(self, celery_app):
        self.celery_app = celery_app

    def enqueue(self, job_name: str, payload: Dict[str, Any], delay_ms: float = 0) -> Optional[str]:
        task_name = JOB_TASKS.get(job_name)
        if task_name is None:
            raise ValueError(f"Unknown job: {job_name}")

        countdown = max(0.0, float(delay_ms or 0)) / 1000
        result = self.celery_app.send_task(task_name, kwargs=payload, countdown=countdown)
        logger.debug(f"Enqueued {job_name} as {result.id} with countdown {countdown}s")
        return result.id


@dataclass
class QueuedJob:
    name: str
    payload: Dict[str, Any]
    delay_ms: float


@dataclass
class InMemoryJobQueue(JobQueue):
    """Records jobs instead of dispatching them (testing and local runs)"""
    jobs: List[QueuedJob] = field(default_factory=list)

    def enqueue(self, job_name: str, payload: Dict[str, Any], delay_ms: float = 0) -> Optional[str]:
        if job_name not in JOB_TASKS:
            raise ValueError(f"Unknown job: {job_name}")
        self.jobs.append(QueuedJob(job_name, dict(payload), delay_ms))
        return str(len(self.jobs))

    def clear(self) -> None:
        self.jobs.clear()
