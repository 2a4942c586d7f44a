"""
Outbound side effect queue.

Booking mutations enqueue named tasks only after their transaction commits.
An APScheduler background scheduler runs them; failures are re-scheduled with
exponential backoff until ``side_effect_max_attempts`` is reached.
"""
from datetime import timedelta
from typing import Optional

import pytz
from apscheduler.schedulers.background import BackgroundScheduler

from config.config import SchedulingSettings, load_settings
from scheduling.services.tasks import BookingTasks
from scheduling.utils.logger import get_logger
from scheduling.utils.timeutils import utcnow

logger = get_logger(__name__)


def task_job_id(name: str, args) -> str:
    """Same task with the same arguments always maps to the same job"""
    return ':'.join([name] + [str(arg) for arg in args])


class TaskQueue:

    def __init__(self, settings: SchedulingSettings = None, scheduler=None, tasks=None):
        self.settings = settings or load_settings()
        self.scheduler = scheduler or BackgroundScheduler(
            timezone=pytz.UTC,
            job_defaults={'coalesce': True, 'max_instances': 1, 'misfire_grace_time': None},
        )
        if tasks is None:
            tasks = BookingTasks(self.settings)
        self.handlers = tasks.handlers()
        self.exhausted_handlers = tasks.exhausted_handlers()

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Side effect queue started")

    def shutdown(self, wait: bool = True):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

    def enqueue(self, name: str, *args, delay_seconds: float = 0, attempt: int = 1) -> str:
        if name not in self.handlers:
            raise ValueError(f"Unknown task: {name}")

        job_id = task_job_id(name, args)
        self.scheduler.add_job(
            self._run,
            trigger='date',
            run_date=utcnow() + timedelta(seconds=delay_seconds),
            args=[name, list(args), attempt],
            id=job_id,
            name=name,
            replace_existing=True,
        )
        logger.debug(f"Queued {job_id} (attempt {attempt})")
        return job_id

    def run_now(self, name: str, *args) -> bool:
        """Run a task once in the calling thread, without scheduling retries.

        Used by short-lived processes that exit before a background job
        would run. Returns False when the handler failed.
        """
        if name not in self.handlers:
            raise ValueError(f"Unknown task: {name}")

        job_id = task_job_id(name, args)
        try:
            self.handlers[name](*args)
        except Exception as e:
            logger.error(f"Task {job_id} failed: {str(e)}")
            return False
        logger.info(f"Task {job_id} succeeded")
        return True

    def _run(self, name: str, args: list, attempt: int):
        handler = self.handlers[name]
        try:
            handler(*args)
        except Exception as e:
            self._handle_failure(name, args, attempt, e)
            return
        logger.info(f"Task {task_job_id(name, args)} succeeded on attempt {attempt}")

    def retry_delay(self, attempt: int) -> float:
        return self.settings.side_effect_retry_seconds * (2 ** (attempt - 1))

    def _handle_failure(self, name: str, args: list, attempt: int, error: Exception):
        job_id = task_job_id(name, args)
        max_attempts = self.settings.side_effect_max_attempts

        if attempt < max_attempts:
            delay = self.retry_delay(attempt)
            logger.error(f"Task {job_id} failed on attempt {attempt}/{max_attempts}: {str(error)}; "
                         f"retrying in {delay:.0f}s")
            self.enqueue(name, *args, delay_seconds=delay, attempt=attempt + 1)
            return

        logger.error(f"Task {job_id} gave up after {attempt} attempts: {str(error)}")
        on_exhausted = self.exhausted_handlers.get(name)
        if on_exhausted is not None:
            try:
                on_exhausted(attempt, error, *args)
            except Exception as e:
                logger.error(f"Exhaustion handler for {job_id} failed: {str(e)}")


_queue: Optional[TaskQueue] = None


def get_task_queue(settings: SchedulingSettings = None) -> TaskQueue:
    """Process-wide queue, created on first use"""
    global _queue
    if _queue is None:
        _queue = TaskQueue(settings)
    return _queue
