"""
Concurrent dispatch of shell jobs using APScheduler.

JobDispatcher is a thin producer in front of JobExecutor: every submitted
job is added as a one-off 'date' job that fires immediately, so independent
jobs run in parallel on the scheduler's thread pool while queue and
re-entrancy rules are still enforced by the executor.

It does not decide when jobs run; callers submit jobs when they want them run.
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers import SchedulerNotRunningError
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.events import (
    EVENT_JOB_EXECUTED,
    EVENT_JOB_ERROR,
    EVENT_JOB_MISSED,
    EVENT_JOB_SUBMITTED,
)

from shelljob.executor import JobExecutor
from shelljob.job import ShellJob
from shelljob.queues import QueueLimitExceeded

logger = logging.getLogger(__name__)


class JobDispatcher:
    """
    Runs ShellJobs asynchronously on a BackgroundScheduler.

    A QueueLimitExceeded raised by any job is fatal: it is kept in
    fatal_error, the scheduler is shut down without waiting, and later
    submit() calls re-raise it.

    Usage:
        dispatcher = JobDispatcher(JobExecutor(config), max_workers=5)
        dispatcher.start()
        dispatcher.submit(job)
        dispatcher.stop(wait=True)
    """

    def __init__(self, executor: JobExecutor, max_workers: int = 5):
        """
        Initialize dispatcher.

        Args:
            executor: Executor that runs the submitted jobs
            max_workers: Maximum number of concurrent job runs
        """
        self.executor = executor
        self.max_workers = max_workers

        # Outstanding submissions; drained by the executed/error listeners
        self._pending: Dict[str, str] = {}
        self._pending_lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self.fatal_error: Optional[BaseException] = None
        self._shutdown_thread: Optional[threading.Thread] = None

        executors = {
            'default': ThreadPoolExecutor(max_workers)
        }

        job_defaults = {
            'coalesce': False,
            'max_instances': 1,
            'misfire_grace_time': None  # submitted jobs always run, however late
        }

        self.scheduler = BackgroundScheduler(
            executors=executors,
            job_defaults=job_defaults
        )

        self._setup_event_listeners()

        logger.info(f"Dispatcher initialized with {max_workers} worker(s)")

    def _setup_event_listeners(self):
        """Setup APScheduler event listeners for logging."""

        def job_submitted_listener(event):
            logger.debug(f"Job '{event.job_id}' submitted to executor")

        def job_executed_listener(event):
            logger.info(f"Job '{self._pending.get(event.job_id, event.job_id)}' finished")
            self._done(event.job_id)

        def job_error_listener(event):
            logger.error(
                f"Job '{self._pending.get(event.job_id, event.job_id)}' raised exception: {event.exception}",
                exc_info=event.exception
            )
            self._done(event.job_id)
            if isinstance(event.exception, QueueLimitExceeded):
                self._abort(event.exception)

        def job_missed_listener(event):
            logger.warning(f"Job '{event.job_id}' missed scheduled run time")
            self._done(event.job_id)

        self.scheduler.add_listener(job_submitted_listener, EVENT_JOB_SUBMITTED)
        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(job_missed_listener, EVENT_JOB_MISSED)

    def _done(self, job_id: str):
        with self._pending_lock:
            self._pending.pop(job_id, None)
            if not self._pending:
                self._idle.set()

    def _abort(self, error: BaseException):
        """Refuse further submissions and shut the scheduler down after a fatal error."""
        logger.critical(f"Fatal error, shutting down dispatcher: {error}")
        with self._pending_lock:
            self.fatal_error = error
            # Submissions that have not started yet will never run
            self._pending.clear()
            self._idle.set()

        # Listeners run on worker threads; shut down from a separate one
        self._shutdown_thread = threading.Thread(
            target=self._shutdown_scheduler, args=(False,), name="dispatcher-abort", daemon=True
        )
        self._shutdown_thread.start()

    def _shutdown_scheduler(self, wait: bool):
        try:
            self.scheduler.shutdown(wait=wait)
        except SchedulerNotRunningError:
            logger.debug("Dispatcher already stopped")

    def submit(self, job: ShellJob) -> str:
        """
        Queue a job to run as soon as a worker is free.

        Args:
            job: Job to run

        Returns:
            Scheduler job id of this submission

        Raises:
            QueueLimitExceeded: If an earlier job hit the queue cap; the
                dispatcher no longer accepts jobs
        """
        job_id = f"{job.name}_{uuid.uuid4().hex[:8]}"

        with self._pending_lock:
            if self.fatal_error is not None:
                raise self.fatal_error
            self._pending[job_id] = job.name
            self._idle.clear()

        self.scheduler.add_job(
            self.executor.run,
            'date',
            run_date=datetime.now(self.scheduler.timezone),
            id=job_id,
            name=job.name,
            args=[job]
        )
        logger.info(f"Submitted job '{job.name}' as {job_id}")
        return job_id

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every submitted job has finished.

        Returns:
            True if idle, False if the timeout expired first
        """
        return self._idle.wait(timeout)

    def get_jobs(self) -> List[Dict[str, Any]]:
        """
        Get submissions that have not finished yet.

        Returns:
            List of job information dictionaries
        """
        with self._pending_lock:
            return [{'id': job_id, 'name': name} for job_id, name in self._pending.items()]

    def start(self):
        """Start the scheduler."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Dispatcher started")
        else:
            logger.warning("Dispatcher is already running")

    def stop(self, wait: bool = True):
        """
        Stop the scheduler.

        Args:
            wait: If True, wait for running jobs to complete
        """
        if self.scheduler.running:
            logger.info("Stopping dispatcher...")
            self._shutdown_scheduler(wait)
            logger.info("Dispatcher stopped")
        else:
            logger.warning("Dispatcher is not running")

    def is_running(self) -> bool:
        return self.scheduler.running
