"""
Shell Job Runner

Runs external commands as jobs, one attempt per call:
- Per-job re-entrancy protection
- Run-mode gating
- Named queues (jobs on the same queue never overlap)
- Rotating per-job log files
- Timeouts with forced termination
"""

from shelljob.job import ShellJob
from shelljob.config import ExecutorConfig, JobsFile, JobConfigError
from shelljob.commands import CommandRegistry
from shelljob.queues import QueueLockManager, QueueLock, QueueLimitExceeded
from shelljob.resolver import look_path
from shelljob.rotate import rotate_file
from shelljob.executor import JobExecutor
from shelljob.service import JobDispatcher

__version__ = "0.1.0"
__all__ = [
    "ShellJob",
    "ExecutorConfig",
    "JobsFile",
    "JobConfigError",
    "CommandRegistry",
    "QueueLockManager",
    "QueueLock",
    "QueueLimitExceeded",
    "look_path",
    "rotate_file",
    "JobExecutor",
    "JobDispatcher",
]
