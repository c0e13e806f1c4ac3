"""
Executor configuration and job definition files.

ExecutorConfig holds everything that used to be process-wide state: the run
mode, the executable folder, the command registry, the queue locks and the
optional run hook. It is built once and handed to JobExecutor.

JobsFile loads job definitions from JSON so the CLI has something to run.
"""

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv

from shelljob.commands import CommandRegistry
from shelljob.job import ShellJob
from shelljob.queues import QueueLockManager

load_dotenv()

logger = logging.getLogger(__name__)

ENV_RUN_MODE = "DAEMON_RUN_MODE"
ENV_EXECUTABLE_FOLDER = "SHELLJOB_EXECUTABLE_FOLDER"
ENV_JOBS_FILE = "SHELLJOB_JOBS_FILE"

RunHook = Callable[[ShellJob], bool]


class JobConfigError(ValueError):
    """Raised when a job definition cannot be loaded."""
    pass


def get_executable_folder() -> str:
    """Directory of the running program, or the SHELLJOB_EXECUTABLE_FOLDER override."""
    folder = os.environ.get(ENV_EXECUTABLE_FOLDER)
    if folder:
        return str(Path(folder).expanduser().resolve())
    if sys.argv and sys.argv[0]:
        return os.path.dirname(os.path.realpath(sys.argv[0]))
    return os.getcwd()


@dataclass
class ExecutorConfig:
    """
    Runtime context shared by every job run of one executor.

    Attributes:
        run_mode: Jobs whose mode does not match are skipped
        executable_folder: Root for command resolution
        commands: Well-known tools, read-only after startup
        queues: Queue lock registry
        hook: Optional interceptor; returning True means the hook ran the job
    """
    run_mode: str = ""
    executable_folder: str = field(default_factory=os.getcwd)
    commands: CommandRegistry = field(default_factory=CommandRegistry)
    queues: QueueLockManager = field(default_factory=QueueLockManager)
    hook: Optional[RunHook] = None

    @classmethod
    def from_env(cls, hook: Optional[RunHook] = None) -> 'ExecutorConfig':
        """Build from DAEMON_RUN_MODE and the executable folder, resolving the command registry."""
        executable_folder = get_executable_folder()
        run_mode = os.environ.get(ENV_RUN_MODE, "")
        logger.info(f"Run mode: '{run_mode}', executable folder: {executable_folder}")
        return cls(
            run_mode=run_mode,
            executable_folder=executable_folder,
            commands=CommandRegistry.build(executable_folder),
            hook=hook,
        )


class JobsFile:
    """
    Job definitions loaded from a JSON file.

    Format:
        {"jobs": [{"id": 1, "name": "ping", "execute": "ping",
                   "arguments": ["-c", "1", "localhost"],
                   "logfile": "logs/ping.log", "timeout": 30}, ...]}

    Path priority:
    1. Explicit path argument
    2. SHELLJOB_JOBS_FILE environment variable
    3. Default: ~/.shelljob/jobs.json
    """

    DEFAULT_PATH = Path.home() / ".shelljob" / "jobs.json"

    def __init__(self, path: Optional[str] = None):
        if path:
            self.path = Path(path).expanduser()
        elif os.environ.get(ENV_JOBS_FILE):
            self.path = Path(os.environ[ENV_JOBS_FILE]).expanduser()
        else:
            self.path = self.DEFAULT_PATH
        self.raw: List[Dict[str, Any]] = []
        self.jobs: List[ShellJob] = []

        if self.path.exists():
            self.load()
        else:
            logger.info(f"No jobs file found at {self.path}")

    def load(self):
        """Load job definitions from the JSON file."""
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load jobs from {self.path}: {e}")
            raise JobConfigError(f"Failed to load jobs from {self.path}: {e}") from e

        self.raw = list(data.get('jobs', []))
        self.jobs = []
        for idx, job_data in enumerate(self.raw):
            try:
                self.jobs.append(ShellJob.from_dict(job_data))
            except (KeyError, TypeError, ValueError) as e:
                raise JobConfigError(f"Job #{idx} in {self.path}: invalid definition ({e!r})") from e

        logger.info(f"Loaded {len(self.jobs)} job(s) from {self.path}")

    def validate(self) -> List[str]:
        """
        Validate job definitions.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        seen_ids = set()
        seen_names = set()

        for job in self.jobs:
            label = job.name or f"#{job.id}"
            if not job.name or not job.name.strip():
                errors.append(f"Job {label}: 'name' cannot be empty")
            if not job.execute or not job.execute.strip():
                errors.append(f"Job {label}: 'execute' cannot be empty")
            if not job.logfile or not job.logfile.strip():
                errors.append(f"Job {label}: 'logfile' cannot be empty")

            if job.id in seen_ids:
                errors.append(f"Job {label}: duplicate id {job.id}")
            seen_ids.add(job.id)
            if job.name in seen_names:
                errors.append(f"Job {label}: duplicate name")
            seen_names.add(job.name)

            if any(not isinstance(a, str) for a in job.arguments):
                errors.append(f"Job {label}: 'arguments' must be strings")
            for env in job.environments:
                if not isinstance(env, str) or '=' not in env:
                    errors.append(f"Job {label}: environment entry {env!r} is not KEY=VALUE")

        return errors

    def get_job(self, name: str) -> Optional[ShellJob]:
        for job in self.jobs:
            if job.name == name:
                return job
        return None

    def get_enabled_jobs(self) -> List[ShellJob]:
        return [j for j in self.jobs if j.enabled]

    def __repr__(self):
        return f"JobsFile(jobs={len(self.jobs)}, path={self.path})"
