"""
Single-job execution engine.

JobExecutor.run() takes a fully resolved ShellJob and:
- rejects the call if the same job is already running
- skips disabled jobs and jobs for another run mode
- serializes on the job's queue
- lets the run hook take over the job if it wants to
- rotates the job log, then runs the command with its output appended to it

Nothing is returned to the caller. Launch failures, non-zero exits and
timeouts end up in the job's log file and in the application log.
"""

import logging
import os
import shutil
import signal
import subprocess
import sys
from typing import Dict, List, Optional, TextIO

from shelljob.config import ExecutorConfig
from shelljob.job import ShellJob
from shelljob.queues import QueueLimitExceeded
from shelljob.resolver import look_path
from shelljob.rotate import rotate_file

logger = logging.getLogger(__name__)

BEGIN_MARKER = "=============== begin ===============\r\n"
OUT_MARKER = "\r\n===============  out  ===============\r\n"
END_MARKER = "===============  end  ===============\r\n"

ILLEGAL_PATH_CHARS = '/\\*:"|?<>'

# Seconds to wait for a killed child to be reaped
REAP_TIMEOUT = 5


def sanitize_path(path: str) -> str:
    """Replace characters that are not allowed in file names with '_'."""
    for ch in ILLEGAL_PATH_CHARS:
        path = path.replace(ch, "_")
    return path


def describe_exit(returncode: int) -> str:
    if returncode >= 0:
        return f"exit status {returncode}"
    try:
        return f"signal: {signal.Signals(-returncode).name}"
    except ValueError:
        return f"signal: {-returncode}"


def kill_by_pid(pid: int):
    """
    Forcefully kill a child started by JobExecutor, including its children.

    Raises:
        OSError: If the process (group) could not be signalled
        subprocess.CalledProcessError: If taskkill fails on Windows
    """
    if sys.platform == "win32":
        subprocess.run(
            ["taskkill", "/F", "/T", "/PID", str(pid)],
            check=True,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    else:
        # Children run in their own session, so pid is also the group id
        os.killpg(pid, signal.SIGKILL)


def _popen_kwargs() -> Dict:
    if sys.platform == "win32":
        return {'creationflags': subprocess.CREATE_NEW_PROCESS_GROUP}
    return {'start_new_session': True}


def _write(out: TextIO, text: str):
    out.write(text)
    out.flush()


class JobExecutor:
    """
    Runs shell jobs against one ExecutorConfig.

    The executor itself is stateless; any number of threads may call run()
    concurrently for different jobs.
    """

    def __init__(self, config: Optional[ExecutorConfig] = None):
        """
        Initialize job executor.

        Args:
            config: Runtime context. If None, built from the environment.
        """
        self.config = config if config is not None else ExecutorConfig.from_env()

    def run(self, job: ShellJob):
        """
        Run a job once, honouring enablement, run mode, queue and hook.

        Args:
            job: Job to run

        Raises:
            QueueLimitExceeded: If the job's queue would exceed the queue cap
            Exception: Whatever the run hook raises, after the run state and
                the queue are released
        """
        if not job.try_begin():
            logger.info(f"[{job.name}] running!")
            return

        try:
            if not job.enabled:
                logger.info(f"[{job.name}] is disabled.")
                return

            if not job.matches_mode(self.config.run_mode):
                logger.info(
                    f"[{job.name}] should run on '{job.mode}', "
                    f"but current mode is '{self.config.run_mode}'."
                )
                return

            if job.queue:
                self._run_in_queue(job)
            else:
                self._run_unqueued(job)
        finally:
            job.end()

    def _run_in_queue(self, job: ShellJob):
        try:
            q = self.config.queues.acquire(job.queue)
        except QueueLimitExceeded as e:
            logger.critical(f"[{job.name}] {e}")
            raise

        logger.info(f"[{job.name}] try entry queue {job.queue}.")
        q.acquire()
        try:
            logger.info(f"[{job.name}] already entry queue {job.queue}.")
            self._run_unqueued(job)
        finally:
            q.release()
            logger.info(f"[{job.name}] exit queue {job.queue}.")

    def _run_unqueued(self, job: ShellJob):
        hook = self.config.hook
        if hook is not None and hook(job):
            logger.info(f"[{job.name}] run it with hook.")
            return

        try:
            rotate_file(job.logfile)
        except OSError as e:
            logger.warning(f"[{job.name}] rotate log file failed, {e}")

        self.exec(job)

    def resolve_command(self, execute: str) -> str:
        """
        Find the executable for a job's command.

        A well-known command from the registry wins; otherwise the name is
        looked up with look_path(). Unresolved names are returned unchanged
        so that the launch fails with the OS error.
        """
        path = self.config.commands.get(execute, execute)
        resolved = look_path(self.config.executable_folder, path)
        return resolved or execute

    def build_environment(self, job: ShellJob) -> Dict[str, str]:
        """Inherited environment, then the job's entries, then schd_job_id/schd_job_name."""
        env = dict(os.environ)
        for entry in job.environments + job.injected_environments():
            key, sep, value = entry.partition("=")
            if not sep or not key:
                logger.warning(f"[{job.name}] ignore environment entry {entry!r}")
                continue
            env[key] = value
        return env

    def _open_log(self, job: ShellJob) -> Optional[TextIO]:
        try:
            return open(job.logfile, 'a', encoding='utf-8', newline='')
        except OSError as e:
            logfile = sanitize_path(job.logfile)
            logger.debug(f"[{job.name}] open log file({job.logfile}) failed, {e}; retry with {logfile}")

        try:
            return open(logfile, 'a', encoding='utf-8', newline='')
        except OSError as e:
            logger.error(f"[{job.name}] open log file({logfile}) failed, {e}")
            return None

    def exec(self, job: ShellJob):
        """
        Launch the job's command and wait for it, without any of run()'s checks.

        Combined stdout/stderr is appended to the job's log between begin
        and end markers.
        """
        out = self._open_log(job)
        if out is None:
            return

        with out:
            _write(out, BEGIN_MARKER)
            try:
                self._launch(job, out)
            finally:
                _write(out, END_MARKER)

    def _launch(self, job: ShellJob, out: TextIO):
        execute_path = self.resolve_command(job.execute)
        argv: List[str] = [execute_path] + list(job.arguments)

        _write(out, shutil.which(execute_path) or execute_path)
        for arg in job.arguments:
            _write(out, "\r\n \t\t" + arg)
        _write(out, OUT_MARKER)

        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=subprocess.STDOUT,
                cwd=job.directory or None,
                env=self.build_environment(job),
                **_popen_kwargs()
            )
        except (OSError, ValueError) as e:
            _write(out, f"start failed, {e}\r\n")
            logger.warning(f"[{job.name}] start failed, {e}")
            return

        logger.info(f"[{job.name}] started {execute_path} (pid {process.pid})")

        if job.timeout <= 0:
            process.wait()
            self._report_exit(job, out, process.returncode)
            return

        try:
            process.wait(timeout=job.timeout)
        except subprocess.TimeoutExpired:
            self._kill(job, out, process)
            return

        out.seek(0, os.SEEK_END)
        self._report_exit(job, out, process.returncode)

    def _report_exit(self, job: ShellJob, out: TextIO, returncode: int):
        if returncode == 0:
            _write(out, f"run ok, exit with {describe_exit(returncode)}.\r\n")
            logger.info(f"[{job.name}] run ok.")
        else:
            _write(out, f"run failed, {describe_exit(returncode)}\r\n")
            logger.info(f"[{job.name}] run failed, {describe_exit(returncode)}")

    def _kill(self, job: ShellJob, out: TextIO, process: subprocess.Popen):
        kill_error = None
        try:
            kill_by_pid(process.pid)
        except (OSError, subprocess.CalledProcessError) as e:
            kill_error = e

        _write(out, "run timeout, kill it.\r\n")
        if kill_error is not None:
            _write(out, f"kill failed, {kill_error}\r\n")
            logger.error(f"[{job.name}] timeout after {job.timeout}s, kill failed, {kill_error}")
        else:
            logger.warning(f"[{job.name}] timeout after {job.timeout}s, killed.")

        # The exit status after a kill is not reported
        try:
            process.wait(timeout=REAP_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning(f"[{job.name}] pid {process.pid} still alive after kill")
