"""
Tests for JobExecutor: guards, queues, hook, process launch and timeouts.

Process tests run real /bin/sh children.
"""

import os
import shutil
import sys
import threading
import time

import pytest

from shelljob.commands import CommandRegistry
from shelljob.config import ExecutorConfig
from shelljob.executor import (
    BEGIN_MARKER,
    END_MARKER,
    JobExecutor,
    describe_exit,
    sanitize_path,
)
from shelljob.job import ShellJob
from shelljob.queues import QueueLimitExceeded, QueueLockManager
from shelljob.rotate import MAX_BYTES

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh")


class RecordingHook:
    """Run hook that records calls and optionally blocks or sleeps."""

    def __init__(self, handled=True, delay=0.0):
        self.handled = handled
        self.delay = delay
        self.calls = []
        self.intervals = []
        self.lock = threading.Lock()

    def __call__(self, job):
        start = time.monotonic()
        if self.delay:
            time.sleep(self.delay)
        with self.lock:
            self.calls.append(job.name)
            self.intervals.append((job.queue, start, time.monotonic()))
        return self.handled


def _job(tmp_path, name="job", script=None, **kwargs):
    defaults = dict(
        id=7,
        name=name,
        execute="/bin/sh",
        arguments=["-c", script] if script is not None else [],
        logfile=str(tmp_path / f"{name}.log"),
    )
    defaults.update(kwargs)
    return ShellJob(**defaults)


def _executor(tmp_path, **kwargs):
    kwargs.setdefault('executable_folder', str(tmp_path))
    return JobExecutor(ExecutorConfig(**kwargs))


def _read(job):
    with open(job.logfile, encoding='utf-8', newline='') as f:
        return f.read()


# Guards

def test_disabled_job_is_skipped(tmp_path):
    hook = RecordingHook()
    _executor(tmp_path, hook=hook).run(_job(tmp_path, enabled=False))

    assert hook.calls == []


@pytest.mark.parametrize("run_mode,job_mode,runs", [
    ("", "edge", True),
    ("all", "edge", True),
    ("edge", "", True),
    ("edge", "default", True),
    ("edge", "all", True),
    ("edge", "edge", True),
    ("edge", "core", False),
])
def test_run_mode_gate(tmp_path, run_mode, job_mode, runs):
    hook = RecordingHook()
    _executor(tmp_path, run_mode=run_mode, hook=hook).run(_job(tmp_path, mode=job_mode))

    assert hook.calls == (["job"] if runs else [])


def test_second_invocation_is_rejected_while_running(tmp_path):
    entered = threading.Event()
    release = threading.Event()
    calls = []

    def hook(job):
        calls.append(job.name)
        entered.set()
        release.wait(10)
        return True

    executor = _executor(tmp_path, hook=hook)
    job = _job(tmp_path)

    first = threading.Thread(target=executor.run, args=(job,))
    first.start()
    assert entered.wait(10)

    started = time.monotonic()
    executor.run(job)
    assert time.monotonic() - started < 1
    assert job.is_running

    release.set()
    first.join(10)

    assert calls == ["job"]
    assert not job.is_running


def test_hook_exception_propagates_after_release(tmp_path):
    def hook(job):
        raise RuntimeError("hook exploded")

    config = ExecutorConfig(executable_folder=str(tmp_path), hook=hook)
    job = _job(tmp_path, queue="q1")

    with pytest.raises(RuntimeError, match="hook exploded"):
        JobExecutor(config).run(job)

    assert not job.is_running
    assert not config.queues.get("q1").locked()


def test_jobs_sharing_a_queue_never_overlap(tmp_path):
    hook = RecordingHook(delay=0.05)
    executor = _executor(tmp_path, hook=hook)
    jobs = [_job(tmp_path, name=f"job{i}", queue="shared") for i in range(6)]

    threads = [threading.Thread(target=executor.run, args=(job,)) for job in jobs]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    intervals = sorted((start, end) for _, start, end in hook.intervals)
    assert len(intervals) == 6
    for (_, prev_end), (start, _) in zip(intervals, intervals[1:]):
        assert start >= prev_end
    assert executor.config.queues.get("shared").last_at is not None


def test_queue_limit_is_fatal(tmp_path):
    executor = _executor(tmp_path, queues=QueueLockManager(max_queues=1), hook=RecordingHook())
    executor.run(_job(tmp_path, name="a", queue="first"))

    job = _job(tmp_path, name="b", queue="second")
    with pytest.raises(QueueLimitExceeded):
        executor.run(job)
    assert not job.is_running


def test_hook_declining_falls_through_to_exec(tmp_path):
    hook = RecordingHook(handled=False)
    job = _job(tmp_path, script="echo native")

    _executor(tmp_path, hook=hook).run(job)

    assert hook.calls == ["job"]
    if sys.platform != "win32":
        assert "native" in _read(job)


# Process launch

@posix_only
def test_output_is_bracketed_and_arguments_logged(tmp_path):
    job = _job(tmp_path, script="echo out; echo err >&2")

    _executor(tmp_path).run(job)

    log = _read(job)
    assert log.startswith(BEGIN_MARKER)
    assert log.endswith(END_MARKER)
    assert "/bin/sh\r\n \t\t-c\r\n \t\techo out; echo err >&2\r\n===============  out  ===============\r\n" in log
    assert "out\n" in log
    assert "err\n" in log
    assert "run ok, exit with exit status 0.\r\n" in log


@posix_only
def test_command_found_on_path_is_logged_with_full_path(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    job = _job(tmp_path, execute="sh", script="echo via-path")

    _executor(tmp_path).run(job)

    log = _read(job)
    assert BEGIN_MARKER + shutil.which("sh") + "\r\n \t\t-c" in log
    assert "via-path" in log


@posix_only
def test_log_is_appended_across_runs(tmp_path):
    job = _job(tmp_path, script="echo again")
    executor = _executor(tmp_path)

    executor.run(job)
    executor.run(job)

    assert _read(job).count(BEGIN_MARKER) == 2


@posix_only
def test_nonzero_exit_is_reported(tmp_path):
    job = _job(tmp_path, script="exit 3")

    _executor(tmp_path).run(job)

    assert "run failed, exit status 3\r\n" in _read(job)


@posix_only
def test_environment_injection(tmp_path, monkeypatch):
    monkeypatch.setenv("INHERITED", "from-parent")
    job = _job(
        tmp_path,
        name="envjob",
        script='echo "id=$schd_job_id name=$schd_job_name custom=$CUSTOM inherited=$INHERITED"',
        environments=["CUSTOM=first", "CUSTOM=second", "schd_job_id=999"],
    )

    _executor(tmp_path).run(job)

    assert "id=7 name=envjob custom=second inherited=from-parent" in _read(job)


def test_build_environment_order(tmp_path):
    job = _job(tmp_path, environments=["A=1", "schd_job_name=spoof", "BROKEN", "B=x=y"])

    env = _executor(tmp_path).build_environment(job)

    assert env["A"] == "1"
    assert env["B"] == "x=y"
    assert env["schd_job_id"] == "7"
    assert env["schd_job_name"] == "job"
    assert "BROKEN" not in env


@posix_only
def test_working_directory(tmp_path):
    workdir = tmp_path / "work"
    workdir.mkdir()
    job = _job(tmp_path, script="pwd", directory=str(workdir))

    _executor(tmp_path).run(job)

    assert str(workdir) in _read(job)


@posix_only
def test_registry_entry_is_preferred(tmp_path):
    job = _job(tmp_path, execute="mytool", script="echo via-registry")
    executor = _executor(tmp_path, commands=CommandRegistry({"mytool": "/bin/sh"}))

    assert executor.resolve_command("mytool") == "/bin/sh"
    executor.run(job)

    assert "via-registry" in _read(job)


def test_unresolved_command_keeps_raw_name(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    assert _executor(tmp_path).resolve_command("no-such-tool-0f3a9") == "no-such-tool-0f3a9"


def test_start_failure_is_logged(tmp_path):
    job = _job(tmp_path, execute=str(tmp_path / "missing-binary"))

    _executor(tmp_path).run(job)

    log = _read(job)
    assert "start failed, " in log
    assert log.endswith(END_MARKER)
    assert "run ok" not in log


@posix_only
def test_log_path_is_sanitized_when_unopenable(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    job = _job(tmp_path, script="echo sanitized", logfile=str(tmp_path / "no-such-dir" / "job.log"))

    _executor(tmp_path).run(job)

    fallback = tmp_path / sanitize_path(job.logfile)
    assert "/" not in sanitize_path(job.logfile)
    assert "sanitized" in fallback.read_text()


def test_unopenable_log_aborts_run(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    hook = RecordingHook(handled=False)
    job = _job(tmp_path, script="echo never", logfile=str(tmp_path / "no-such-dir" / "job.log"))
    # Occupy the sanitized fallback name with a directory so both opens fail
    (tmp_path / sanitize_path(job.logfile)).mkdir()

    _executor(tmp_path, hook=hook).run(job)

    assert hook.calls == ["job"]
    assert not job.is_running
    assert not (tmp_path / "no-such-dir").exists()


# Rotation and timeouts

@posix_only
def test_log_is_rotated_before_run(tmp_path):
    job = _job(tmp_path, script="echo fresh")
    with open(job.logfile, 'wb') as f:
        f.write(b"x" * MAX_BYTES)

    _executor(tmp_path).run(job)

    assert os.path.getsize(job.logfile + ".0001") == MAX_BYTES
    log = _read(job)
    assert log.startswith(BEGIN_MARKER)
    assert "fresh" in log


@posix_only
def test_rotation_failure_does_not_stop_run(tmp_path):
    job = _job(tmp_path, script="echo still-running")
    with open(job.logfile, 'wb') as f:
        f.write(b"x" * MAX_BYTES)
    blocker = tmp_path / "job.log.0005"
    blocker.mkdir()
    (blocker / "keep").write_text("x")

    _executor(tmp_path).run(job)

    assert os.path.getsize(job.logfile) > MAX_BYTES
    assert "still-running" in _read(job)


@posix_only
def test_timeout_kills_process(tmp_path):
    marker = tmp_path / "survived"
    job = _job(tmp_path, script=f"sleep 30; touch {marker}", timeout=0.5)

    started = time.monotonic()
    _executor(tmp_path).run(job)
    elapsed = time.monotonic() - started

    log = _read(job)
    assert elapsed < 10
    assert "run timeout, kill it.\r\n" in log
    assert "kill failed" not in log
    assert "run ok" not in log
    assert log.endswith(END_MARKER)
    assert not job.is_running
    assert not marker.exists()


@posix_only
def test_fast_process_is_not_killed(tmp_path):
    job = _job(tmp_path, script="echo quick", timeout=10)

    _executor(tmp_path).run(job)

    log = _read(job)
    assert "run ok, exit with exit status 0.\r\n" in log
    assert "run timeout" not in log


def test_describe_exit():
    assert describe_exit(0) == "exit status 0"
    assert describe_exit(2) == "exit status 2"
    if sys.platform != "win32":
        assert describe_exit(-9) == "signal: SIGKILL"


def test_sanitize_path():
    assert sanitize_path('a/b\\c*d:e"f|g?h<i>j') == "a_b_c_d_e_f_g_h_i_j"
