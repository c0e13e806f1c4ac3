#!/usr/bin/env python3
"""
Basic Usage Examples for shelljob

Runs a few jobs against a temporary directory and prints their logs.
POSIX only (uses /bin/sh).
"""

import sys
import tempfile
import threading
from pathlib import Path

# Add parent directory to path for imports (if running as standalone script)
sys.path.insert(0, str(Path(__file__).parent.parent))

from shelljob import ExecutorConfig, JobDispatcher, JobExecutor, ShellJob


def example_1_single_run(work_dir: Path):
    """Example 1: Run one job and read its log"""
    print("\n" + "=" * 60)
    print("Example 1: Run a single job")
    print("=" * 60)

    executor = JobExecutor(ExecutorConfig(executable_folder=str(work_dir)))
    job = ShellJob(
        id=1,
        name="hello",
        execute="/bin/sh",
        arguments=["-c", 'echo "hello from $schd_job_name"'],
        logfile=str(work_dir / "hello.log"),
    )
    executor.run(job)

    print(Path(job.logfile).read_text())


def example_2_timeout(work_dir: Path):
    """Example 2: A job that runs longer than its timeout"""
    print("\n" + "=" * 60)
    print("Example 2: Timeout")
    print("=" * 60)

    executor = JobExecutor(ExecutorConfig(executable_folder=str(work_dir)))
    job = ShellJob(
        id=2,
        name="slow",
        execute="/bin/sh",
        arguments=["-c", "sleep 10"],
        logfile=str(work_dir / "slow.log"),
        timeout=1,
    )
    executor.run(job)

    print(Path(job.logfile).read_text())


def example_3_queue_and_hook(work_dir: Path):
    """Example 3: Jobs on one queue, intercepted by a hook"""
    print("\n" + "=" * 60)
    print("Example 3: Queue serialization with a hook")
    print("=" * 60)

    lock = threading.Lock()

    def hook(job: ShellJob) -> bool:
        with lock:
            print(f"  hook got {job.to_map()}")
        return True

    executor = JobExecutor(ExecutorConfig(executable_folder=str(work_dir), hook=hook))
    dispatcher = JobDispatcher(executor, max_workers=3)
    dispatcher.start()
    for i in range(3):
        dispatcher.submit(ShellJob(
            id=10 + i,
            name=f"queued-{i}",
            execute="backup",
            queue="backups",
            logfile=str(work_dir / f"queued-{i}.log"),
        ))
    dispatcher.wait()
    dispatcher.stop()


def main():
    """Run all examples"""
    with tempfile.TemporaryDirectory() as temp_dir:
        work_dir = Path(temp_dir)
        example_1_single_run(work_dir)
        example_2_timeout(work_dir)
        example_3_queue_and_hook(work_dir)


if __name__ == "__main__":
    main()
