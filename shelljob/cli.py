"""
Command-line interface for running shell jobs.

Commands:
- run: run jobs from a jobs file once, concurrently
- resolve: show where a command name resolves to
- commands: show the well-known command registry
- rotate: rotate a job log file now
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from shelljob.config import ExecutorConfig, JobsFile, JobConfigError, get_executable_folder
from shelljob.executor import JobExecutor
from shelljob.queues import QueueLimitExceeded
from shelljob.resolver import look_path
from shelljob.rotate import rotate_file
from shelljob.service import JobDispatcher

load_dotenv()

logger = logging.getLogger(__name__)


def get_log_dir() -> Path:
    """Get the log directory from environment or default."""
    if os.environ.get('SHELLJOB_LOG_DIR'):
        return Path(os.environ['SHELLJOB_LOG_DIR']).expanduser()
    return Path.home() / ".shelljob" / "logs"


def get_log_file() -> Path:
    """Get the runner log file path."""
    return get_log_dir() / "shelljob.log"


def setup_logging(log_file: str = None, verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)


def cmd_run(args) -> int:
    """Run jobs from the jobs file once."""
    setup_logging(
        log_file=args.log_file or str(get_log_file()),
        verbose=args.verbose
    )

    try:
        jobs_file = JobsFile(args.jobs_file)
    except JobConfigError as e:
        logger.error(str(e))
        return 1

    errors = jobs_file.validate()
    if errors:
        logger.error("Jobs file validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return 1

    if args.names:
        jobs = []
        for name in args.names:
            job = jobs_file.get_job(name)
            if job is None:
                logger.error(f"Job '{name}' not found in {jobs_file.path}")
                return 1
            jobs.append(job)
    else:
        jobs = jobs_file.get_enabled_jobs()

    if not jobs:
        logger.warning("No jobs to run")
        return 0

    dispatcher = JobDispatcher(JobExecutor(ExecutorConfig.from_env()), max_workers=args.workers)
    dispatcher.start()
    try:
        for job in jobs:
            dispatcher.submit(job)
        dispatcher.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted, waiting for running jobs...")
    except QueueLimitExceeded:
        logger.error("Dispatcher stopped accepting jobs")
    finally:
        dispatcher.stop(wait=True)

    if dispatcher.fatal_error is not None:
        logger.critical(f"Fatal: {dispatcher.fatal_error}")
        return 2

    logger.info(f"Finished {len(jobs)} job(s)")
    return 0


def cmd_resolve(args) -> int:
    """Show where a command name resolves to."""
    setup_logging(verbose=args.verbose)

    root = args.root or get_executable_folder()
    path = look_path(root, args.name, *args.alias)
    if path is None:
        print(f"{args.name}: not found", file=sys.stderr)
        return 1
    print(path)
    return 0


def cmd_commands(args) -> int:
    """Print the well-known command registry."""
    setup_logging(verbose=args.verbose)

    config = ExecutorConfig.from_env()
    if not len(config.commands):
        print("No well-known commands found")
        return 0

    print(f"\n{len(config.commands)} well-known command(s) under {config.executable_folder}:\n")
    for name, path in sorted(config.commands.items()):
        print(f"  {name:<16} {path}")
    print()
    return 0


def cmd_rotate(args) -> int:
    """Rotate a log file if it is over the size limit."""
    setup_logging(verbose=args.verbose)

    try:
        rotated = rotate_file(args.logfile)
    except OSError as e:
        logger.error(f"Failed to rotate {args.logfile}: {e}")
        return 1

    if rotated:
        logger.info(f"Rotated {args.logfile}")
    else:
        logger.info(f"{args.logfile} does not need rotation")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shelljob",
        description="Run shell jobs with queues, timeouts and rotating logs"
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help='Run jobs from a jobs file once')
    run_parser.add_argument('names', nargs='*', help='Job names (default: all enabled jobs)')
    run_parser.add_argument('--jobs-file', help='Path to jobs JSON file')
    run_parser.add_argument('--workers', type=int, default=5, help='Maximum concurrent jobs')
    run_parser.add_argument('--log-file', help='Runner log file (default: ~/.shelljob/logs/shelljob.log)')
    run_parser.set_defaults(func=cmd_run)

    resolve_parser = subparsers.add_parser('resolve', help='Resolve a command name')
    resolve_parser.add_argument('name', help='Command name')
    resolve_parser.add_argument('--alias', action='append', default=[], help='Alternate name (repeatable)')
    resolve_parser.add_argument('--root', help='Search root (default: executable folder)')
    resolve_parser.set_defaults(func=cmd_resolve)

    commands_parser = subparsers.add_parser('commands', help='List well-known commands')
    commands_parser.set_defaults(func=cmd_commands)

    rotate_parser = subparsers.add_parser('rotate', help='Rotate a log file')
    rotate_parser.add_argument('logfile', help='Log file path')
    rotate_parser.set_defaults(func=cmd_rotate)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    sys.exit(args.func(args))


if __name__ == '__main__':
    main()
