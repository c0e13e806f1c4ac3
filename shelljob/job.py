"""
Shell job definition.

A ShellJob is created by whoever schedules it; the executor only reads the
definition and flips the transient run state.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List

WILDCARD_RUN_MODES = ("", "all")
WILDCARD_JOB_MODES = ("", "all", "default")


@dataclass
class ShellJob:
    """
    External command plus scheduling metadata.

    Attributes:
        id: Numeric job id, injected into the child as schd_job_id
        name: Job name, used in log lines and injected as schd_job_name
        execute: Executable name or path
        logfile: Path of the job's own output log
        arguments: Command-line arguments, in order
        environments: Extra KEY=VALUE entries, applied after the inherited
            environment
        directory: Working directory for the child ('' = inherit)
        mode: Run mode this job belongs to ('' / 'all' / 'default' = any)
        enabled: Disabled jobs are skipped
        queue: Queue name; jobs on the same queue never overlap ('' = none)
        timeout: Seconds before the child is killed (<= 0 = no limit)
        attributes: Opaque metadata passed through to_map()
    """
    id: int
    name: str
    execute: str
    logfile: str
    arguments: List[str] = field(default_factory=list)
    environments: List[str] = field(default_factory=list)
    directory: str = ""
    mode: str = ""
    enabled: bool = True
    queue: str = ""
    timeout: float = 0
    attributes: Dict[str, Any] = field(default_factory=dict)

    _run_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def matches_mode(self, run_mode: str) -> bool:
        """Check whether this job may run under the process-wide run mode."""
        if (run_mode or "") in WILDCARD_RUN_MODES:
            return True
        if (self.mode or "") in WILDCARD_JOB_MODES:
            return True
        return self.mode == run_mode

    def try_begin(self) -> bool:
        """Atomically move from idle to running; False if already running."""
        return self._run_lock.acquire(blocking=False)

    def end(self):
        self._run_lock.release()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def status(self) -> int:
        return 1 if self.is_running else 0

    def injected_environments(self) -> List[str]:
        return [f"schd_job_id={self.id}", f"schd_job_name={self.name}"]

    def to_map(self) -> Dict[str, Any]:
        """
        Serialize for hand-off to a hook or an external runner.

        The environment list is a copy of the job's entries followed by the
        schd_job_id / schd_job_name pair.
        """
        return {
            'type': 'exec2',
            'command': self.execute,
            'arguments': list(self.arguments),
            'attributes': self.attributes,
            'environments': list(self.environments) + self.injected_environments(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ShellJob':
        """Create from a JSON-style mapping (e.g. an entry of a jobs file)."""
        return cls(
            id=int(data['id']),
            name=data['name'],
            execute=data['execute'],
            logfile=data['logfile'],
            arguments=list(data.get('arguments') or []),
            environments=list(data.get('environments') or []),
            directory=data.get('directory') or "",
            mode=data.get('mode') or "",
            enabled=data.get('enabled', True),
            queue=data.get('queue') or "",
            timeout=float(data.get('timeout') or 0),
            attributes=dict(data.get('attributes') or {}),
        )
