"""
Registry of well-known tools, resolved once at startup.
"""

import logging
from types import MappingProxyType
from collections.abc import Mapping
from typing import Dict, Iterator, Optional

from shelljob.resolver import look_path

logger = logging.getLogger(__name__)

# Tools looked up by bare name, then under netsnmp/
WELL_KNOWN_TOOLS = (
    "snmpget", "snmpgetnext", "snmpdf", "snmpbulkget",
    "snmpbulkwalk", "snmpdelta", "snmpnetstat", "snmpset", "snmpstatus",
    "snmptable", "snmptest", "snmptools", "snmptranslate", "snmptrap", "snmpusm",
    "snmpvacm", "snmpwalk", "wshell",
)


class CommandRegistry(Mapping):
    """
    Read-only map of logical tool names to resolved paths.

    Built once with build(); lookups never touch the filesystem. A name
    that is missing means the raw name should be used as-is.
    """

    def __init__(self, commands: Optional[Dict[str, str]] = None):
        self._commands = MappingProxyType(dict(commands or {}))

    @classmethod
    def build(cls, executable_folder: str) -> 'CommandRegistry':
        """Resolve every well-known tool against executable_folder."""
        commands: Dict[str, str] = {}

        for nm in WELL_KNOWN_TOOLS:
            pa = look_path(executable_folder, nm) or look_path(executable_folder, "netsnmp/" + nm)
            if pa:
                commands[nm] = pa

        pa = look_path(executable_folder, "tpt")
        if pa:
            commands["tpt"] = pa
        pa = look_path(executable_folder, "nmap/nping")
        if pa:
            commands["nping"] = pa
        pa = look_path(executable_folder, "nmap/nmap")
        if pa:
            commands["nmap"] = pa
        pa = look_path(executable_folder, "putty/plink", "ssh")
        if pa:
            commands["plink"] = pa
            commands["ssh"] = pa
        pa = look_path(executable_folder, "dig/dig", "dig")
        if pa:
            commands["dig"] = pa

        logger.info(f"Resolved {len(commands)} well-known command(s) from {executable_folder}")
        return cls(commands)

    def __getitem__(self, name: str) -> str:
        return self._commands[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._commands)

    def __len__(self) -> int:
        return len(self._commands)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._commands)

    def __repr__(self):
        return f"CommandRegistry(commands={len(self._commands)})"
