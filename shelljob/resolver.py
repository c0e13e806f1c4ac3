"""
Command lookup for shell jobs.

Finds an executable for a logical command name without any configuration.
Tools may live next to the program, in a vendored subfolder (bin/, tools/,
runtime_env/), one level up, or on the system PATH - all of these layouts
are probed in a fixed order.
"""

import logging
import os
import shutil
import sys
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

# Subfolders probed for every candidate name, in order
SEARCH_DIRS = ("", "bin", "tools", "runtime_env")

if sys.platform == "win32":
    EXTENSIONS = (".bat", ".com", ".exe")
else:
    EXTENSIONS = (".sh",)


def candidate_names(name: str, aliases: Sequence[str] = ()) -> List[str]:
    """
    Build the ordered list of file names to look for.

    Args:
        name: Logical command name (e.g. "dig" or "nmap/nping")
        aliases: Alternate names, tried after the primary one

    Returns:
        Base name followed by its platform extensions, then each alias
        with the same treatment.
    """
    names = []
    for nm in [name, *aliases]:
        names.append(nm)
        names.extend(nm + ext for ext in EXTENSIONS)
    return names


def _candidate_paths(executable_folder: str, nm: str) -> List[str]:
    roots = [".", "..", executable_folder, os.path.join(executable_folder, "..")]
    paths = []
    for root in roots:
        for sub in SEARCH_DIRS:
            parts = [p for p in (sub, nm) if p]
            if root == ".":
                paths.append(os.path.join(*parts))
            else:
                paths.append(os.path.join(root, *parts))
    return paths


def look_path(executable_folder: str, name: str, *aliases: str) -> Optional[str]:
    """
    Resolve a command name to something that can be executed.

    Absolute names are returned unchanged. Otherwise every candidate name is
    probed under the working directory, its parent, the executable folder
    and its parent (each with bin/, tools/ and runtime_env/), and the first
    regular file wins. If nothing is found on disk the PATH is searched.

    Args:
        executable_folder: Directory of the running program
        name: Command name or relative path
        *aliases: Alternate names

    Returns:
        Absolute path of the file found on disk, the bare candidate name
        when it was only found on PATH, or None.
    """
    if os.path.isabs(name):
        return name

    names = candidate_names(name, aliases)

    for nm in names:
        for path in _candidate_paths(executable_folder, nm):
            path = os.path.abspath(path)
            if os.path.isfile(path):
                logger.debug(f"Resolved '{name}' to {path}")
                return path

    for nm in names:
        if shutil.which(nm) is not None:
            logger.debug(f"Resolved '{name}' to '{nm}' on PATH")
            return nm

    return None
