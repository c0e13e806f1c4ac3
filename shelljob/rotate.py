"""
Size-based rotation of job log files.

    job.log        live log
    job.log.0001   newest backup
    ...
    job.log.0005   oldest backup, dropped on the next rotation
"""

import logging
import os

logger = logging.getLogger(__name__)

MAX_BYTES = 5 * 1024 * 1024  # 5MB
MAX_NUM = 5


def backup_name(path: str, num: int) -> str:
    return f"{path}.{num:04d}"


def rotate_file(path: str, max_bytes: int = MAX_BYTES, max_num: int = MAX_NUM) -> bool:
    """
    Rotate a log file if it has grown past max_bytes.

    The next open in append mode creates a fresh live log.

    Args:
        path: Live log file path
        max_bytes: Size threshold
        max_num: Number of numbered backups kept

    Returns:
        True if the file was rotated, False if there was nothing to do

    Raises:
        OSError: If a stat, remove or rename fails; rotation stops there
    """
    try:
        size = os.stat(path).st_size
    except FileNotFoundError:
        return False

    if size < max_bytes:
        return False

    oldest = backup_name(path, max_num)
    if os.path.exists(oldest):
        os.remove(oldest)

    for num in range(max_num - 1, 0, -1):
        src = backup_name(path, num)
        if not os.path.exists(src):
            continue
        os.rename(src, backup_name(path, num + 1))

    os.rename(path, backup_name(path, 1))
    logger.debug(f"Rotated {path} ({size} bytes)")
    return True
