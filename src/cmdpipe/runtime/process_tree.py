"""Forced termination of a child process and its descendants.

Descendants are enumerated with psutil *before* the parent is killed; once
the parent is gone its children are re-parented and can no longer be found
through it. Every step is best-effort: enumeration and per-descendant kill
failures are logged and ignored.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys

import psutil

__all__ = ["IS_WINDOWS", "list_descendants", "kill_descendants", "kill_process_tree"]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"


def list_descendants(pid: int) -> list[psutil.Process]:
    """Return all descendants of ``pid``, or [] if they cannot be listed."""
    try:
        return psutil.Process(pid).children(recursive=True)
    except psutil.Error as e:
        logger.debug(f"Listing descendants of pid={pid} is unsupported: {e}")
        return []


def kill_descendants(pid: int) -> int:
    """Force-kill every descendant of ``pid``.

    Returns:
        Number of descendants a kill signal was delivered to
    """
    killed = 0
    for child in list_descendants(pid):
        try:
            cmdline = " ".join(child.cmdline())
        except psutil.Error:
            cmdline = "?"
        try:
            child.kill()
            killed += 1
            logger.debug(f"Killed descendant pid={child.pid} command={cmdline}")
        except psutil.NoSuchProcess:
            pass
        except psutil.Error as e:
            logger.debug(f"Failed to kill descendant pid={child.pid}: {e}")
    return killed


def _posix_kill_group(process: subprocess.Popen) -> None:
    """Send SIGKILL to the process group led by ``process``.

    Only valid when the child was started with ``start_new_session=True``.
    """
    # pgid == pid for a session leader; the group outlives a reaped leader
    pgid = process.pid
    try:
        os.killpg(pgid, signal.SIGKILL)
        logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.debug(f"killpg failed for pid={process.pid}: {e}")


def kill_process_tree(
    process: subprocess.Popen,
    *,
    include_descendants: bool = True,
    new_session: bool = False,
) -> None:
    """Forcibly terminate ``process`` (and optionally its descendants).

    Args:
        process: The child process
        include_descendants: Also kill every descendant process
        new_session: The child leads its own process group (POSIX), so the
            whole group is signalled as well
    """
    if include_descendants:
        if process.poll() is None:
            logger.debug(f"Killing descendants of pid={process.pid}")
            kill_descendants(process.pid)
        if new_session and not IS_WINDOWS:
            _posix_kill_group(process)

    try:
        process.kill()
        logger.debug(f"Killed process pid={process.pid}")
    except ProcessLookupError:
        logger.debug(f"Process already exited pid={process.pid}")
    except OSError as e:
        logger.debug(f"Error killing process pid={process.pid}: {e}")
