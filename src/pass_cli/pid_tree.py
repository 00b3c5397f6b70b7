#!/usr/bin/env python3
"""PID Tree - Process tree teardown for pass invocations.

pass is a shell script that runs gpg and git as children. Stopping only the
shell leaves those children behind, so cancellation walks the whole tree.
"""

from typing import List, Set

import psutil

# Seconds to wait after SIGTERM before escalating to SIGKILL
TERMINATE_GRACE = 2.0


def get_process_tree(pid: int) -> List[psutil.Process]:
    """Get the processes of the tree rooted at pid, descendants first.

    Args:
        pid: The root PID to start from

    Returns:
        List of processes with the root last, or an empty list if the root
        no longer exists

    """
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return []

    try:
        procs = root.children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        procs = []

    procs.append(root)
    return procs


def terminate_tree(pid: int, grace: float = TERMINATE_GRACE) -> Set[int]:
    """Terminate a process and all of its descendants.

    Children are signalled before the parent so the parent cannot respawn
    them. Processes still alive after the grace period are killed.

    Args:
        pid: Root of the tree to tear down
        grace: Seconds to wait between SIGTERM and SIGKILL

    Returns:
        Set of PIDs that were signalled

    """
    procs = get_process_tree(pid)
    signalled = set()

    for proc in procs:
        try:
            proc.terminate()
            signalled.add(proc.pid)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    _, alive = psutil.wait_procs(procs, timeout=grace)

    for proc in alive:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    return signalled
