"""pass-cli - Python API and command line for pass, the standard UNIX password manager.
Encryption, storage and git history are handled by pass itself.
"""

from .executor import CancelledError, ExecutionError, PassExecutor
from .store import (
    Options,
    copy,
    find_entries,
    generate,
    get_store_dir,
    git,
    init,
    insert,
    list_entries,
    move,
    read_gpg_id,
    remove,
    show,
    show_line,
    tree,
)

__version__ = "1.0.0"

__all__ = [
    "CancelledError",
    "ExecutionError",
    "Options",
    "PassExecutor",
    "copy",
    "find_entries",
    "generate",
    "get_store_dir",
    "git",
    "init",
    "insert",
    "list_entries",
    "move",
    "read_gpg_id",
    "remove",
    "show",
    "show_line",
    "tree",
]
