#!/usr/bin/env python3
"""Password Store - Python API for pass, the standard UNIX password manager.

Each function maps onto one pass subcommand. Listing, searching and
identity lookup read the store directory directly instead.
"""

import errno
import fnmatch
import os
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .audit import RESULT_CANCELLED, RESULT_ERROR, RESULT_OK, AuditLogger
from .executor import CancelledError, ExecutionError, PassExecutor

# Constants
STORE_SUBDIR = ".password-store"
GPG_SUFFIX = ".gpg"
GPG_ID_FILE = ".gpg-id"
GIT_DIR = ".git"
STORE_DIR_ENV = "PASSWORD_STORE_DIR"
GPG_OPTS_ENV = "PASSWORD_STORE_GPG_OPTS"
# Decrypt without pinentry, reading the passphrase from stdin
BATCH_GPG_OPTS = "--passphrase-fd=0 --pinentry-mode=loopback --batch"

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


@dataclass(frozen=True)
class Options:
    """Per-call settings for store operations.

    store_dir: Root of the password store; None means ~/.password-store
    timeout: Seconds before a pass invocation is terminated
    executable: Program to run instead of "pass"
    """

    store_dir: Optional[str] = None
    timeout: Optional[float] = None
    executable: Optional[str] = None


def get_store_dir(options: Optional[Options] = None) -> Path:
    """Get store path from options or default."""
    if options is not None and options.store_dir:
        return Path(options.store_dir)
    return Path.home() / STORE_SUBDIR


def _store_path(store_dir: Path, relative: str) -> Path:
    """Resolve a name or subfolder below store_dir.

    Leading separators are dropped so an absolute path stays inside the
    store, the way pass builds "$PREFIX/$path".
    """
    relative = relative.lstrip("/" + os.sep)
    return store_dir / relative if relative else store_dir


def _refuse_overwrite(
    subcommand: str,
    name: str,
    options: Optional[Options],
    audit_logger: Optional[AuditLogger],
) -> None:
    """Raise ExecutionError if name already exists in the store.

    pass only asks before overwriting when stdin is a terminal; with piped
    input it overwrites silently, so the check is made here.
    """
    passfile = _store_path(get_store_dir(options), name + GPG_SUFFIX)
    if not passfile.exists():
        return

    message = f"an entry already exists for {name}"
    if audit_logger:
        audit_logger.log_operation(RESULT_ERROR, subcommand.upper(), name, message)
    raise ExecutionError(subcommand, message)


def _store_env(options: Optional[Options]) -> Dict[str, Optional[str]]:
    """Environment pointing pass at the same store this module reads.

    When no store dir is configured an inherited PASSWORD_STORE_DIR is
    removed, so pass falls back to the same default as get_store_dir().
    """
    if options is not None and options.store_dir:
        return {STORE_DIR_ENV: str(options.store_dir)}
    return {STORE_DIR_ENV: None}


def _execute(
    subcommand: str,
    args: List[str],
    name: str,
    options: Optional[Options],
    stdin: Optional[bytes] = None,
    extra_env: Optional[Dict[str, str]] = None,
    cancel: Optional[threading.Event] = None,
    executor: Optional[PassExecutor] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> bytes:
    """Run one pass subcommand and record the outcome."""
    if executor is None:
        executor = PassExecutor(options.executable if options else None)

    env = _store_env(options)
    if extra_env:
        env.update(extra_env)

    action = subcommand.upper()
    try:
        out = executor.run(
            subcommand,
            args,
            stdin=stdin,
            extra_env=env,
            timeout=options.timeout if options else None,
            cancel=cancel,
        )
    except CancelledError as e:
        if audit_logger:
            audit_logger.log_operation(RESULT_CANCELLED, action, name, e.message)
        raise
    except ExecutionError as e:
        if audit_logger:
            audit_logger.log_operation(RESULT_ERROR, action, name, e.message)
        raise

    if audit_logger:
        audit_logger.log_operation(RESULT_OK, action, name)
    return out


def init(
    gpg_id: Union[str, Iterable[str]],
    subfolder: str = "",
    options: Optional[Options] = None,
    *,
    cancel: Optional[threading.Event] = None,
    executor: Optional[PassExecutor] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> None:
    """Initialize the store (or a subfolder) for one or more GPG identities.

    Equivalent to `pass init [--path=subfolder] gpg-id...`. pass writes the
    identities to the .gpg-id file and re-encrypts existing entries.
    """
    gpg_ids = [gpg_id] if isinstance(gpg_id, str) else list(gpg_id)
    if not gpg_ids:
        raise ValueError("At least one GPG identity is required")

    args = []
    if subfolder:
        args.append(f"--path={subfolder}")
    args.extend(gpg_ids)

    _execute("init", args, subfolder, options, cancel=cancel,
             executor=executor, audit_logger=audit_logger)


def _walk(directory: str, store_dir: str, entries: List[str]) -> None:
    """Collect entry names below directory in lexical order."""
    with os.scandir(directory) as it:
        children = sorted(it, key=lambda e: e.name)

    for child in children:
        if child.is_dir(follow_symlinks=False):
            if child.name == GIT_DIR:
                continue
            _walk(child.path, store_dir, entries)
        elif child.name.endswith(GPG_SUFFIX) and child.is_file():
            rel = os.path.relpath(child.path, store_dir)
            entries.append(rel[:-len(GPG_SUFFIX)].replace(os.sep, "/"))


def list_entries(subfolder: str = "", options: Optional[Options] = None) -> List[str]:
    """List entry names in the store, or below subfolder.

    Equivalent to the "ls" subcommand, but returns flat names relative to
    the store root. Unlike pass, symbolic links to directories are not
    followed. Names come back in lexical depth-first order.

    Raises:
        OSError: If the target directory is missing or unreadable

    """
    store_dir = get_store_dir(options)
    target = _store_path(store_dir, subfolder)

    if target.name == GIT_DIR:
        return []

    entries: List[str] = []
    _walk(str(target), str(store_dir), entries)
    return entries


def find_entries(
    patterns: Union[str, Iterable[str]],
    options: Optional[Options] = None,
) -> List[str]:
    """Find entries with a path component matching any pattern.

    Equivalent to the "find" subcommand: each pattern is a case-insensitive
    glob matched anywhere inside a component.
    """
    if isinstance(patterns, str):
        patterns = [patterns]
    globs = [f"*{p.lower()}*" for p in patterns]
    if not globs:
        return []

    matches = []
    for name in list_entries("", options):
        parts = name.lower().split("/")
        if any(fnmatch.fnmatchcase(part, g) for part in parts for g in globs):
            matches.append(name)
    return matches


def tree(subfolder: str = "", options: Optional[Options] = None) -> Dict[str, dict]:
    """Build a nested dict of entries below subfolder.

    Leaves map to empty dicts; a name that is both an entry and a folder
    keeps its children.
    """
    prefix = subfolder.strip("/") + "/" if subfolder.strip("/") else ""

    root: Dict[str, dict] = {}
    for name in list_entries(subfolder, options):
        if prefix and name.startswith(prefix):
            name = name[len(prefix):]
        node = root
        for part in name.split("/"):
            node = node.setdefault(part, {})
    return root


def read_gpg_id(subfolder: str = "", options: Optional[Options] = None) -> List[str]:
    """Get the GPG identities that encrypt entries in subfolder.

    Looks for .gpg-id in subfolder, then each parent up to the store root,
    the same lookup pass performs.

    Raises:
        FileNotFoundError: If no .gpg-id exists on the way to the root

    """
    store_dir = Path(os.path.normpath(get_store_dir(options)))
    current = Path(os.path.normpath(_store_path(store_dir, subfolder)))

    while current == store_dir or store_dir in current.parents:
        candidate = current / GPG_ID_FILE
        if candidate.is_file():
            lines = candidate.read_text().splitlines()
            return [line.strip() for line in lines if line.strip()]
        current = current.parent

    raise FileNotFoundError(
        errno.ENOENT,
        f"No {GPG_ID_FILE} found; run init first",
        str(_store_path(store_dir, subfolder)),
    )


def show(
    name: str,
    passphrase: str,
    options: Optional[Options] = None,
    *,
    cancel: Optional[threading.Event] = None,
    executor: Optional[PassExecutor] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> bytes:
    """Decrypt an entry and return its content.

    Equivalent to `pass show name`. The passphrase is written to stdin and
    gpg is forced into batch, loopback-pinentry mode so no agent prompt
    appears. On failure the ExecutionError carries gpg's diagnostics.
    """
    return _execute(
        "show",
        [name],
        name,
        options,
        stdin=passphrase.encode("utf-8"),
        extra_env={GPG_OPTS_ENV: BATCH_GPG_OPTS},
        cancel=cancel,
        executor=executor,
        audit_logger=audit_logger,
    )


def show_line(
    name: str,
    passphrase: str,
    line: int = 1,
    options: Optional[Options] = None,
    **kwargs,
) -> str:
    """Decrypt an entry and return one line of it (1-based).

    By pass convention the first line holds the password.
    """
    if line < 1:
        raise ValueError(f"Line numbers start at 1, got {line}")

    lines = show(name, passphrase, options, **kwargs).decode("utf-8").splitlines()
    if line > len(lines):
        raise ValueError(f"There is no password to show on line {line} of {name}")
    return lines[line - 1]


def insert(
    name: str,
    content: Union[bytes, str],
    force: bool = False,
    options: Optional[Options] = None,
    *,
    cancel: Optional[threading.Event] = None,
    executor: Optional[PassExecutor] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> None:
    """Encrypt content into a new entry.

    Equivalent to `pass insert [--force] --multiline name`. Multiline mode
    is always used so content is read verbatim from stdin.

    Raises:
        ExecutionError: If the entry exists and force is not set; pass
            itself would overwrite it without asking

    """
    if not force:
        _refuse_overwrite("insert", name, options, audit_logger)
    if isinstance(content, str):
        content = content.encode("utf-8")

    args = []
    if force:
        args.append("--force")
    args.append("--multiline")
    args.append(name)

    _execute("insert", args, name, options, stdin=content, cancel=cancel,
             executor=executor, audit_logger=audit_logger)


def generate(
    name: str,
    length: Optional[int] = None,
    no_symbols: bool = False,
    in_place: bool = False,
    force: bool = False,
    options: Optional[Options] = None,
    *,
    cancel: Optional[threading.Event] = None,
    executor: Optional[PassExecutor] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> str:
    """Generate a random password, store it and return it.

    Equivalent to `pass generate`. in_place replaces only the first line of
    an existing entry; force overwrites the whole entry. With neither, an
    existing entry raises ExecutionError.
    """
    if in_place and force:
        raise ValueError("in_place and force are mutually exclusive")
    if length is not None and length < 1:
        raise ValueError(f"Password length must be positive, got {length}")
    if not (in_place or force):
        _refuse_overwrite("generate", name, options, audit_logger)

    args = []
    if no_symbols:
        args.append("--no-symbols")
    if in_place:
        args.append("--in-place")
    if force:
        args.append("--force")
    args.append(name)
    if length is not None:
        args.append(str(length))

    out = _execute("generate", args, name, options, cancel=cancel,
                   executor=executor, audit_logger=audit_logger)

    text = ANSI_ESCAPE.sub("", out.decode("utf-8", "replace"))
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        raise ExecutionError("generate", "no password in output")
    return lines[-1]


def remove(
    name: str,
    recursive: bool = False,
    force: bool = False,
    options: Optional[Options] = None,
    *,
    cancel: Optional[threading.Event] = None,
    executor: Optional[PassExecutor] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> None:
    """Remove an entry, or a folder of entries with recursive.

    Equivalent to `pass rm`. pass only asks for confirmation on a terminal,
    and stdin is never one here, so the entry is removed with or without
    force.
    """
    args = []
    if recursive:
        args.append("--recursive")
    if force:
        args.append("--force")
    args.append(name)

    _execute("rm", args, name, options, cancel=cancel,
             executor=executor, audit_logger=audit_logger)


def move(
    old_name: str,
    new_name: str,
    force: bool = False,
    options: Optional[Options] = None,
    *,
    cancel: Optional[threading.Event] = None,
    executor: Optional[PassExecutor] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> None:
    """Rename an entry or folder. Equivalent to `pass mv`."""
    args = []
    if force:
        args.append("--force")
    args.extend([old_name, new_name])

    _execute("mv", args, f"{old_name}->{new_name}", options, cancel=cancel,
             executor=executor, audit_logger=audit_logger)


def copy(
    old_name: str,
    new_name: str,
    force: bool = False,
    options: Optional[Options] = None,
    *,
    cancel: Optional[threading.Event] = None,
    executor: Optional[PassExecutor] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> None:
    """Duplicate an entry or folder. Equivalent to `pass cp`."""
    args = []
    if force:
        args.append("--force")
    args.extend([old_name, new_name])

    _execute("cp", args, f"{old_name}->{new_name}", options, cancel=cancel,
             executor=executor, audit_logger=audit_logger)


def git(
    git_args: List[str],
    options: Optional[Options] = None,
    *,
    cancel: Optional[threading.Event] = None,
    executor: Optional[PassExecutor] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> bytes:
    """Run a git command inside the store, e.g. ["push"] or ["log", "-1"].

    Equivalent to `pass git args...`. Returns git's output.
    """
    return _execute("git", list(git_args), " ".join(git_args[:1]), options,
                    cancel=cancel, executor=executor, audit_logger=audit_logger)
