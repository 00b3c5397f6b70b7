#!/usr/bin/env python3
"""Executor - Runs the pass program as a subprocess.

Every store operation goes through PassExecutor.run(), which takes the
subcommand, its arguments, optional stdin bytes and extra environment, and
returns stdout bytes or raises ExecutionError.
"""

import os
import subprocess
import threading
import time
from typing import Dict, List, Optional

from .pid_tree import terminate_tree

DEFAULT_EXECUTABLE = "pass"

# How often a running process is checked for cancellation (seconds)
POLL_INTERVAL = 0.1


class ExecutionError(Exception):
    """The pass process could not be started or exited unsuccessfully."""

    def __init__(
        self,
        subcommand: str,
        message: str,
        returncode: Optional[int] = None,
        stdout: bytes = b"",
        stderr: bytes = b"",
    ):
        self.subcommand = subcommand
        self.message = message
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(str(self))

    @property
    def output(self) -> str:
        """Captured stdout and stderr, decoded and combined."""
        parts = [self.stdout.decode("utf-8", "replace").strip(),
                 self.stderr.decode("utf-8", "replace").strip()]
        return "\n".join(p for p in parts if p)

    def __str__(self):
        text = f"exec {self.subcommand}: {self.message}"
        output = self.output
        if output:
            text += f": {output}"
        return text


class CancelledError(ExecutionError):
    """The pass process was stopped by a deadline or a cancel signal."""


class PassExecutor:
    """Runs `pass <subcommand> <args...>` and collects its output."""

    def __init__(self, executable: Optional[str] = None):
        self.executable = executable or DEFAULT_EXECUTABLE

    def build_env(self, extra_env: Optional[Dict[str, Optional[str]]] = None) -> Dict[str, str]:
        """Build the environment for one invocation.

        Starts from a copy of the current environment; os.environ itself is
        never modified. A None value removes the variable.
        """
        env = os.environ.copy()
        for key, value in (extra_env or {}).items():
            if value is None:
                env.pop(key, None)
            else:
                env[key] = value
        return env

    def run(
        self,
        subcommand: str,
        args: Optional[List[str]] = None,
        stdin: Optional[bytes] = None,
        extra_env: Optional[Dict[str, Optional[str]]] = None,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bytes:
        """Run pass and return its stdout.

        Args:
            subcommand: pass subcommand, e.g. "show"
            args: Flags and positional arguments following the subcommand
            stdin: Bytes written to the process's standard input
            extra_env: Variables added to this invocation's environment
            timeout: Seconds before the process is terminated
            cancel: Event that terminates the process when set

        Returns:
            Captured standard output

        Raises:
            CancelledError: If the deadline passed or cancel was set
            ExecutionError: If pass could not be started or exited non-zero

        """
        cmd = [self.executable, subcommand] + list(args or [])

        if cancel is not None and cancel.is_set():
            raise CancelledError(subcommand, "cancelled before start")

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self.build_env(extra_env),
            )
        except OSError as e:
            raise ExecutionError(subcommand, f"could not start {self.executable}: {e}") from e

        deadline = time.monotonic() + timeout if timeout is not None else None
        pending_input = stdin

        while True:
            wait = POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._abort(proc)
                    raise CancelledError(subcommand, f"deadline of {timeout}s exceeded")
                wait = min(wait, remaining)

            try:
                stdout, stderr = proc.communicate(pending_input, timeout=wait)
                break
            except subprocess.TimeoutExpired:
                # Input is only written on the first communicate() call
                pending_input = None
                if cancel is not None and cancel.is_set():
                    self._abort(proc)
                    raise CancelledError(subcommand, "cancelled")

        if proc.returncode != 0:
            raise ExecutionError(
                subcommand,
                f"exit status {proc.returncode}",
                returncode=proc.returncode,
                stdout=stdout,
                stderr=stderr,
            )

        return stdout

    def _abort(self, proc: subprocess.Popen) -> None:
        """Tear down the process tree and reap the child."""
        terminate_tree(proc.pid)
        try:
            proc.communicate(timeout=POLL_INTERVAL * 10)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
