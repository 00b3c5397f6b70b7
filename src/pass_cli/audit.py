#!/usr/bin/env python3
"""Audit Logger - Append-only record of password store operations.

One line per operation with daily rotation and retention management.
Entry names are recorded; secret content and passphrases never are.
"""

import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

RESULT_OK = "OK"
RESULT_ERROR = "ERROR"
RESULT_CANCELLED = "CANCELLED"


class AuditLogger:
    """Append-only operation logger with rotation and retention."""

    def __init__(self, log_path: Path, retention_days: int = 30):
        """Initialize audit logger.

        Args:
            log_path: Path to the log file (e.g., ~/.pass-cli/operations.log)
            retention_days: Number of days to keep rotated logs

        """
        self.log_path = Path(log_path)
        self.retention_days = retention_days
        self.lock = threading.Lock()
        self._last_rotation_check: Optional[datetime] = None

        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_path.parent.chmod(0o700)

        self._ensure_file()

    def _ensure_file(self) -> None:
        """Create the log file with secure permissions if it doesn't exist."""
        if not self.log_path.exists():
            fd = os.open(
                str(self.log_path),
                os.O_CREAT | os.O_APPEND | os.O_WRONLY,
                0o600
            )
            os.close(fd)

    def log_operation(
        self,
        result: str,
        action: str,
        name: str,
        reason: Optional[str] = None
    ) -> None:
        """Log a store operation.

        Format: ISO8601Z [PID/command] RESULT ACTION name [reason]

        Args:
            result: OK | ERROR | CANCELLED
            action: INIT | LIST | SHOW | INSERT | RM | MV | CP | GIT | GENERATE
            name: Entry name, subfolder, or "-" when there is none
            reason: Optional reason for ERROR/CANCELLED

        """
        self._check_rotation()

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

        parts = [
            timestamp,
            f"[{os.getpid()}/pass]",
            result,
            action,
            name or "-"
        ]

        if reason:
            # Keep one record per line
            parts.append(" ".join(reason.split()))

        log_line = " ".join(parts) + "\n"

        with self.lock, open(self.log_path, "a") as f:
            f.write(log_line)

    def _check_rotation(self) -> None:
        """Check if daily rotation is needed."""
        now = datetime.now(timezone.utc)

        # Only check once per hour at most
        if self._last_rotation_check:
            if (now - self._last_rotation_check).total_seconds() < 3600:
                return

        self._last_rotation_check = now

        if not self.log_path.exists():
            return

        try:
            mtime = datetime.fromtimestamp(
                self.log_path.stat().st_mtime,
                tz=timezone.utc
            )
        except OSError:
            return

        today_midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

        if mtime < today_midnight:
            self._rotate(mtime)
            self._cleanup_old_logs()
            self._ensure_file()

    def _rotate(self, last_modified: datetime) -> None:
        """Rotate the current log file, named for the day it was last written."""
        rotated_path = self.log_path.with_name(
            f"{self.log_path.name}.{last_modified.strftime('%Y%m%d')}"
        )

        # Only rotate if the target doesn't already exist
        if not rotated_path.exists():
            try:
                self.log_path.rename(rotated_path)
            except OSError:
                pass

    def _cleanup_old_logs(self) -> None:
        """Remove logs older than retention period."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_days)

        for log_file in self.rotated_logs():
            try:
                date_str = log_file.name.rsplit(".", 1)[-1]
                log_date = datetime.strptime(date_str, "%Y%m%d").replace(
                    tzinfo=timezone.utc
                )
                if log_date < cutoff:
                    log_file.unlink()
            except (ValueError, OSError):
                # Not one of ours, or already gone
                pass

    def rotated_logs(self) -> List[Path]:
        """Get rotated log files, oldest first."""
        try:
            return sorted(self.log_path.parent.glob(f"{self.log_path.name}.*"))
        except OSError:
            return []

    def read_recent(self, lines: int = 100) -> List[str]:
        """Read recent log entries (most recent last)."""
        if not self.log_path.exists():
            return []

        try:
            with open(self.log_path) as f:
                return f.readlines()[-lines:]
        except OSError:
            return []
