"""Unit tests for the operation audit logger."""

import os
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from pass_cli.audit import AuditLogger


@pytest.fixture
def audit_logger(temp_store_dir):
    """Create an audit logger with temp log path."""
    return AuditLogger(temp_store_dir / "logs" / "operations.log")


def _age(path, days):
    """Set a file's mtime to days ago."""
    mtime = time.time() - days * 86400
    os.utime(path, (mtime, mtime))


class TestAuditLoggerInit:
    """Tests for AuditLogger initialization."""

    def test_init_creates_directory(self, temp_store_dir):
        """Test that init creates the log directory."""
        log_path = temp_store_dir / "subdir" / "operations.log"
        AuditLogger(log_path)

        assert log_path.parent.exists()
        assert oct(log_path.parent.stat().st_mode)[-3:] == "700"

    def test_init_creates_log_file(self, temp_store_dir):
        """Test that init creates the log file."""
        log_path = temp_store_dir / "operations.log"
        AuditLogger(log_path)

        assert log_path.exists()
        assert oct(log_path.stat().st_mode)[-3:] == "600"

    def test_init_existing_log_file(self, temp_store_dir):
        """Test init with existing log file."""
        log_path = temp_store_dir / "operations.log"
        log_path.write_text("existing content\n")

        AuditLogger(log_path)

        assert "existing content" in log_path.read_text()


class TestLogOperation:
    """Tests for log_operation method."""

    def test_log_format(self, audit_logger):
        """Test correct log line format."""
        audit_logger.log_operation("OK", "SHOW", "google.com/bar")

        recent = audit_logger.read_recent(1)
        assert len(recent) == 1

        parts = recent[0].strip().split()
        # Format: TIMESTAMP [PID/command] RESULT ACTION name
        assert len(parts) == 5
        assert parts[1] == f"[{os.getpid()}/pass]"
        assert parts[2:] == ["OK", "SHOW", "google.com/bar"]

    def test_timestamp_format(self, audit_logger):
        """Test ISO8601 UTC timestamp."""
        audit_logger.log_operation("OK", "LIST", "")

        timestamp = audit_logger.read_recent(1)[0].split()[0]
        assert timestamp.endswith("Z")
        datetime.strptime(timestamp, "%Y-%m-%dT%H:%M:%S.%fZ")

    def test_empty_name(self, audit_logger):
        """Test an empty name is written as a dash."""
        audit_logger.log_operation("OK", "INIT", "")
        assert audit_logger.read_recent(1)[0].split()[4] == "-"

    def test_multiline_reason_is_one_line(self, audit_logger):
        """Test a reason with newlines stays on one record."""
        audit_logger.log_operation("ERROR", "SHOW", "x", "exit status 2\ngpg: decryption failed")

        recent = audit_logger.read_recent(10)
        assert len(recent) == 1
        assert recent[0].rstrip("\n").endswith("exit status 2 gpg: decryption failed")

    def test_thread_safety(self, audit_logger):
        """Test concurrent writers do not interleave lines."""
        errors = []

        def log_entries():
            try:
                for i in range(10):
                    audit_logger.log_operation("OK", "INSERT", f"entry/{i}")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=log_entries) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        recent = audit_logger.read_recent(100)
        assert len(recent) == 50
        assert all(len(line.split()) == 5 for line in recent)


class TestLogRotation:
    """Tests for daily rotation."""

    def test_rotation_of_old_log(self, audit_logger):
        """Test yesterday's log is moved aside before writing."""
        audit_logger.log_operation("OK", "INSERT", "old_entry")
        _age(audit_logger.log_path, 1)
        audit_logger._last_rotation_check = None

        audit_logger.log_operation("OK", "INSERT", "new_entry")

        rotated = audit_logger.rotated_logs()
        assert len(rotated) == 1
        assert "old_entry" in rotated[0].read_text()
        assert "new_entry" in audit_logger.log_path.read_text()
        assert "old_entry" not in audit_logger.log_path.read_text()

    def test_rotated_name_uses_last_write_day(self, audit_logger):
        """Test the rotated file is named for the day it was written."""
        audit_logger.log_operation("OK", "INSERT", "x")
        _age(audit_logger.log_path, 3)
        audit_logger._last_rotation_check = None
        written = datetime.fromtimestamp(audit_logger.log_path.stat().st_mtime, tz=timezone.utc)

        audit_logger._check_rotation()

        expected = f"operations.log.{written.strftime('%Y%m%d')}"
        assert [p.name for p in audit_logger.rotated_logs()] == [expected]

    def test_new_log_after_rotation_is_private(self, audit_logger):
        """Test the fresh log file gets 0600 permissions."""
        audit_logger.log_operation("OK", "INSERT", "x")
        _age(audit_logger.log_path, 1)
        audit_logger._last_rotation_check = None

        audit_logger._check_rotation()

        assert audit_logger.log_path.exists()
        assert oct(audit_logger.log_path.stat().st_mode)[-3:] == "600"

    def test_rotation_not_needed_same_day(self, audit_logger):
        """Test no rotation when file is from today."""
        audit_logger.log_operation("OK", "INSERT", "x")
        audit_logger._check_rotation()

        assert audit_logger.rotated_logs() == []


class TestLogCleanup:
    """Tests for old log cleanup."""

    def test_cleanup_removes_old_logs(self, temp_store_dir):
        """Test that rotated logs past retention are removed."""
        log_path = temp_store_dir / "operations.log"
        logger = AuditLogger(log_path, retention_days=7)

        old_date = datetime.now(timezone.utc) - timedelta(days=10)
        old_log = temp_store_dir / f"operations.log.{old_date.strftime('%Y%m%d')}"
        old_log.write_text("old content")

        recent_date = datetime.now(timezone.utc) - timedelta(days=2)
        recent_log = temp_store_dir / f"operations.log.{recent_date.strftime('%Y%m%d')}"
        recent_log.write_text("recent content")

        logger._cleanup_old_logs()

        assert not old_log.exists()
        assert recent_log.exists()
        assert log_path.exists()

    def test_cleanup_ignores_foreign_files(self, temp_store_dir):
        """Test files without a date suffix are left alone."""
        logger = AuditLogger(temp_store_dir / "operations.log", retention_days=1)
        foreign = temp_store_dir / "operations.log.backup"
        foreign.write_text("keep me")

        logger._cleanup_old_logs()

        assert foreign.exists()


class TestReadRecent:
    """Tests for reading recent log entries."""

    def test_read_recent_returns_last_lines(self, audit_logger):
        """Test reading the most recent entries."""
        for i in range(5):
            audit_logger.log_operation("OK", "SHOW", f"entry/{i}")

        recent = audit_logger.read_recent(3)

        assert len(recent) == 3
        assert "entry/2" in recent[0]
        assert "entry/4" in recent[-1]

    def test_read_recent_empty_log(self, audit_logger):
        """Test reading from empty log."""
        assert audit_logger.read_recent(10) == []

    def test_read_recent_file_removed(self, audit_logger):
        """Test reading when the log file has gone."""
        audit_logger.log_path.unlink()
        assert audit_logger.read_recent(10) == []
