"""Pytest fixtures and utilities for pass-cli tests."""

import os
import shutil
import subprocess
import tempfile
from pathlib import Path

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pass_cli.store import GPG_SUFFIX, Options


class FakeExecutor:
    """Stands in for PassExecutor, recording every invocation."""

    def __init__(self, stdout=b"", error=None):
        self.calls = []
        self.stdout = stdout
        self.error = error

    def run(self, subcommand, args=None, stdin=None, extra_env=None, timeout=None, cancel=None):
        self.calls.append({
            "subcommand": subcommand,
            "args": list(args or []),
            "stdin": stdin,
            "extra_env": dict(extra_env or {}),
            "timeout": timeout,
            "cancel": cancel,
        })
        if self.error is not None:
            raise self.error
        return self.stdout

    @property
    def last(self):
        return self.calls[-1]


def make_entries(store_dir, names):
    """Create encrypted-looking entry files below store_dir."""
    for name in names:
        path = Path(store_dir) / (name + GPG_SUFFIX)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x85\x02not-really-encrypted")


@pytest.fixture
def temp_store_dir():
    """Create a temporary directory for a password store."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store_options(temp_store_dir):
    """Options pointing at the temporary store."""
    return Options(store_dir=str(temp_store_dir))


@pytest.fixture
def populated_store(temp_store_dir):
    """A store with a handful of entries, a .gpg-id and git metadata."""
    (temp_store_dir / ".gpg-id").write_text("0F5E1E3F3CE3019D9A3AD09313B82ACF5C4BAB55\n")
    names = [
        "atlassian.com/baz",
        "google.com/bar",
        "google.com/baz",
        "personal/email/password",
        "wifi",
    ]
    make_entries(temp_store_dir, names)

    git_dir = temp_store_dir / ".git"
    (git_dir / "objects").mkdir(parents=True)
    (git_dir / "objects" / "stray.gpg").write_bytes(b"")
    (git_dir / "HEAD").write_text("ref: refs/heads/master\n")

    # Non-entry files are ignored
    (temp_store_dir / "google.com" / "notes.txt").write_text("not an entry")

    return {
        "path": temp_store_dir,
        "options": Options(store_dir=str(temp_store_dir)),
        "entries": names,
    }


@pytest.fixture
def fake_executor():
    """A recording executor that succeeds with empty output."""
    return FakeExecutor()


@pytest.fixture
def env_cleanup():
    """Clean up environment variables after test."""
    original_env = dict(os.environ)
    yield
    for key in list(os.environ.keys()):
        if key not in original_env:
            del os.environ[key]
    os.environ.update(original_env)


# Real pass/gpg toolchain, used by the integration tests

TEST_PASSPHRASE = "test_passphrase"


def toolchain_available():
    return shutil.which("pass") is not None and shutil.which("gpg") is not None


@pytest.fixture(scope="session")
def gnupg_home():
    """A throwaway GnuPG home holding one passphrase-protected key.

    The agent never caches passphrases, so every decryption needs the
    passphrase supplied on stdin.
    """
    if not toolchain_available():
        pytest.skip("pass and gpg are required")

    home = Path(tempfile.mkdtemp(prefix="pass-cli-gnupg-"))
    home.chmod(0o700)
    (home / "gpg-agent.conf").write_text(
        "allow-loopback-pinentry\ndefault-cache-ttl 0\nmax-cache-ttl 0\n"
    )

    env = dict(os.environ, GNUPGHOME=str(home))
    subprocess.run(
        ["gpg", "--batch", "--pinentry-mode", "loopback", "--passphrase", TEST_PASSPHRASE,
         "--quick-gen-key", "pass-cli test <pass-cli@example.com>", "default", "default", "never"],
        env=env, check=True, capture_output=True,
    )
    listing = subprocess.run(
        ["gpg", "--batch", "--with-colons", "--list-secret-keys"],
        env=env, check=True, capture_output=True, text=True,
    ).stdout
    fingerprint = next(
        line.split(":")[9] for line in listing.splitlines() if line.startswith("fpr:")
    )

    yield {"home": home, "fingerprint": fingerprint, "passphrase": TEST_PASSPHRASE}

    subprocess.run(["gpgconf", "--kill", "gpg-agent"], env=env, capture_output=True)
    shutil.rmtree(home, ignore_errors=True)


@pytest.fixture
def real_store(gnupg_home, temp_store_dir, monkeypatch):
    """An empty store directory with GNUPGHOME pointing at the test key."""
    monkeypatch.setenv("GNUPGHOME", str(gnupg_home["home"]))
    return {
        "path": temp_store_dir,
        "options": Options(store_dir=str(temp_store_dir), timeout=60),
        "gpg_id": gnupg_home["fingerprint"],
        "passphrase": gnupg_home["passphrase"],
    }
