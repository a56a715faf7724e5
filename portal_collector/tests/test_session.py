"""
Unit tests for the session store.

Tests verify:
- A missing, empty or comment-only cookie file raises AuthMissingError
  with an operator hint.
- The credential is cached while younger than the TTL and reloaded after.
- invalidate() forces a reread.
- save() writes the file atomically and caches the new value.
- Multi-line cookie files are joined into one Cookie header.

CHANGELOG:
- 2026-10-06: Initial creation

TODO:
- None
"""

from __future__ import annotations

from pathlib import Path

import pytest

from portal_collector.src.errors import AuthMissingError
from portal_collector.src.session import COOKIE_HINT, SessionStore


class _FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestMissingCredential:
    """Absent or empty sources are an operator problem, not a crash."""

    def test_missing_file_raises_auth_missing(self, tmp_path: Path) -> None:
        store = SessionStore(tmp_path / "nope.txt")

        with pytest.raises(AuthMissingError) as exc_info:
            store.get_credential()
        assert "not found" in exc_info.value.message
        assert exc_info.value.hint == COOKIE_HINT

    def test_empty_file_raises_auth_missing(self, tmp_path: Path) -> None:
        path = tmp_path / "cookies.txt"
        path.write_text("   \n")

        with pytest.raises(AuthMissingError) as exc_info:
            SessionStore(path).get_credential()
        assert "empty" in exc_info.value.message

    def test_comment_only_file_is_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "cookies.txt"
        path.write_text("# paste your cookie below\n")

        with pytest.raises(AuthMissingError):
            SessionStore(path).get_credential()

    def test_directory_instead_of_file_is_unreadable(self, tmp_path: Path) -> None:
        with pytest.raises(AuthMissingError):
            SessionStore(tmp_path).get_credential()


class TestCaching:
    """The credential is reused within its TTL."""

    def test_loads_cookie_value(self, cookie_file: Path) -> None:
        credential = SessionStore(cookie_file).get_credential()

        assert credential.value == "SESSION=abc123; XSRF-TOKEN=xyz"
        assert credential.source == str(cookie_file)

    def test_reused_within_ttl(self, cookie_file: Path) -> None:
        clock = _FakeClock()
        store = SessionStore(cookie_file, ttl_s=300, clock=clock)
        first = store.get_credential()

        cookie_file.write_text("SESSION=changed")
        clock.now += 299

        assert store.get_credential() is first

    def test_reloaded_after_ttl(self, cookie_file: Path) -> None:
        clock = _FakeClock()
        store = SessionStore(cookie_file, ttl_s=300, clock=clock)
        store.get_credential()

        cookie_file.write_text("SESSION=changed")
        clock.now += 300

        assert store.get_credential().value == "SESSION=changed"

    def test_reload_failure_clears_cache(self, cookie_file: Path) -> None:
        clock = _FakeClock()
        store = SessionStore(cookie_file, ttl_s=10, clock=clock)
        store.get_credential()

        cookie_file.unlink()
        clock.now += 11

        with pytest.raises(AuthMissingError):
            store.get_credential()
        assert store.cached is None

    def test_invalidate_forces_reread(self, cookie_file: Path) -> None:
        store = SessionStore(cookie_file, ttl_s=300, clock=_FakeClock())
        store.get_credential()
        cookie_file.write_text("SESSION=fresh")

        store.invalidate()

        assert store.cached is None
        assert store.get_credential().value == "SESSION=fresh"


class TestCookieFileFormat:
    """One cookie per line and comments are accepted."""

    def test_lines_joined(self, tmp_path: Path) -> None:
        path = tmp_path / "cookies.txt"
        path.write_text("# exported 2026-10-01\nSESSION=abc;\nXSRF-TOKEN=xyz\n\n")

        assert SessionStore(path).get_credential().value == "SESSION=abc; XSRF-TOKEN=xyz"


class TestSave:
    """save() persists and caches a new cookie."""

    def test_save_writes_and_caches(self, tmp_path: Path) -> None:
        path = tmp_path / "sub" / "cookies.txt"
        store = SessionStore(path)

        credential = store.save("  SESSION=new  ")

        assert path.read_text().strip() == "SESSION=new"
        assert credential.value == "SESSION=new"
        assert store.cached is credential
        assert not (tmp_path / "sub" / "cookies.txt.tmp").exists()

    def test_save_empty_raises(self, tmp_path: Path) -> None:
        with pytest.raises(AuthMissingError):
            SessionStore(tmp_path / "cookies.txt").save("   ")

    def test_credential_repr_hides_value(self, cookie_file: Path) -> None:
        credential = SessionStore(cookie_file).get_credential()

        assert "abc123" not in repr(credential)
