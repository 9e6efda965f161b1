"""Tests for sikg.scm: git invocation and log parsing."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from sikg.scm import _ENTRY_SEP, git, log_entries, parse_log, repo_root, run


def _log_output(*entries):
    return "".join(f"{_ENTRY_SEP}\n" + "\n".join(e) + "\n\n" for e in entries)


class TestRunAndGit:
    def test_run_delegates_to_subprocess(self):
        result = run(["echo", "hello"])
        assert result.stdout.strip() == "hello"

    def test_run_raises_on_failure(self):
        with pytest.raises(subprocess.CalledProcessError):
            run(["false"])

    def test_run_no_check(self):
        assert run(["false"], check=False).returncode != 0

    @patch("sikg.scm.git")
    def test_repo_root_returns_path(self, mock_git):
        mock_git.return_value = MagicMock(stdout="/home/user/repo\n")
        assert repo_root() == Path("/home/user/repo")


class TestParseLog:
    def test_parses_entries(self):
        out = _log_output(
            ["abc123", "alice", "2026-09-01T10:00:00+00:00", "Fix parser", "src/a.py", "src/b.py"],
            ["def456", "bob", "2026-08-30T09:00:00+00:00", "Docs"],
        )
        commits = parse_log(out)
        assert [c.hash for c in commits] == ["abc123", "def456"]
        assert commits[0].author == "alice"
        assert commits[0].message == "Fix parser"
        assert commits[0].files == ["src/a.py", "src/b.py"]
        assert commits[1].files == []

    def test_skips_incomplete_blocks(self):
        out = _log_output(["abc123", "alice"])
        assert parse_log(out) == []

    def test_empty(self):
        assert parse_log("") == []


class TestLogEntries:
    @patch("sikg.scm.git")
    def test_parses_output(self, mock_git):
        mock_git.return_value = MagicMock(
            returncode=0,
            stdout=_log_output(["abc123", "alice", "2026-09-01T10:00:00+00:00", "Fix", "src/a.py"]),
        )
        entries = log_entries(max_commits=100, since_days=30)
        assert len(entries) == 1
        args = mock_git.call_args[0]
        assert "--max-count=100" in args
        assert "--since=30 days ago" in args

    @patch("sikg.scm.git")
    def test_empty_on_error(self, mock_git):
        mock_git.return_value = MagicMock(returncode=128, stdout="", stderr="not a git repository")
        assert log_entries() == []

    @patch("sikg.scm.git", side_effect=FileNotFoundError("git"))
    def test_empty_without_git(self, mock_git):
        assert log_entries() == []

    @pytest.mark.integration
    def test_real_repository(self, tmp_path):
        git("init", "-q", cwd=tmp_path)
        (tmp_path / "a.py").write_text("x = 1\n")
        git("add", "a.py", cwd=tmp_path)
        git("-c", "user.name=t", "-c", "user.email=t@example.com",
            "commit", "-q", "-m", "Initial", cwd=tmp_path)
        entries = log_entries(cwd=tmp_path)
        assert len(entries) == 1
        assert entries[0].message == "Initial"
        assert entries[0].files == ["a.py"]
