"""Git operations used by the history subsystem."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from sikg import defaults
from sikg.models import CommitRecord

log = logging.getLogger("sikg.scm")

_ENTRY_SEP = "---SIKG_ENTRY---"


def run(cmd: list[str], cwd: str | Path | None = None, check: bool = True) -> subprocess.CompletedProcess:
    return subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, check=check)


def git(*args: str, cwd: str | Path | None = None, check: bool = True) -> subprocess.CompletedProcess:
    return run(["git", *args], cwd=cwd, check=check)


def repo_root(cwd: str | Path | None = None) -> Path:
    r = git("rev-parse", "--show-toplevel", cwd=cwd)
    return Path(r.stdout.strip())


def parse_log(output: str) -> list[CommitRecord]:
    """Parse ``git log`` output produced with the entry separator format."""
    commits: list[CommitRecord] = []
    for block in output.split(_ENTRY_SEP):
        lines = [l for l in block.strip().splitlines() if l.strip()]
        if len(lines) < 4:
            continue
        sha, author, date, subject = lines[0], lines[1], lines[2], lines[3]
        files = [f.strip() for f in lines[4:] if f.strip()]
        commits.append(CommitRecord(hash=sha, timestamp=date, author=author, message=subject, files=files))
    return commits


def log_entries(
    max_commits: int = defaults.DEFAULT_MAX_COMMITS,
    since_days: int | None = None,
    cwd: str | Path | None = None,
) -> list[CommitRecord]:
    """Return recent commits with their changed files, newest first.

    Returns an empty list outside a git repository.
    """
    fmt = f"{_ENTRY_SEP}%n%H%n%an%n%aI%n%s"
    args = ["log", f"--max-count={max_commits}", f"--format={fmt}", "--name-only", "--no-merges"]
    if since_days:
        args.append(f"--since={since_days} days ago")
    try:
        r = git(*args, cwd=cwd, check=False)
    except FileNotFoundError:
        log.warning("git executable not found")
        return []
    if r.returncode != 0:
        log.warning("git log failed: %s", r.stderr.strip())
        return []
    return parse_log(r.stdout)
