"""Build version reported by the health endpoint."""
from __future__ import annotations

import os
import subprocess
from functools import lru_cache
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]


def _git(*args: str) -> str:
    try:
        output = subprocess.check_output(["git", *args], cwd=REPO_ROOT, stderr=subprocess.DEVNULL)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return ""
    return output.decode().strip()


@lru_cache(maxsize=1)
def get_app_version() -> str:
    """Return ``APP_VERSION`` if set, else ``<commit count>+<short sha>``, else ``dev``."""
    env_version = os.environ.get("APP_VERSION")
    if env_version:
        return env_version
    short_sha = _git("rev-parse", "--short", "HEAD")
    if not short_sha:
        return "dev"
    commit_count = _git("rev-list", "--count", "HEAD")
    return f"{commit_count}+{short_sha}" if commit_count else short_sha
