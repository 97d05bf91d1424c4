"""Pytest configuration -- bootstraps sys.path for damage-control imports."""
import sys
from pathlib import Path

import pytest

# Ensure tests/ directory is on sys.path so _bootstrap can be imported
sys.path.insert(0, str(Path(__file__).resolve().parent))
import _bootstrap  # noqa: F401, E402


@pytest.fixture
def project_dir(tmp_path, monkeypatch):
    """Temporary CLAUDE_PROJECT_DIR with the damage-control config directory."""
    (tmp_path / ".claude" / "damage-control").mkdir(parents=True)
    monkeypatch.setenv("CLAUDE_PROJECT_DIR", str(tmp_path))
    return tmp_path
