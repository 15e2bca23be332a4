"""Test configuration ensuring local package import when editable install not active.

If users invoke `pytest` outside the project's virtualenv, we still add the project
root to sys.path so `import impactlens` works.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Keep real credentials and cached settings out of every test."""
    from impactlens.core.config import ENV_OVERRIDES, reset_settings

    for var in ENV_OVERRIDES:
        monkeypatch.delenv(var, raising=False)
    reset_settings()
    yield
    reset_settings()
