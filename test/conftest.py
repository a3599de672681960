from __future__ import annotations

from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load dotenv files early so tests see the same COPILOT_* settings as local runs
TEST_ROOT = Path(__file__).resolve().parent
# Load test/.env first, then fallback to test/.env.example for defaults
load_dotenv(TEST_ROOT / ".env", override=False)
load_dotenv(TEST_ROOT / ".env.example", override=False)


@pytest.fixture(autouse=True)
def _isolate_runtime_environment(monkeypatch: pytest.MonkeyPatch):
    """Keep a developer's real runtime settings out of option resolution."""
    for name in ("COPILOT_CLI_URL", "COPILOT_CLI_PATH", "COPILOT_GITHUB_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    yield
