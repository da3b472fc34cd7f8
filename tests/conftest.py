import os
from pathlib import Path
import sys

import pytest

# Ensure the src/ layout is importable without installing the package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

os.environ.setdefault("DEPLOYGUARD_DISABLE_TRACING", "1")

from deployguard.config import config as cfg  # noqa: E402
from deployguard.config import settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    # Never read a developer's real .env or secrets during tests.
    monkeypatch.setenv("DOTENV_PATH", "tests/.env.DO_NOT_USE")
    monkeypatch.setenv("DEPLOYGUARD_DISABLE_TRACING", "1")
    monkeypatch.delenv("AWS_SECRETSMANAGER_CONFIG_ID", raising=False)
    cfg._config_adapter.cache_clear()
    settings.get_settings.cache_clear()
    yield
    cfg._config_adapter.cache_clear()
    settings.get_settings.cache_clear()
