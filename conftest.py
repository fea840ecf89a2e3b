import shutil
from pathlib import Path

import pytest

from game_forge import storage

TEST_DATA_DIR = Path("data-tests")


@pytest.fixture(autouse=True)
def clean_test_data(monkeypatch):
    """Wipe and re-init data-tests/ before every test."""
    for var in ("LLM_API_KEY", "ANTHROPIC_API_KEY", "SEARCH_URL", "PUBLIC_BASE_URL"):
        monkeypatch.delenv(var, raising=False)
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    storage.init_storage(TEST_DATA_DIR)
    yield
    # leave data-tests around after tests for inspection; CI can ignore it
