from pathlib import Path

import pytest

from harvester.settings import Settings
from harvester.storage.db import connect
from harvester.storage.job_store import JobStore
from harvester.storage.recipe_store import RecipeStore

FIXTURES = Path(__file__).parent / "fixtures" / "html"


@pytest.fixture()
def settings(tmp_path):
    data_root = tmp_path / "data"
    return Settings.model_validate(
        {
            "app": {
                "data_root": str(data_root),
                "database": str(data_root / "harvester.db"),
                "checkpoint_dir": str(data_root / "checkpoints"),
                "metrics_dir": str(data_root / "metrics"),
            },
            "fetch": {"user_agent": "test-agent", "timeout_seconds": 5},
            "crawl": {
                "min_delay_seconds": 1.0,
                "max_delay_seconds": 3.0,
                "respect_robots": False,
                "max_request_retries": 0,
                "retry_max_request_retries": 0,
            },
            "instance_id": "test-worker",
        }
    )


@pytest.fixture()
def connection(settings):
    conn = connect(settings.app.database)
    yield conn
    conn.close()


@pytest.fixture()
def job_store(connection):
    return JobStore(connection)


@pytest.fixture()
def recipe_store(connection):
    return RecipeStore(connection)


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture()
def fake_sleep():
    return FakeSleep()
