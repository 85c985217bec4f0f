import os
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config

ROOT = Path(__file__).resolve().parent.parent

# Module-level setup: the env var must be set before tests import `house_utility`.
data_dir = ROOT / "data"
data_dir.mkdir(exist_ok=True)
test_db_path = data_dir / "test.db"
for leftover in (test_db_path, Path(f"{test_db_path}-wal"), Path(f"{test_db_path}-shm")):
    if leftover.exists():
        leftover.unlink()

test_db_url = f"sqlite:///{test_db_path.as_posix()}"
os.environ["DATABASE_URL"] = test_db_url
os.environ.pop("TELEGRAM_BOT_TOKEN", None)
os.environ.pop("APP_CURRENCY", None)

# Run alembic migrations once at import time so the app sees the schema.
cfg = Config(str(ROOT / "alembic.ini"))
cfg.set_main_option("script_location", str(ROOT / "alembic"))
cfg.set_main_option("sqlalchemy.url", test_db_url)
command.upgrade(cfg, "head")


@pytest.fixture(autouse=True)
def clean_tables():
    """Every test starts from empty tables."""
    from sqlmodel import SQLModel

    from house_utility import models  # noqa: F401
    from house_utility.db import engine

    with engine.begin() as conn:
        for table in reversed(SQLModel.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture(scope="session", autouse=True)
def prepare_test_db():
    """Remove the test database after the session."""
    yield
    from house_utility.db import engine

    engine.dispose()
    if test_db_path.exists():
        test_db_path.unlink()
