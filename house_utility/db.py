from sqlalchemy import event
from sqlmodel import SQLModel, create_engine
from pathlib import Path
import os

# Base dir = repository root (one level above the package)
BASE_DIR = Path(__file__).resolve().parent.parent

DATA_DIR = BASE_DIR / "data"

# Allow overriding via environment variable (useful in CI). Normalize
# any sqlite path to an absolute path under the repository to avoid
# "unable to open database file" when working directories differ.
env_database_url = os.getenv("DATABASE_URL")
if env_database_url:
    DATABASE_URL = env_database_url
else:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    DATABASE_URL = f"sqlite:///{(DATA_DIR / 'app.db').as_posix()}"

if DATABASE_URL.startswith("sqlite:///") and ":memory:" not in DATABASE_URL:
    file_path = DATABASE_URL.replace("sqlite:///", "", 1)
    p = Path(file_path)
    if not p.is_absolute():
        p = (BASE_DIR / p).resolve()
        DATABASE_URL = f"sqlite:///{p.as_posix()}"
    p.parent.mkdir(parents=True, exist_ok=True)

is_sqlite = DATABASE_URL.startswith("sqlite")

# check_same_thread False for uvicorn workers and background tasks
engine = create_engine(
    DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False} if is_sqlite else {},
)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    # Enable WAL and foreign keys on each new connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def enable_sqlite_pragmas(target_engine) -> None:
    event.listen(target_engine, "connect", _set_sqlite_pragma)


if is_sqlite:
    enable_sqlite_pragmas(engine)


def init_db():
    # registers every table on SQLModel.metadata
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(engine)
