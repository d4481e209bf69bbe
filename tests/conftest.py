import os
from contextlib import redirect_stderr, redirect_stdout
from io import StringIO
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import text

# Ensure tests run against SQLite when DATABASE_URL is not defined
os.environ.setdefault("DATABASE_URL", "sqlite:////tmp/peanuts_test.db")
os.environ.setdefault("PEANUTS_BASE_URL", "https://photos.example.com")

from fastapi.testclient import TestClient  # noqa: E402
from peanuts.main import app  # noqa: E402
from peanuts.config import Settings  # noqa: E402
from peanuts.db import SessionLocal, init_db  # noqa: E402
from peanuts.services import secret_keys  # noqa: E402


def _sqlite_path() -> Path | None:
    db_url = os.environ.get("DATABASE_URL")
    if db_url and db_url.startswith("sqlite:///"):
        return Path(db_url.replace("sqlite:///", ""))
    return None


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply Alembic migrations before running tests."""
    db_path = _sqlite_path()
    if db_path is not None and db_path.exists():
        db_path.unlink()
    cfg_path = Path(__file__).resolve().parent.parent / "alembic.ini"
    config = Config(str(cfg_path))
    config.set_main_option(
        "script_location", str(cfg_path.parent / "migrations")
    )
    stdout_buf, stderr_buf = StringIO(), StringIO()
    try:
        with redirect_stdout(stdout_buf), redirect_stderr(stderr_buf):
            command.upgrade(config, "head")
    except Exception as exc:
        print("Alembic upgrade failed:", exc)
        print("stdout:\n", stdout_buf.getvalue())
        print("stderr:\n", stderr_buf.getvalue())
        raise
    init_db(Settings())


@pytest.fixture(scope="session", autouse=True)
def remove_test_db():
    """Remove temporary SQLite database after tests finish."""
    yield
    db_path = _sqlite_path()
    if db_path is not None and db_path.exists():
        db_path.unlink()


@pytest.fixture(autouse=True)
def clean_tables(apply_migrations):
    with SessionLocal() as session:
        session.execute(text("DELETE FROM sources"))
        session.execute(text("DELETE FROM photos"))
        session.execute(text("DELETE FROM secret_keys"))
        session.commit()
    yield


@pytest.fixture(scope="module")
def client(apply_migrations):
    """Yields a TestClient with lifespan events."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def db():
    with SessionLocal() as session:
        yield session


@pytest.fixture
def secret_key(db):
    return secret_keys.create_secret_key(db)


@pytest.fixture
def auth_headers(secret_key):
    return {"Authorization": f"Bearer {secret_key}"}


@pytest.fixture
def make_photo(db):
    """Insert a photo with one source per ``(width, height)`` pair."""
    from peanuts import schemas
    from peanuts.services import photos as photo_service

    def _make(
        file_stem: str,
        tags: list[str] | None = None,
        *,
        published: bool = True,
        sizes: list[tuple[int, int]] | None = None,
        title: str | None = None,
        height_offset: int = 50,
    ) -> int:
        sizes = [(800, 600)] if sizes is None else sizes
        payload = schemas.PhotoPayload(
            file_stem=file_stem,
            title=title,
            tags=tags or [],
            sources=[
                schemas.Source(width=w, height=h, url=f"/img/{file_stem}-{w}x{h}.jpg")
                for w, h in sizes
            ],
        )
        return photo_service.insert_photo(
            db, payload, published=published, height_offset=height_offset
        )

    return _make
