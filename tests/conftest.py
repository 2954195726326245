# tests/conftest.py
import os

# The app module binds to DATABASE_URL on import; tests use in-memory SQLite.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from zefit import models  # noqa: F401 (register models)
from zefit.models.base import Base


@pytest.fixture()
def session():
    # SQLite in-memory DB just for tests
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def app_client(tmp_path):
    """Flask test client on a fresh schema, logged in as a staff user."""
    from zefit import web_app
    from zefit.auth_service import create_staff_user
    from zefit.models.base import engine, get_session
    from zefit.storage import LocalObjectStore

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    web_app.app.config.update(
        TESTING=True,
        OBJECT_STORE=LocalObjectStore(tmp_path / "storage", "/storage"),
    )

    with get_session() as db:
        create_staff_user(db, email="staff@zefit.ba", password="secret123")

    client = web_app.app.test_client()
    response = client.post("/api/login", json={"email": "staff@zefit.ba", "password": "secret123"})
    assert response.status_code == 200
    yield client
    Base.metadata.drop_all(bind=engine)
