# conftest.py
import os

# settings are read at import time
os.environ.setdefault("APP_SECRET", "test-secret")
os.environ["DB_URL"] = "sqlite:///:memory:"

import pytest
from fastapi.testclient import TestClient

from stockledger.db import Base, engine, SessionLocal
from stockledger.main import app
from stockledger.services.cache import snapshots
from stockledger.util.security import create_token


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    snapshots.invalidate()
    yield
    snapshots.invalidate()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def base_url():
    return ""


@pytest.fixture
def auth_headers():
    tok = create_token("tester", roles=["ADMIN"])
    return {"Authorization": f"Bearer {tok}"}


@pytest.fixture
def rng_suffix():
    import random, string
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
