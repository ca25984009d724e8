import os
import sys
import tempfile
import uuid
from pathlib import Path

_db_dir = tempfile.mkdtemp(prefix="formula-ledger-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_db_dir}/test.db"
os.environ["SCHEDULER_ENABLED"] = "0"
os.environ["CATALOG_URL"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""
os.environ["TWILIO_PHONE_NUMBER"] = ""

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[2]))

from app.main import app
from app.db import get_db
from app.db.database import Base, SessionLocal, engine
from app.engine.catalog import IngredientCatalog, IngredientInfo
from app.engine.formulas import FormulaEngine
from app.models import User


def override_get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


class RecordingNotifier:
    """Collects emitted events instead of writing notifications."""

    def __init__(self):
        self.events = []

    def emit(self, db, user_id, title, content, **kwargs):
        self.events.append({"user_id": user_id, "title": title, "content": content, **kwargs})


class FailingNotifier:
    def emit(self, db, user_id, title, content, **kwargs):
        raise RuntimeError("notification sink down")


TEST_CATALOG = IngredientCatalog([
    IngredientInfo("Ingredient X", 400, "base"),
    IngredientInfo("Heavy Base", 4950, "base"),
    IngredientInfo("Big Base", 3000, "base"),
    IngredientInfo("Small Herb", 50, "individual"),
    IngredientInfo("Mid Herb", 500, "individual"),
    IngredientInfo("Add 700", 700, "individual"),
    IngredientInfo("Add 550", 550, "individual"),
])


def make_user(db, name: str = "Jordan Smith") -> User:
    user = User(name=name, email=f"user-{uuid.uuid4()}@example.com")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def other_user(db):
    return make_user(db, name="Riley Other")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def formula_engine(db, notifier):
    return FormulaEngine(db, catalog=TEST_CATALOG, notifier=notifier)


@pytest.fixture
def auth_headers(client):
    resp = client.post(
        "/users",
        json={"name": "Casey Jones", "email": f"user-{uuid.uuid4()}@example.com"}
    )
    assert resp.status_code == 201, resp.text
    return {"X-User-Id": resp.json()["id"]}
