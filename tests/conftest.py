import pytest

from mongoable.document import mongo_db

from fake_mongo import FakeDatabase


@pytest.fixture
def fake_db(monkeypatch: pytest.MonkeyPatch) -> FakeDatabase:
    """ Installs an in-memory database as the process-wide handle for the duration of a test. """
    db = FakeDatabase()
    monkeypatch.setattr(mongo_db, "_mongo_client", None)
    monkeypatch.setattr(mongo_db, "_mongo_db", db)
    return db


@pytest.fixture
def no_mongo_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("MONGO_URL", "MONGO_DB_NAME", "MONGO_TIMEOUT_MS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(mongo_db, "_mongo_client", None)
    monkeypatch.setattr(mongo_db, "_mongo_db", None)
