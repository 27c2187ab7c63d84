import asyncio

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from config import Settings
from database import RecordStore, RecordStoreError


@pytest.fixture
def settings(monkeypatch):
    settings = Settings(database_url="mongodb://db.example:27017", database_name="resort_booking_test")
    monkeypatch.setattr(main, "load_settings", lambda: settings)
    main.app.state.store = None
    yield settings
    main.app.state.store = None


def test_store_opened_once_and_closed_on_shutdown(settings, monkeypatch):
    store = RecordStore(mongomock.MongoClient(), settings.database_name)
    connects = []
    closes = []

    def connect(url, name):
        connects.append((url, name))
        return store

    monkeypatch.setattr(main.RecordStore, "connect", connect)
    monkeypatch.setattr(store, "close", lambda: closes.append(True))

    with TestClient(main.app) as client:
        assert main.app.state.store is store
        assert client.get("/health").json()["status"] == "ok"
        assert client.get("/allResorts").status_code == 200

    assert connects == [("mongodb://db.example:27017", "resort_booking_test")]
    assert closes == [True]
    assert main.app.state.store is None


def test_startup_failure_is_raised(settings, monkeypatch):
    def connect(url, name):
        raise RecordStoreError("Could not connect to MongoDB: refused")

    monkeypatch.setattr(main.RecordStore, "connect", connect)

    async def start():
        async with main.lifespan(main.app):
            pass

    with pytest.raises(RecordStoreError):
        asyncio.run(start())
    assert main.app.state.store is None
