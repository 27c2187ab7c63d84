from datetime import datetime, timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import RecordStore
from main import app


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def store():
    store = RecordStore(mongomock.MongoClient(), "resort_booking_test")
    store.ensure_indexes()
    return store


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 6, 1, 12, 0, 0))


@pytest.fixture
def client(store):
    app.state.store = store
    yield TestClient(app)
    app.state.store = None
