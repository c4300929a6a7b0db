"""
Shared fixtures.

- store: a fresh in-memory DuckDB key-value store per test
- failing_store: a store whose every operation fails like an unreachable backend
- today: the fixed date used wherever extraction falls back to "now"
"""
from datetime import date

import pytest

from core.memory import KeyValueStore, StoreError


class FailingStore:
    def get(self, path):
        raise StoreError("store unreachable")

    def set(self, path, value):
        raise StoreError("store unreachable")

    def remove(self, path):
        raise StoreError("store unreachable")

    def watch(self, path, callback):
        raise StoreError("store unreachable")


@pytest.fixture
def store():
    s = KeyValueStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def today():
    return date(2024, 5, 17)
