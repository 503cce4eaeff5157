"""Pytest configuration and fixtures."""
from datetime import datetime, timedelta, timezone

import pytest

from bytebills.models.party import Company
from bytebills.services.auth_service import Session, User
from bytebills.services.document_service import DocumentService
from bytebills.services.settings import AppSettings
from bytebills.storage.document_store import JsonDocumentStore


class RecordingNotifier:
    def __init__(self):
        self.notifications = []

    def notify(self, notification):
        self.notifications.append(notification)

    @property
    def errors(self):
        return [n for n in self.notifications if n.level == "error"]

    @property
    def last(self):
        return self.notifications[-1]


class FakeClock:
    """Advances one minute per call so updated_at always moves."""

    def __init__(self, start=datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        current = self.now
        self.now = self.now + timedelta(minutes=1)
        return current


@pytest.fixture
def store(tmp_path):
    return JsonDocumentStore(tmp_path / "data")


@pytest.fixture
def alice():
    return Session(User(id="alice", email="alice@example.com", display_name="Alice"))


@pytest.fixture
def bob():
    return Session(User(id="bob", email="bob@example.com", display_name="Bob"))


@pytest.fixture
def company():
    return Company(
        id="acme",
        owner_id="alice",
        name="Acme Supplies",
        address="12 Market Street",
        city="Kampala",
        country="Uganda",
        phone="+256 700 000000",
        email="billing@acme.example.com",
    )


@pytest.fixture
def invoice_form():
    return {
        "client_name": "Globex Ltd",
        "client_email": "accounts@globex.example.com",
        "issue_date": "2025-01-15",
        "items": [
            {"description": "Consulting", "quantity": 2, "unit_price": 50},
            {"description": "Support", "quantity": 1, "unit_price": 25},
        ],
        "tax_rate_percent": 10,
        "currency": "USD",
    }


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return AppSettings(data_dir=tmp_path / "data", download_dir=tmp_path / "downloads", store_timeout=2.5)


@pytest.fixture
def service(store, notifier, settings, clock):
    return DocumentService(store, notifier, settings, clock=clock)
