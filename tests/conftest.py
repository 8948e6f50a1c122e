"""Shared fixtures: a file-backed SQLite ledger, fake Gmail source, fake credentials."""

import base64
import os
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone

# Must be set before inbox_ledger.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from inbox_ledger.core.database import Base
from inbox_ledger.core.exceptions import NotConnected, SourceUnavailable
from inbox_ledger.models.processed_message import ProcessedMessage  # noqa: F401
from inbox_ledger.schemas.email_message import MessageDetail, MessageRef
from inbox_ledger.services.ledger_service import ProcessedMessageStore

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def plain_payload(text: str) -> dict:
    return {"mimeType": "text/plain", "headers": [], "body": {"size": len(text), "data": b64url(text)}}


def html_payload(html: str) -> dict:
    return {"mimeType": "text/html", "headers": [], "body": {"size": len(html), "data": b64url(html)}}


def multipart_payload(*parts: dict, mime_type: str = "multipart/alternative") -> dict:
    return {"mimeType": mime_type, "headers": [], "body": {"size": 0}, "parts": list(parts)}


def make_detail(message_id: str, text: str, minutes: int = 0) -> MessageDetail:
    return MessageDetail(
        id=message_id,
        payload=plain_payload(text),
        internal_timestamp=BASE_TIME + timedelta(minutes=minutes),
        snippet=text[:40],
    )


class FakeSourceClient:
    """In-memory mailbox serving fixed-size pages and counting calls."""

    def __init__(self, details, page_size: int = 5, failing=()):
        self.details = list(details)
        self.by_id = {d.id: d for d in self.details}
        self.page_size = page_size
        self.failing = set(failing)
        self.search_calls = 0
        self.fetch_calls = Counter()
        self.search_error = None
        self.on_fetch = None
        self._lock = threading.Lock()

    def search(self, query, page_token=None, max_results=None):
        self.search_calls += 1
        if self.search_error is not None:
            raise self.search_error
        start = int(page_token or 0)
        end = start + self.page_size
        page = [MessageRef(id=d.id) for d in self.details[start:end]]
        return page, (str(end) if end < len(self.details) else None)

    def fetch_detail(self, message_id):
        with self._lock:
            self.fetch_calls[message_id] += 1
        if self.on_fetch is not None:
            self.on_fetch(message_id)
        if message_id in self.failing:
            raise SourceUnavailable(f"fetch {message_id} failed after 3 attempts", status=503)
        return self.by_id[message_id]


class FakeCredentialProvider:
    def __init__(self, connected: bool = True):
        self.connected = connected
        self.calls = []

    def get_valid_credential(self, principal_id):
        self.calls.append(principal_id)
        if not self.connected:
            raise NotConnected(principal_id, "token file not found")
        return object()


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def store(session_factory):
    return ProcessedMessageStore(session_factory)


@pytest.fixture
def credentials():
    return FakeCredentialProvider()


@pytest.fixture
def mailbox():
    """Five messages: three parseable, two without an amount."""
    return [
        make_detail("m1", "CDN$ 100.00 has been added to your Steam Wallet", minutes=4),
        make_detail("m2", "Thanks for your purchase, no receipt attached", minutes=3),
        make_detail("m3", "USD $50.00 has been added", minutes=2),
        make_detail("m4", "$1,000.00 has been added", minutes=1),
        make_detail("m5", "Welcome to the newsletter", minutes=0),
    ]
