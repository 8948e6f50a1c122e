import json
import socket
from datetime import datetime, timezone

import httplib2
import pytest
from googleapiclient.errors import HttpError

from inbox_ledger.core.exceptions import DecodeFailure, NotConnected, SourceError, SourceUnavailable
from inbox_ledger.services.gmail_service import GmailSourceClient, is_transient


def http_error(status, reason="backendError"):
    content = json.dumps({"error": {"code": status, "message": reason, "errors": [{"reason": reason}]}})
    return HttpError(httplib2.Response({"status": status}), content.encode("utf-8"))


class FakeRequest:
    def __init__(self, outcome):
        self.outcome = outcome

    def execute(self):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakeMessages:
    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    def _next(self, kind, kwargs):
        self.calls.append((kind, kwargs))
        return FakeRequest(self.script.pop(0))

    def list(self, **kwargs):
        return self._next("list", kwargs)

    def get(self, **kwargs):
        return self._next("get", kwargs)


class FakeService:
    def __init__(self, script):
        self.messages_api = FakeMessages(script)

    def users(self):
        return self

    def messages(self):
        return self.messages_api


def make_client(script, **kwargs):
    service = FakeService(script)
    sleeps = []
    client = GmailSourceClient(
        credentials=object(),
        principal_id="alice",
        service_factory=lambda creds: service,
        max_attempts=3,
        initial_delay=2.0,
        sleep=sleeps.append,
        **kwargs,
    )
    return client, service.messages_api, sleeps


def test_search_returns_refs_and_page_token():
    client, api, _ = make_client([
        {"messages": [{"id": "a", "threadId": "t1"}, {"id": "b", "threadId": "t2"}], "nextPageToken": "p2"},
    ])

    refs, token = client.search('from:x subject:"y"', page_token="p1", max_results=2)

    assert [r.id for r in refs] == ["a", "b"]
    assert refs[0].thread_id == "t1"
    assert token == "p2"
    kind, params = api.calls[0]
    assert kind == "list"
    assert params["q"] == 'from:x subject:"y"'
    assert params["pageToken"] == "p1"
    assert params["maxResults"] == 2
    assert params["userId"] == "me"


def test_search_last_page_has_no_token():
    client, _, _ = make_client([{"resultSizeEstimate": 0}])

    assert client.search("q") == ([], None)


def test_page_size_is_capped_by_api_limit():
    client, api, _ = make_client([{}])

    client.search("q", max_results=10_000)

    assert api.calls[0][1]["maxResults"] == 500


def test_rate_limit_is_retried_with_exponential_backoff():
    client, api, sleeps = make_client([http_error(429), http_error(503), {"messages": [{"id": "a"}]}])

    refs, _ = client.search("q")

    assert [r.id for r in refs] == ["a"]
    assert sleeps == [2.0, 4.0]
    assert client.backoff.retries == 2
    assert client.backoff.last_delay == 4.0


def test_exhausted_retries_raise_source_unavailable():
    client, api, sleeps = make_client([http_error(500), http_error(500), http_error(500)])

    with pytest.raises(SourceUnavailable) as exc_info:
        client.search("q")

    assert exc_info.value.status == 500
    assert len(api.calls) == 3
    assert sleeps == [2.0, 4.0]
    assert client.backoff.exhausted == 1


def test_transport_errors_are_retried():
    client, _, sleeps = make_client([socket.timeout("timed out"), ConnectionResetError(), {"messages": []}])

    assert client.search("q") == ([], None)
    assert sleeps == [2.0, 4.0]


def test_forbidden_rate_limit_reason_is_transient():
    assert is_transient(http_error(403, "userRateLimitExceeded")) is True
    assert is_transient(http_error(403, "insufficientPermissions")) is False


def test_malformed_request_is_not_retried():
    client, api, sleeps = make_client([http_error(400, "invalidArgument")])

    with pytest.raises(SourceError) as exc_info:
        client.search("q")

    assert not isinstance(exc_info.value, SourceUnavailable)
    assert exc_info.value.status == 400
    assert len(api.calls) == 1
    assert sleeps == []


def test_auth_rejection_is_not_connected():
    client, api, sleeps = make_client([http_error(401, "authError")])

    with pytest.raises(NotConnected):
        client.fetch_detail("a")

    assert len(api.calls) == 1
    assert sleeps == []


def test_fetch_detail_maps_metadata():
    client, api, _ = make_client([{
        "id": "a",
        "snippet": "CDN$ 100.00 has been added",
        "internalDate": "1700000000999",
        "payload": {
            "mimeType": "text/plain",
            "headers": [
                {"name": "Subject", "value": "Thank you for your Steam Wallet purchase"},
                {"name": "From", "value": "Steam <noreply@steampowered.com>"},
            ],
            "body": {"data": "eA"},
        },
    }])

    detail = client.fetch_detail("a")

    assert detail.internal_timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert detail.subject == "Thank you for your Steam Wallet purchase"
    assert detail.sender == "Steam <noreply@steampowered.com>"
    assert detail.snippet == "CDN$ 100.00 has been added"
    assert api.calls[0] == ("get", {"userId": "me", "id": "a", "format": "full"})


@pytest.mark.parametrize(
    "response",
    [
        {"id": "a", "internalDate": "1700000000000"},
        {"id": "a", "internalDate": "soon", "payload": {}},
        {"id": "a", "payload": {}},
    ],
)
def test_malformed_detail_is_decode_failure(response):
    client, _, _ = make_client([response])

    with pytest.raises(DecodeFailure):
        client.fetch_detail("a")
