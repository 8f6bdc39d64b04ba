import io
import json
import urllib.error

import pytest

from app.medrec import ledger as ledger_mod
from app.medrec.ledger import (
    LedgerClient,
    LedgerError,
    LedgerUnavailable,
    NullLedger,
    ledger_from_config,
    submit_record_created_quietly,
)


class _FakeResponse:
    def __init__(self, payload):
        self._raw = json.dumps(payload).encode("utf-8") if payload is not None else b""

    def read(self):
        return self._raw

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch):
    monkeypatch.setattr(ledger_mod.time, "sleep", lambda _s: None)


def _http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("http://ledger.test/records", code, "err", {}, io.BytesIO(b"boom"))


def test_ledger_from_config():
    assert isinstance(ledger_from_config({}), NullLedger)
    client = ledger_from_config({"LEDGER_URL": " http://ledger.test/ ", "LEDGER_TIMEOUT_SECONDS": 3})
    assert isinstance(client, LedgerClient)
    assert client.base_url == "http://ledger.test/"
    assert client.timeout_seconds == 3
    assert client.enabled is True


def test_null_ledger_is_inert():
    ledger = NullLedger()
    assert ledger.enabled is False
    assert submit_record_created_quietly(ledger, "P1", "1") == {}
    assert ledger.history("P1") == []


def test_submit_posts_record(monkeypatch):
    seen = []

    def fake_urlopen(req, timeout):
        seen.append((req.get_method(), req.full_url, json.loads(req.data.decode("utf-8")), timeout))
        return _FakeResponse({"tx": "abc"})

    monkeypatch.setattr(ledger_mod.urllib.request, "urlopen", fake_urlopen)
    client = LedgerClient(base_url="http://ledger.test/", timeout_seconds=4)
    assert client.submit_record_created("P1", "1") == {"tx": "abc"}
    method, url, body, timeout = seen[0]
    assert method == "POST"
    assert url == "http://ledger.test/records"
    assert body["record_id"] == "P1" and body["owner_id"] == "1"
    assert timeout == 4


def test_history_accepts_list_or_wrapped(monkeypatch):
    payloads = iter([[{"entry": "a"}], {"history": [{"entry": "b"}]}])
    monkeypatch.setattr(ledger_mod.urllib.request, "urlopen", lambda req, timeout: _FakeResponse(next(payloads)))
    client = LedgerClient(base_url="http://ledger.test")
    assert client.history("P 1") == [{"entry": "a"}]
    assert client.history("P1") == [{"entry": "b"}]


def test_retries_transient_errors_then_gives_up(monkeypatch):
    calls = []

    def fake_urlopen(req, timeout):
        calls.append(1)
        raise _http_error(503)

    monkeypatch.setattr(ledger_mod.urllib.request, "urlopen", fake_urlopen)
    client = LedgerClient(base_url="http://ledger.test")
    with pytest.raises(LedgerUnavailable):
        client.request_json("GET", "/records/P1/history", retries=2)
    assert len(calls) == 3


def test_client_errors_are_not_retried(monkeypatch):
    calls = []

    def fake_urlopen(req, timeout):
        calls.append(1)
        raise _http_error(400)

    monkeypatch.setattr(ledger_mod.urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(LedgerError):
        LedgerClient(base_url="http://ledger.test").submit_record_created("P1", "1")
    assert len(calls) == 1


def test_quiet_submit_swallows_ledger_failures(monkeypatch):
    def fake_urlopen(req, timeout):
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(ledger_mod.urllib.request, "urlopen", fake_urlopen)
    assert submit_record_created_quietly(LedgerClient(base_url="http://ledger.test"), "P1", "1") is None
