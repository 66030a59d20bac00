import pytest

from signaldesk.persistence.db import DB
from signaldesk.persistence.positions_store import PositionsStore
from signaldesk.persistence.trend_store import TrendStore
from signaldesk.services.trend import TrendService
from signaldesk.tests.fakes import FakeClock


@pytest.fixture(autouse=True)
def _test_env(monkeypatch, tmp_path):
    """
    Ensure tests never touch a real database, bots file or exchange account.
    """
    monkeypatch.setenv("DB_PATH", str(tmp_path / "signaldesk.db"))
    monkeypatch.setenv("AUDIT_JSONL_PATH", str(tmp_path / "audit.jsonl"))
    monkeypatch.setenv("BOTS_CONFIG_PATH", str(tmp_path / "bots.json"))
    monkeypatch.setenv("BITGET_API_KEY", "")
    monkeypatch.setenv("BITGET_API_SECRET", "")
    monkeypatch.setenv("BITGET_PASSPHRASE", "")
    monkeypatch.setenv("TELEGRAM_VERIFY_ON_START", "false")


@pytest.fixture
def db(tmp_path):
    return DB(str(tmp_path / "signaldesk.db"))


@pytest.fixture
def store(db):
    return PositionsStore(db)


@pytest.fixture
def ms_clock():
    # trend ledger time, milliseconds
    return FakeClock(1_700_000_000_000)


@pytest.fixture
def trend(db, ms_clock):
    return TrendService(TrendStore(db), clock=ms_clock)


class _FakeResponse:
    status_code = 200
    text = '{"ok": true}'

    def json(self):
        return {"ok": True, "result": {"username": "test_bot"}}

    def raise_for_status(self):
        return None


@pytest.fixture
def telegram_posts(monkeypatch):
    """Captures Telegram sendMessage calls instead of hitting the network."""
    sent = []

    def fake_post(url, json=None, timeout=None):
        sent.append({"url": url, "json": json})
        return _FakeResponse()

    monkeypatch.setattr("signaldesk.services.telegram.requests.post", fake_post)
    return sent
