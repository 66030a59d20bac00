import json

import pytest
from fastapi.testclient import TestClient

from signaldesk import main
from signaldesk.core.config import Settings


@pytest.fixture
def client(tmp_path, monkeypatch, telegram_posts):
    (tmp_path / "bots.json").write_text(
        json.dumps(
            {
                "bots": [
                    {
                        "name": "Listener",
                        "telegram_channel": "bot1",
                        "timeframe_trend": ["1h"],
                        "smartvol": {"baseUsd": 100, "addFraction": 0.5},
                    }
                ],
                "telegram": {"bot1": {"token": "1:abc", "chatId": "-1001", "name": "Main"}},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setattr(main, "services", main.build_services(Settings()))
    # no context manager: startup hooks (background tasks) stay off
    return TestClient(main.app)


def test_unknown_alert_is_a_bad_request(client):
    r = client.post("/alerts", json={"alertName": "FooBar", "symbol": "ETHUSDT", "price": 1})
    assert r.status_code == 400
    assert "Unknown alert type" in r.json()["detail"]


def test_alert_opens_position(client, telegram_posts):
    r = client.post("/alerts", json={"alertName": "SmartOpen", "symbol": "ethusdt", "price": "100"})
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["processed"] == ["Listener"]
    assert body["alert_id"]

    summary = client.get("/positions/Listener/summary", params={"prices": "ETHUSDT:110"}).json()
    assert summary["openPositions"] == 1
    assert summary["totalPnl"] == "10.00"
    assert telegram_posts


def test_volume_up_endpoints(client):
    client.post("/alerts", json={"alertName": "VolumeUp", "symbol": "ETHUSDT", "price": 1, "timeframe": "1h", "volume": 7})

    one = client.get("/alerts/volume-up/ethusdt", params={"timeframe": "1H"}).json()
    assert one["ok"] is True
    assert one["data"]["volume"] == 7

    assert client.get("/alerts/volume-up/ETHUSDT").status_code == 400
    assert client.get("/alerts/volume-up/symbol/ethusdt").json()["count"] == 1
    assert client.get("/alerts/volume-up/timeframe/1h").json()["count"] == 1

    client.post("/alerts/volume-up/clear")
    assert client.get("/alerts/volume-up").json()["data"] == []


def test_close_state_lookup_reports_missing_state(client):
    r = client.get("/alerts/volume-up/close-states/ETHUSDT/Listener").json()
    assert r["ok"] is False
    assert client.get("/alerts/volume-up/close-states").json()["count"] == 0


def test_trend_endpoints(client):
    r = client.post("/trend/confirm", json={"symbol": "ETHUSDT", "timeframe": "1h", "direction": "long"})
    assert r.status_code == 200
    assert r.json()["ok"] is True

    current = client.get("/trend/current", params={"symbol": "ETHUSDT", "timeframe": "1h"}).json()
    assert current["trend"] == "long"

    agree = client.get("/trend/agree", params={"symbol": "ETHUSDT", "timeframes": "1h,15m"}).json()
    assert agree["trend"] == "neutral"
    assert agree["timeframes"] == ["1h", "15m"]

    bad = client.post("/trend/confirm", json={"symbol": "ETHUSDT", "timeframe": "1h", "direction": "neutral"})
    assert bad.status_code == 400


def test_telegram_endpoints(client, telegram_posts):
    assert client.post("/alerts/send-telegram/nope", json={"message": "hi"}).status_code == 400
    assert client.post("/alerts/send-telegram/bot1", json={"message": " "}).status_code == 400

    r = client.post("/alerts/send-telegram/bot1", json={"message": "hello"}).json()
    assert r["ok"] is True
    assert telegram_posts[-1]["json"]["text"] == "hello"
    assert telegram_posts[-1]["json"]["chat_id"] == "-1001"


def test_scheduler_endpoints(client, telegram_posts):
    missing = client.post("/scheduler/test-trend-report/Ghost").json()
    assert missing["ok"] is False
    assert missing["availableBots"] == ["Listener"]

    sent = client.post("/scheduler/test-trend-report/Listener").json()
    assert sent["ok"] is True
    assert "trend report" in telegram_posts[-1]["json"]["text"]

    results = client.post("/scheduler/send-all-trend-reports").json()["results"]
    assert results == [{"bot": "Listener", "status": "success"}]


def test_bots_and_health(client):
    bots = client.get("/bots").json()
    assert bots["count"] == 1
    assert bots["bots"][0]["strategy"] == "default"

    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["bots"] == 1


def test_uninitialised_services_return_503(monkeypatch):
    monkeypatch.setattr(main, "services", None)
    r = TestClient(main.app).get("/bots")
    assert r.status_code == 503
