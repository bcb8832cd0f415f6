from fastapi.testclient import TestClient
from switchboard.config import Settings
from switchboard.server.app import create_app

def test_healthz_reports_channels():
    app = create_app(Settings(console_enabled=True, json_logs=False, channels={}))
    with TestClient(app) as client:
        res = client.get("/healthz")
    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert body["channels"] == {"cli": "ready"}

def test_metrics_exposed():
    app = create_app(Settings(console_enabled=True, json_logs=False, channels={}))
    with TestClient(app) as client:
        res = client.get("/metrics")
    assert res.status_code == 200
    assert "swb_inbound_messages_total" in res.text
