# tests/test_api_gate.py
"""End-to-end tests through the HTTP API (TestClient, in-memory SQLite)."""

from datetime import timedelta

from hostel_gate.utils.clock import utcnow

STUDENT = {
    "student_ref": "STU-001",
    "student_name": "Ravi Kumar",
    "roll_number": "21CS001",
    "hostel_block": "D-Block",
    "floor": "2",
    "room_number": "D-204",
}
REQUEST = {"request_type": "outing", "category": "normal", "purpose": "Shopping"}


def issue(client, request_id="REQ-1", direction="OUTGOING", opens_in=timedelta(minutes=-1),
          lasts=timedelta(hours=4)):
    activates_at = utcnow() + opens_in
    r = client.post("/api/v1/credentials", json={
        "request_id": request_id,
        "direction": direction,
        "activates_at": activates_at.isoformat(),
        "expires_at": (activates_at + lasts).isoformat(),
        "student": STUDENT,
        "request": REQUEST,
    })
    assert r.status_code == 201, r.text
    return r.json()


class TestCredentialsApi:
    def test_issue_returns_payload(self, client):
        body = issue(client)
        assert body["state"] == "ACTIVE"
        assert body["payload"]
        assert body["direction"] == "OUTGOING"

    def test_duplicate_issue_conflicts(self, client):
        issue(client)
        r = client.post("/api/v1/credentials", json={
            "request_id": "REQ-1",
            "direction": "OUTGOING",
            "activates_at": utcnow().isoformat(),
            "expires_at": (utcnow() + timedelta(hours=1)).isoformat(),
            "student": STUDENT,
        })
        assert r.status_code == 409
        assert r.json()["code"] == "conflict"
        assert r.json()["security_alert"] is False

    def test_approved_request_issues_both_legs(self, client):
        r = client.post("/api/v1/credentials/approved-request", json={
            "request_id": "REQ-7",
            "returns_at": (utcnow() + timedelta(hours=8)).isoformat(),
            "student": STUDENT,
            "request": REQUEST,
        })
        assert r.status_code == 201, r.text
        legs = r.json()
        assert [(c["direction"], c["state"]) for c in legs] == [
            ("OUTGOING", "ACTIVE"), ("INCOMING", "PENDING_ACTIVATION"),
        ]

    def test_request_status_after_scan(self, client):
        body = issue(client)
        r = client.get("/api/v1/credentials/request/REQ-1")
        assert r.status_code == 200
        assert r.json()["fulfilled"] is False

        client.post("/api/v1/gate/scan", json={"qr_data": body["payload"]})
        r = client.get("/api/v1/credentials/request/REQ-1")
        creds = r.json()["credentials"]
        assert creds[0]["state"] == "CONSUMED"
        assert creds[0]["consumed_event_id"] is not None
        assert creds[0]["payload"] is None

    def test_unknown_request_404(self, client):
        assert client.get("/api/v1/credentials/request/NOPE").status_code == 404

    def test_qr_png(self, client):
        body = issue(client)
        r = client.get(f"/api/v1/credentials/{body['token_id']}/qr.png")
        assert r.status_code == 200
        assert r.headers["content-type"] == "image/png"
        assert r.content.startswith(b"\x89PNG")

    def test_qr_png_unknown_token(self, client):
        assert client.get("/api/v1/credentials/nope/qr.png").status_code == 404


class TestGateApi:
    def test_validate_then_scan_then_replay(self, client):
        payload = issue(client)["payload"]

        r = client.post("/api/v1/gate/qr/validate", json={"qr_data": payload})
        assert r.status_code == 200
        assert r.json()["scan_type"] == "OUT"
        assert r.json()["student"]["hostel_block"] == "D-Block"

        r = client.post("/api/v1/gate/scan", json={"qr_data": payload, "location": "Main Gate"})
        assert r.status_code == 201
        assert r.json()["type"] == "OUT"
        assert r.json()["is_manual"] is False

        r = client.post("/api/v1/gate/scan", json={"qr_data": payload, "location": "Main Gate"})
        assert r.status_code == 409
        assert r.json()["code"] == "already_used"
        assert r.json()["security_alert"] is True

        alerts = client.get("/api/v1/alerts", params={"alert_type": "credential_reuse"}).json()
        assert len(alerts) == 1
        assert alerts[0]["student_ref"] == "STU-001"

    def test_not_yet_active(self, client):
        payload = issue(client, direction="INCOMING", opens_in=timedelta(hours=6))["payload"]
        r = client.post("/api/v1/gate/qr/validate", json={"qr_data": payload})
        assert r.status_code == 425
        assert r.json()["code"] == "not_yet_active"

    def test_expired(self, client):
        payload = issue(client, opens_in=timedelta(hours=-3), lasts=timedelta(hours=1))["payload"]
        r = client.post("/api/v1/gate/scan", json={"qr_data": payload})
        assert r.status_code == 410
        assert r.json()["code"] == "expired"

    def test_garbage_qr(self, client):
        r = client.post("/api/v1/gate/qr/validate", json={"qr_data": "hello"})
        assert r.status_code == 404
        assert r.json()["code"] == "not_found"
        assert r.json()["security_alert"] is True

    def test_manual_checkin_requires_comment_when_suspicious(self, client):
        r = client.post("/api/v1/gate/manual-checkin", json={"student_ref": "STU-001", "is_suspicious": True})
        assert r.status_code == 422
        assert r.json()["code"] == "validation_error"

    def test_manual_checkin(self, client):
        r = client.post("/api/v1/gate/manual-checkin", json={
            "student_ref": "STU-001", "is_suspicious": True, "suspicious_comment": "No ID card",
        })
        assert r.status_code == 201
        assert r.json()["type"] == "IN"
        assert r.json()["is_manual"] is True

        alerts = client.get("/api/v1/alerts", params={"alert_type": "suspicious_entry"}).json()
        assert len(alerts) == 1
        r = client.put(f"/api/v1/alerts/{alerts[0]['id']}/resolve")
        assert r.status_code == 200
        assert r.json()["is_resolved"]

    def test_movements_and_dashboard(self, client):
        payload = issue(client)["payload"]
        client.post("/api/v1/gate/scan", json={"qr_data": payload})

        start = (utcnow() - timedelta(hours=1)).isoformat()
        end = (utcnow() + timedelta(hours=1)).isoformat()
        r = client.get("/api/v1/gate/movements", params={"start": start, "end": end})
        assert r.status_code == 200
        segments = {s["name"]: s for s in r.json()["segments"]}
        assert segments["Boys"]["stats"]["total_out"] == 1
        assert segments["Boys"]["stats"]["currently_out"] == 1
        assert segments["Boys"]["sessions"][0]["kind"] == "open"

        out = client.get("/api/v1/gate/currently-out").json()
        assert [row["student_ref"] for row in out] == ["STU-001"]

        dash = client.get("/api/v1/gate/dashboard").json()
        assert dash["students_out"] == 1
        assert dash["currently_out"] == 1
        assert [(e["student_ref"], e["type"]) for e in dash["activity"]] == [("STU-001", "OUT")]

    def test_search_students(self, client):
        issue(client)
        r = client.get("/api/v1/gate/search-students", params={"q": "21cs"})
        assert r.status_code == 200
        assert [(s["student_ref"], s["student_name"], s["hostel_block"]) for s in r.json()] == [
            ("STU-001", "Ravi Kumar", "D-Block"),
        ]
        assert client.get("/api/v1/gate/search-students", params={"q": ""}).json() == []

    def test_health(self, client):
        r = client.get("/api/v1/health")
        assert r.status_code == 200
        assert r.json()["database"] == "ok"
