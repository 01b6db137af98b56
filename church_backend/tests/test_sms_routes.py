from decimal import Decimal

import pytest

from conftest import make_member
from src.api.models import AuditEntry, SmsLog, SmsRecipient


@pytest.fixture
def flock(db, church):
    return [
        make_member(db, church.id, "Alem", "4790000001"),
        make_member(db, church.id, "Bereket", "4790000002", sms_consent=False),
        make_member(db, church.id, "Chaltu", "4790000003"),
    ]


def test_send_reports_counts_and_audits(client, db, auth_headers, flock):
    resp = client.post(
        "/api/sms/send",
        json={"member_ids": [m.id for m in flock], "message": "Prayer meeting tonight"},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["sent"] == 2
    assert body["failed"] == 0
    assert body["cost"] == "0.37 NOK"
    assert body["currency"] == "NOK"
    assert body["sender"] == "TESTCHURCH"
    assert body["message"] == 'SMS sent from "TESTCHURCH" to 2 members'

    entry = db.query(AuditEntry).filter(AuditEntry.action == "SEND_SMS").one()
    assert entry.table_name == "sms_logs"
    assert entry.record_id == body["sms_log_id"]
    assert entry.user_id == "kassa"
    assert entry.new_values["recipient_count"] == 2


def test_soft_deleted_member_is_skipped_but_history_stays(client, db, auth_headers, provider, flock):
    ids = [flock[0].id, flock[2].id]
    first = client.post("/api/sms/send", json={"member_ids": ids, "message": "One"}, headers=auth_headers)
    assert first.json()["sent"] == 2

    assert client.delete(f"/api/members/{flock[2].id}", headers=auth_headers).status_code == 200
    second = client.post("/api/sms/send", json={"member_ids": ids, "message": "Two"}, headers=auth_headers)
    assert second.json()["sent"] == 1
    assert [t.id for t in provider.calls[-1][0]] == [flock[0].id]

    history = db.query(SmsRecipient).filter(SmsRecipient.member_id == flock[2].id).all()
    assert len(history) == 1
    assert history[0].sms_log_id == first.json()["sms_log_id"]


def test_send_validation_errors(client, auth_headers, flock):
    no_ids = client.post("/api/sms/send", json={"member_ids": [], "message": "Hi"}, headers=auth_headers)
    assert no_ids.status_code == 400
    assert no_ids.json() == {"error": "No recipients selected"}

    no_text = client.post("/api/sms/send", json={"member_ids": [flock[0].id]}, headers=auth_headers)
    assert no_text.status_code == 400
    assert no_text.json() == {"error": "Message is required"}

    refused = client.post("/api/sms/send", json={"member_ids": [flock[1].id], "message": "Hi"}, headers=auth_headers)
    assert refused.status_code == 400
    assert refused.json() == {"error": "No eligible recipients found"}


def test_send_without_configured_provider(client, db, auth_headers, provider, flock):
    provider.configured = False
    resp = client.post("/api/sms/send", json={"member_ids": [flock[0].id], "message": "Hi"}, headers=auth_headers)
    assert resp.status_code == 503
    assert resp.json() == {"error": "SMS service not configured"}
    assert db.query(SmsLog).count() == 0
    assert db.query(AuditEntry).count() == 0


def test_all_failed_broadcast_is_recorded_and_reported_as_502(client, db, auth_headers, provider, flock):
    provider.fail_ids = {flock[0].id, flock[2].id}
    resp = client.post(
        "/api/sms/send", json={"member_ids": [flock[0].id, flock[2].id], "message": "Hi"}, headers=auth_headers,
    )
    assert resp.status_code == 502
    assert resp.json()["error"] == "SMS sending failed"
    assert resp.json()["failed"] == 2

    assert db.query(SmsLog).count() == 1
    assert [r.status for r in db.query(SmsRecipient).all()] == ["failed", "failed"]
    assert db.query(AuditEntry).filter(AuditEntry.action == "SEND_SMS").count() == 1


def test_send_requires_auth(client, flock):
    resp = client.post("/api/sms/send", json={"member_ids": [flock[0].id], "message": "Hi"})
    assert resp.status_code == 401


def test_logs_embed_recipients(client, auth_headers, provider, flock):
    provider.fail_ids = {flock[2].id}
    client.post(
        "/api/sms/send", json={"member_ids": [flock[0].id, flock[2].id], "message": "Choir practice"},
        headers=auth_headers,
    )
    logs = client.get("/api/sms/logs", headers=auth_headers).json()
    assert len(logs) == 1
    assert logs[0]["message"] == "Choir practice"
    assert logs[0]["recipient_count"] == 2
    recipients = {r["full_name"]: r for r in logs[0]["recipients"]}
    assert recipients["Alem"]["status"] == "sent"
    assert recipients["Chaltu"]["status"] == "failed"
    assert recipients["Chaltu"]["error_message"] == "Rejected by gateway"


def test_logs_and_stats_are_tenant_scoped(client, db, auth_headers, super_headers, flock, other_church):
    outsider = make_member(db, other_church.id, "Outsider", "4799999999")
    client.post("/api/sms/send", json={"member_ids": [flock[0].id], "message": "Ours"}, headers=auth_headers)
    client.post("/api/sms/send", json={"member_ids": [outsider.id], "message": "Theirs"}, headers=super_headers)

    ours = client.get("/api/sms/logs", headers=auth_headers).json()
    assert [log["message"] for log in ours] == ["Ours"]
    everything = client.get("/api/sms/logs", headers=super_headers).json()
    assert {log["message"] for log in everything} == {"Ours", "Theirs"}

    stats = client.get("/api/sms/stats", headers=auth_headers).json()
    assert stats["total_sent"] == 1
    assert stats["this_month"] == 1
    assert Decimal(str(stats["total_cost"])) == Decimal("0.18")


def test_stats_when_nothing_sent(client, auth_headers):
    stats = client.get("/api/sms/stats", headers=auth_headers).json()
    assert stats["total_sent"] == 0
    assert stats["this_month"] == 0
    assert Decimal(str(stats["total_cost"])) == Decimal("0")


def test_health_reports_provider_state(client, provider):
    body = client.get("/health").json()
    assert body["status"] == "OK"
    assert body["sms_provider"] == "bird"
    assert body["sms_enabled"] is True
    provider.configured = False
    assert client.get("/health").json()["sms_enabled"] is False
