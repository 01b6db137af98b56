from conftest import bearer, make_admin, make_member
from src.api.models import AuditEntry, Member


def test_create_member_assigns_caller_church_and_audits(client, db, auth_headers, church, other_church):
    resp = client.post(
        "/api/members",
        json={"full_name": "Abeba Tesfaye", "phone_number": "+47 912 34 567", "church_id": other_church.id},
        headers=auth_headers,
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["church_id"] == church.id
    assert body["sms_consent"] is True
    assert body["created_by"] == "kassa"

    entry = db.query(AuditEntry).filter(AuditEntry.table_name == "members").one()
    assert entry.action == "CREATE"
    assert entry.record_id == body["id"]
    assert entry.new_values["full_name"] == "Abeba Tesfaye"


def test_invalid_personnummer_is_rejected_without_insert(client, db, auth_headers):
    resp = client.post(
        "/api/members",
        json={"full_name": "Dawit", "phone_number": "4790000000", "personnummer": "12345"},
        headers=auth_headers,
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "Request validation failed"
    assert db.query(Member).count() == 0


def test_duplicate_phone_in_same_church(client, db, auth_headers, church):
    make_member(db, church.id, "First", "4790000001")
    resp = client.post(
        "/api/members", json={"full_name": "Second", "phone_number": "4790000001"}, headers=auth_headers,
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Member with this phone number already exists"}


def test_list_is_scoped_to_tenant(client, db, auth_headers, church, other_church):
    make_member(db, church.id, "Ours", "4790000002")
    make_member(db, other_church.id, "Theirs", "4790000003")
    resp = client.get("/api/members", headers=auth_headers)
    assert [m["full_name"] for m in resp.json()] == ["Ours"]


def test_search_matches_name_and_phone(client, db, auth_headers, church):
    make_member(db, church.id, "Selam Haile", "4791111111")
    make_member(db, church.id, "Yonas Bekele", "4792222222")
    by_name = client.get("/api/members", params={"search": "selam"}, headers=auth_headers).json()
    by_phone = client.get("/api/members", params={"search": "2222"}, headers=auth_headers).json()
    assert [m["full_name"] for m in by_name] == ["Selam Haile"]
    assert [m["full_name"] for m in by_phone] == ["Yonas Bekele"]


def test_member_of_other_church_is_not_found(client, db, auth_headers, other_church):
    theirs = make_member(db, other_church.id, "Theirs", "4790000004")
    assert client.get(f"/api/members/{theirs.id}", headers=auth_headers).status_code == 404
    resp = client.put(f"/api/members/{theirs.id}", json={"full_name": "Mine now"}, headers=auth_headers)
    assert resp.status_code == 404


def test_update_member_records_old_and_new_values(client, db, auth_headers, church):
    member = make_member(db, church.id, "Old Name", "4790000005")
    resp = client.put(
        f"/api/members/{member.id}", json={"full_name": "New Name", "sms_consent": False}, headers=auth_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["full_name"] == "New Name"
    assert resp.json()["sms_consent"] is False

    entry = db.query(AuditEntry).filter(AuditEntry.action == "UPDATE").one()
    assert entry.old_values["full_name"] == "Old Name"
    assert entry.new_values["full_name"] == "New Name"


def test_delete_is_soft(client, db, auth_headers, church):
    member = make_member(db, church.id, "Leaving", "4790000006")
    resp = client.delete(f"/api/members/{member.id}", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["message"] == "Member deleted successfully"

    db.expire_all()
    assert db.get(Member, member.id).is_active is False
    active = client.get("/api/members", params={"active": True}, headers=auth_headers).json()
    assert active == []


def test_super_admin_can_create_in_any_church(client, super_headers, other_church):
    resp = client.post(
        "/api/members",
        json={"full_name": "Placed", "phone_number": "4790000007", "church_id": other_church.id},
        headers=super_headers,
    )
    assert resp.status_code == 201
    assert resp.json()["church_id"] == other_church.id


def test_null_for_required_fields_is_rejected(client, db, auth_headers, church):
    member = make_member(db, church.id, "Kept", "4790000008")
    for field in ("full_name", "phone_number", "sms_consent", "is_active", "baptized"):
        resp = client.put(f"/api/members/{member.id}", json={field: None}, headers=auth_headers)
        assert resp.status_code == 400, field
        assert resp.json()["error"] == "Request validation failed"

    db.expire_all()
    row = db.get(Member, member.id)
    assert row.full_name == "Kept"
    assert row.phone_number == "4790000008"
    assert row.sms_consent is True


def test_clearing_optional_fields_with_null_is_allowed(client, db, auth_headers, church):
    member = make_member(db, church.id, "Has Email", "4790000010", email="a@example.com")
    resp = client.put(f"/api/members/{member.id}", json={"email": None}, headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["email"] is None


def test_phone_collision_caught_by_constraint_returns_400(client, db, auth_headers, church, monkeypatch):
    import src.api.members as members

    make_member(db, church.id, "First", "4790000011")
    monkeypatch.setattr(members, "_phone_taken", lambda *args, **kwargs: False)
    resp = client.post(
        "/api/members", json={"full_name": "Second", "phone_number": "4790000011"}, headers=auth_headers,
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Member with this phone number already exists"}
    assert db.query(Member).filter(Member.phone_number == "4790000011").count() == 1

    second = make_member(db, church.id, "Second", "4790000012")
    resp = client.put(f"/api/members/{second.id}", json={"phone_number": "4790000011"}, headers=auth_headers)
    assert resp.status_code == 400


def test_super_admin_with_home_church_sees_every_church(client, db, settings, church, other_church):
    rooted = make_admin(db, "bishop", church_id=church.id, is_super_admin=True)
    headers = bearer(rooted, settings)
    make_member(db, church.id, "Home", "4790000013")
    theirs = make_member(db, other_church.id, "Away", "4790000014")

    listed = client.get("/api/members", headers=headers).json()
    assert {m["full_name"] for m in listed} == {"Home", "Away"}
    assert client.get(f"/api/members/{theirs.id}", headers=headers).status_code == 200

    created = client.post("/api/members", json={"full_name": "New", "phone_number": "4790000015"}, headers=headers)
    assert created.status_code == 201
    assert created.json()["church_id"] == church.id
