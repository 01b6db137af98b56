import logging
from datetime import date
from decimal import Decimal

from src.api.audit import AuditRecorder, snapshot
from src.api.models import AuditEntry, Member


class BrokenSession:
    def __init__(self):
        self.rolled_back = False
        self.closed = False

    def add(self, row):
        pass

    def commit(self):
        raise RuntimeError("database is gone")

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


def test_record_appends_entry(context, db):
    context.audit.record("kassa", "UPDATE", "members", 7, {"a": 1}, {"a": 2}, "10.0.0.1")
    entry = db.query(AuditEntry).one()
    assert (entry.user_id, entry.action, entry.table_name, entry.record_id) == ("kassa", "UPDATE", "members", 7)
    assert entry.old_values == {"a": 1}
    assert entry.new_values == {"a": 2}
    assert entry.ip_address == "10.0.0.1"
    assert entry.timestamp is not None


def test_record_never_raises(caplog):
    session = BrokenSession()
    recorder = AuditRecorder(lambda: session)
    with caplog.at_level(logging.ERROR):
        recorder.record("kassa", "DELETE", "members", 1)
    assert session.rolled_back
    assert session.closed
    assert "Audit logging error" in caplog.text


def test_snapshot_is_json_safe_and_skips_password_hash(db, church, admin):
    member = Member(
        church_id=church.id, full_name="Alem", phone_number="4790000001",
        member_since=date(2020, 5, 17),
    )
    db.add(member)
    db.commit()
    values = snapshot(member)
    assert values["member_since"] == "2020-05-17"
    assert values["full_name"] == "Alem"
    assert "password_hash" not in snapshot(admin)
    assert snapshot(admin)["username"] == "kassa"


def test_json_encoding_of_decimal_values(context, db):
    context.audit.record("kassa", "UPDATE", "kontingent_payments", 1, None, {"amount": Decimal("200.00")})
    assert db.query(AuditEntry).one().new_values == {"amount": 200.0}
