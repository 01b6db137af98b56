import pytest
from fastapi.testclient import TestClient

from src.api.auth import create_access_token, hash_password
from src.api.config import Settings
from src.api.context import AppContext
from src.api.main import create_app
from src.api.models import Admin, Base, Church, Member
from src.api.sms_providers import DeliveryOutcome, SmsProvider

PASSWORD = "correct-horse"
PASSWORD_HASH = hash_password(PASSWORD)


class StubProvider(SmsProvider):
    """Records every dispatch; members listed in fail_ids are rejected."""
    name = "stub"

    def __init__(self, sender="TESTCHURCH", configured=True, fail_ids=(), error=None):
        super().__init__(sender)
        self.configured = configured
        self.fail_ids = set(fail_ids)
        self.error = error
        self.calls = []

    def is_configured(self):
        return self.configured

    def send(self, recipients, body):
        self.calls.append((list(recipients), body))
        if self.error is not None:
            raise self.error
        return [
            DeliveryOutcome.failed(r.id, "Rejected by gateway") if r.id in self.fail_ids
            else DeliveryOutcome.delivered(r.id, "batch-1")
            for r in recipients
        ]


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        jwt_secret_key="test-secret",
        sms_provider="bird",
        frontend_urls=["http://localhost:5178"],
    )


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def context(settings, provider):
    ctx = AppContext.build(settings, provider=provider)
    Base.metadata.create_all(bind=ctx.engine)
    yield ctx
    ctx.close()


@pytest.fixture
def client(context):
    return TestClient(create_app(context=context))


@pytest.fixture
def db(context):
    session = context.session_factory()
    yield session
    session.close()


@pytest.fixture
def church(db):
    row = Church(name="Debre Iyesus", slug="debre-iyesus")
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def other_church(db):
    row = Church(name="St. Mary", slug="st-mary")
    db.add(row)
    db.commit()
    return row


def make_admin(db, username, church_id=None, is_super_admin=False, is_active=True):
    admin = Admin(
        username=username,
        password_hash=PASSWORD_HASH,
        full_name=username.title(),
        church_id=church_id,
        is_super_admin=is_super_admin,
        is_active=is_active,
    )
    db.add(admin)
    db.commit()
    return admin


def make_member(db, church_id, full_name, phone_number, sms_consent=True, is_active=True, **extra):
    member = Member(
        church_id=church_id,
        full_name=full_name,
        phone_number=phone_number,
        sms_consent=sms_consent,
        is_active=is_active,
        **extra,
    )
    db.add(member)
    db.commit()
    return member


@pytest.fixture
def admin(db, church):
    return make_admin(db, "kassa", church_id=church.id)


@pytest.fixture
def super_admin(db):
    return make_admin(db, "root", is_super_admin=True)


def bearer(admin, settings):
    return {"Authorization": f"Bearer {create_access_token(admin, settings)}"}


@pytest.fixture
def auth_headers(admin, settings):
    return bearer(admin, settings)


@pytest.fixture
def super_headers(super_admin, settings):
    return bearer(super_admin, settings)
