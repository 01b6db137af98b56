import pytest

from src.api.auth import verify_password
from src.api.bootstrap import main, upsert_admin
from src.api.models import Admin


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    # keep the CLI from replacing pytest's log handlers
    monkeypatch.setattr("src.api.bootstrap.configure_logging", lambda *args, **kwargs: None)


def test_upsert_admin_creates_then_resets(db, church):
    created = upsert_admin(db, "setup", "first-password", church_id=church.id)
    assert created.church_id == church.id
    assert verify_password("first-password", created.password_hash)

    updated = upsert_admin(db, "setup", "second-password", super_admin=True)
    assert updated.id == created.id
    assert updated.is_super_admin is True
    assert verify_password("second-password", updated.password_hash)
    assert db.query(Admin).filter(Admin.username == "setup").count() == 1


def test_cli_creates_super_admin(tmp_path, settings):
    file_settings = settings.model_copy(update={"database_url": f"sqlite:///{tmp_path / 'church.db'}"})
    assert main(["create-tables"], settings=file_settings) == 0
    assert main(["create-admin", "root", "--password", "super-secret", "--super-admin"], settings=file_settings) == 0


def test_cli_refuses_short_password_and_unknown_church(tmp_path, settings):
    file_settings = settings.model_copy(update={"database_url": f"sqlite:///{tmp_path / 'church.db'}"})
    assert main(["create-admin", "root", "--password", "short"], settings=file_settings) == 1
    assert main(["create-admin", "root", "--password", "long-enough", "--church-id", "42"], settings=file_settings) == 1
