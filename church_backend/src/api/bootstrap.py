"""
Operator commands for a fresh installation.

    python -m src.api.bootstrap create-tables
    python -m src.api.bootstrap create-admin USERNAME --password ... [--super-admin] [--church-id N]

create-admin upserts: an existing username gets the new password and flags.
"""
import argparse
import getpass
import logging
import sys
from typing import List, Optional

from sqlalchemy.orm import Session

from src.api.auth import hash_password
from src.api.config import Settings
from src.api.database import build_engine, build_session_factory
from src.api.logging_config import configure_logging
from src.api.models import Admin, Base, Church

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def upsert_admin(db: Session, username: str, password: str, full_name: Optional[str] = None,
                 church_id: Optional[int] = None, super_admin: bool = False) -> Admin:
    if church_id is not None and db.get(Church, church_id) is None:
        raise ValueError(f"Church {church_id} does not exist")
    admin = db.query(Admin).filter(Admin.username == username).first()
    if admin is None:
        admin = Admin(username=username)
        db.add(admin)
    admin.password_hash = hash_password(password)
    admin.full_name = full_name or admin.full_name or username
    admin.church_id = church_id
    admin.is_super_admin = super_admin
    admin.is_active = True
    db.commit()
    db.refresh(admin)
    return admin


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Church Members backend bootstrap")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("create-tables", help="Create all database tables that do not exist yet")

    admin = sub.add_parser("create-admin", help="Create or reset an admin account")
    admin.add_argument("username")
    admin.add_argument("--password", help="Prompted for when omitted")
    admin.add_argument("--full-name")
    admin.add_argument("--church-id", type=int)
    admin.add_argument("--super-admin", action="store_true")
    return parser


# PUBLIC_INTERFACE
def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    args = _parser().parse_args(argv)
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.log_format)

    engine = build_engine(settings)
    try:
        Base.metadata.create_all(bind=engine)
        if args.command == "create-tables":
            logger.info("Tables created")
            return 0

        password = args.password or getpass.getpass("Password: ")
        if len(password) < 8:
            logger.error("Password must be at least 8 characters")
            return 1
        db = build_session_factory(engine)()
        try:
            admin = upsert_admin(db, args.username, password, args.full_name, args.church_id, args.super_admin)
        except ValueError as exc:
            logger.error("%s", exc)
            return 1
        finally:
            db.close()
        logger.info("Admin %s ready (id=%s, super_admin=%s)", admin.username, admin.id, admin.is_super_admin)
        return 0
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
