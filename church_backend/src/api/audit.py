"""
Audit recorder: append-only trail of mutating admin actions.

Recording is best-effort. It runs after the primary mutation has committed, in its own
session, and never raises to the caller; failures go to the application log instead.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import sessionmaker

from src.api.models import AuditEntry

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def snapshot(row) -> Dict[str, Any]:
    """Column values of an ORM row as a JSON-safe dict (for old/new audit values)."""
    mapper = sa_inspect(row).mapper
    values = {attr.key: getattr(row, attr.key) for attr in mapper.column_attrs}
    values.pop("password_hash", None)
    return jsonable_encoder(values)


# PUBLIC_INTERFACE
class AuditRecorder:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record(
        self,
        actor: Optional[str],
        action: str,
        table_name: str,
        record_id: Optional[int],
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """Append one audit entry. Never raises."""
        db = self.session_factory()
        try:
            db.add(AuditEntry(
                user_id=actor,
                action=action,
                table_name=table_name,
                record_id=record_id,
                old_values=jsonable_encoder(old_values) if old_values is not None else None,
                new_values=jsonable_encoder(new_values) if new_values is not None else None,
                ip_address=ip_address,
            ))
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Audit logging error: %s %s #%s by %s", action, table_name, record_id, actor)
        finally:
            db.close()


# PUBLIC_INTERFACE
def get_audit_recorder(request: Request) -> AuditRecorder:
    return request.app.state.context.audit
