"""
Application context: the collaborators built once at process start and handed to request
handlers through FastAPI dependencies (see database.get_db, audit.get_audit_recorder,
broadcast.get_broadcast_service).
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from src.api.audit import AuditRecorder
from src.api.broadcast import BroadcastService, CostPolicy
from src.api.config import Settings
from src.api.database import build_engine, build_session_factory
from src.api.sms_providers import SmsProvider, build_provider


# PUBLIC_INTERFACE
@dataclass
class AppContext:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    provider: Optional[SmsProvider]
    audit: AuditRecorder
    broadcast: BroadcastService

    # PUBLIC_INTERFACE
    @classmethod
    def build(cls, settings: Settings, engine: Optional[Engine] = None,
              provider: Optional[SmsProvider] = None) -> "AppContext":
        """Wire the context from settings; tests pass their own engine and provider."""
        engine = engine or build_engine(settings)
        session_factory = build_session_factory(engine)
        provider = provider if provider is not None else build_provider(settings)
        cost_policy = CostPolicy(
            rate=settings.sms_cost_per_message,
            currency=settings.sms_cost_currency,
            basis=settings.sms_cost_basis,
        )
        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            provider=provider,
            audit=AuditRecorder(session_factory),
            broadcast=BroadcastService(provider, cost_policy, settings.sms_default_country_code),
        )

    def close(self) -> None:
        self.engine.dispose()
