"""
SMS broadcast pipeline.

Validating -> ResolvingRecipients -> Dispatching -> Recording -> Completed

- Validation happens before any database access.
- Only members with sms_consent AND is_active inside the caller's tenant are messaged.
- Dispatch goes through the configured SmsProvider; the pipeline never looks at which gateway it is.
- Recording writes one sms_logs row and one sms_recipients row per attempted recipient in a single
  transaction, whatever the dispatch outcome was.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from src.api.errors import EmptyMessage, NoEligibleRecipients, NoRecipients, ProviderUnavailable
from src.api.models import DeliveryStatusEnum, Member, SmsLog, SmsRecipient
from src.api.sms_providers import DeliveryOutcome, SmsProvider, SmsTarget
from src.api.tenancy import TenantScope

logger = logging.getLogger(__name__)

COST_BASIS_ATTEMPTED = "attempted"
COST_BASIS_SUCCESSFUL = "successful"
NO_OUTCOME_REASON = "No delivery outcome reported by provider"

_PHONE_NOISE = re.compile(r"[\s\-().]")


# PUBLIC_INTERFACE
def normalize_phone(raw: str, default_country_code: Optional[str] = None) -> str:
    """
    Digits-only international number for the gateways.
    Strips whitespace and punctuation plus a leading '+' or '00'. When a default country code is
    configured it is prepended to numbers that carried no international prefix.
    """
    number = _PHONE_NOISE.sub("", raw or "")
    if number.startswith("+"):
        return number.lstrip("+")
    if number.startswith("00"):
        return number[2:]
    if default_country_code:
        return f"{default_country_code.lstrip('+')}{number}"
    return number


# PUBLIC_INTERFACE
class CostPolicy:
    """Estimated broadcast cost: count x rate, where count is attempted or successful recipients."""

    def __init__(self, rate: Decimal, currency: str = "NOK", basis: str = COST_BASIS_ATTEMPTED):
        if basis not in (COST_BASIS_ATTEMPTED, COST_BASIS_SUCCESSFUL):
            raise ValueError(f"Unknown cost basis '{basis}'")
        self.rate = Decimal(rate)
        self.currency = currency
        self.basis = basis

    def estimate(self, attempted: int, successful: int) -> Decimal:
        count = attempted if self.basis == COST_BASIS_ATTEMPTED else successful
        return (self.rate * count).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def format(self, amount: Decimal) -> str:
        return f"{amount:.2f} {self.currency}"


# PUBLIC_INTERFACE
@dataclass
class BroadcastResult:
    sms_log_id: int
    attempted: int
    sent: int
    failed: int
    cost: Decimal
    cost_display: str
    sender: Optional[str] = None
    provider_message_id: Optional[str] = None


# PUBLIC_INTERFACE
class BroadcastService:
    def __init__(self, provider: Optional[SmsProvider], cost_policy: CostPolicy,
                 default_country_code: Optional[str] = None):
        self.provider = provider
        self.cost_policy = cost_policy
        self.default_country_code = default_country_code

    @property
    def provider_ready(self) -> bool:
        return self.provider is not None and self.provider.is_configured()

    def send(self, db: Session, scope: TenantScope, sent_by: str,
             member_ids: Iterable[int], message: str) -> BroadcastResult:
        """Run one broadcast end to end and return its delivery counts."""
        ids = self._validate(member_ids, message)
        recipients = self._resolve(db, scope, ids)
        outcomes = self._dispatch(recipients, message)
        return self._record(db, scope, sent_by, message, recipients, outcomes)

    def _validate(self, member_ids: Iterable[int], message: str) -> List[int]:
        ids = list(dict.fromkeys(member_ids or []))
        if not ids:
            raise NoRecipients()
        if not message or not message.strip():
            raise EmptyMessage()
        if not self.provider_ready:
            raise ProviderUnavailable()
        return ids

    def _resolve(self, db: Session, scope: TenantScope, ids: List[int]) -> List[Member]:
        query = db.query(Member).filter(
            Member.id.in_(ids),
            Member.sms_consent.is_(True),
            Member.is_active.is_(True),
        )
        recipients = scope.apply(query, Member).order_by(Member.id).all()
        if not recipients:
            raise NoEligibleRecipients()
        if len(recipients) < len(ids):
            logger.info("Broadcast skipped %d of %d requested members (no consent, inactive or other tenant)",
                        len(ids) - len(recipients), len(ids))
        return recipients

    def _dispatch(self, recipients: List[Member], message: str) -> Dict[int, DeliveryOutcome]:
        targets = [
            SmsTarget(id=m.id, phone_number=normalize_phone(m.phone_number, self.default_country_code))
            for m in recipients
        ]
        logger.info("Sending SMS to %d members via %s (sender %s)",
                    len(targets), self.provider.name, self.provider.sender)
        try:
            outcomes = self.provider.send(targets, message)
        except Exception:
            # Recording still has to happen; every unresolved recipient becomes failed
            logger.exception("SMS provider %s raised during dispatch", self.provider.name)
            outcomes = []
        return {o.recipient_id: o for o in outcomes}

    def _record(self, db: Session, scope: TenantScope, sent_by: str, message: str,
                recipients: List[Member], outcomes: Dict[int, DeliveryOutcome]) -> BroadcastResult:
        resolved = [
            outcomes.get(m.id) or DeliveryOutcome.failed(m.id, NO_OUTCOME_REASON)
            for m in recipients
        ]
        sent = sum(1 for o in resolved if o.sent)
        failed = len(resolved) - sent
        cost = self.cost_policy.estimate(attempted=len(resolved), successful=sent)
        batch_id = next((o.provider_message_id for o in resolved if o.sent and o.provider_message_id), None)

        sms_log = SmsLog(
            church_id=_single_church(recipients) if scope.is_global else scope.church_id,
            message=message,
            recipient_count=len(resolved),
            sent_by=sent_by,
            cost_estimate=cost,
            provider=self.provider.name,
            provider_message_id=batch_id,
        )
        try:
            db.add(sms_log)
            db.flush()
            for member, outcome in zip(recipients, resolved):
                db.add(SmsRecipient(
                    sms_log_id=sms_log.id,
                    member_id=member.id,
                    phone_number=member.phone_number,
                    status=(DeliveryStatusEnum.sent if outcome.sent else DeliveryStatusEnum.failed).value,
                    provider_message_id=outcome.provider_message_id,
                    error_message=(outcome.reason or "")[:500] or None,
                ))
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to record SMS broadcast by %s (%d sent, %d failed)", sent_by, sent, failed)
            raise

        logger.info("SMS broadcast #%s: %d sent, %d failed, cost %s",
                    sms_log.id, sent, failed, self.cost_policy.format(cost))
        return BroadcastResult(
            sms_log_id=sms_log.id,
            attempted=len(resolved),
            sent=sent,
            failed=failed,
            cost=cost,
            cost_display=self.cost_policy.format(cost),
            sender=self.provider.sender,
            provider_message_id=batch_id,
        )


def _single_church(recipients: List[Member]) -> Optional[int]:
    """Tenant of an installation-wide broadcast when every recipient shares one church."""
    church_ids = {m.church_id for m in recipients}
    return church_ids.pop() if len(church_ids) == 1 else None


# PUBLIC_INTERFACE
def get_broadcast_service(request: Request) -> BroadcastService:
    return request.app.state.context.broadcast
