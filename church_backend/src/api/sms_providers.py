"""
SMS gateway adapters.

Every adapter implements the same contract: `send(recipients, body)` returns exactly one
DeliveryOutcome per recipient, in input order. Whether the gateway takes one batched
request (MessageBird, Bird.com) or one request per number (Twilio, Azure) stays inside the adapter;
so does the translation of gateway failures into per-recipient `failed` outcomes.

Supported gateways (selected with SMS_PROVIDER):
- bird         -> Bird.com channels API, single batched call
- messagebird  -> MessageBird REST API, single batched call
- twilio       -> Twilio Messages API, concurrent per-recipient calls
- azure        -> Azure Communication Services SMS, concurrent per-recipient calls
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

import requests
from azure.communication.sms import SmsClient as AzureSmsClient
from azure.core.exceptions import AzureError
from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from src.api.config import Settings

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class SmsTarget:
    """One recipient handed to an adapter: member id plus the normalized number to dial."""
    id: int
    phone_number: str


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class DeliveryOutcome:
    recipient_id: int
    sent: bool
    provider_message_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def delivered(cls, recipient_id: int, provider_message_id: Optional[str]) -> "DeliveryOutcome":
        return cls(recipient_id=recipient_id, sent=True, provider_message_id=provider_message_id)

    @classmethod
    def failed(cls, recipient_id: int, reason: str) -> "DeliveryOutcome":
        return cls(recipient_id=recipient_id, sent=False, reason=reason)


# PUBLIC_INTERFACE
class SmsProvider(ABC):
    name: str = "unknown"

    def __init__(self, sender: Optional[str] = None):
        self.sender = sender

    @abstractmethod
    def is_configured(self) -> bool:
        """True when every credential the gateway needs is present."""

    @abstractmethod
    def send(self, recipients: Sequence[SmsTarget], body: str) -> List[DeliveryOutcome]:
        """Deliver `body` to every recipient; never raises for gateway-side failures."""


def _http_error_reason(exc: requests.RequestException) -> str:
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            errors = data.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                if errors[0].get("description"):
                    return str(errors[0]["description"])
            for key in ("message", "error"):
                if data.get(key):
                    return str(data[key])
        return f"HTTP {response.status_code}"
    return str(exc) or exc.__class__.__name__


class _BatchHttpProvider(SmsProvider):
    """Shared plumbing for gateways that accept every recipient in one JSON request."""

    def __init__(self, api_key: Optional[str], sender: Optional[str], timeout: float,
                 session: Optional[requests.Session] = None):
        super().__init__(sender)
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {
            "Authorization": f"AccessKey {self.api_key}",
            "Content-Type": "application/json",
        }

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _payload(self, phone_numbers: List[str], body: str) -> dict:
        raise NotImplementedError

    def send(self, recipients: Sequence[SmsTarget], body: str) -> List[DeliveryOutcome]:
        phone_numbers = [r.phone_number for r in recipients]
        try:
            response = self.session.post(
                self._endpoint(),
                json=self._payload(phone_numbers, body),
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            message_id = response.json().get("id")
        except (requests.RequestException, ValueError) as exc:
            reason = _http_error_reason(exc) if isinstance(exc, requests.RequestException) else "Invalid response from gateway"
            logger.error("%s rejected batch of %d recipients: %s", self.name, len(recipients), reason)
            return [DeliveryOutcome.failed(r.id, reason) for r in recipients]

        logger.info("%s accepted batch of %d recipients, message id %s", self.name, len(recipients), message_id)
        return [DeliveryOutcome.delivered(r.id, message_id) for r in recipients]


# PUBLIC_INTERFACE
class MessageBirdProvider(_BatchHttpProvider):
    name = "messagebird"

    def __init__(self, api_key: Optional[str], sender: Optional[str],
                 api_url: str = "https://rest.messagebird.com/messages", timeout: float = 15.0,
                 session: Optional[requests.Session] = None):
        super().__init__(api_key, sender, timeout, session)
        self.api_url = api_url

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _endpoint(self) -> str:
        return self.api_url

    def _payload(self, phone_numbers: List[str], body: str) -> dict:
        return {"originator": self.sender, "recipients": phone_numbers, "body": body}


# PUBLIC_INTERFACE
class BirdProvider(_BatchHttpProvider):
    name = "bird"

    def __init__(self, api_key: Optional[str], workspace_id: Optional[str], channel_id: Optional[str],
                 sender: Optional[str], api_url: str = "https://api.bird.com", timeout: float = 15.0,
                 session: Optional[requests.Session] = None):
        super().__init__(api_key, sender, timeout, session)
        self.workspace_id = workspace_id
        self.channel_id = channel_id
        self.api_url = api_url.rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.api_key and self.workspace_id and self.channel_id)

    def _endpoint(self) -> str:
        return f"{self.api_url}/workspaces/{self.workspace_id}/channels/{self.channel_id}/messages"

    def _payload(self, phone_numbers: List[str], body: str) -> dict:
        return {
            "receiver": {
                "contacts": [
                    {"identifierKey": "phonenumber", "identifierValue": phone}
                    for phone in phone_numbers
                ]
            },
            "body": {"type": "text", "text": {"text": body}},
        }


class _FanOutProvider(SmsProvider):
    """Shared plumbing for gateways that take one number per request, sent over a bounded thread pool."""

    def __init__(self, sender: Optional[str], max_workers: int = 8):
        super().__init__(sender)
        self.max_workers = max(1, max_workers)

    @abstractmethod
    def _deliver(self, recipient: SmsTarget, body: str) -> DeliveryOutcome:
        """Send to one number; gateway rejections come back as a failed outcome."""

    def _send_one(self, recipient: SmsTarget, body: str) -> DeliveryOutcome:
        try:
            return self._deliver(recipient, body)
        except Exception:
            # One broken call must not cost the outcomes of messages already accepted
            logger.exception("%s raised while sending to member %s", self.name, recipient.id)
            return DeliveryOutcome.failed(recipient.id, "Unexpected gateway error")

    def send(self, recipients: Sequence[SmsTarget], body: str) -> List[DeliveryOutcome]:
        if not recipients:
            return []
        workers = min(self.max_workers, len(recipients))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(executor.map(lambda r: self._send_one(r, body), recipients))
        logger.info(
            "%s dispatched %d messages, %d accepted",
            self.name, len(outcomes), sum(1 for o in outcomes if o.sent),
        )
        return outcomes


# PUBLIC_INTERFACE
class TwilioProvider(_FanOutProvider):
    name = "twilio"

    def __init__(self, account_sid: Optional[str], auth_token: Optional[str],
                 from_number: Optional[str] = None, messaging_service_sid: Optional[str] = None,
                 max_workers: int = 8, client=None):
        super().__init__(from_number or messaging_service_sid, max_workers)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.messaging_service_sid = messaging_service_sid
        self.client = client
        if self.client is None and account_sid and auth_token:
            self.client = TwilioClient(account_sid, auth_token)

    def is_configured(self) -> bool:
        return bool(self.client is not None and (self.from_number or self.messaging_service_sid))

    def _deliver(self, recipient: SmsTarget, body: str) -> DeliveryOutcome:
        kwargs = {"to": f"+{recipient.phone_number}", "body": body}
        if self.messaging_service_sid:
            kwargs["messaging_service_sid"] = self.messaging_service_sid
        else:
            kwargs["from_"] = self.from_number
        try:
            message = self.client.messages.create(**kwargs)
        except (TwilioException, requests.RequestException) as exc:
            reason = getattr(exc, "msg", None) or str(exc)
            logger.error("twilio failed for member %s: %s", recipient.id, reason)
            return DeliveryOutcome.failed(recipient.id, reason)
        return DeliveryOutcome.delivered(recipient.id, getattr(message, "sid", None))


# PUBLIC_INTERFACE
class AzureProvider(_FanOutProvider):
    """Azure Communication Services SMS; sender is an ACS phone number or alphanumeric id."""
    name = "azure"

    def __init__(self, connection_string: Optional[str], sender: Optional[str],
                 max_workers: int = 8, client=None):
        super().__init__(sender, max_workers)
        self.client = client
        if self.client is None and connection_string:
            self.client = AzureSmsClient.from_connection_string(connection_string)

    def is_configured(self) -> bool:
        return bool(self.client is not None and self.sender)

    def _deliver(self, recipient: SmsTarget, body: str) -> DeliveryOutcome:
        try:
            results = self.client.send(from_=self.sender, to=f"+{recipient.phone_number}", message=body)
        except AzureError as exc:
            reason = getattr(exc, "message", None) or str(exc)
            logger.error("azure failed for member %s: %s", recipient.id, reason)
            return DeliveryOutcome.failed(recipient.id, reason)
        result = results[0] if results else None
        if result is None or not result.successful:
            reason = (result.error_message if result is not None else None) or "Rejected by gateway"
            logger.error("azure rejected member %s: %s", recipient.id, reason)
            return DeliveryOutcome.failed(recipient.id, reason)
        return DeliveryOutcome.delivered(recipient.id, result.message_id)


# PUBLIC_INTERFACE
def build_provider(settings: Settings) -> SmsProvider:
    """Construct the adapter named by SMS_PROVIDER. Missing credentials leave it unconfigured."""
    name = settings.sms_provider
    if name == "bird":
        return BirdProvider(
            api_key=settings.bird_api_key,
            workspace_id=settings.bird_workspace_id,
            channel_id=settings.bird_channel_id,
            sender=settings.bird_sender,
            api_url=settings.bird_api_url,
            timeout=settings.sms_http_timeout,
        )
    if name == "messagebird":
        return MessageBirdProvider(
            api_key=settings.messagebird_api_key,
            sender=settings.messagebird_sender,
            api_url=settings.messagebird_api_url,
            timeout=settings.sms_http_timeout,
        )
    if name == "twilio":
        return TwilioProvider(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_from_number,
            messaging_service_sid=settings.twilio_messaging_service_sid,
            max_workers=settings.sms_max_workers,
        )
    if name == "azure":
        return AzureProvider(
            connection_string=settings.azure_connection_string,
            sender=settings.azure_sender,
            max_workers=settings.sms_max_workers,
        )
    raise ValueError(f"Unsupported SMS_PROVIDER '{name}' (expected bird, messagebird, twilio or azure)")
