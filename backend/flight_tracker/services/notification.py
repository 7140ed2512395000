from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Optional
import logging

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from flight_tracker.config import Settings
from flight_tracker.exceptions import EmailDeliveryError, EmailNotConfiguredError

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


# =============================================================================
# Delivery backends
# =============================================================================

class EmailSender(ABC):
    name: str = "base"

    @abstractmethod
    async def send(self, to: str, subject: str, html: str, meta: Optional[dict] = None) -> dict:
        pass


class ResendSender(EmailSender):
    name = "resend"

    def __init__(self, api_key: str, from_address: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.from_address = from_address
        self._transport = transport

    async def send(self, to: str, subject: str, html: str, meta: Optional[dict] = None) -> dict:
        async with httpx.AsyncClient(timeout=20.0, transport=self._transport) as client:
            response = await client.post(
                RESEND_SEND_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.from_address, "to": [to], "subject": subject, "html": html},
            )
        if response.status_code >= 400:
            raise EmailDeliveryError(f"Resend error ({response.status_code}): {response.text[:200]}")
        data = response.json() if response.content else {}
        return {"provider": self.name, "id": data.get("id")}


class ZapierWebhookSender(EmailSender):
    name = "zapier"

    def __init__(self, webhook_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = webhook_url
        self._transport = transport

    async def send(self, to: str, subject: str, html: str, meta: Optional[dict] = None) -> dict:
        payload = {"to": to, "subject": subject, "html": html, "text": "", "meta": meta or {}}
        async with httpx.AsyncClient(timeout=20.0, transport=self._transport) as client:
            response = await client.post(self.webhook_url, json=payload)
        if response.status_code >= 400:
            raise EmailDeliveryError(f"Zapier webhook error ({response.status_code}): {response.text[:200]}")
        return {"provider": self.name, "ok": True}


class UnconfiguredSender(EmailSender):
    name = "none"

    async def send(self, to: str, subject: str, html: str, meta: Optional[dict] = None) -> dict:
        raise EmailNotConfiguredError()


def build_email_sender(settings: Settings) -> EmailSender:
    """Pick the delivery backend once, from configuration."""
    provider = settings.resolved_email_provider
    if provider == "resend" and settings.resend_api_key:
        return ResendSender(settings.resend_api_key, settings.email_from)
    if provider == "zapier" and settings.zapier_webhook_url:
        return ZapierWebhookSender(settings.zapier_webhook_url)
    if provider:
        logger.error(f"Configuration error: email provider '{provider}' selected but not configured")
    return UnconfiguredSender()


# =============================================================================
# Price drop alert
# =============================================================================

@dataclass
class PriceDropAlert:
    to: str
    flight_name: str
    route: str
    current_price: Decimal
    previous_price: Optional[Decimal] = None
    lowest_price: Optional[Decimal] = None
    airline: Optional[str] = None
    trend: Optional[dict] = None
    flex_suggestion: Optional[dict] = None
    context: Optional[dict] = None
    next_run_at: Optional[str] = None
    meta: dict = field(default_factory=dict)

    @property
    def percent_drop(self) -> float:
        previous = self.previous_price if self.previous_price and self.previous_price > 0 else self.current_price
        if not previous:
            return 0.0
        return round(float((previous - self.current_price) / previous * 100), 1)

    @property
    def is_lowest(self) -> bool:
        return self.lowest_price is None or self.current_price <= self.lowest_price

    @property
    def subject(self) -> str:
        return f"Price Drop! {self.flight_name} now ${self.current_price:,.0f} (↓{self.percent_drop}%)"


class PriceAlertNotifier:
    """Renders price alerts with Jinja2 and hands them to the configured EmailSender."""

    def __init__(self, sender: EmailSender):
        self.sender = sender
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
        )

    @property
    def provider(self) -> str:
        return self.sender.name

    def render_price_drop(self, alert: PriceDropAlert) -> str:
        template = self.env.get_template("price_drop.html")
        return template.render(alert=alert)

    async def send_price_drop_alert(self, alert: PriceDropAlert) -> dict:
        html = self.render_price_drop(alert)
        try:
            result = await self.sender.send(
                alert.to,
                alert.subject,
                html,
                meta={"flight_name": alert.flight_name, "route": alert.route, **alert.meta},
            )
        except EmailNotConfiguredError:
            logger.error("Configuration error: no email provider configured")
            raise
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"{self.sender.name} request failed: {e}") from e
        logger.info(f"Price alert for {alert.flight_name} sent to {alert.to} via {self.sender.name}")
        return result
