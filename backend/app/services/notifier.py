"""Confirmation messages posted back to the delivery group."""
from __future__ import annotations

from typing import Optional

import httpx

from app.core.config import Settings, get_settings
from app.core.logging import logger
from app.models.delivery import DeliveryRecord


def _format_amount(value: float) -> str:
    return f"{int(value)}" if float(value).is_integer() else f"{value:.2f}"


def confirmation_text(delivery: DeliveryRecord) -> str:
    return (
        f"✅ Livraison #{delivery.id} enregistrée\n"
        f"📱 {delivery.phone}\n"
        f"📦 {delivery.items or '-'}\n"
        f"💰 {_format_amount(delivery.amount_due)} FCFA"
    )


class ConfirmationNotifier:
    """Posts `{group_id, text}` to the messaging bridge webhook."""

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.settings = settings or get_settings()
        self._transport = transport

    def enabled(self) -> bool:
        return self.settings.confirmations_enabled()

    def send(self, group_id: Optional[str], text: str) -> bool:
        """Return True when the bridge accepted the message. Failures are logged only."""
        if not self.enabled():
            return False

        payload = {"group_id": group_id or self.settings.group_id, "text": text}
        try:
            with httpx.Client(timeout=self.settings.confirmation_timeout_seconds, transport=self._transport) as client:
                response = client.post(self.settings.confirmation_webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Confirmation message not delivered", group_id=payload["group_id"], error=str(exc))
            return False
        return True

    def confirm_created(self, delivery: DeliveryRecord) -> bool:
        return self.send(delivery.group_id, confirmation_text(delivery))
