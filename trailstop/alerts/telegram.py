"""Telegram notifications. Never log token or chat_id."""

from __future__ import annotations
import logging
from typing import Iterable, Optional

import requests

from trailstop.alerts.base import AlertSink
from trailstop.core.types import Alert, AlertType

logger = logging.getLogger("trailstop.alerts.telegram")

SEVERITY_ICON = {"info": "ℹ️", "success": "✅", "warning": "⚠️", "error": "❌"}


def send_telegram(text: str, bot_token: str = "", chat_id: str = "", timeout: float = 10) -> bool:
    """Send message to Telegram. Returns True on success. Uses empty strings if not configured."""
    if not bot_token or not chat_id:
        logger.debug("Telegram not configured, skipping message (len=%d)", len(text))
        return False
    try:
        url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        payload = {"chat_id": chat_id, "text": text}
        r = requests.post(url, json=payload, timeout=timeout)
        if r.status_code != 200:
            logger.warning("Telegram send failed: %s %s", r.status_code, r.text[:200])
            return False
        return True
    except Exception as e:
        logger.exception("Telegram error: %s", e)
        return False


def format_alert(alert: Alert) -> str:
    icon = SEVERITY_ICON.get(alert.severity.value, "")
    lines = [f"{icon} [{alert.type.value}] {alert.message}".strip()]
    for key in ("symbol", "price", "stop_loss", "pnl_percent", "reason"):
        if key in alert.data:
            lines.append(f"{key}: {alert.data[key]}")
    return "\n".join(lines)


class TelegramAlertSink(AlertSink):
    """Forwards alerts to a Telegram chat. `types` limits which alert types are sent."""

    def __init__(self, bot_token: str, chat_id: str, types: Optional[Iterable[AlertType]] = None):
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._types = frozenset(AlertType(t) for t in types) if types is not None else None

    def emit(self, alert: Alert) -> None:
        if self._types is not None and alert.type not in self._types:
            return
        send_telegram(format_alert(alert), self._bot_token, self._chat_id)
