"""Alert sinks: in-memory, fan-out, Telegram."""

from trailstop.alerts.base import AlertSink, FanOutAlertSink, InMemoryAlertSink
from trailstop.alerts.telegram import TelegramAlertSink, send_telegram

__all__ = ["AlertSink", "InMemoryAlertSink", "FanOutAlertSink", "TelegramAlertSink", "send_telegram"]
