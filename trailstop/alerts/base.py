"""
Alert sinks. emit() must not raise into the caller: the manager keeps running
whatever a sink does.
"""

from __future__ import annotations
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Iterable, List, Optional

from trailstop.core.types import Alert, AlertType

logger = logging.getLogger("trailstop.alerts")


class AlertSink(ABC):
    @abstractmethod
    def emit(self, alert: Alert) -> None:
        pass


class InMemoryAlertSink(AlertSink):
    """Keeps the newest max_alerts alerts, newest first."""

    def __init__(self, max_alerts: int = 100):
        self._alerts: deque = deque(maxlen=max_alerts)
        self._lock = threading.Lock()

    def emit(self, alert: Alert) -> None:
        with self._lock:
            self._alerts.appendleft(alert)

    def alerts(self, position_id: Optional[str] = None) -> List[Alert]:
        with self._lock:
            items = list(self._alerts)
        if position_id is not None:
            items = [a for a in items if a.position_id == position_id]
        return items

    def of_type(self, alert_type: AlertType) -> List[Alert]:
        return [a for a in self.alerts() if a.type == AlertType(alert_type)]

    def clear(self) -> None:
        with self._lock:
            self._alerts.clear()

    def __len__(self) -> int:
        return len(self._alerts)


class FanOutAlertSink(AlertSink):
    """Delivers to every child sink; a failing sink is logged and skipped."""

    def __init__(self, sinks: Iterable[AlertSink]):
        self._sinks = list(sinks)

    def add(self, sink: AlertSink) -> None:
        self._sinks.append(sink)

    def emit(self, alert: Alert) -> None:
        for sink in self._sinks:
            try:
                sink.emit(alert)
            except Exception as e:
                logger.exception("Alert sink %s failed: %s", type(sink).__name__, e)
