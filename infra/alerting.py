"""
polyalgo Infrastructure: Order Event Alerts

Webhook notifications for algo order events:
- "Algo Order Executed"   (INFO)
- "TWAP Order Complete"   (INFO)
- "Algo Order Failed"     (WARNING per rejection, CRITICAL once FAILED)
- "Trading Session Failed" (CRITICAL, from the runner)

Alerts about the same order and event are collapsed inside a window so
an order rejected on every tick posts once, not every 5 seconds.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class AlertSeverity(Enum):
    INFO = 10
    WARNING = 20
    CRITICAL = 30

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.name.lower()

    @classmethod
    def from_string(cls, value: Optional[str], default: Optional["AlertSeverity"] = None) -> "AlertSeverity":
        try:
            return cls[(value or "").strip().upper()]
        except KeyError:
            return default or cls.WARNING


@dataclass
class AlertConfig:
    enabled: bool
    webhook_url: Optional[str]
    min_severity: AlertSeverity = AlertSeverity.INFO
    dry_run: bool = False
    timeout: float = 5.0
    dedupe_seconds: float = 60.0


class AlertService:
    """
    Notifier posting order events to a Slack-style webhook.

    With dry_run the alert is only logged. Delivery errors are logged and
    never raised into the scheduler.
    """

    def __init__(
        self,
        config: AlertConfig,
        http: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._enabled = bool(config.enabled and (config.webhook_url or config.dry_run))
        if config.enabled and not self._enabled:
            logger.warning("Alerts enabled but no webhook URL configured; order alerts are off")

        self._http = http or requests.Session()
        self._clock = clock
        self._recent: Dict[str, float] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, raw_config: Optional[Dict[str, Any]], http: Optional[requests.Session] = None) -> "AlertService":
        """Build from the `alerts` section; the URL may come from $webhook_env."""
        raw = raw_config or {}

        url = os.path.expandvars(raw.get("webhook_url") or "")
        if not url or "${" in url:
            url = os.getenv(raw.get("webhook_env") or "ALERT_WEBHOOK_URL", "")

        return cls(
            AlertConfig(
                enabled=bool(raw.get("enabled", False)),
                webhook_url=url or None,
                min_severity=AlertSeverity.from_string(raw.get("min_severity"), default=AlertSeverity.INFO),
                dry_run=bool(raw.get("dry_run", False)),
                timeout=float(raw.get("timeout_seconds", 5.0)),
                dedupe_seconds=float(raw.get("dedupe_seconds", 60.0)),
            ),
            http=http,
        )

    def is_enabled(self) -> bool:
        return self._enabled

    @staticmethod
    def event_key(severity: AlertSeverity, title: str, message: str, context: Optional[Dict[str, Any]]) -> str:
        """Same order + same event collapse together; order-less alerts key on their text."""
        order_id = (context or {}).get("algo_order_id")
        subject = f"order:{order_id}" if order_id else f"text:{message}"
        return hashlib.sha256(f"{severity.name}|{title}|{subject}".encode("utf-8")).hexdigest()

    def _is_duplicate(self, key: str) -> bool:
        now = self._clock()
        window = self._config.dedupe_seconds
        with self._lock:
            for old_key in [k for k, sent in self._recent.items() if now - sent >= window]:
                del self._recent[old_key]
            if key in self._recent:
                return True
            self._recent[key] = now
            return False

    def notify(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not self._enabled or severity.value < self._config.min_severity.value:
            return

        key = self.event_key(severity, title, message, context)
        if self._is_duplicate(key):
            logger.debug(f"Suppressed repeat alert '{title}' ({key[:8]})")
            return

        payload = self.build_payload(severity, title, message, context)
        if self._config.dry_run:
            logger.info(f"[ALERT:{severity.name}] {payload['text']}")
            return
        self._post(payload, title)

    def _post(self, payload: Dict[str, Any], title: str) -> None:
        try:
            response = self._http.post(self._config.webhook_url, json=payload, timeout=self._config.timeout)
            if response.status_code >= 400:
                logger.error(f"Alert webhook answered {response.status_code} for '{title}'")
        except requests.RequestException as e:
            logger.error(f"Could not deliver alert '{title}': {e}")

    @staticmethod
    def build_payload(
        severity: AlertSeverity,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """`text` is what Slack-style hooks render; the other fields are for JSON consumers."""
        context = {k: v for k, v in (context or {}).items() if v is not None}
        text = f"[{severity.name}] {title}: {message}"
        if context:
            text += " " + json.dumps(context, sort_keys=True, default=str)
        return {
            "text": text,
            "severity": severity.name.lower(),
            "title": title,
            "algo_order_id": context.get("algo_order_id"),
        }


__all__ = ["AlertService", "AlertSeverity", "AlertConfig"]
