"""Tests for order event alerts: severity filter, repeat suppression and delivery."""

from unittest.mock import Mock

import requests

from infra.alerting import AlertConfig, AlertService, AlertSeverity


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _service(http=None, clock=None, **overrides):
    values = dict(
        enabled=True,
        webhook_url="https://hooks.test/alert",
        min_severity=AlertSeverity.INFO,
        dry_run=False,
        dedupe_seconds=60.0,
    )
    values.update(overrides)
    if http is None:
        http = Mock()
        http.post.return_value = Mock(status_code=200)
    return AlertService(AlertConfig(**values), http=http, clock=clock or FakeClock())


class TestNotify:
    def test_posts_json_payload(self):
        service = _service()

        service.notify(AlertSeverity.CRITICAL, "Algo Order Failed", "TWAP order failed", {"algo_order_id": "a"})

        url = service._http.post.call_args.args[0]
        payload = service._http.post.call_args.kwargs["json"]
        assert url == "https://hooks.test/alert"
        assert payload["text"].startswith("[CRITICAL] Algo Order Failed: TWAP order failed")
        assert payload["severity"] == "critical"
        assert payload["algo_order_id"] == "a"

    def test_below_min_severity_dropped(self):
        service = _service(min_severity=AlertSeverity.WARNING)
        service.notify(AlertSeverity.INFO, "Algo Order Executed", "fill")
        service._http.post.assert_not_called()

    def test_repeats_for_same_order_suppressed_within_window(self):
        clock = FakeClock()
        service = _service(clock=clock)

        service.notify(AlertSeverity.WARNING, "Algo Order Failed", "timeout", {"algo_order_id": "a"})
        service.notify(AlertSeverity.WARNING, "Algo Order Failed", "other error", {"algo_order_id": "a"})
        service.notify(AlertSeverity.WARNING, "Algo Order Failed", "timeout", {"algo_order_id": "b"})
        assert service._http.post.call_count == 2

        clock.now += 61
        service.notify(AlertSeverity.WARNING, "Algo Order Failed", "timeout", {"algo_order_id": "a"})
        assert service._http.post.call_count == 3

    def test_escalation_to_critical_not_suppressed(self):
        service = _service()
        service.notify(AlertSeverity.WARNING, "Algo Order Failed", "x", {"algo_order_id": "a"})
        service.notify(AlertSeverity.CRITICAL, "Algo Order Failed", "x", {"algo_order_id": "a"})
        assert service._http.post.call_count == 2

    def test_orderless_alerts_keyed_on_text(self):
        service = _service()
        service.notify(AlertSeverity.CRITICAL, "Trading Session Failed", "bad key")
        service.notify(AlertSeverity.CRITICAL, "Trading Session Failed", "bad key")
        service.notify(AlertSeverity.CRITICAL, "Trading Session Failed", "timeout")
        assert service._http.post.call_count == 2

    def test_dry_run_never_posts(self):
        service = _service(webhook_url=None, dry_run=True)
        assert service.is_enabled()
        service.notify(AlertSeverity.CRITICAL, "Algo Order Failed", "x")
        service._http.post.assert_not_called()

    def test_enabled_without_url_is_off(self):
        assert not _service(webhook_url=None).is_enabled()

    def test_delivery_failure_is_logged_not_raised(self):
        http = Mock()
        http.post.side_effect = requests.ConnectionError("unreachable")
        _service(http=http).notify(AlertSeverity.CRITICAL, "Algo Order Failed", "x")
        assert http.post.call_count == 1


class TestFromConfig:
    def test_reads_webhook_from_env(self, monkeypatch):
        monkeypatch.setenv("MY_HOOK", "https://hooks.test/env")
        service = AlertService.from_config({"enabled": True, "webhook_env": "MY_HOOK", "min_severity": "warning"})

        assert service.is_enabled()
        assert service._config.webhook_url == "https://hooks.test/env"
        assert service._config.min_severity == AlertSeverity.WARNING

    def test_expands_env_in_url(self, monkeypatch):
        monkeypatch.setenv("HOOK_TOKEN", "abc")
        service = AlertService.from_config({"enabled": True, "webhook_url": "https://hooks.test/${HOOK_TOKEN}"})
        assert service._config.webhook_url == "https://hooks.test/abc"

    def test_disabled_by_default(self):
        assert not AlertService.from_config(None).is_enabled()


def test_payload_drops_empty_context():
    payload = AlertService.build_payload(AlertSeverity.INFO, "Algo Order Executed", "done", {"reason": None})
    assert payload["text"] == "[INFO] Algo Order Executed: done"
    assert payload["algo_order_id"] is None


def test_severity_from_string():
    assert AlertSeverity.from_string("CRITICAL") == AlertSeverity.CRITICAL
    assert AlertSeverity.from_string("nope") == AlertSeverity.WARNING
    assert AlertSeverity.from_string("", default=AlertSeverity.INFO) == AlertSeverity.INFO
