"""
Tests for app.yaml schema validation and sanity checks.
"""

from pathlib import Path

import pytest
import yaml

from tools.config_validator import (
    AppConfigSchema,
    load_app_config,
    validate_all_configs,
    validate_app_config,
    validate_sanity_checks,
)


def _write(tmp_path, config):
    (tmp_path / "app.yaml").write_text(yaml.safe_dump(config))
    return str(tmp_path)


class TestSchema:
    def test_empty_config_gets_defaults(self):
        schema = AppConfigSchema()
        assert schema.app.mode == "DRY_RUN"
        assert schema.session.timeout_seconds == 3600
        assert schema.execution.order_type == "FOK"
        assert schema.execution.limit_order_type == "GTC"

    def test_mode_is_case_insensitive(self):
        assert validate_app_config({"app": {"mode": "paper"}}) == []

    def test_unknown_mode(self):
        errors = validate_app_config({"app": {"mode": "YOLO"}})
        assert len(errors) == 1
        assert errors[0].startswith("app.yaml: app -> mode")

    def test_price_band(self):
        errors = validate_app_config({"execution": {"min_price": 0.9, "max_price": 0.5}})
        assert any("min_price must be below max_price" in e for e in errors)

    def test_retry_delays(self):
        errors = validate_app_config({"retry": {"initial_delay_ms": 5000, "max_delay_ms": 1000}})
        assert any("initial_delay_ms" in e for e in errors)

    def test_proxy_template(self):
        assert validate_app_config({"proxy_wallet": {"init_code_template": "0x3d%s5a%s"}}) == []
        assert validate_app_config({"proxy_wallet": {"init_code_template": "0x%s"}})
        assert validate_app_config({"proxy_wallet": {"init_code_template": "0xzz%s%s"}})

    def test_bad_addresses(self):
        assert validate_app_config({"proxy_wallet": {"factory_address": "0x1234"}})

    def test_alert_severity_normalized(self):
        schema = AppConfigSchema(**{"alerts": {"min_severity": "CRITICAL"}})
        assert schema.alerts.min_severity == "critical"


class TestSanityChecks:
    def test_defaults_pass(self):
        assert validate_sanity_checks({}) == []

    def test_slippage_above_ceiling(self):
        errors = validate_sanity_checks({"execution": {"slippage": 0.99, "max_price": 0.99}})
        assert any("slippage" in e for e in errors)

    def test_retry_budget_vs_loop_interval(self):
        config = {"loop": {"interval_seconds": 1}, "retry": {"max_retries": 10, "max_delay_ms": 60000}}
        errors = validate_sanity_checks(config)
        assert any("retry budget" in e for e in errors)


class TestLoading:
    def test_validate_all_configs_ok(self, tmp_path):
        assert validate_all_configs(_write(tmp_path, {"app": {"mode": "PAPER"}})) == []

    def test_missing_file(self, tmp_path):
        errors = validate_all_configs(str(tmp_path))
        assert errors and "not found" in errors[0]

    def test_malformed_yaml_reports_line(self, tmp_path):
        (tmp_path / "app.yaml").write_text("app:\n  mode: [PAPER\nloop: {}\n")
        errors = validate_all_configs(str(tmp_path))
        assert len(errors) == 1
        assert "Invalid YAML" in errors[0]
        assert "line" in errors[0]

    def test_empty_file_is_all_defaults(self, tmp_path):
        (tmp_path / "app.yaml").write_text("")
        config = load_app_config(str(tmp_path))
        assert config["app"]["mode"] == "DRY_RUN"
        assert config["store"]["orders_file"] == "data/algo_orders.json"

    def test_load_app_config_raises_on_errors(self, tmp_path):
        with pytest.raises(ValueError, match="Invalid configuration"):
            load_app_config(_write(tmp_path, {"loop": {"interval_seconds": 0}}))

    def test_shipped_config_is_valid(self):
        config_dir = Path(__file__).resolve().parent.parent / "config"
        assert validate_all_configs(str(config_dir)) == []
