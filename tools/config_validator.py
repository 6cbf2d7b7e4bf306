"""
Configuration Validation Module

Validates app.yaml against Pydantic schemas and runs cross-field sanity
checks before the scheduler starts.

Usage:
    from tools.config_validator import validate_all_configs

    errors = validate_all_configs("config")
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        sys.exit(1)
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"


# ===== app.yaml Schema =====
class AppSection(BaseModel):
    name: str = Field(default="polyalgo", min_length=1)
    mode: str = Field(default="DRY_RUN", pattern="^(DRY_RUN|PAPER|LIVE)$", description="Execution mode")

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class LoopConfig(BaseModel):
    interval_seconds: float = Field(default=5.0, gt=0, description="Seconds between ticks")
    jitter_pct: float = Field(default=0.0, ge=0, le=20, description="Random +/- jitter on the interval")
    max_workers: int = Field(default=4, ge=1, le=64, description="Orders evaluated concurrently")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    file: Optional[str] = Field(default="logs/polyalgo.log")
    format: str = Field(default="%(asctime)s %(levelname)s %(name)s: %(message)s")


class SessionConfig(BaseModel):
    timeout_seconds: float = Field(default=3600, gt=0, description="Inactivity timeout")
    chain_id: int = Field(default=137, gt=0)


class ProxyWalletSection(BaseModel):
    factory_address: str = Field(default="0xab45c5a4b0c941a2f231c04c3f49182e1a254052", pattern=ADDRESS_PATTERN)
    implementation_address: str = Field(
        default="0x44e999d5c2f66ef0861317f9a4805ac2e90aeb4f", pattern=ADDRESS_PATTERN
    )
    init_code_template: Optional[str] = Field(default=None, description="Hex init code with two %s placeholders")

    @field_validator("init_code_template")
    @classmethod
    def validate_template(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if v.count("%s") != 2:
            raise ValueError("init_code_template must contain exactly two '%s' placeholders")
        body = v.replace("%s", "")
        body = body[2:] if body.startswith("0x") else body
        try:
            bytes.fromhex(body)
        except ValueError:
            raise ValueError("init_code_template must be hex apart from the placeholders")
        return v


class ClobConfig(BaseModel):
    base_url: str = Field(default="https://clob.polymarket.com", pattern="^https?://")
    timeout_seconds: float = Field(default=10.0, gt=0)


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0, le=10)
    initial_delay_ms: float = Field(default=1000, ge=0)
    max_delay_ms: float = Field(default=10000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    retryable_errors: Optional[List[str]] = None

    @model_validator(mode="after")
    def check_delays(self) -> "RetryConfig":
        if self.initial_delay_ms > self.max_delay_ms:
            raise ValueError("initial_delay_ms cannot exceed max_delay_ms")
        return self


class ExecutionSection(BaseModel):
    slippage: float = Field(default=0.05, ge=0, lt=1, description="Market order slippage tolerance")
    min_price: float = Field(default=0.01, gt=0, lt=1)
    max_price: float = Field(default=0.99, gt=0, lt=1)
    order_type: str = Field(default="FOK", pattern="^(FOK|FAK|GTC|GTD)$", description="Market order type")
    limit_order_type: str = Field(default="GTC", pattern="^(GTC|GTD)$", description="Limit order type")
    terminal_rejection_markers: Optional[List[str]] = None
    max_consecutive_failures: int = Field(default=5, ge=1)

    @model_validator(mode="after")
    def check_price_band(self) -> "ExecutionSection":
        if self.min_price >= self.max_price:
            raise ValueError("min_price must be below max_price")
        return self


class PaperConfig(BaseModel):
    starting_collateral: float = Field(default=1000.0, ge=0, description="Simulated USDC balance")
    starting_shares: Dict[str, float] = Field(default_factory=dict, description="token_id → simulated shares")


class MetricsConfig(BaseModel):
    enabled: bool = False
    port: int = Field(default=9100, ge=1, le=65535)


class StoreConfig(BaseModel):
    orders_file: str = Field(default="data/algo_orders.json", min_length=1)
    history_file: str = Field(default="data/order_history.jsonl", min_length=1)
    keep_terminal_orders: int = Field(default=100, ge=0)


class AlertsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    enabled: bool = False
    webhook_url: Optional[str] = None
    webhook_env: str = "ALERT_WEBHOOK_URL"
    min_severity: str = Field(default="info", pattern="^(info|warning|critical)$")
    dry_run: bool = False
    dedupe_seconds: float = Field(default=60.0, ge=0)

    @field_validator("min_severity", mode="before")
    @classmethod
    def normalize_severity(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class AppConfigSchema(BaseModel):
    """Complete app.yaml schema"""
    app: AppSection = Field(default_factory=AppSection)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    proxy_wallet: ProxyWalletSection = Field(default_factory=ProxyWalletSection)
    clob: ClobConfig = Field(default_factory=ClobConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    execution: ExecutionSection = Field(default_factory=ExecutionSection)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


# ===== Validation Functions =====
def _format_yaml_error(file_path: Path, error: yaml.YAMLError) -> str:
    """Return enriched message with line/column context for YAML errors."""
    message = f"Malformed YAML in {file_path}: {error}"
    mark = getattr(error, "problem_mark", None)
    if mark is None:
        return message

    line = getattr(mark, "line", None)
    column = getattr(mark, "column", None)
    if line is None or column is None:
        return message

    raw_lines = file_path.read_text().splitlines()
    start = max(line - 2, 0)
    end = min(line + 3, len(raw_lines))
    snippet = "\n".join(
        f"{'▶' if idx == line else ' '} {idx + 1:04d} | {raw_lines[idx]}" for idx in range(start, end)
    )
    problem = getattr(error, "problem", str(error))
    return (
        f"Malformed YAML in {file_path}: line {line + 1}, column {column + 1}: {problem}\n"
        f"Context:\n{snippet}"
    )


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML file and return as dict (empty file → {}).

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is malformed
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, "r") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(_format_yaml_error(file_path, e))


def validate_app_config(config: Dict[str, Any]) -> List[str]:
    """Schema-validate an already loaded app.yaml dict."""
    errors = []
    try:
        AppConfigSchema(**config)
    except ValidationError as e:
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            errors.append(f"app.yaml: {field}: {error['msg']}")
    return errors


def validate_sanity_checks(config: Dict[str, Any]) -> List[str]:
    """
    Cross-field checks the schema cannot express.

    Detects:
    - Slippage that pushes every market BUY to the price ceiling
    - Retry budget longer than one loop interval many times over
    - Alerting enabled with no destination
    """
    errors = []
    schema = AppConfigSchema(**config)

    if schema.execution.slippage >= schema.execution.max_price:
        errors.append("execution.slippage must be well below execution.max_price")

    worst_case_ms = schema.retry.max_retries * schema.retry.max_delay_ms
    if worst_case_ms / 1000.0 > 60 * schema.loop.interval_seconds:
        errors.append(
            f"retry budget ({worst_case_ms / 1000:.0f}s) exceeds 60 loop intervals; "
            "orders would stall behind one retried call"
        )

    if schema.alerts.enabled and not (schema.alerts.webhook_url or schema.alerts.dry_run):
        logger.warning("alerts.enabled is true but no webhook_url is set; relying on $%s", schema.alerts.webhook_env)

    if errors:
        logger.warning(f"⚠️  {len(errors)} sanity check issue(s) found")
    return errors


def validate_all_configs(config_dir: str = "config") -> List[str]:
    """
    Validate app.yaml: schema first, then sanity checks.

    Returns:
        List of all error messages (empty if all valid)
    """
    app_path = Path(config_dir) / "app.yaml"
    try:
        config = load_yaml_file(app_path)
    except FileNotFoundError as e:
        return [f"app.yaml: {e}"]
    except yaml.YAMLError as e:
        return [f"app.yaml: Invalid YAML - {e}"]

    errors = validate_app_config(config)
    if not errors:
        errors.extend(validate_sanity_checks(config))

    if not errors:
        logger.info("✅ app.yaml validated successfully")
    else:
        logger.error(f"❌ {len(errors)} validation error(s) found")
    return errors


def load_app_config(config_dir: str = "config") -> Dict[str, Any]:
    """
    Load app.yaml with defaults filled in.

    Raises:
        ValueError: if the file is missing, malformed or invalid (all errors logged)
    """
    errors = validate_all_configs(config_dir)
    if errors:
        for error in errors:
            logger.error(error)
        raise ValueError(f"Invalid configuration in {config_dir}: {len(errors)} error(s)")
    return AppConfigSchema(**load_yaml_file(Path(config_dir) / "app.yaml")).model_dump()


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    config_dir = sys.argv[1] if len(sys.argv) > 1 else "config"
    errors = validate_all_configs(config_dir)

    if errors:
        print("\n❌ Configuration Validation Failed:\n")
        for error in errors:
            print(f"  • {error}")
        print()
        sys.exit(1)
    else:
        print("\n✅ app.yaml is valid!\n")
        sys.exit(0)
