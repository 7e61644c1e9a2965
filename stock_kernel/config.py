"""
Stock ledger configuration.

Defines the settings the ledger needs at runtime with sensible defaults.
Values come from, in increasing precedence: the dataclass defaults, an
optional YAML file (``load_config``), and ``STOCK_LEDGER_*`` environment
variables (``LedgerConfig.from_env``).

    config = load_config("stock_ledger.yaml")
    ledger = StockLedger.from_config(config)

Failure modes:
    - ``ValueError`` on out-of-range values or unknown YAML keys.
    - ``FileNotFoundError`` / ``yaml.YAMLError`` propagate from the loader.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Self

import yaml

from stock_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_DATABASE_URL = "sqlite:///stock_ledger.db"

ENV_PREFIX = "STOCK_LEDGER_"


@dataclass(frozen=True)
class LedgerConfig:
    """
    Configuration schema for the stock ledger.

    Override at construction with site-specific values:

        config = LedgerConfig(
            default_location="Auckland",
            max_conflict_retries=5,
        )
    """

    database_url: str = DEFAULT_DATABASE_URL
    echo_sql: bool = False

    # Receiving
    default_location: str = "Main Warehouse"
    default_gst_rate: Decimal = Decimal("15")
    grn_number_prefix: str = "GRN-"
    grn_number_width: int = 6
    transfer_reference_prefix: str = "TRF-"

    # Concurrency
    max_conflict_retries: int = 3
    retry_backoff_seconds: float = 0.05
    lock_timeout_ms: int = 5000

    # Query facade
    default_page_size: int = 50
    max_page_size: int = 500

    def __post_init__(self) -> None:
        if not self.default_location.strip():
            raise ValueError("default_location must not be blank")
        if not Decimal("0") <= Decimal(self.default_gst_rate) <= Decimal("100"):
            raise ValueError(
                f"default_gst_rate must be between 0 and 100, got {self.default_gst_rate}"
            )
        if self.grn_number_width < 1:
            raise ValueError("grn_number_width must be at least 1")
        if self.max_conflict_retries < 0:
            raise ValueError("max_conflict_retries must not be negative")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must not be negative")
        if self.lock_timeout_ms < 0:
            raise ValueError("lock_timeout_ms must not be negative")
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError(
                "default_page_size must be between 1 and max_page_size"
            )

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> Self:
        """Build a config from a plain dict, coercing scalar types."""
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"Unknown ledger config keys: {unknown}")
        return cls(**{k: _coerce(known[k].type, v) for k, v in data.items()})

    @classmethod
    def from_env(cls, base: LedgerConfig | None = None) -> Self:
        """Overlay STOCK_LEDGER_* environment variables onto ``base``."""
        base = base or cls()
        overrides: dict[str, Any] = {}
        for f in fields(cls):
            raw = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is not None:
                overrides[f.name] = _coerce(f.type, raw)
        if overrides:
            logger.debug(
                "config_env_overrides",
                extra={"keys": sorted(overrides)},
            )
        return replace(base, **overrides)


def _coerce(type_name: Any, value: Any) -> Any:
    # Annotations are strings under ``from __future__ import annotations``.
    name = type_name if isinstance(type_name, str) else getattr(type_name, "__name__", "")
    if name == "bool":
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if name == "int":
        return int(value)
    if name == "float":
        return float(value)
    if name == "Decimal":
        return Decimal(str(value))
    return str(value)


def load_config(path: str | Path | None = None, *, use_env: bool = True) -> LedgerConfig:
    """
    Load ledger configuration from a YAML file.

    The file holds a flat mapping of ``LedgerConfig`` field names, optionally
    nested under a top-level ``stock_ledger:`` key.  A missing ``path`` yields
    the defaults.  Environment overrides are applied last unless
    ``use_env`` is False.
    """
    config = LedgerConfig()
    if path is not None:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Ledger config {path} must contain a mapping")
        data = data.get("stock_ledger", data)
        config = LedgerConfig.from_mapping(data)
        logger.info(
            "config_loaded",
            extra={"path": str(path), "keys": sorted(data)},
        )
    if use_env:
        config = LedgerConfig.from_env(config)
    return config
