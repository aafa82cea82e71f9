"""
Ledger Engine - Configuration.

============================================================
PURPOSE
============================================================
Fee rates and eligibility thresholds for the ledger engine.

All values are deployment configuration, never code:
- Loadable from a flat option dict (camelCase names)
- Loadable from YAML
- Loadable from LEDGER_* environment variables

Defaults are the production fee and threshold values.

============================================================
"""

import os
import re
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from .types import to_decimal


logger = logging.getLogger(__name__)


# ============================================================
# FEE CONFIGURATION
# ============================================================

@dataclass
class AShareFeeConfig:
    """A-share fee schedule (CNY)."""

    commission_rate: Decimal = Decimal("0.0003")
    stamp_duty_rate: Decimal = Decimal("0.001")
    """Charged on sells only."""

    transfer_fee_rate: Decimal = Decimal("0.00002")
    min_commission: Decimal = Decimal("5")
    """Commission floor in CNY."""


@dataclass
class HKShareFeeConfig:
    """HK-share fee schedule, computed in HKD."""

    commission_rate: Decimal = Decimal("0.0003")
    stamp_duty_rate: Decimal = Decimal("0")
    transfer_fee_rate: Decimal = Decimal("0")
    min_commission: Decimal = Decimal("50")
    """Commission floor in HKD, applied before conversion."""

    default_exchange_rate: Decimal = Decimal("0.92")
    """HKD -> CNY reference rate when no live rate is supplied."""


# ============================================================
# ELIGIBILITY CONFIGURATION
# ============================================================

@dataclass
class IPOConfig:
    """IPO subscription thresholds."""

    max_apply_amount: Decimal = Decimal("1000000")
    qualification_days: int = 20
    """Minimum trade days on record."""


@dataclass
class BlockTradeConfig:
    """Block trade thresholds."""

    min_amount: Decimal = Decimal("2000000")
    max_discount_rate: Decimal = Decimal("0.1")
    min_quantity: int = 10000
    """Market-wide minimum lot."""


@dataclass
class BoardConfig:
    """Limit-up board strategy risk thresholds."""

    daily_user_quota: Decimal = Decimal("100000")
    risk_amount_threshold: Decimal = Decimal("50000")
    """Above this the strategy is medium risk."""

    manual_approval_threshold: Decimal = Decimal("100000")
    """Above this the strategy needs manual review."""

    high_risk_limit_up_days: int = 3
    """Consecutive limit-up days that make a symbol high risk."""


@dataclass
class ConditionalOrderConfig:
    """Conditional order settings."""

    market_order_buffer: Decimal = Decimal("0.05")
    """Extra hold over the trigger price for market-kind buys."""


@dataclass
class WithdrawConfig:
    """Withdrawal rules."""

    min_amount: Decimal = Decimal("100")
    max_amount: Decimal = Decimal("1000000")
    daily_limit: Decimal = Decimal("5000000")
    require_flow_settled: bool = True
    """Block withdrawals while trade flows are unsettled."""


# ============================================================
# MAIN CONFIGURATION
# ============================================================

def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# option name -> (section attribute, field name, converter)
OPTION_MAP: Dict[str, Tuple[str, str, Callable[[Any], Any]]] = {
    "commissionRate": ("a_share", "commission_rate", to_decimal),
    "stampDutyRate": ("a_share", "stamp_duty_rate", to_decimal),
    "transferFeeRate": ("a_share", "transfer_fee_rate", to_decimal),
    "minCommission": ("a_share", "min_commission", to_decimal),
    "hkCommissionRate": ("hk_share", "commission_rate", to_decimal),
    "minCommissionForeign": ("hk_share", "min_commission", to_decimal),
    "hkdCnyRate": ("hk_share", "default_exchange_rate", to_decimal),
    "maxApplyAmount": ("ipo", "max_apply_amount", to_decimal),
    "qualificationDays": ("ipo", "qualification_days", int),
    "minBlockAmount": ("block", "min_amount", to_decimal),
    "maxDiscountRate": ("block", "max_discount_rate", to_decimal),
    "minBlockQuantity": ("block", "min_quantity", int),
    "dailyUserQuota": ("board", "daily_user_quota", to_decimal),
    "riskAmountThreshold": ("board", "risk_amount_threshold", to_decimal),
    "manualApprovalThreshold": ("board", "manual_approval_threshold", to_decimal),
    "marketOrderBuffer": ("conditional", "market_order_buffer", to_decimal),
    "minWithdrawAmount": ("withdraw", "min_amount", to_decimal),
    "maxWithdrawAmount": ("withdraw", "max_amount", to_decimal),
    "dailyWithdrawLimit": ("withdraw", "daily_limit", to_decimal),
    "requireFlowSettled": ("withdraw", "require_flow_settled", _to_bool),
}

ENV_PREFIX = "LEDGER_"


def option_env_name(option: str) -> str:
    """commissionRate -> LEDGER_COMMISSION_RATE."""
    return ENV_PREFIX + re.sub(r"(?<!^)(?=[A-Z])", "_", option).upper()


@dataclass
class LedgerEngineConfig:
    """Complete ledger engine configuration."""

    a_share: AShareFeeConfig = field(default_factory=AShareFeeConfig)
    hk_share: HKShareFeeConfig = field(default_factory=HKShareFeeConfig)
    ipo: IPOConfig = field(default_factory=IPOConfig)
    block: BlockTradeConfig = field(default_factory=BlockTradeConfig)
    board: BoardConfig = field(default_factory=BoardConfig)
    conditional: ConditionalOrderConfig = field(default_factory=ConditionalOrderConfig)
    withdraw: WithdrawConfig = field(default_factory=WithdrawConfig)

    def apply_options(self, options: Dict[str, Any]) -> "LedgerEngineConfig":
        """
        Overlay flat options onto this config.

        Raises:
            ValueError: On an unrecognized option name
        """
        for name, raw in options.items():
            if name not in OPTION_MAP:
                raise ValueError(f"Unknown ledger option: {name}")
            section, attr, convert = OPTION_MAP[name]
            setattr(getattr(self, section), attr, convert(raw))
        return self

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> "LedgerEngineConfig":
        """Build config from flat camelCase options over defaults."""
        return cls().apply_options(options)

    @classmethod
    def from_yaml(cls, path: Path) -> "LedgerEngineConfig":
        """
        Load configuration from YAML file.

        Options may sit at top level or under a `ledger:` key.
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if "ledger" in data:
            data = data["ledger"] or {}

        logger.info(f"Loaded ledger config from {path} ({len(data)} options)")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None) -> "LedgerEngineConfig":
        """Load configuration from LEDGER_* environment variables."""
        if env is None:
            load_dotenv()
            env = dict(os.environ)

        options = {}
        for name in OPTION_MAP:
            value = env.get(option_env_name(name))
            if value is not None and value != "":
                options[name] = value

        return cls.from_dict(options)

    def to_dict(self) -> Dict[str, Any]:
        """Flat camelCase view of every option."""
        result = {}
        for name, (section, attr, _) in OPTION_MAP.items():
            value = getattr(getattr(self, section), attr)
            result[name] = str(value) if isinstance(value, Decimal) else value
        return result


# ============================================================
# DEFAULT CONFIG INSTANCE
# ============================================================

def get_default_config() -> LedgerEngineConfig:
    """Get default configuration."""
    return LedgerEngineConfig()


def load_config(path: Optional[Path] = None) -> LedgerEngineConfig:
    """
    Load configuration from file or return defaults.

    Args:
        path: Optional path to YAML config file

    Returns:
        LedgerEngineConfig instance
    """
    if path and Path(path).exists():
        return LedgerEngineConfig.from_yaml(Path(path))
    return get_default_config()
