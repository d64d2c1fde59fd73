"""
Configuration module for the Polymarket copy trading bot.

Every setting is read from the environment. A .env file is picked up
automatically from the package directory, its parent, or the working
directory (first match wins).
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

from .models import CopyOrderType

logger = logging.getLogger(__name__)

# Find .env file in multiple locations
_module_dir = Path(__file__).parent
_possible_envs = [
    _module_dir / ".env",
    _module_dir.parent / ".env",
]

for _env_file in _possible_envs:
    if _env_file.exists():
        load_dotenv(_env_file, override=False)
        break
else:
    load_dotenv(override=False)


# === POLYGON ===
CHAIN_ID = 137

# === POLYMARKET CONTRACTS (Polygon) ===
CTF_EXCHANGE_ADDRESS = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"
NEG_RISK_CTF_EXCHANGE = "0xC5d563A36AE78145C45a50134d48A1215220f80a"
NEG_RISK_ADAPTER = "0xd91E80cF2E7be2e162c6513ceD06f1dD0dA35296"
CONDITIONAL_TOKENS = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"
USDC_ADDRESS = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"


def parse_csv(value: str) -> List[str]:
    """Split a comma separated env value, dropping blanks."""
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


@dataclass
class Settings:
    """
    Copy bot settings.

    Authentication:
    - private_key: EOA key that signs orders and approvals (signature type 0)
    - api_key / api_secret / api_passphrase: optional static L2 credentials,
      only used by the ``test-creds`` command. The bot itself derives
      credentials from the private key at startup.

    Copying:
    - position_multiplier: fraction of the original USDC size to copy
    - max_trade_size / min_trade_size: clamp for each copy (USDC)
    - order_type: LIMIT (GTC), FOK or FAK
    """

    # ========================================
    # WALLETS
    # ========================================
    target_wallet: str = field(default_factory=lambda: os.getenv("TARGET_WALLET", ""))
    private_key: str = field(default_factory=lambda: os.getenv("PRIVATE_KEY", ""))
    api_key: str = field(default_factory=lambda: os.getenv("POLYMARKET_USER_API_KEY") or os.getenv("POLYMARKET_API_KEY", ""))
    api_secret: str = field(default_factory=lambda: os.getenv("POLYMARKET_USER_SECRET") or os.getenv("POLYMARKET_SECRET", ""))
    api_passphrase: str = field(default_factory=lambda: os.getenv("POLYMARKET_USER_PASSPHRASE") or os.getenv("POLYMARKET_PASSPHRASE", ""))

    # ========================================
    # ENDPOINTS
    # ========================================
    rpc_url: str = field(default_factory=lambda: os.getenv("RPC_URL", "https://polygon-rpc.com"))
    clob_host: str = field(default_factory=lambda: os.getenv("CLOB_HOST", "https://clob.polymarket.com"))
    data_api_url: str = field(default_factory=lambda: os.getenv("DATA_API_URL", "https://data-api.polymarket.com"))
    ws_url: str = field(default_factory=lambda: os.getenv("WS_URL", "wss://ws-subscriptions-clob.polymarket.com/ws"))
    chain_id: int = CHAIN_ID

    # ========================================
    # COPY SIZING
    # ========================================
    position_multiplier: float = field(default_factory=lambda: _env_float("POSITION_MULTIPLIER", "0.1"))
    max_trade_size: float = field(default_factory=lambda: _env_float("MAX_TRADE_SIZE", "100"))
    min_trade_size: float = field(default_factory=lambda: _env_float("MIN_TRADE_SIZE", "1"))
    slippage_tolerance: float = field(default_factory=lambda: _env_float("SLIPPAGE_TOLERANCE", "0.02"))
    order_type: str = field(default_factory=lambda: os.getenv("ORDER_TYPE", "FOK").upper())

    # ========================================
    # RISK MANAGEMENT (0 = disabled)
    # ========================================
    max_session_notional: float = field(default_factory=lambda: _env_float("MAX_SESSION_NOTIONAL", "0"))
    max_per_market_notional: float = field(default_factory=lambda: _env_float("MAX_PER_MARKET_NOTIONAL", "0"))

    # ========================================
    # MONITORING
    # ========================================
    poll_interval_ms: int = field(default_factory=lambda: int(os.getenv("POLL_INTERVAL", "2000")))
    use_websocket: bool = field(default_factory=lambda: os.getenv("USE_WEBSOCKET", "true").lower() != "false")
    use_user_channel: bool = field(default_factory=lambda: os.getenv("USE_USER_CHANNEL", "false").lower() == "true")
    ws_asset_ids: List[str] = field(default_factory=lambda: parse_csv(os.getenv("WS_ASSET_IDS", "")))
    ws_market_ids: List[str] = field(default_factory=lambda: parse_csv(os.getenv("WS_MARKET_IDS", "")))

    # ========================================
    # GAS (approval transactions)
    # ========================================
    min_priority_fee_gwei: float = field(default_factory=lambda: _env_float("MIN_PRIORITY_FEE_GWEI", "30"))
    min_max_fee_gwei: float = field(default_factory=lambda: _env_float("MIN_MAX_FEE_GWEI", "60"))

    # ========================================
    # LOGGING
    # ========================================
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    log_file: str = field(default_factory=lambda: os.getenv("LOG_FILE", "logs/copybot.log"))

    @property
    def copy_order_type(self) -> CopyOrderType:
        return CopyOrderType(self.order_type.upper())

    @property
    def ws_channel(self) -> str:
        return "user" if self.use_user_channel else "market"

    @property
    def has_static_creds(self) -> bool:
        return bool(self.api_key and self.api_secret and self.api_passphrase)

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate settings.

        Returns:
            (is_valid, list_of_errors)
        """
        errors = []

        if not self.target_wallet:
            errors.append("TARGET_WALLET is required")

        if not self.private_key:
            errors.append("PRIVATE_KEY is required")

        if self.order_type.upper() not in {t.value for t in CopyOrderType}:
            errors.append("ORDER_TYPE must be one of LIMIT, FOK, FAK")

        if self.position_multiplier <= 0:
            errors.append("POSITION_MULTIPLIER must be > 0")

        if self.max_trade_size < 0:
            errors.append("MAX_TRADE_SIZE must be >= 0")

        if not 0 <= self.slippage_tolerance < 1:
            errors.append("SLIPPAGE_TOLERANCE must be between 0 and 1")

        if self.poll_interval_ms <= 0:
            errors.append("POLL_INTERVAL must be > 0")

        return len(errors) == 0, errors

    def print_summary(self):
        """Log configuration summary."""
        logger.info("=" * 60)
        logger.info("POLYMARKET COPY TRADING BOT")
        logger.info("=" * 60)
        logger.info(f"Target wallet: {self.target_wallet}")
        logger.info(f"Position multiplier: {self.position_multiplier * 100:.1f}%")
        logger.info(f"Max trade size: {self.max_trade_size} USDC")
        logger.info(f"Order type: {self.order_type}")
        logger.info(f"WebSocket: {'Enabled (' + self.ws_channel + ' channel)' if self.use_websocket else 'Disabled'}")
        if self.max_session_notional > 0 or self.max_per_market_notional > 0:
            logger.info(
                f"Risk caps: session={self.max_session_notional or 'inf'} USDC, "
                f"per-market={self.max_per_market_notional or 'inf'} USDC"
            )
        logger.info("Auth mode: EOA (signature type 0)")
        logger.info("=" * 60)


def load_settings() -> Settings:
    """Load settings from environment."""
    return Settings()
