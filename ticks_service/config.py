# ticks_service/config.py
from dotenv import load_dotenv, find_dotenv
import os
import logging
from typing import Dict, List

from ticks_service.errors import ConfigurationError

# Load nearest .env from project tree, don't override existing process env
load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PAIRS = "binance:BTC-USDT|ETH-USDT|SOL-USDT"


def _env_str(name: str, default: str) -> str:
    return (os.getenv(name) or default).strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() == "true"


def parse_catalog_pairs(raw: str) -> Dict[str, List[str]]:
    """Parse ``venue:PAIR|PAIR;venue:PAIR`` into a venue -> pairs mapping."""
    catalog: Dict[str, List[str]] = {}
    for chunk in raw.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        if ":" not in chunk:
            raise ConfigurationError(f"CATALOG_PAIRS entry {chunk!r} is missing a venue prefix")
        venue, pairs = chunk.split(":", 1)
        catalog[venue.strip().lower()] = [p.strip().upper() for p in pairs.split("|") if p.strip()]
    return catalog


class Settings:
    """Service configuration read from the environment."""

    def __init__(self):
        # HTTP control surface
        self.HTTP_HOST = _env_str("TICKS_HTTP_HOST", "0.0.0.0")
        self.HTTP_PORT = _env_int("TICKS_HTTP_PORT", 9000)

        # Venue feeds
        self.BINANCE_WS_URL = _env_str("BINANCE_WS_URL", "wss://stream.binance.com:9443/ws")
        self.FEED_HEARTBEAT_INTERVAL_MS = _env_int("FEED_HEARTBEAT_INTERVAL_MS", 300)
        self.FEED_HEARTBEAT_TIMEOUT_MS = _env_int("FEED_HEARTBEAT_TIMEOUT_MS", 1000)
        self.FEED_CONNECT_TIMEOUT_S = _env_float("FEED_CONNECT_TIMEOUT_S", 10.0)
        self.FEED_CANCEL_TIMEOUT_S = _env_float("FEED_CANCEL_TIMEOUT_S", 5.0)

        # Catalog: remote service when CATALOG_URL is set, static pairs otherwise
        self.CATALOG_URL = _env_str("CATALOG_URL", "")
        self.CATALOG_TIMEOUT_S = _env_float("CATALOG_TIMEOUT_S", 10.0)
        self.CATALOG_PAIRS = _env_str("CATALOG_PAIRS", DEFAULT_CATALOG_PAIRS)

        # Delivery
        self.CALLBACK_DEFAULT_TIMEOUT_S = _env_float("CALLBACK_DEFAULT_TIMEOUT_S", 30.0)

        # Subscription journal
        self.JOURNAL_ENABLED = _env_bool("JOURNAL_ENABLED", True)
        self.JOURNAL_DIR = _env_str("JOURNAL_DIR", ".run/journal")

        # Logging
        self.LOG_LEVEL = _env_str("LOG_LEVEL", "INFO").upper()
        self.LOG_FILE = _env_str("LOG_FILE", ".run/ticks.log")

        if self.FEED_HEARTBEAT_INTERVAL_MS >= self.FEED_HEARTBEAT_TIMEOUT_MS:
            raise ConfigurationError(
                "FEED_HEARTBEAT_INTERVAL_MS must be shorter than FEED_HEARTBEAT_TIMEOUT_MS"
            )
        if self.CALLBACK_DEFAULT_TIMEOUT_S <= 0:
            raise ConfigurationError("CALLBACK_DEFAULT_TIMEOUT_S must be positive")

    @property
    def catalog_pairs(self) -> Dict[str, List[str]]:
        return parse_catalog_pairs(self.CATALOG_PAIRS)

    @property
    def heartbeat_interval_s(self) -> float:
        return self.FEED_HEARTBEAT_INTERVAL_MS / 1000.0

    @property
    def heartbeat_timeout_s(self) -> float:
        return self.FEED_HEARTBEAT_TIMEOUT_MS / 1000.0


settings = Settings()
