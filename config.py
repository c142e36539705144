"""
Run configuration

Loads the JSON config file, applies .env overrides and validates everything
before any RPC work starts.
"""
import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
from dotenv import load_dotenv
from solana.rpc.commitment import Commitment, Confirmed, Finalized
from solders.pubkey import Pubkey

from solana_rpc_client import ConfigurationError, JUP_ROUTER_PROGRAM_ID

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDC_DECIMALS = 6
RPC_URLS_ENV = "SOLANA_RPC_URLS"
# getTransaction rejects "processed"
SUPPORTED_COMMITMENTS = (Finalized, Confirmed)


@dataclass(frozen=True)
class Window:
    name: str
    start: int
    end: int


@dataclass(frozen=True)
class Config:
    rpc_urls: List[str]
    start_ts: int
    end_ts: int
    max_minutes: float = 170
    page_limit: int = 1000
    per_tx_delay_ms: int = 250
    max_backoff_ms: int = 8000
    page_delay_ms: int = 150
    request_timeout_s: Optional[float] = 30.0
    commitment: Commitment = Finalized
    program_id: str = JUP_ROUTER_PROGRAM_ID
    tracked_mint: str = USDC_MINT
    mint_decimals: int = USDC_DECIMALS
    top_n: int = 15
    data_dir: str = "data"
    run_name: str = "window"

    def half_windows(self) -> Tuple[Window, Window]:
        """Split [start_ts, end_ts] at its midpoint into two contiguous inclusive windows."""
        mid = self.start_ts + (self.end_ts - self.start_ts) // 2
        return (
            Window("H1", self.start_ts, mid),
            Window("H2", mid + 1, self.end_ts),
        )

    def data_path(self, filename: str) -> Path:
        return Path(self.data_dir) / filename


def parse_iso_ts(value: Any, key: str) -> int:
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"{key} must be an ISO-8601 timestamp")
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ConfigurationError(f"{key} is not a valid ISO-8601 timestamp: {value}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _number(raw: Dict[str, Any], key: str, default, minimum=0):
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{key} must be a number")
    if value < minimum:
        raise ConfigurationError(f"{key} must be >= {minimum}")
    return value


def _pubkey(raw: Dict[str, Any], key: str, default: str) -> str:
    value = raw.get(key) or default
    if not isinstance(value, str):
        raise ConfigurationError(f"{key} must be a base58 address string")
    try:
        Pubkey.from_string(value)
    except ValueError as e:
        raise ConfigurationError(f"{key} is not a valid Solana address: {value}") from e
    return value


def _rpc_urls(raw: Dict[str, Any]) -> List[str]:
    env_value = os.getenv(RPC_URLS_ENV)
    if env_value:
        urls = [u.strip() for u in env_value.split(",")]
    else:
        urls = raw.get("rpc_urls")
    if not isinstance(urls, list):
        raise ConfigurationError("rpc_urls must be a list of RPC endpoint URLs")
    urls = [u for u in urls if isinstance(u, str) and u]
    if not urls:
        raise ConfigurationError(f"No RPC URLs configured (rpc_urls or {RPC_URLS_ENV})")
    for url in urls:
        try:
            scheme = httpx.URL(url).scheme
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Invalid RPC URL: {url}") from e
        if scheme not in ("http", "https"):
            raise ConfigurationError(f"RPC URL must start with http:// or https://: {url}")
    return urls


def config_from_dict(raw: Dict[str, Any]) -> Config:
    if not isinstance(raw, dict):
        raise ConfigurationError("Config must be a JSON object")

    rpc_urls = _rpc_urls(raw)
    start_ts = parse_iso_ts(raw.get("start_iso"), "start_iso")
    end_ts = parse_iso_ts(raw.get("end_iso"), "end_iso")
    if end_ts < start_ts:
        raise ConfigurationError("end_iso must not be before start_iso")

    commitment = raw.get("commitment") or Finalized
    if commitment not in SUPPORTED_COMMITMENTS:
        raise ConfigurationError(f"commitment must be one of {', '.join(SUPPORTED_COMMITMENTS)}")

    timeout = raw.get("request_timeout_s", 30.0)
    if timeout is not None:
        timeout = _number(raw, "request_timeout_s", 30.0, minimum=0)

    return Config(
        rpc_urls=rpc_urls,
        start_ts=start_ts,
        end_ts=end_ts,
        max_minutes=_number(raw, "max_minutes", 170),
        page_limit=int(_number(raw, "page_limit", 1000, minimum=1)),
        per_tx_delay_ms=int(_number(raw, "per_tx_delay_ms", 250)),
        max_backoff_ms=int(_number(raw, "max_backoff_ms", 8000)),
        page_delay_ms=int(_number(raw, "page_delay_ms", 150)),
        request_timeout_s=timeout,
        commitment=Commitment(commitment),
        program_id=_pubkey(raw, "program_id", JUP_ROUTER_PROGRAM_ID),
        tracked_mint=_pubkey(raw, "tracked_mint", USDC_MINT),
        mint_decimals=int(_number(raw, "mint_decimals", USDC_DECIMALS)),
        top_n=int(_number(raw, "top_n", 15, minimum=1)),
        data_dir=str(raw.get("data_dir") or "data"),
        run_name=str(raw.get("run_name") or "window"),
    )


def load_config(path: str = "config.json", env_file: Optional[str] = ".env") -> Config:
    """
    Load and validate the run configuration

    Args:
        path: JSON config file
        env_file: .env file to load before reading overrides; None skips it

    Raises:
        ConfigurationError: missing file, bad JSON or invalid values
    """
    if env_file:
        load_dotenv(env_file)

    config_file = Path(path)
    if not config_file.exists():
        raise ConfigurationError(f"Missing config file {path}")
    try:
        raw = json.loads(config_file.read_text(encoding="utf-8"))
    except ValueError as e:
        raise ConfigurationError(f"Config file {path} is not valid JSON: {e}") from e
    return config_from_dict(raw)
