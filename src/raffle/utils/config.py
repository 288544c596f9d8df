"""
Configuration Management
"""

import copy
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from web3 import Web3

from raffle.utils.logger import get_logger

logger = get_logger(__name__)


DEFAULT_CONFIG_FILE = Path(__file__).parent.parent.parent.parent / "config" / "raffle.conf"

# Per-network presets. Development networks auto-fulfil randomness requests.
DEFAULT_CONFIG: Dict[str, Any] = {
    "raffle": {
        "network": "localhost",
        "entrance_fee": None,
        "interval": None,
    },
    "networks": {
        "hardhat": {"chain_id": 31337, "entrance_fee_eth": "0.01", "interval": 30},
        "localhost": {"chain_id": 31337, "entrance_fee_eth": "0.01", "interval": 30},
        "sepolia": {"chain_id": 11155111, "entrance_fee_eth": "0.01", "interval": 30},
    },
    "development_networks": ["hardhat", "localhost"],
    "operator": {
        "enabled": True,
        "check_interval_sec": 5.0,
        "auto_fulfill": None,
    },
    "event_manager": {
        "live_feed_max_entries": 100,
        "round_history_max": 20,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 6080,
    },
}

ENV_PREFIXES = {
    "RAFFLE_": "raffle",
    "OPERATOR_": "operator",
    "EVENTS_": "event_manager",
    "SERVER_": "server",
}


@dataclass(frozen=True)
class RaffleSettings:
    """Engine parameters resolved from the active network and overrides."""

    network: str
    chain_id: int
    entrance_fee: int
    interval: int
    auto_fulfill: bool


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from defaults, a JSON file and environment variables"""
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_file or os.getenv("RAFFLE_CONFIG_FILE") or DEFAULT_CONFIG_FILE)
    if path.exists():
        try:
            with open(path, 'r') as f:
                file_config = json.load(f)
            _merge(config, file_config)
            logger.info(f"Loaded configuration from {path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file {path}: {e}")
    else:
        logger.warning(f"Config file {path} not found. Using defaults and environment variables.")

    config = _apply_env_overrides(config)

    logger.debug(f"Configuration after applying environment overrides: {json.dumps(config, indent=2)}")
    return config


def _merge(base: Dict[str, Any], update: Dict[str, Any]) -> None:
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value


def _apply_env_overrides(config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    environ = os.environ if environ is None else environ
    for name, value in environ.items():
        for prefix, section in ENV_PREFIXES.items():
            if name.startswith(prefix):
                key = name[len(prefix):].lower()
                break
        else:
            continue

        if key == "config_file":
            continue
        target = config.setdefault(section, {})
        target[key] = _coerce(value, target.get(key))

    return config


def _coerce(value: str, current: Any) -> Any:
    """Convert an environment string to the type of the value it replaces."""
    if isinstance(current, bool) or current is None and value.lower() in ("true", "false"):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if current is None and value.isdigit():
        return int(value)
    return value


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def resolve_raffle_settings(config: Dict[str, Any]) -> RaffleSettings:
    """Pick the network preset and apply explicit fee/interval overrides.

    Explicit ``raffle.entrance_fee`` is in wei; presets carry ``entrance_fee_eth``.
    """
    network = get_config_value(config, "raffle.network", "localhost")
    presets = config.get("networks", {})
    if network not in presets:
        raise ValueError(f"Unknown network '{network}'; known networks: {sorted(presets)}")
    preset = presets[network]

    entrance_fee = get_config_value(config, "raffle.entrance_fee")
    if entrance_fee is None:
        entrance_fee = Web3.to_wei(preset.get("entrance_fee_eth", "0.01"), "ether")

    interval = get_config_value(config, "raffle.interval")
    if interval is None:
        interval = preset.get("interval", 30)

    auto_fulfill = get_config_value(config, "operator.auto_fulfill")
    if auto_fulfill is None:
        auto_fulfill = network in config.get("development_networks", [])

    settings = RaffleSettings(
        network=network,
        chain_id=int(preset.get("chain_id", 31337)),
        entrance_fee=int(entrance_fee),
        interval=int(interval),
        auto_fulfill=bool(auto_fulfill),
    )
    if settings.entrance_fee < 0 or settings.interval < 0:
        raise ValueError("entrance_fee and interval must be non-negative")
    return settings
