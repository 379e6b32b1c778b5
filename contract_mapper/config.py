import os
import logging
from dataclasses import dataclass, fields
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = "config.yaml"

NETWORKS: Dict[str, Dict] = {
    "base-mainnet": {
        "rpc_url": "https://mainnet.base.org",
        "explorer_url": "https://api.basescan.org/api",
        "chain_id": 8453,
        "rpc_env": "BASE_RPC_URL",
    },
    "base-sepolia": {
        "rpc_url": "https://sepolia.base.org",
        "explorer_url": "https://api-sepolia.basescan.org/api",
        "chain_id": 84532,
        "rpc_env": "BASE_SEPOLIA_RPC_URL",
    },
    "eth": {
        "rpc_url": "https://eth.llamarpc.com",
        "explorer_url": "https://api.etherscan.io/api",
        "chain_id": 1,
        "rpc_env": "ETH_RPC_URL",
    },
}

DECOMPILERS = ("panoramix", "none")

API_KEY_ENV_VARS = ("EXPLORER_API_KEY", "BASESCAN_API_KEY", "ETHERSCAN_API_KEY")


@dataclass
class Settings:
    network: str = "base-mainnet"
    rpc_url: Optional[str] = None
    explorer_url: Optional[str] = None
    explorer_api_key: str = ""
    chain_id: Optional[int] = None
    send_chain_id: bool = False
    max_contracts: int = 100
    max_hardcoded_per_file: int = 20
    max_declared_per_file: int = 20
    max_hardcoded_enqueued: int = 10
    internal_tx_page_size: int = 50
    explorer_min_delay: float = 0.5
    request_timeout: int = 30
    decompiler: str = "panoramix"
    decompile_timeout: int = 120
    output_dir: str = "output"


def _read_yaml(config_path: str) -> Dict:
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ValueError(f"Error loading config file {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")
    return data


def _env_values(network: str) -> Dict:
    values = {}
    rpc = os.getenv("RPC_URL") or os.getenv(NETWORKS.get(network, {}).get("rpc_env", ""), "")
    if rpc:
        values["rpc_url"] = rpc
    for var in API_KEY_ENV_VARS:
        key = os.getenv(var)
        if key:
            values["explorer_api_key"] = key
            break
    if os.getenv("EXPLORER_URL"):
        values["explorer_url"] = os.getenv("EXPLORER_URL")
    return values


def load_config(config_path: Optional[str] = None, **overrides) -> Settings:
    """
    Build the run settings.

    Precedence, lowest first: defaults, YAML file, environment (.env is
    loaded), keyword overrides. Overrides whose value is None are ignored
    so CLI flags that were not given do not mask lower layers.
    """
    load_dotenv()

    known = {f.name for f in fields(Settings)}
    merged: Dict = {}

    path = config_path or DEFAULT_CONFIG_PATH
    if config_path or os.path.exists(path):
        file_values = _read_yaml(path)
        unknown = set(file_values) - known
        if unknown:
            logging.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        merged.update({k: v for k, v in file_values.items() if k in known})
        logging.debug(f"Loaded config from {path}")

    network = overrides.get("network") or merged.get("network") or Settings.network
    merged.update(_env_values(network))

    for key, value in overrides.items():
        if value is None:
            continue
        if key not in known:
            raise ValueError(f"Unknown setting: {key}")
        merged[key] = value

    settings = Settings(**merged)

    if settings.network not in NETWORKS:
        raise ValueError(
            f"Unknown network '{settings.network}'. Supported: {', '.join(NETWORKS)}"
        )
    if settings.decompiler not in DECOMPILERS:
        raise ValueError(
            f"Unknown decompiler '{settings.decompiler}'. Supported: {', '.join(DECOMPILERS)}"
        )
    if settings.max_contracts < 1:
        raise ValueError("max_contracts must be at least 1")

    net = NETWORKS[settings.network]
    if not settings.rpc_url:
        settings.rpc_url = net["rpc_url"]
    if not settings.explorer_url:
        settings.explorer_url = net["explorer_url"]
    if settings.chain_id is None:
        settings.chain_id = net["chain_id"]

    if not settings.explorer_api_key:
        logging.warning("No explorer API key configured; explorer lookups may be rate limited or fail")
    return settings
