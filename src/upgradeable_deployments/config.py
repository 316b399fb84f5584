"""Network alias configuration for upgradeable-deployments library."""

import json
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .paths import PathLike, get_networks_config_path
from .rpc import JsonRpcNetworkClient

_TX_PARAM_KEYS = ("from", "gas", "gasPrice")


@dataclass
class NetworkConfig:
    """A locally configured way to reach a chain. Several aliases may reach one chain."""

    alias: str
    url: str
    tx_params: Dict[str, Any] = field(default_factory=dict)


def _env_prefix(alias: str) -> str:
    return re.sub(r"[^0-9A-Za-z]", "_", alias).upper()


def load_networks_config(project_root: Optional[PathLike] = None) -> Dict[str, Dict[str, Any]]:
    """
    Load the alias table from ./.upgrades/networks.json.

    Returns:
        Dictionary mapping alias -> {url, from, gas, gasPrice}
        Empty dict if the file doesn't exist
    """
    config_path = get_networks_config_path(project_root)
    try:
        with open(config_path) as f:
            return json.load(f)
    except FileNotFoundError:
        return {}


def load_network_config(alias: str, project_root: Optional[PathLike] = None) -> NetworkConfig:
    """
    Build the configuration for one alias.

    Environment variables <ALIAS>_RPC_URL and <ALIAS>_FROM override the file.

    Raises:
        ValueError: If no RPC URL is configured for the alias
    """
    entry = load_networks_config(project_root).get(alias, {})
    prefix = _env_prefix(alias)

    url = os.environ.get(f"{prefix}_RPC_URL", entry.get("url"))
    if not url:
        raise ValueError(
            f"RPC URL required for network '{alias}': set ${prefix}_RPC_URL "
            "or add it to networks.json"
        )

    tx_params = {key: entry[key] for key in _TX_PARAM_KEYS if key in entry}
    sender = os.environ.get(f"{prefix}_FROM")
    if sender:
        tx_params["from"] = sender

    return NetworkConfig(alias=alias, url=url, tx_params=tx_params)


def connect(
    alias: str, project_root: Optional[PathLike] = None
) -> Tuple[JsonRpcNetworkClient, Dict[str, Any]]:
    """
    Create a JSON-RPC client for a configured alias.

    Returns:
        The client and the alias's default transaction parameters
        (from, gas, gasPrice)
    """
    config = load_network_config(alias, project_root)
    return JsonRpcNetworkClient(config.url), config.tx_params
