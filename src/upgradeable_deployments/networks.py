"""Network identity resolution for upgradeable-deployments library."""

from typing import Protocol

from .constants import DEV_NETWORK_PREFIX, NETWORK_NAMES


class ChainIdSource(Protocol):
    def get_chain_id(self) -> int:
        ...


def network_name(chain_id: int) -> str:
    """
    Map a canonical chain id to the stem of its ledger file.

    Args:
        chain_id: Protocol-level numeric chain id

    Returns:
        Public network name (e.g. "ropsten") or "dev-<chain_id>" for any
        chain id not in NETWORK_NAMES
    """
    if chain_id in NETWORK_NAMES:
        return NETWORK_NAMES[chain_id]
    return f"{DEV_NETWORK_PREFIX}{chain_id}"


def network_file_name(chain_id: int) -> str:
    """Return the ledger file name for a chain id, e.g. "ropsten.json"."""
    return f"{network_name(chain_id)}.json"


def is_dev_network(name: str) -> bool:
    """Check whether a ledger name belongs to a private or ephemeral chain."""
    return name.startswith(DEV_NETWORK_PREFIX)


def resolve_network_name(client: ChainIdSource) -> str:
    """
    Ask the connected node for its chain id and name the ledger after it.

    Whatever local alias was used to reach the node, the same chain always
    yields the same name.
    """
    return network_name(client.get_chain_id())
