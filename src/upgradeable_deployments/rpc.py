"""JSON-RPC network client for upgradeable-deployments library."""

import time
from typing import Any, Dict, List, Optional, Protocol

import requests
from eth_utils import to_checksum_address

from .constants import DEFAULT_POLL_INTERVAL, DEFAULT_RECEIPT_TIMEOUT, DEFAULT_RPC_TIMEOUT
from .exceptions import DeploymentFailedError, RpcError
from .logging import get_logger
from .logging_tags import RPC

logger = get_logger(__name__)


class NetworkClient(Protocol):
    """What the orchestrator needs from a connection to one chain."""

    def get_chain_id(self) -> int:
        ...

    def deploy_bytecode(self, bytecode: str, tx_params: Dict[str, Any]) -> str:
        ...

    def send_transaction(self, to: str, data: str, tx_params: Dict[str, Any]) -> Dict[str, Any]:
        ...


def rpc_call(
    url: str,
    method: str,
    params: List[Any],
    timeout: int = DEFAULT_RPC_TIMEOUT,
    request_id: int = 1,
) -> Any:
    """
    Perform a single JSON-RPC call.

    Args:
        url: RPC endpoint URL
        method: JSON-RPC method, e.g. "eth_chainId"
        params: Positional parameters
        timeout: HTTP timeout in seconds
        request_id: JSON-RPC request id

    Returns:
        The ``result`` member of the response

    Raises:
        RpcError: On HTTP failure, network error or an RPC error member
    """
    try:
        response = requests.post(
            url,
            json={"jsonrpc": "2.0", "method": method, "params": params, "id": request_id},
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise RpcError(f"Network error during RPC call {method}: {e}") from e

    if response.status_code != 200:
        raise RpcError(f"RPC request {method} failed with status {response.status_code}")

    result = response.json()
    if "error" in result:
        raise RpcError(f"RPC error in {method}: {result['error']}")

    return result.get("result")


def _format_tx(tx_params: Dict[str, Any], **fields: Any) -> Dict[str, Any]:
    tx: Dict[str, Any] = {}
    for key, value in {**tx_params, **fields}.items():
        if value is None:
            continue
        tx[key] = hex(value) if isinstance(value, int) and not isinstance(value, bool) else value
    return tx


class JsonRpcNetworkClient:
    """
    NetworkClient talking to a node over HTTP JSON-RPC.

    Transactions are signed by the node (eth_sendTransaction), so ``from``
    in tx params must be an account the node manages. Every method that
    changes chain state returns only after a successful receipt.
    """

    def __init__(
        self,
        url: str,
        timeout: int = DEFAULT_RPC_TIMEOUT,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.url = url
        self.timeout = timeout
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self._request_id = 0

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        self._request_id += 1
        logger.debug(f"{RPC} {method} {params}")
        return rpc_call(self.url, method, params or [], self.timeout, self._request_id)

    def get_chain_id(self) -> int:
        return int(self.call("eth_chainId"), 16)

    def deploy_bytecode(self, bytecode: str, tx_params: Dict[str, Any]) -> str:
        """
        Send a contract creation transaction and wait for it.

        Returns:
            Checksummed address of the new contract

        Raises:
            DeploymentFailedError: If the receipt reports failure, carries no
                                   contract address, or never arrives
        """
        tx_hash = self.call("eth_sendTransaction", [_format_tx(tx_params, data=bytecode)])
        receipt = self.wait_for_receipt(tx_hash)

        address = receipt.get("contractAddress")
        if not address:
            raise DeploymentFailedError(f"Transaction {tx_hash} did not create a contract")

        logger.info(f"{RPC} Deployed contract at {address} (tx {tx_hash})")
        return to_checksum_address(address)

    def send_transaction(self, to: str, data: str, tx_params: Dict[str, Any]) -> Dict[str, Any]:
        tx_hash = self.call("eth_sendTransaction", [_format_tx(tx_params, to=to, data=data)])
        return self.wait_for_receipt(tx_hash)

    def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """
        Poll until the transaction is mined.

        Raises:
            DeploymentFailedError: On revert (status 0x0) or timeout
        """
        deadline = time.monotonic() + self.receipt_timeout
        while True:
            receipt = self.call("eth_getTransactionReceipt", [tx_hash])
            if receipt is not None:
                break
            if time.monotonic() >= deadline:
                raise DeploymentFailedError(
                    f"Timed out after {self.receipt_timeout}s waiting for transaction {tx_hash}"
                )
            time.sleep(self.poll_interval)

        if receipt.get("status") not in (None, "0x1", 1):
            raise DeploymentFailedError(f"Transaction {tx_hash} reverted")

        return receipt
