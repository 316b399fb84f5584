"""Contract, library and proxy records of one network ledger."""

from typing import Any, Dict, List, Optional, Set, Tuple

from .exceptions import ContractNotFoundError, DuplicateAddressError, ProxyNotFoundError
from .types import ContractRecord, ProxyRecord


def proxy_key(package: str, contract: str) -> str:
    """Serialized proxy key, e.g. "my-project/Instance"."""
    return f"{package}/{contract}"


def split_proxy_key(key: str) -> Tuple[str, str]:
    # Package names may be scoped ("@org/pkg"); contract names never hold "/"
    package, _, contract = key.rpartition("/")
    return package, contract


class AddressBook:
    """
    Records owned by value, cross-referenced by name and address only.

    Proxies sharing a (package, contract) key are kept in creation order.
    A proxy address appears at most once across all keys.
    """

    def __init__(
        self,
        contracts: Optional[Dict[str, ContractRecord]] = None,
        solidity_libs: Optional[Dict[str, ContractRecord]] = None,
        proxies: Optional[Dict[str, List[ProxyRecord]]] = None,
    ):
        self.contracts: Dict[str, ContractRecord] = dict(contracts or {})
        self.solidity_libs: Dict[str, ContractRecord] = dict(solidity_libs or {})
        self.proxies: Dict[str, List[ProxyRecord]] = {k: list(v) for k, v in (proxies or {}).items()}

    # Contracts

    def has_contract(self, name: str) -> bool:
        return name in self.contracts

    def contract(self, name: str) -> ContractRecord:
        if name not in self.contracts:
            raise ContractNotFoundError(f"Contract '{name}' has not been pushed")
        return self.contracts[name]

    def set_contract(self, record: ContractRecord) -> None:
        self.contracts[record.name] = record

    def remove_contract(self, name: str) -> None:
        self.contract(name)
        del self.contracts[name]

    def solidity_lib(self, name: str) -> Optional[ContractRecord]:
        return self.solidity_libs.get(name)

    def set_solidity_lib(self, record: ContractRecord) -> None:
        self.solidity_libs[record.name] = record

    def contract_addresses(self) -> Set[str]:
        """Lowercased addresses of every pushed contract and library."""
        records = list(self.contracts.values()) + list(self.solidity_libs.values())
        return {record.address.lower() for record in records}

    # Proxies

    def proxy_addresses(self) -> Set[str]:
        return {proxy.address.lower() for proxy in self.all_proxies()}

    def all_proxies(self) -> List[ProxyRecord]:
        return [proxy for records in self.proxies.values() for proxy in records]

    def proxies_of(self, package: str, contract: str) -> List[ProxyRecord]:
        return list(self.proxies.get(proxy_key(package, contract), []))

    def add_proxy(self, record: ProxyRecord) -> None:
        """
        Append a proxy under its key.

        Raises:
            DuplicateAddressError: If the address is already recorded
        """
        if record.address.lower() in self.proxy_addresses():
            raise DuplicateAddressError(f"Proxy address {record.address} is already recorded")
        self.proxies.setdefault(proxy_key(record.package, record.contract), []).append(record)

    def find_proxy(self, address: str) -> ProxyRecord:
        for proxy in self.all_proxies():
            if proxy.address.lower() == address.lower():
                return proxy
        raise ProxyNotFoundError(f"No proxy recorded at {address}")

    def update_proxy(self, address: str, implementation: str, version: str) -> ProxyRecord:
        """Point an existing proxy at a new implementation. Its address is kept."""
        proxy = self.find_proxy(address)
        proxy.implementation = implementation
        proxy.version = version
        return proxy

    # Serialization

    def to_json(self) -> Dict[str, Any]:
        return {
            "contracts": {name: r.to_json() for name, r in sorted(self.contracts.items())},
            "solidityLibs": {name: r.to_json() for name, r in sorted(self.solidity_libs.items())},
            "proxies": {
                key: [proxy.to_json() for proxy in records]
                for key, records in sorted(self.proxies.items())
            },
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "AddressBook":
        proxies: Dict[str, List[ProxyRecord]] = {}
        for key, records in data.get("proxies", {}).items():
            package, contract = split_proxy_key(key)
            proxies[key] = [ProxyRecord.from_json(package, contract, r) for r in records]

        return cls(
            contracts={n: ContractRecord.from_json(n, r) for n, r in data.get("contracts", {}).items()},
            solidity_libs={
                n: ContractRecord.from_json(n, r) for n, r in data.get("solidityLibs", {}).items()
            },
            proxies=proxies,
        )
