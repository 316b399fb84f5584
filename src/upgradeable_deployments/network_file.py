"""Per-network deployment ledger for upgradeable-deployments library."""

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

import semantic_version
from eth_utils import encode_hex, keccak

from .address_book import AddressBook
from .constants import LOCK_SUFFIX, MANIFEST_VERSION, SINGLETON_KINDS
from .exceptions import ConcurrentWriteError, LedgerIntegrityError, NetworkFileNotFoundError
from .logging import get_logger
from .logging_tags import LEDGER
from .types import ContractRecord, DependencyLink, ProxyRecord

logger = get_logger(__name__)


def _stamp_of(path: Path) -> Optional[str]:
    try:
        return encode_hex(keccak(path.read_bytes()))
    except FileNotFoundError:
        return None


@contextmanager
def _locked(path: Path) -> Iterator[None]:
    """Hold an exclusive lock on the ledger's sidecar <ledger>.lock file."""
    lock_path = path.with_suffix(path.suffix + LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


class NetworkFile:
    """
    Authoritative record of what a project has on one network.

    The ledger is single-writer: save() only succeeds if the file on disk is
    still the one this object was loaded from (compare-and-swap on a hash of
    its bytes). Otherwise ConcurrentWriteError is raised and nothing is
    written.
    """

    def __init__(
        self,
        path: Union[Path, str],
        network: str,
        app_version: str = "0.1.0",
        book: Optional[AddressBook] = None,
        proxy_admin: Optional[str] = None,
        app: Optional[str] = None,
        package: Optional[str] = None,
        provider: Optional[str] = None,
        dependencies: Optional[Dict[str, DependencyLink]] = None,
        manifest_version: str = MANIFEST_VERSION,
        stamp: Optional[str] = None,
    ):
        self.path = Path(path)
        self.network = network
        self.app_version = app_version
        self.book = book or AddressBook()
        self.singletons: Dict[str, Optional[str]] = {
            "proxyAdmin": proxy_admin,
            "app": app,
            "package": package,
            "provider": provider,
        }
        self.dependencies: Dict[str, DependencyLink] = dict(dependencies or {})
        self.manifest_version = manifest_version
        self._stamp = stamp

    @classmethod
    def load(cls, path: Union[Path, str], network: str) -> "NetworkFile":
        """
        Load a ledger from disk.

        Raises:
            NetworkFileNotFoundError: If the project was never pushed to this network
        """
        path = Path(path)
        try:
            raw = path.read_bytes()
        except FileNotFoundError as e:
            raise NetworkFileNotFoundError(
                f"Could not find a project file for network '{network}' at {path}"
            ) from e

        data = json.loads(raw)
        return cls(
            path=path,
            network=network,
            app_version=data.get("appVersion", "0.1.0"),
            book=AddressBook.from_json(data),
            proxy_admin=(data.get("proxyAdmin") or {}).get("address"),
            app=(data.get("app") or {}).get("address"),
            package=(data.get("package") or {}).get("address"),
            provider=(data.get("provider") or {}).get("address"),
            dependencies={
                name: DependencyLink.from_json(name, link)
                for name, link in data.get("dependencies", {}).items()
            },
            manifest_version=data.get("manifestVersion", MANIFEST_VERSION),
            stamp=encode_hex(keccak(raw)),
        )

    @classmethod
    def load_or_create(
        cls, path: Union[Path, str], network: str, app_version: str = "0.1.0"
    ) -> "NetworkFile":
        """Load a ledger, or start an empty one (written on first save)."""
        try:
            return cls.load(path, network)
        except NetworkFileNotFoundError:
            logger.debug(f"{LEDGER} Starting new ledger for '{network}' at {path}")
            return cls(path=path, network=network, app_version=app_version)

    # Persistence

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "manifestVersion": self.manifest_version,
            "appVersion": self.app_version,
        }
        data.update(self.book.to_json())
        for kind in SINGLETON_KINDS:
            if self.singletons[kind] is not None:
                data[kind] = {"address": self.singletons[kind]}
        data["dependencies"] = {
            name: link.to_json() for name, link in sorted(self.dependencies.items())
        }
        return data

    def save(self) -> None:
        """
        Write the ledger atomically.

        Raises:
            ConcurrentWriteError: If another writer changed the file since load
        """
        payload = json.dumps(self.to_json(), indent=2).encode()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Held from the stamp check until the new file is in place
        with _locked(self.path):
            current = _stamp_of(self.path)
            if current != self._stamp:
                raise ConcurrentWriteError(
                    f"Ledger {self.path} was modified by another writer; reload and retry"
                )

            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise

        self._stamp = encode_hex(keccak(payload))
        logger.info(f"{LEDGER} Saved ledger for '{self.network}' to {self.path}")

    # Records

    @property
    def contracts(self) -> Dict[str, ContractRecord]:
        return self.book.contracts

    @property
    def solidity_libs(self) -> Dict[str, ContractRecord]:
        return self.book.solidity_libs

    @property
    def proxies(self) -> Dict[str, List[ProxyRecord]]:
        return self.book.proxies

    def has_contract(self, name: str) -> bool:
        return self.book.has_contract(name)

    def contract(self, name: str) -> ContractRecord:
        return self.book.contract(name)

    def set_contract(self, record: ContractRecord) -> None:
        self.book.set_contract(record)

    def add_proxy(self, record: ProxyRecord) -> None:
        self.book.add_proxy(record)

    def proxies_of(self, package: str, contract: str) -> List[ProxyRecord]:
        return self.book.proxies_of(package, contract)

    def is_app_owned(self, proxy: ProxyRecord) -> bool:
        return proxy.package not in self.dependencies

    # Singletons

    @property
    def proxy_admin(self) -> Optional[str]:
        return self.singletons["proxyAdmin"]

    @property
    def app(self) -> Optional[str]:
        return self.singletons["app"]

    @property
    def package(self) -> Optional[str]:
        return self.singletons["package"]

    @property
    def provider(self) -> Optional[str]:
        return self.singletons["provider"]

    @property
    def is_published(self) -> bool:
        return any(self.singletons[kind] for kind in ("app", "package", "provider"))

    def set_singleton(self, kind: str, address: str) -> None:
        if kind not in SINGLETON_KINDS:
            raise ValueError(f"Unknown singleton kind '{kind}'")
        self.singletons[kind] = address

    # Dependencies

    def dependency(self, name: str) -> Optional[DependencyLink]:
        return self.dependencies.get(name)

    def set_dependency(self, link: DependencyLink) -> None:
        self.dependencies[link.name] = link

    def unset_dependency(self, name: str) -> None:
        self.dependencies.pop(name, None)

    # Versions and integrity

    def bump_app_version(self, version: str) -> None:
        """
        Set the version new and updated app-owned proxies are recorded at.

        Raises:
            ValueError: If the version is invalid or below the version of an
                        existing app-owned proxy
        """
        if not semantic_version.validate(version):
            raise ValueError(f"'{version}' is not a valid semantic version")

        new_version = semantic_version.Version(version)
        for proxy in self.book.all_proxies():
            if self.is_app_owned(proxy) and semantic_version.Version(proxy.version) > new_version:
                raise ValueError(
                    f"App version {version} would be below proxy {proxy.address} at version {proxy.version}"
                )
        self.app_version = version

    def check_integrity(self, dependency_addresses: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        """
        Verify the ledger's cross references.

        Args:
            dependency_addresses: Dependency name -> implementation addresses
                                  from that dependency's own ledger. Proxies
                                  of dependencies not listed are not checked.

        Raises:
            LedgerIntegrityError: Listing every dangling implementation and
                                  any app proxy newer than app_version
        """
        known = {
            name: {address.lower() for address in addresses}
            for name, addresses in (dependency_addresses or {}).items()
        }
        own_addresses = self.book.contract_addresses()
        app_version = semantic_version.Version(self.app_version)
        problems = []

        for proxy in self.book.all_proxies():
            if self.is_app_owned(proxy):
                if proxy.implementation.lower() not in own_addresses:
                    problems.append(f"proxy {proxy.address} points to unknown implementation {proxy.implementation}")
                if semantic_version.Version(proxy.version) > app_version:
                    problems.append(f"proxy {proxy.address} version {proxy.version} is above app version {self.app_version}")
            elif proxy.package in known and proxy.implementation.lower() not in known[proxy.package]:
                problems.append(
                    f"proxy {proxy.address} points to {proxy.implementation}, "
                    f"not an implementation of '{proxy.package}'"
                )

        if problems:
            raise LedgerIntegrityError(f"Ledger for '{self.network}' is inconsistent: " + "; ".join(problems))
