"""Unit tests for the AddressBook and ledger records."""

import pytest

from upgradeable_deployments.address_book import AddressBook, proxy_key, split_proxy_key
from upgradeable_deployments.exceptions import ContractNotFoundError, DuplicateAddressError, ProxyNotFoundError
from upgradeable_deployments.types import ContractRecord, ProxyRecord, StorageSlot, TypeInfo, WarningKind

IMPL_V1 = "0x" + "01" * 20
IMPL_V2 = "0x" + "02" * 20


def _record(name: str = "Instance", address: str = IMPL_V1) -> ContractRecord:
    return ContractRecord(
        name=name,
        address=address,
        constructor_hash="0xc0",
        body_hash="0xb0",
        local_hash="0xa0",
        deployed_hash="0xd0",
        types={"t_uint256": TypeInfo(id="t_uint256", kind="primitive", label="uint256", number_of_bytes=32)},
        storage=[StorageSlot(contract="Instance", name="value", type_ref="t_uint256", position=0)],
        warnings={WarningKind.STORAGE_RENAMED},
    )


def _proxy(address: str, implementation: str = IMPL_V1, package: str = "my-project") -> ProxyRecord:
    return ProxyRecord(address=address, version="0.1.0", implementation=implementation, package=package, contract="Instance")


class TestProxyKeys:
    """Test serialized proxy keys."""

    def test_round_trip(self):
        """Test that keys split back into package and contract."""
        assert proxy_key("my-project", "Instance") == "my-project/Instance"
        assert split_proxy_key("my-project/Instance") == ("my-project", "Instance")

    def test_scoped_package(self):
        """Test that scoped package names keep their slash."""
        assert split_proxy_key("@org/pkg/Greeter") == ("@org/pkg", "Greeter")


class TestContracts:
    """Test contract records."""

    def test_set_replaces_wholesale(self):
        """Test that a second push replaces the record instead of merging."""
        book = AddressBook()
        book.set_contract(_record())
        replacement = _record(address=IMPL_V2)
        replacement.warnings = set()
        book.set_contract(replacement)

        assert book.contract("Instance").address == IMPL_V2
        assert book.contract("Instance").warnings == set()

    def test_missing_contract_raises(self):
        """Test that unknown contracts raise ContractNotFoundError."""
        with pytest.raises(ContractNotFoundError):
            AddressBook().contract("Instance")

    def test_addresses_include_libraries(self):
        """Test that contract_addresses covers contracts and libraries, lowercased."""
        book = AddressBook()
        book.set_contract(_record(address="0x" + "AB" * 20))
        book.set_solidity_lib(_record(name="MathLib", address=IMPL_V2))

        assert book.contract_addresses() == {"0x" + "ab" * 20, IMPL_V2}


class TestProxies:
    """Test proxy records."""

    def test_proxies_kept_in_creation_order(self):
        """Test that proxies of one key keep their creation order."""
        book = AddressBook()
        book.add_proxy(_proxy("0x" + "a1" * 20))
        book.add_proxy(_proxy("0x" + "a2" * 20))

        assert [p.address for p in book.proxies_of("my-project", "Instance")] == ["0x" + "a1" * 20, "0x" + "a2" * 20]

    def test_duplicate_address_rejected(self):
        """Test that a proxy address appears at most once in the ledger."""
        book = AddressBook()
        book.add_proxy(_proxy("0x" + "a1" * 20))

        with pytest.raises(DuplicateAddressError):
            book.add_proxy(_proxy("0x" + "A1" * 20, package="mock-pkg"))

    def test_update_keeps_address_and_others(self):
        """Test that updating the first of two proxies leaves the second unchanged."""
        book = AddressBook()
        book.add_proxy(_proxy("0x" + "a1" * 20))
        book.add_proxy(_proxy("0x" + "a2" * 20))

        book.update_proxy("0x" + "a1" * 20, IMPL_V2, "0.2.0")

        first, second = book.proxies_of("my-project", "Instance")
        assert (first.address, first.implementation, first.version) == ("0x" + "a1" * 20, IMPL_V2, "0.2.0")
        assert (second.implementation, second.version) == (IMPL_V1, "0.1.0")

    def test_find_unknown_proxy_raises(self):
        """Test that an unknown proxy address raises ProxyNotFoundError."""
        with pytest.raises(ProxyNotFoundError):
            AddressBook().find_proxy("0x" + "a1" * 20)


class TestSerialization:
    """Test JSON persistence of the book."""

    def test_round_trip(self):
        """Test that to_json/from_json keep every field."""
        book = AddressBook()
        book.set_contract(_record())
        book.set_solidity_lib(_record(name="MathLib", address=IMPL_V2))
        book.add_proxy(_proxy("0x" + "a1" * 20))

        data = book.to_json()
        restored = AddressBook.from_json(data)

        assert set(data) == {"contracts", "solidityLibs", "proxies"}
        assert data["contracts"]["Instance"]["warnings"] == ["storageRenamed"]
        assert restored.contract("Instance") == book.contract("Instance")
        assert restored.proxies_of("my-project", "Instance") == book.proxies_of("my-project", "Instance")
        assert restored.solidity_lib("MathLib").address == IMPL_V2
