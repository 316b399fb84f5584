"""Unit tests for bytecode fingerprinting and library linking."""

import pytest
from eth_utils import encode_hex, keccak

from upgradeable_deployments.bytecode import fingerprint, link, resolve, strip_metadata
from upgradeable_deployments.exceptions import UnresolvedLinkError

PREFIX = "600a600c600039600af3"
RUNTIME = "6080604052348015600f57600080fd5b50"
MATH_LIB = "0x" + "12" * 20

# Placeholder one byte into the runtime, in two styles
NEW_STYLE = "__$" + "0" * 34 + "$__"
OLD_STYLE = "__MathLib" + "_" * 31
LINKED_RUNTIME = "73{placeholder}6080"
LINK_REFS = {"contracts/MathLib.sol": {"MathLib": [{"start": 11, "length": 20}]}}
RUNTIME_OFFSET = 10


def _linked_code(placeholder: str = NEW_STYLE) -> str:
    return "0x" + PREFIX + LINKED_RUNTIME.format(placeholder=placeholder)


class TestFingerprint:
    """Test hash identities of compiled bytecode."""

    def test_is_pure(self):
        """Test that identical inputs always give identical hashes."""
        code = _linked_code()
        assert fingerprint(code, LINK_REFS, RUNTIME_OFFSET) == fingerprint(code, LINK_REFS, RUNTIME_OFFSET)

    def test_ignores_hex_prefix_and_case(self):
        """Test that 0x prefix and hex case do not change the fingerprint."""
        code = PREFIX + RUNTIME
        assert fingerprint(code, {}) == fingerprint("0x" + code.upper(), {})

    def test_placeholder_style_does_not_matter(self):
        """Test that placeholders at the same link reference hash the same."""
        new = fingerprint(_linked_code(NEW_STYLE), LINK_REFS, RUNTIME_OFFSET)
        old = fingerprint(_linked_code(OLD_STYLE), LINK_REFS, RUNTIME_OFFSET)
        assert new == old

    def test_different_code_changes_local_hash(self):
        """Test that changing the runtime changes the local hash."""
        a = fingerprint(PREFIX + RUNTIME, {}, RUNTIME_OFFSET)
        b = fingerprint(PREFIX + RUNTIME + "00", {}, RUNTIME_OFFSET)
        assert a.local_hash != b.local_hash
        assert a.constructor_hash != b.constructor_hash

    def test_constructor_change_keeps_local_hash(self):
        """Test that the local hash only covers the runtime body."""
        a = fingerprint(PREFIX + RUNTIME, {}, RUNTIME_OFFSET)
        b = fingerprint("600b600c600039600af3" + RUNTIME, {}, RUNTIME_OFFSET)
        assert a.local_hash == b.local_hash
        assert a.constructor_hash != b.constructor_hash

    def test_body_hash_ignores_metadata(self):
        """Test that the compiler metadata trailer is excluded from the body hash."""
        a = fingerprint(PREFIX + RUNTIME + "a165730003", {}, RUNTIME_OFFSET)
        b = fingerprint(PREFIX + RUNTIME + "a165740003", {}, RUNTIME_OFFSET)
        assert a.body_hash == b.body_hash
        assert a.local_hash != b.local_hash


class TestStripMetadata:
    """Test removal of the CBOR metadata trailer."""

    def test_strips_cbor_trailer(self):
        """Test that a well-formed trailer is removed."""
        assert strip_metadata("6080604052a165730003") == "6080604052"

    def test_leaves_code_without_trailer(self):
        """Test that code without a plausible trailer is unchanged."""
        assert strip_metadata(RUNTIME) == RUNTIME
        assert strip_metadata("60") == "60"


class TestLink:
    """Test placeholder substitution."""

    def test_substitutes_address(self):
        """Test that the library address replaces the placeholder."""
        linked = link(_linked_code(), LINK_REFS, {"MathLib": MATH_LIB})

        assert linked == "0x" + PREFIX + "73" + "12" * 20 + "6080"

    def test_missing_library_raises(self):
        """Test that a library without an address raises UnresolvedLinkError."""
        with pytest.raises(UnresolvedLinkError) as exc_info:
            link(_linked_code(), LINK_REFS, {})
        assert exc_info.value.missing == ["MathLib"]

    def test_placeholder_without_reference_raises(self):
        """Test that a placeholder no link reference covers is rejected."""
        with pytest.raises(UnresolvedLinkError):
            link(_linked_code(), {}, {})

    def test_invalid_address_raises(self):
        """Test that a malformed library address is rejected."""
        with pytest.raises(ValueError):
            link(_linked_code(), LINK_REFS, {"MathLib": "0x1234"})

    def test_code_without_libraries(self):
        """Test that code without placeholders is returned normalized."""
        assert link(PREFIX + RUNTIME, {}, {}) == "0x" + PREFIX + RUNTIME


class TestResolve:
    """Test deployed hash computation."""

    def test_hash_of_linked_runtime_bytes(self):
        """Test that the deployed hash is keccak of the linked runtime bytes."""
        code = _linked_code()
        local_hash = fingerprint(code, LINK_REFS, RUNTIME_OFFSET).local_hash

        deployed_hash = resolve(local_hash, code, LINK_REFS, {"MathLib": MATH_LIB}, RUNTIME_OFFSET)

        expected = encode_hex(keccak(hexstr="73" + "12" * 20 + "6080"))
        assert deployed_hash == expected

    def test_depends_on_library_address(self):
        """Test that linking another address changes the deployed hash."""
        code = _linked_code()
        local_hash = fingerprint(code, LINK_REFS, RUNTIME_OFFSET).local_hash

        a = resolve(local_hash, code, LINK_REFS, {"MathLib": MATH_LIB}, RUNTIME_OFFSET)
        b = resolve(local_hash, code, LINK_REFS, {"MathLib": "0x" + "34" * 20}, RUNTIME_OFFSET)
        assert a != b

    def test_wrong_local_hash_raises(self):
        """Test that a local hash of other code is rejected."""
        with pytest.raises(ValueError, match="does not match"):
            resolve("0x" + "00" * 32, _linked_code(), LINK_REFS, {"MathLib": MATH_LIB}, RUNTIME_OFFSET)

    def test_unresolved_library_raises(self):
        """Test that resolving without the library address raises."""
        code = _linked_code()
        local_hash = fingerprint(code, LINK_REFS, RUNTIME_OFFSET).local_hash
        with pytest.raises(UnresolvedLinkError):
            resolve(local_hash, code, LINK_REFS, {}, RUNTIME_OFFSET)
