"""Bytecode fingerprinting and library linking for upgradeable-deployments library."""

import re
from typing import Callable, Dict, List, Mapping, Tuple

from eth_utils import encode_hex, is_address, keccak, remove_0x_prefix

from .exceptions import UnresolvedLinkError
from .types import Fingerprint

LinkReferences = Mapping[str, Mapping[str, List[Dict[str, int]]]]

_NON_HEX = re.compile(r"[^0-9a-f]")


def _normalize(bytecode: str) -> str:
    return remove_0x_prefix(bytecode.strip()).lower()


def _placeholder_ranges(link_refs: LinkReferences) -> List[Tuple[int, int, str]]:
    """
    Flatten a compiler link reference table into hex-character ranges.

    Args:
        link_refs: {source_file: {library: [{"start": bytes, "length": bytes}]}}

    Returns:
        Sorted list of (hex_start, hex_end, library_name)
    """
    ranges = []
    for libraries in link_refs.values():
        for library, refs in libraries.items():
            for ref in refs:
                start = ref["start"] * 2
                ranges.append((start, start + ref["length"] * 2, library))
    return sorted(ranges)


def _substitute(
    code: str, ranges: List[Tuple[int, int, str]], replacement: Callable[[str, int], str]
) -> str:
    parts = []
    cursor = 0
    for start, end, library in ranges:
        if start < cursor or end > len(code):
            raise ValueError(
                f"Link reference for '{library}' at byte {start // 2} is outside the bytecode"
            )
        parts.append(code[cursor:start])
        parts.append(replacement(library, end - start))
        cursor = end
    parts.append(code[cursor:])
    return "".join(parts)


def _canonical_placeholder(library: str, width: int) -> str:
    # Same library always maps to the same marker, whatever placeholder style
    # the compiler emitted.
    marker = "__" + remove_0x_prefix(encode_hex(keccak(text=library)))
    return (marker + "_" * width)[: width - 2] + "__"


def _hash_text(code: str) -> str:
    return encode_hex(keccak(text=code))


def strip_metadata(runtime: str) -> str:
    """
    Remove the trailing CBOR metadata block the compiler appends to runtime code.

    The last two bytes encode the CBOR length. Code that does not end in a
    plausible CBOR map is returned unchanged.
    """
    if len(runtime) < 4 or _NON_HEX.search(runtime[-4:]):
        return runtime
    cbor_length = int(runtime[-4:], 16)
    total = (cbor_length + 2) * 2
    if cbor_length == 0 or total > len(runtime):
        return runtime
    cbor_head = runtime[-total : -total + 2]
    if cbor_head not in ("a1", "a2", "a3", "a4", "a5"):
        return runtime
    return runtime[:-total]


def fingerprint(bytecode: str, link_refs: LinkReferences, runtime_offset: int = 0) -> Fingerprint:
    """
    Derive the hash identities of compiled bytecode.

    Args:
        bytecode: Creation bytecode (hex), library placeholders unresolved
        link_refs: Compiler link reference table, offsets into ``bytecode``
        runtime_offset: Byte offset where the runtime body starts, as reported
                        by the compiler

    Returns:
        Fingerprint with constructor_hash (full bytecode), body_hash (runtime
        without metadata) and local_hash (runtime with placeholders)

    Hashes are keccak-256 over the normalized hex text, so they are defined
    while placeholders are still present.
    """
    code = _normalize(bytecode)
    canonical = _substitute(code, _placeholder_ranges(link_refs), _canonical_placeholder)
    runtime = canonical[runtime_offset * 2 :]

    return Fingerprint(
        constructor_hash=_hash_text(canonical),
        body_hash=_hash_text(strip_metadata(runtime)),
        local_hash=_hash_text(runtime),
    )


def link(bytecode: str, link_refs: LinkReferences, resolved_addresses: Mapping[str, str]) -> str:
    """
    Replace every library placeholder with the library's 20-byte address.

    Args:
        bytecode: Bytecode (hex) with placeholders
        link_refs: Compiler link reference table for ``bytecode``
        resolved_addresses: Library name -> deployed address

    Returns:
        Linked bytecode, 0x-prefixed

    Raises:
        UnresolvedLinkError: If a referenced library has no address, or a
                             placeholder is left that no link reference covers
    """
    ranges = _placeholder_ranges(link_refs)

    missing = sorted({library for _, _, library in ranges if library not in resolved_addresses})
    if missing:
        raise UnresolvedLinkError(
            f"Missing addresses for libraries: {', '.join(missing)}", missing=missing
        )

    for library in {library for _, _, library in ranges}:
        if not is_address(resolved_addresses[library]):
            raise ValueError(f"Invalid address for library '{library}': {resolved_addresses[library]}")

    def _address_of(library: str, width: int) -> str:
        return _normalize(resolved_addresses[library]).rjust(width, "0")

    linked = _substitute(_normalize(bytecode), ranges, _address_of)

    if _NON_HEX.search(linked):
        raise UnresolvedLinkError("Bytecode contains placeholders without a link reference")

    return "0x" + linked


def resolve(
    local_hash: str,
    bytecode: str,
    link_refs: LinkReferences,
    resolved_addresses: Mapping[str, str],
    runtime_offset: int = 0,
) -> str:
    """
    Compute the deployed hash of bytecode once its libraries are linked.

    Args:
        local_hash: Local hash previously returned by fingerprint() for this bytecode
        bytecode: Creation bytecode (hex) with placeholders
        link_refs: Compiler link reference table for ``bytecode``
        resolved_addresses: Library name -> deployed address
        runtime_offset: Byte offset where the runtime body starts

    Returns:
        keccak-256 of the linked runtime bytes (0x-prefixed hex), which is
        what the chain reports as the code hash

    Raises:
        ValueError: If ``local_hash`` does not belong to ``bytecode``
        UnresolvedLinkError: If a placeholder has no resolved address
    """
    expected = fingerprint(bytecode, link_refs, runtime_offset).local_hash
    if expected != local_hash:
        raise ValueError(f"Local hash {local_hash} does not match the given bytecode ({expected})")

    linked = remove_0x_prefix(link(bytecode, link_refs, resolved_addresses))
    return encode_hex(keccak(hexstr=linked[runtime_offset * 2 :]))
