"""Compiled artifact parsers for upgradeable-deployments library."""

import json
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Union

from eth_utils import remove_0x_prefix

from .exceptions import ContractNotFoundError
from .types import CompiledContract, StorageSlot, TypeInfo

_STATIC_ARRAY_LABEL = re.compile(r"\[(\d+)\]$")


class Compiler(Protocol):
    """Anything that turns contract sources (or names) into compiled contracts."""

    def compile(self, paths: Optional[Iterable[str]] = None) -> Dict[str, CompiledContract]:
        ...


def _type_kind(data: Dict[str, Any]) -> Tuple[str, Optional[int]]:
    """
    Classify a compiler storage type entry.

    Returns:
        Tuple of (kind, static_array_length)
    """
    encoding = data.get("encoding", "inplace")
    label = data.get("label", "")

    if encoding == "mapping":
        return "mapping", None
    if encoding == "dynamic_array":
        return "array", None
    if encoding == "bytes":
        return "primitive", None
    if "members" in data:
        return "struct", None
    if "base" in data:
        match = _STATIC_ARRAY_LABEL.search(label)
        return "array", int(match.group(1)) if match else None
    if label.startswith("contract ") or label.startswith("interface "):
        return "contract", None
    return "primitive", None


def _ordered_slots(entries: List[Dict[str, Any]]) -> List[StorageSlot]:
    ordered = sorted(entries, key=lambda e: (int(e.get("slot", 0)), int(e.get("offset", 0))))
    return [
        StorageSlot(
            contract=entry.get("contract", ""),
            name=entry["label"],
            type_ref=entry["type"],
            position=position,
        )
        for position, entry in enumerate(ordered)
    ]


def parse_storage_layout(data: Dict[str, Any]) -> Tuple[List[StorageSlot], Dict[str, TypeInfo]]:
    """
    Convert compiler storage layout output into slots and a type table.

    Args:
        data: The ``storageLayout`` object ({"storage": [...], "types": {...}})

    Returns:
        Tuple of (slots ordered by storage position, type id -> TypeInfo)
    """
    slots = _ordered_slots(data.get("storage") or [])

    types: Dict[str, TypeInfo] = {}
    for type_id, entry in (data.get("types") or {}).items():
        kind, length = _type_kind(entry)
        number_of_bytes = entry.get("numberOfBytes")
        types[type_id] = TypeInfo(
            id=type_id,
            kind=kind,
            label=entry.get("label", ""),
            number_of_bytes=int(number_of_bytes) if number_of_bytes is not None else None,
            members=_ordered_slots(entry["members"]) if kind == "struct" else None,
            key_type=entry.get("key") if kind == "mapping" else None,
            value_type=entry.get("value") if kind == "mapping" else entry.get("base"),
            length=length,
        )

    return slots, types


def find_runtime_offset(bytecode: str, deployed_bytecode: str) -> int:
    """
    Locate the runtime body inside creation bytecode.

    Returns:
        Byte offset of the runtime, 0 when it cannot be found
    """
    code = remove_0x_prefix(bytecode).lower()
    runtime = remove_0x_prefix(deployed_bytecode).lower()
    if not runtime:
        return len(code) // 2

    index = code.find(runtime)
    while index != -1 and index % 2:
        index = code.find(runtime, index + 1)
    return index // 2 if index > 0 else 0


def parse_artifact(file_path: Path) -> CompiledContract:
    """
    Parse a compiled contract JSON artifact.

    Args:
        file_path: Path to a build artifact (contractName, abi, bytecode,
                   deployedBytecode, optional linkReferences and storageLayout)

    Returns:
        CompiledContract with runtime offset and storage layout filled in
    """
    with open(file_path) as f:
        data = json.load(f)

    bytecode = data.get("bytecode") or "0x"
    deployed_bytecode = data.get("deployedBytecode") or "0x"
    slots, types = parse_storage_layout(data.get("storageLayout") or {})

    return CompiledContract(
        name=data.get("contractName", Path(file_path).stem),
        abi=data.get("abi", []),
        bytecode=bytecode,
        deployed_bytecode=deployed_bytecode,
        link_references=data.get("linkReferences") or {},
        runtime_offset=find_runtime_offset(bytecode, deployed_bytecode),
        storage=slots,
        types=types,
    )


class ArtifactCompiler:
    """
    Reads contracts that an external compiler already wrote to a build directory.

    Compilation itself stays outside this library; this class only turns the
    compiler's JSON output into CompiledContract objects.
    """

    def __init__(self, build_dir: Union[Path, str]):
        self.build_dir = Path(build_dir).absolute()
        self._cache: Dict[str, CompiledContract] = {}

    def compile(self, paths: Optional[Iterable[str]] = None) -> Dict[str, CompiledContract]:
        """
        Load artifacts.

        Args:
            paths: Contract names or artifact paths; all artifacts when None

        Returns:
            Dictionary mapping contract name -> CompiledContract
        """
        if paths is None:
            files = sorted(self.build_dir.glob("*.json"))
        else:
            files = [self._artifact_path(p) for p in paths]

        result: Dict[str, CompiledContract] = {}
        for artifact_file in files:
            if not artifact_file.exists():
                raise ContractNotFoundError(f"No compiled artifact found at {artifact_file}")
            contract = parse_artifact(artifact_file)
            self._cache[contract.name] = contract
            result[contract.name] = contract
        return result

    def get(self, contract_name: str) -> CompiledContract:
        """Return one compiled contract, loading it on first use."""
        if contract_name not in self._cache:
            self.compile([contract_name])
        return self._cache[contract_name]

    def _artifact_path(self, name_or_path: str) -> Path:
        path = Path(name_or_path)
        if path.suffix == ".json":
            return path if path.is_absolute() else self.build_dir / path
        return self.build_dir / f"{name_or_path}.json"
