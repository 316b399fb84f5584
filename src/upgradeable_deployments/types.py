"""Data types and dataclasses for upgradeable-deployments library."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from .exceptions import ContractNotFoundError


class Severity(Enum):
    """How a storage layout issue affects a push."""

    FATAL = "fatal"
    WARNING = "warning"


class IssueKind(Enum):
    """
    Storage layout issue kinds.

    Value strings are what gets written to reports and logs.
    """

    TYPE_CHANGE = "TypeChange"
    MISSING_VARIABLE = "MissingVariable"
    REORDERED = "Reordered"
    RENAMED = "Renamed"


class WarningKind(Enum):
    """Non-blocking findings recorded on a contract record."""

    STORAGE_RENAMED = "storageRenamed"
    STORAGE_REORDER_ACCEPTED = "storageReorderAccepted"
    HAS_CONSTRUCTOR = "hasConstructor"


@dataclass
class StorageSlot:
    """One state variable in a storage layout. ``position`` is its slot order."""

    contract: str  # Defining contract path, e.g. "contracts/Instance.sol:Instance"
    name: str
    type_ref: str  # Id of a TypeInfo in the same layout
    position: int

    def to_json(self) -> Dict[str, Any]:
        return {
            "contract": self.contract,
            "name": self.name,
            "type": self.type_ref,
            "position": self.position,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "StorageSlot":
        return cls(
            contract=data.get("contract", ""),
            name=data["name"],
            type_ref=data["type"],
            position=data["position"],
        )


@dataclass
class TypeInfo:
    """
    Storage type description referenced by id from slots.

    kind is one of "primitive", "struct", "mapping", "array", "contract".
    Arrays with ``length`` None are dynamic.
    """

    id: str
    kind: str
    label: str = ""
    number_of_bytes: Optional[int] = None
    members: Optional[List[StorageSlot]] = None
    key_type: Optional[str] = None
    value_type: Optional[str] = None
    length: Optional[int] = None

    def to_json(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id, "kind": self.kind, "label": self.label}
        if self.number_of_bytes is not None:
            result["numberOfBytes"] = self.number_of_bytes
        if self.members is not None:
            result["members"] = [m.to_json() for m in self.members]
        if self.key_type is not None:
            result["keyType"] = self.key_type
        if self.value_type is not None:
            result["valueType"] = self.value_type
        if self.length is not None:
            result["length"] = self.length
        return result

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "TypeInfo":
        members = data.get("members")
        return cls(
            id=data["id"],
            kind=data["kind"],
            label=data.get("label", ""),
            number_of_bytes=data.get("numberOfBytes"),
            members=[StorageSlot.from_json(m) for m in members] if members is not None else None,
            key_type=data.get("keyType"),
            value_type=data.get("valueType"),
            length=data.get("length"),
        )


@dataclass(frozen=True)
class StorageIssue:
    """A single finding from comparing two storage layouts."""

    severity: Severity
    kind: IssueKind
    slot_name: str
    path: str  # e.g. "data.owner" or "balances[value]"
    position: int

    @property
    def is_fatal(self) -> bool:
        return self.severity is Severity.FATAL

    def __str__(self) -> str:
        return f"{self.severity.value} {self.kind.value} at position {self.position}: {self.path}"


@dataclass(frozen=True)
class Fingerprint:
    """Hash identities of a compiled contract's bytecode (hex, 0x-prefixed)."""

    constructor_hash: str
    body_hash: str
    local_hash: str


@dataclass
class ContractRecord:
    """A pushed logic contract or library. Replaced wholesale on each push."""

    name: str
    address: str
    constructor_hash: str
    body_hash: str
    local_hash: str
    deployed_hash: str
    types: Dict[str, TypeInfo] = field(default_factory=dict)
    storage: List[StorageSlot] = field(default_factory=list)
    warnings: Set[WarningKind] = field(default_factory=set)

    def to_json(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "constructorHash": self.constructor_hash,
            "bodyHash": self.body_hash,
            "localHash": self.local_hash,
            "deployedHash": self.deployed_hash,
            "types": {type_id: info.to_json() for type_id, info in self.types.items()},
            "storage": [slot.to_json() for slot in self.storage],
            "warnings": sorted(w.value for w in self.warnings),
        }

    @classmethod
    def from_json(cls, name: str, data: Dict[str, Any]) -> "ContractRecord":
        return cls(
            name=name,
            address=data["address"],
            constructor_hash=data.get("constructorHash", ""),
            body_hash=data.get("bodyHash", ""),
            local_hash=data.get("localHash", ""),
            deployed_hash=data.get("deployedHash", ""),
            types={k: TypeInfo.from_json(v) for k, v in data.get("types", {}).items()},
            storage=[StorageSlot.from_json(s) for s in data.get("storage", [])],
            warnings={WarningKind(w) for w in data.get("warnings", [])},
        )


@dataclass
class ProxyRecord:
    """A proxy instance. ``address`` never changes; implementation/version do."""

    address: str
    version: str
    implementation: str
    package: str
    contract: str
    admin: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.package, self.contract)

    def to_json(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "address": self.address,
            "version": self.version,
            "implementation": self.implementation,
        }
        if self.admin is not None:
            result["admin"] = self.admin
        return result

    @classmethod
    def from_json(cls, package: str, contract: str, data: Dict[str, Any]) -> "ProxyRecord":
        return cls(
            address=data["address"],
            version=data["version"],
            implementation=data["implementation"],
            package=package,
            contract=contract,
            admin=data.get("admin"),
        )


@dataclass
class DependencyLink:
    """A dependency as linked into one network ledger."""

    name: str
    requirement: str
    version: str  # Installed version at link time
    package_address: Optional[str] = None
    custom_deploy: bool = False

    def to_json(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "requirement": self.requirement,
            "version": self.version,
        }
        if self.package_address is not None:
            result["package"] = self.package_address
        if self.custom_deploy:
            result["customDeploy"] = True
        return result

    @classmethod
    def from_json(cls, name: str, data: Dict[str, Any]) -> "DependencyLink":
        return cls(
            name=name,
            requirement=data.get("requirement", data.get("version", "")),
            version=data.get("version", ""),
            package_address=data.get("package"),
            custom_deploy=bool(data.get("customDeploy", False)),
        )


@dataclass
class CompiledContract:
    """Compiler output for one contract, as consumed by the orchestrator."""

    name: str
    abi: List[Dict[str, Any]]
    bytecode: str  # Creation bytecode, placeholders unresolved
    deployed_bytecode: str  # Runtime bytecode, placeholders unresolved
    link_references: Dict[str, Dict[str, List[Dict[str, int]]]] = field(default_factory=dict)
    runtime_offset: int = 0  # Byte offset of the runtime body inside ``bytecode``
    storage: List[StorageSlot] = field(default_factory=list)
    types: Dict[str, TypeInfo] = field(default_factory=dict)

    @property
    def linked_libraries(self) -> List[str]:
        """Names of libraries referenced by link placeholders, sorted."""
        return sorted({lib for libs in self.link_references.values() for lib in libs})

    def has_constructor_args(self) -> bool:
        for item in self.abi:
            if item.get("type") == "constructor" and item.get("inputs"):
                return True
        return False


@dataclass
class DeployedProject:
    """Handle on a dependency deployed (or being deployed) to a network."""

    name: str
    version: str
    implementations: Dict[str, str] = field(default_factory=dict)
    libraries: Dict[str, str] = field(default_factory=dict)
    package_address: Optional[str] = None

    def get_implementation(self, contract_name: str) -> str:
        if contract_name not in self.implementations:
            raise ContractNotFoundError(
                f"Contract '{contract_name}' was not deployed for dependency '{self.name}'"
            )
        return self.implementations[contract_name]


@dataclass
class FailedStep:
    """A contract or proxy that failed, with the error that stopped it."""

    name: str
    error: Exception
    path: Optional[str] = None  # Offending slot path for storage failures


@dataclass
class PushReport:
    """Outcome of a batch operation against one network."""

    network: str
    succeeded: List[str] = field(default_factory=list)
    failed: List[FailedStep] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    warnings: Dict[str, List[StorageIssue]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed
