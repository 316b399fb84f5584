"""
Calls into the fixed on-chain infrastructure contracts.

The proxy, proxy admin, app, package and implementation directory are
prebuilt artifacts supplied by the caller; this module only encodes
constructor arguments and calls for them and sends them through a
NetworkClient.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import semantic_version
from eth_abi import encode
from eth_utils import encode_hex, function_signature_to_4byte_selector, remove_0x_prefix

from .rpc import NetworkClient
from .types import CompiledContract


@dataclass
class FrameworkArtifacts:
    """Compiled infrastructure contracts used to create proxies and publish."""

    proxy: CompiledContract
    proxy_admin: CompiledContract
    app: Optional[CompiledContract] = None
    package: Optional[CompiledContract] = None
    directory: Optional[CompiledContract] = None


def signature_types(signature: str) -> List[str]:
    """Argument types of a signature like "upgrade(address,address)"."""
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [t.strip() for t in inner.split(",") if t.strip()]


def encode_call(signature: str, args: Sequence[Any]) -> str:
    """ABI-encode a function call: 4-byte selector followed by the arguments."""
    selector = function_signature_to_4byte_selector(signature)
    return encode_hex(selector + encode(signature_types(signature), list(args)))


def encode_initializer(method: Optional[str], types: Sequence[str], args: Sequence[Any]) -> str:
    """Encode a one-shot initializer call, or empty calldata when there is none."""
    if not method:
        return "0x"
    return encode_call(f"{method}({','.join(types)})", args)


def encode_deployment(bytecode: str, types: Sequence[str] = (), args: Sequence[Any] = ()) -> str:
    """Append ABI-encoded constructor arguments to creation bytecode."""
    if not types:
        return bytecode
    return bytecode + remove_0x_prefix(encode_hex(encode(list(types), list(args))))


def semver_triple(version: str) -> List[int]:
    parsed = semantic_version.Version(version)
    return [parsed.major, parsed.minor, parsed.patch]


def _require(artifact: Optional[CompiledContract], name: str) -> CompiledContract:
    if artifact is None:
        raise ValueError(f"The {name} artifact is required for this operation")
    return artifact


def deploy_proxy_admin(client: NetworkClient, framework: FrameworkArtifacts, tx_params: Dict[str, Any]) -> str:
    return client.deploy_bytecode(framework.proxy_admin.bytecode, tx_params)


def deploy_proxy(
    client: NetworkClient,
    framework: FrameworkArtifacts,
    implementation: str,
    admin: str,
    init_data: str,
    tx_params: Dict[str, Any],
) -> str:
    """Deploy a proxy forwarding to ``implementation`` and run ``init_data`` through it."""
    data = bytes.fromhex(remove_0x_prefix(init_data))
    bytecode = encode_deployment(
        framework.proxy.bytecode, ["address", "address", "bytes"], [implementation, admin, data]
    )
    return client.deploy_bytecode(bytecode, tx_params)


def upgrade_proxy(
    client: NetworkClient,
    admin: str,
    proxy: str,
    implementation: str,
    init_data: str,
    tx_params: Dict[str, Any],
) -> Dict[str, Any]:
    """Ask the proxy admin to repoint ``proxy``, calling ``init_data`` if given."""
    if init_data and init_data != "0x":
        data = encode_call(
            "upgradeAndCall(address,address,bytes)",
            [proxy, implementation, bytes.fromhex(remove_0x_prefix(init_data))],
        )
    else:
        data = encode_call("upgrade(address,address)", [proxy, implementation])
    return client.send_transaction(admin, data, tx_params)


def deploy_directory(client: NetworkClient, framework: FrameworkArtifacts, tx_params: Dict[str, Any]) -> str:
    artifact = _require(framework.directory, "implementation directory")
    return client.deploy_bytecode(artifact.bytecode, tx_params)


def register_implementation(
    client: NetworkClient, directory: str, contract_name: str, implementation: str, tx_params: Dict[str, Any]
) -> Dict[str, Any]:
    data = encode_call("setImplementation(string,address)", [contract_name, implementation])
    return client.send_transaction(directory, data, tx_params)


def deploy_package(client: NetworkClient, framework: FrameworkArtifacts, tx_params: Dict[str, Any]) -> str:
    artifact = _require(framework.package, "package")
    return client.deploy_bytecode(artifact.bytecode, tx_params)


def add_version(
    client: NetworkClient, package: str, version: str, provider: str, tx_params: Dict[str, Any]
) -> Dict[str, Any]:
    data = encode_call("addVersion(uint64[3],address,bytes)", [semver_triple(version), provider, b""])
    return client.send_transaction(package, data, tx_params)


def deploy_app(client: NetworkClient, framework: FrameworkArtifacts, tx_params: Dict[str, Any]) -> str:
    artifact = _require(framework.app, "app")
    return client.deploy_bytecode(artifact.bytecode, tx_params)


def set_app_package(
    client: NetworkClient, app: str, name: str, package: str, version: str, tx_params: Dict[str, Any]
) -> Dict[str, Any]:
    data = encode_call("setPackage(string,address,uint64[3])", [name, package, semver_triple(version)])
    return client.send_transaction(app, data, tx_params)
