"""Shared pytest fixtures for upgradeable-deployments tests."""

import json
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from eth_utils import to_checksum_address

from upgradeable_deployments.exceptions import DeploymentFailedError
from upgradeable_deployments.framework import FrameworkArtifacts
from upgradeable_deployments.orchestrator import DeploymentOrchestrator, SessionContext
from upgradeable_deployments.project_file import ProjectFile
from upgradeable_deployments.types import CompiledContract

# Creation prefix that copies the runtime into memory and returns it
CONSTRUCTOR_PREFIX = "600a600c600039600af3"

# 20-byte library placeholder as emitted by solc >= 0.5
LIBRARY_PLACEHOLDER = "__$" + "0" * 34 + "$__"

UINT256 = {"encoding": "inplace", "label": "uint256", "numberOfBytes": "32"}
ADDRESS = {"encoding": "inplace", "label": "address", "numberOfBytes": "20"}


class FakeNetworkClient:
    """
    In-memory NetworkClient.

    Contract addresses are handed out sequentially (0x...01, 0x...02, ...).
    Setting ``fail_at`` to N makes the N-th deployment, and every one after
    it, fail the way a reverted transaction would. Selectors listed in
    ``fail_calls`` make the next call starting with them revert once.
    """

    def __init__(self, chain_id: int = 3):
        self.chain_id = chain_id
        self.deployed: List[str] = []
        self.transactions: List[Tuple[str, str]] = []
        self.fail_at: Optional[int] = None
        self.fail_calls: List[str] = []

    def get_chain_id(self) -> int:
        return self.chain_id

    def deploy_bytecode(self, bytecode: str, tx_params: Dict[str, Any]) -> str:
        if self.fail_at is not None and len(self.deployed) + 1 >= self.fail_at:
            raise DeploymentFailedError("Transaction reverted")
        self.deployed.append(bytecode)
        return to_checksum_address(f"0x{len(self.deployed):040x}")

    def send_transaction(self, to: str, data: str, tx_params: Dict[str, Any]) -> Dict[str, Any]:
        for selector in self.fail_calls:
            if data.startswith(selector):
                self.fail_calls.remove(selector)
                raise DeploymentFailedError("Transaction reverted")
        self.transactions.append((to, data))
        return {"status": "0x1", "transactionHash": f"0x{len(self.transactions):064x}"}


class FakeInstaller:
    """PackageInstaller that copies packages from a local source directory."""

    def __init__(self, source_dir: Path, project_root: Path):
        self.source_dir = source_dir
        self.project_root = project_root
        self.installed: List[str] = []

    def install(self, name_at_version: str) -> None:
        name = name_at_version.rpartition("@")[0] or name_at_version
        shutil.copytree(self.source_dir / name, self.project_root / "node_modules" / name)
        self.installed.append(name_at_version)


def storage_layout(
    variables: Sequence[Tuple[str, str]],
    types: Optional[Dict[str, Dict[str, Any]]] = None,
    contract: str = "contracts/Instance.sol:Instance",
) -> Dict[str, Any]:
    """Build a solc storageLayout object with one slot per variable."""
    return {
        "storage": [
            {"astId": i + 1, "contract": contract, "label": label, "offset": 0, "slot": str(i), "type": type_id}
            for i, (label, type_id) in enumerate(variables)
        ],
        "types": types or {"t_uint256": UINT256, "t_address": ADDRESS},
    }


def write_artifact(
    build_dir: Path,
    name: str,
    runtime: str,
    variables: Sequence[Tuple[str, str]] = (),
    types: Optional[Dict[str, Dict[str, Any]]] = None,
    link_references: Optional[Dict[str, Any]] = None,
    abi: Optional[List[Dict[str, Any]]] = None,
) -> Path:
    """Write a build artifact whose creation code is CONSTRUCTOR_PREFIX + runtime."""
    build_dir.mkdir(parents=True, exist_ok=True)
    path = build_dir / f"{name}.json"
    with open(path, "w") as f:
        json.dump(
            {
                "contractName": name,
                "abi": abi or [],
                "bytecode": "0x" + CONSTRUCTOR_PREFIX + runtime,
                "deployedBytecode": "0x" + runtime,
                "linkReferences": link_references or {},
                "storageLayout": storage_layout(variables, types),
            },
            f,
            indent=2,
        )
    return path


def linked_runtime(library: str, variant: str = "01") -> Tuple[str, Dict[str, Any]]:
    """
    Runtime code calling ``library``, plus its creation-code link references.

    The placeholder sits one byte into the runtime.
    """
    runtime = "73" + LIBRARY_PLACEHOLDER + "6080" + variant
    start = len(CONSTRUCTOR_PREFIX) // 2 + 1
    return runtime, {"contracts/Lib.sol": {library: [{"start": start, "length": 20}]}}


def _infrastructure(name: str, code: str) -> CompiledContract:
    return CompiledContract(name=name, abi=[], bytecode="0x" + code, deployed_bytecode="0x" + code)


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the path to the fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Create a project with one contract alias (Instance) at version 0.1.0."""
    project = ProjectFile.create(tmp_path / ".upgrades" / "project.json", name="my-project", version="0.1.0")
    project.add_contract("Instance")
    project.save()
    return tmp_path


@pytest.fixture
def build_dir(project_root: Path) -> Path:
    """Return the project's build artifact directory."""
    path = project_root / "build" / "contracts"
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def client() -> FakeNetworkClient:
    """Return an in-memory client connected to chain id 3."""
    return FakeNetworkClient(chain_id=3)


@pytest.fixture
def framework_artifacts() -> FrameworkArtifacts:
    """Return minimal infrastructure artifacts for proxies and publishing."""
    return FrameworkArtifacts(
        proxy=_infrastructure("AdminUpgradeabilityProxy", "6001"),
        proxy_admin=_infrastructure("ProxyAdmin", "6002"),
        app=_infrastructure("App", "6003"),
        package=_infrastructure("Package", "6004"),
        directory=_infrastructure("ImplementationDirectory", "6005"),
    )


@pytest.fixture
def install_mock_pkg(fixtures_dir: Path, project_root: Path):
    """Copy the mock-pkg fixture package into the project's node_modules."""

    def _install() -> Path:
        target = project_root / "node_modules" / "mock-pkg"
        if target.exists():
            return target
        shutil.copytree(fixtures_dir / "packages" / "mock-pkg", target)
        return target

    return _install


@pytest.fixture
def installer(fixtures_dir: Path, project_root: Path) -> FakeInstaller:
    """Return an installer that copies from the fixture packages directory."""
    return FakeInstaller(fixtures_dir / "packages", project_root)


@pytest.fixture
def make_orchestrator(project_root: Path, build_dir: Path, client: FakeNetworkClient, framework_artifacts, installer):
    """Return a factory opening a fresh session and orchestrator on the project."""

    def _make(allow_dependency_deploy: bool = False) -> DeploymentOrchestrator:
        context = SessionContext.open(
            client,
            project_root=project_root,
            tx_params={"from": "0x" + "ab" * 20},
            framework_artifacts=framework_artifacts,
            installer=installer,
            allow_dependency_deploy=allow_dependency_deploy,
        )
        return DeploymentOrchestrator(context)

    return _make


@pytest.fixture
def write_contract(build_dir: Path):
    """Return a writer for build artifacts in the project's build directory."""

    def _write(name: str, runtime: str, variables: Sequence[Tuple[str, str]] = (), **kwargs) -> Path:
        return write_artifact(build_dir, name, runtime, variables, **kwargs)

    return _write


@pytest.fixture
def library_runtime():
    """Return a builder of runtime code that links against a library."""
    return linked_runtime
