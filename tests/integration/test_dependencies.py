"""Integration tests for linking and deploying dependencies."""

from pathlib import Path

import pytest

from upgradeable_deployments import DependencyDeployNotAllowedError, NetworkFile, ProjectFile
from upgradeable_deployments.exceptions import DeploymentFailedError, VersionMismatchError
from upgradeable_deployments.types import ContractRecord

RUNTIME = "6080604052"
GREETER = "0x" + "6e" * 20
PACKAGE = "0x" + "9a" * 20


def _address(n: int) -> str:
    return f"0x{n:040x}"


def _project(project_root: Path) -> ProjectFile:
    return ProjectFile.load(project_root / ".upgrades" / "project.json")


def _ledger(project_root: Path) -> NetworkFile:
    return NetworkFile.load(project_root / ".upgrades" / "ropsten.json", "ropsten")


def _dependency_ledger(project_root: Path) -> Path:
    return project_root / "node_modules" / "mock-pkg" / ".upgrades" / "ropsten.json"


@pytest.fixture
def declare_mock_pkg(project_root: Path, install_mock_pkg):
    """Install mock-pkg and declare it in the project manifest."""
    install_mock_pkg()
    project = _project(project_root)
    project.set_dependency("mock-pkg", "^1.1.0")
    project.save()


@pytest.fixture
def published_mock_pkg(project_root: Path, install_mock_pkg) -> Path:
    """Install mock-pkg with its own ropsten ledger (Greeter and package)."""
    install_mock_pkg()
    ledger = NetworkFile(_dependency_ledger(project_root), "ropsten", app_version="1.1.0")
    ledger.set_contract(
        ContractRecord(
            name="Greeter",
            address=GREETER,
            constructor_hash="0xc0",
            body_hash="0xb0",
            local_hash="0xa0",
            deployed_hash="0xd0",
        )
    )
    ledger.set_singleton("package", PACKAGE)
    ledger.save()
    return _dependency_ledger(project_root)


class TestLink:
    """Test linking dependencies into a project."""

    def test_link_installs_and_records(self, make_orchestrator, project_root: Path, installer):
        """Test that link installs, then records the requirement in both files."""
        dependencies = make_orchestrator().link(["mock-pkg@^1.1.0"], install=True)

        assert [d.version for d in dependencies] == ["1.1.0"]
        assert installer.installed == ["mock-pkg@^1.1.0"]
        assert _project(project_root).dependencies == {"mock-pkg": "^1.1.0"}

        link = _ledger(project_root).dependency("mock-pkg")
        assert (link.requirement, link.version, link.package_address) == ("^1.1.0", "1.1.0", None)

    def test_link_uses_dependency_package(self, make_orchestrator, project_root: Path, published_mock_pkg):
        """Test that a dependency already on this network is linked to its package."""
        make_orchestrator().link(["mock-pkg@^1.1.0"])

        link = _ledger(project_root).dependency("mock-pkg")
        assert link.package_address == PACKAGE
        assert not link.custom_deploy

    def test_link_version_mismatch(self, make_orchestrator, project_root: Path, install_mock_pkg):
        """Test that an unsatisfiable requirement is not linked."""
        install_mock_pkg()

        with pytest.raises(VersionMismatchError):
            make_orchestrator().link(["mock-pkg@^2.0.0"])
        assert _project(project_root).dependencies == {}

    def test_unlink(self, make_orchestrator, project_root: Path, published_mock_pkg):
        """Test that unlink removes the dependency from both files."""
        orchestrator = make_orchestrator()
        orchestrator.link(["mock-pkg@^1.1.0"])
        orchestrator.unlink(["mock-pkg"])

        assert _project(project_root).dependencies == {}
        assert _ledger(project_root).dependency("mock-pkg") is None


class TestDeployDependencies:
    """Test automatic deployment of dependencies."""

    def test_push_refuses_without_permission(self, make_orchestrator, write_contract, declare_mock_pkg, client):
        """Test that undeployed dependencies stop a push unless allowed."""
        write_contract("Instance", RUNTIME + "01", [("value", "t_uint256")])

        with pytest.raises(DependencyDeployNotAllowedError, match="mock-pkg"):
            make_orchestrator().push()
        assert client.deployed == []

    def test_push_deploys_when_allowed(
        self, make_orchestrator, write_contract, declare_mock_pkg, project_root: Path, client
    ):
        """Test that allowed sessions deploy dependencies before pushing."""
        write_contract("Instance", RUNTIME + "01", [("value", "t_uint256")])

        report = make_orchestrator(allow_dependency_deploy=True).push()

        assert report.succeeded == ["Instance"]
        link = _ledger(project_root).dependency("mock-pkg")
        assert link.package_address == _address(3)
        assert link.custom_deploy
        assert _ledger(project_root).contract("Instance").address == _address(4)

        dependency_ledger = NetworkFile.load(_dependency_ledger(project_root), "ropsten")
        assert dependency_ledger.contract("Greeter").address == _address(1)
        assert dependency_ledger.package == _address(3)
        assert dependency_ledger.app_version == "1.1.0"

    def test_existing_dependency_ledger_reused(
        self, make_orchestrator, declare_mock_pkg, published_mock_pkg, project_root: Path, client
    ):
        """Test that a dependency with its own package is linked, not redeployed."""
        make_orchestrator(allow_dependency_deploy=True).deploy_dependencies()

        assert client.deployed == []
        assert _ledger(project_root).dependency("mock-pkg").package_address == PACKAGE

    def test_partial_deploy_resumes(self, make_orchestrator, declare_mock_pkg, project_root: Path, client):
        """Test that a failed dependency deploy is recorded and resumed on retry."""
        client.fail_at = 2

        with pytest.raises(DeploymentFailedError):
            make_orchestrator(allow_dependency_deploy=True).deploy_dependencies()

        partial = NetworkFile.load(_dependency_ledger(project_root), "ropsten")
        assert partial.contract("Greeter").address == _address(1)
        assert partial.package is None

        client.fail_at = None
        deployed = make_orchestrator(allow_dependency_deploy=True).deploy_dependencies()

        assert deployed[0].get_implementation("Greeter") == _address(1)
        assert deployed[0].package_address == _address(3)
        assert len(client.deployed) == 3


class TestDependencyProxies:
    """Test proxies backed by dependency implementations."""

    def test_create_dependency_proxy(self, make_orchestrator, project_root: Path, published_mock_pkg):
        """Test that a dependency proxy points at the dependency's implementation."""
        orchestrator = make_orchestrator()
        orchestrator.link(["mock-pkg@^1.1.0"])

        proxy = orchestrator.create("Greeter", package_name="mock-pkg")

        assert proxy.implementation == GREETER
        assert proxy.version == "1.1.0"
        assert _ledger(project_root).proxies_of("mock-pkg", "Greeter") == [proxy]
        orchestrator.verify()

    def test_create_for_unlinked_dependency(self, make_orchestrator):
        """Test that a proxy of an unlinked package is rejected."""
        with pytest.raises(ValueError, match="not linked"):
            make_orchestrator().create("Greeter", package_name="mock-pkg")
