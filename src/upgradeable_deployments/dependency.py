"""Dependency resolution and deployment for upgradeable-deployments library."""

from functools import cached_property
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import semantic_version

from . import framework
from .artifacts import ArtifactCompiler
from .bytecode import link
from .constants import PROJECT_DIR_NAME, PROJECT_FILE_NAME
from .exceptions import (
    DeploymentError,
    DeploymentFailedError,
    ManifestNotFoundError,
    NetworkFileNotFoundError,
    PackageNotFoundError,
    VersionMismatchError,
)
from .framework import FrameworkArtifacts
from .installer import PackageInstaller
from .logging import get_logger
from .logging_tags import DEPENDENCY
from .network_file import NetworkFile
from .paths import PathLike, get_dependency_root, get_project_root
from .project_file import ProjectFile
from .rpc import NetworkClient
from .types import DependencyLink, DeployedProject

logger = get_logger(__name__)


def satisfies_version(version: str, requirement: str) -> bool:
    """
    Check a version against an npm-style semver range.

    Example:
        satisfies_version("1.5.9", "^1.1.0") -> True
        satisfies_version("2.1.0", "^1.0.0") -> False
    """
    return semantic_version.NpmSpec(requirement).match(semantic_version.Version(version))


def split_name_with_version(name_with_version: str) -> Tuple[str, Optional[str]]:
    """
    Split "name@requirement" into its parts.

    Scoped names keep their leading "@": "@org/pkg@^1.0.0" -> ("@org/pkg", "^1.0.0").
    """
    name, sep, requirement = name_with_version.rpartition("@")
    if not sep or not name:
        return name_with_version, None
    return name, requirement or None


class Dependency:
    """
    An installed package a project links against.

    Construction resolves the package: its manifest must be installed and its
    version must satisfy the requirement. Nothing here writes to the host
    project's files; only install() and deploy() touch external state.
    """

    def __init__(
        self,
        name: str,
        requirement: Optional[str] = None,
        project_root: Optional[PathLike] = None,
    ):
        self.name = name
        self.project_root = get_project_root(project_root)
        self.root = get_dependency_root(name, self.project_root)

        self.version = self.project_file.version
        self.requirement = requirement or self.version

        if not satisfies_version(self.version, self.requirement):
            raise VersionMismatchError(
                f"Required dependency version {self.requirement} does not match "
                f"version {self.version} of '{name}'"
            )

    @classmethod
    def from_name_with_version(
        cls, name_with_version: str, project_root: Optional[PathLike] = None
    ) -> "Dependency":
        name, requirement = split_name_with_version(name_with_version)
        return cls(name, requirement, project_root)

    @classmethod
    def install(
        cls,
        name_with_version: str,
        installer: PackageInstaller,
        project_root: Optional[PathLike] = None,
    ) -> "Dependency":
        """
        Install a dependency unless a satisfying version is already present.

        Returns:
            The resolved Dependency
        """
        name, requirement = split_name_with_version(name_with_version)
        try:
            dependency = cls(name, requirement, project_root)
            logger.debug(f"{DEPENDENCY} {name}@{dependency.version} already installed")
            return dependency
        except (ManifestNotFoundError, VersionMismatchError):
            pass

        installer.install(name_with_version)
        return cls(name, requirement, project_root)

    @staticmethod
    def has_dependencies_for_deploy(project_file: ProjectFile, network_file: Optional[NetworkFile]) -> bool:
        """
        Check whether any declared dependency still needs deploying.

        Returns:
            True iff some dependency in the manifest has no package address in
            the network ledger (or the ledger does not exist yet)
        """
        for name in project_file.dependencies:
            dependency_link = network_file.dependency(name) if network_file is not None else None
            if dependency_link is None or not dependency_link.package_address:
                return True
        return False

    @cached_property
    def project_file(self) -> ProjectFile:
        path = self.root / PROJECT_DIR_NAME / PROJECT_FILE_NAME
        try:
            return ProjectFile.load(path)
        except ManifestNotFoundError as e:
            raise PackageNotFoundError(
                f"Could not find a project.json file for dependency '{self.name}' at {path}. "
                "Make sure it is installed."
            ) from e

    def network_file_path(self, network: str) -> Path:
        return self.root / PROJECT_DIR_NAME / f"{network}.json"

    def has_network_file(self, network: str) -> bool:
        return self.network_file_path(network).exists()

    def get_network_file(self, network: str) -> NetworkFile:
        """
        Load the dependency's own ledger for a network.

        Raises:
            NetworkFileNotFoundError: If the dependency was never pushed there
        """
        try:
            return NetworkFile.load(self.network_file_path(network), network)
        except NetworkFileNotFoundError as e:
            raise NetworkFileNotFoundError(
                f"Could not find a project file for network '{network}' for '{self.name}'"
            ) from e

    @cached_property
    def compiler(self) -> ArtifactCompiler:
        return ArtifactCompiler(self.root / "build" / "contracts")

    def to_link(self, package_address: Optional[str] = None, custom_deploy: bool = False) -> DependencyLink:
        return DependencyLink(
            name=self.name,
            requirement=self.requirement,
            version=self.version,
            package_address=package_address,
            custom_deploy=custom_deploy,
        )

    def deploy(
        self,
        client: NetworkClient,
        tx_params: Dict[str, Any],
        framework_artifacts: Optional[FrameworkArtifacts] = None,
        previous: Optional[DeployedProject] = None,
        compiler: Optional[ArtifactCompiler] = None,
    ) -> DeployedProject:
        """
        Deploy the dependency's contracts (and package, when artifacts allow).

        Args:
            client: Connection to the target network
            tx_params: Transaction parameters (from, gas, gasPrice)
            framework_artifacts: Infrastructure artifacts; with directory and
                                 package present, a package is deployed and
                                 its address set on the result
            previous: Result of an interrupted earlier attempt; everything
                      already in it is kept instead of redeployed
            compiler: Artifact source (defaults to the package's build dir)

        Returns:
            DeployedProject with implementation addresses

        Raises:
            DeploymentFailedError: With the partial DeployedProject attached
        """
        compiler = compiler or self.compiler
        project = DeployedProject(name=self.name, version=self.version)
        if previous is not None:
            project.implementations.update(previous.implementations)
            project.libraries.update(previous.libraries)
            project.package_address = previous.package_address

        try:
            for alias, contract_name in sorted(self.project_file.contracts.items()):
                if alias in project.implementations:
                    logger.debug(f"{DEPENDENCY} {self.name}/{alias} already deployed, skipping")
                    continue

                compiled = compiler.get(contract_name)
                libraries = {}
                for library in compiled.linked_libraries:
                    if library not in project.libraries:
                        lib_compiled = compiler.get(library)
                        lib_bytecode = link(lib_compiled.bytecode, lib_compiled.link_references, {})
                        project.libraries[library] = client.deploy_bytecode(lib_bytecode, tx_params)
                    libraries[library] = project.libraries[library]

                bytecode = link(compiled.bytecode, compiled.link_references, libraries)
                project.implementations[alias] = client.deploy_bytecode(bytecode, tx_params)
                logger.info(f"{DEPENDENCY} Deployed {self.name}/{alias} at {project.implementations[alias]}")

            if (
                project.package_address is None
                and framework_artifacts is not None
                and framework_artifacts.package is not None
                and framework_artifacts.directory is not None
            ):
                provider = framework.deploy_directory(client, framework_artifacts, tx_params)
                for alias in sorted(self.project_file.contracts):
                    framework.register_implementation(
                        client, provider, alias, project.implementations[alias], tx_params
                    )
                package = framework.deploy_package(client, framework_artifacts, tx_params)
                framework.add_version(client, package, self.version, provider, tx_params)
                project.package_address = package
                logger.info(f"{DEPENDENCY} Deployed package for {self.name}@{self.version} at {package}")
        except DeploymentError as e:
            raise DeploymentFailedError(
                f"Failed to deploy dependency '{self.name}': {e}", partial=project
            ) from e

        return project
