"""Push, create, update, publish and link workflows for upgradeable-deployments library."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from . import config, framework
from .artifacts import ArtifactCompiler, Compiler
from .bytecode import fingerprint, link, resolve
from .dependency import Dependency
from .exceptions import (
    AlreadyPublishedError,
    ContractNotFoundError,
    DependencyDeployNotAllowedError,
    DeploymentError,
    DeploymentFailedError,
    StorageCollisionError,
)
from .framework import FrameworkArtifacts
from .installer import PackageInstaller
from .logging import get_logger
from .logging_tags import DEPENDENCY, PROXY, PUBLISH, PUSH
from .network_file import NetworkFile
from .networks import resolve_network_name
from .paths import PathLike, get_network_file_path, get_project_file_path, get_project_root
from .project_file import ProjectFile
from .rpc import NetworkClient
from .storage import compare_storage_layouts, fatal_issues, warning_kinds
from .types import (
    CompiledContract,
    ContractRecord,
    DeployedProject,
    FailedStep,
    ProxyRecord,
    PushReport,
    StorageIssue,
    WarningKind,
)

logger = get_logger(__name__)


@dataclass
class SessionContext:
    """
    Everything one operation against one network needs.

    Passed explicitly to the orchestrator instead of living in global state.
    """

    project: ProjectFile
    network: str
    network_file_path: Path
    client: NetworkClient
    compiler: Compiler
    project_root: Path
    tx_params: Dict[str, Any] = field(default_factory=dict)
    framework: Optional[FrameworkArtifacts] = None
    installer: Optional[PackageInstaller] = None
    allow_dependency_deploy: bool = False

    @classmethod
    def open(
        cls,
        client: NetworkClient,
        project_root: Optional[PathLike] = None,
        compiler: Optional[Compiler] = None,
        tx_params: Optional[Dict[str, Any]] = None,
        framework_artifacts: Optional[FrameworkArtifacts] = None,
        installer: Optional[PackageInstaller] = None,
        allow_dependency_deploy: bool = False,
    ) -> "SessionContext":
        """
        Build a context for the chain ``client`` is connected to.

        The ledger file is chosen from the chain id reported live by the node.

        Raises:
            ManifestNotFoundError: If the project has no project.json
        """
        root = get_project_root(project_root)
        network = resolve_network_name(client)
        return cls(
            project=ProjectFile.load(get_project_file_path(root)),
            network=network,
            network_file_path=get_network_file_path(network, root),
            client=client,
            compiler=compiler or ArtifactCompiler(root / "build" / "contracts"),
            project_root=root,
            tx_params=dict(tx_params or {}),
            framework=framework_artifacts,
            installer=installer,
            allow_dependency_deploy=allow_dependency_deploy,
        )

    @classmethod
    def connect(
        cls,
        alias: str,
        project_root: Optional[PathLike] = None,
        tx_params: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> "SessionContext":
        """
        Build a context for a network alias from networks.json or the environment.

        The alias's configured transaction parameters apply unless
        ``tx_params`` overrides them.
        """
        client, defaults = config.connect(alias, project_root)
        params = dict(defaults)
        params.update(tx_params or {})
        return cls.open(client, project_root=project_root, tx_params=params, **kwargs)


class DeploymentOrchestrator:
    """
    Drives deployments of one project to one network.

    Every network call completes before the ledger records its result, and
    the ledger is saved after each successful step. A failure at step K
    leaves steps 1..K-1 committed.
    """

    def __init__(self, context: SessionContext):
        self.context = context
        self._network_file: Optional[NetworkFile] = None

    @property
    def network_file(self) -> NetworkFile:
        if self._network_file is None:
            self._network_file = NetworkFile.load_or_create(
                self.context.network_file_path,
                self.context.network,
                app_version=self.context.project.version,
            )
        return self._network_file

    @property
    def project(self) -> ProjectFile:
        return self.context.project

    def _compiled(self, contract_name: str) -> CompiledContract:
        contracts = self.context.compiler.compile([contract_name])
        if contract_name not in contracts:
            raise ContractNotFoundError(f"Compiler produced no contract named '{contract_name}'")
        return contracts[contract_name]

    def _framework(self) -> FrameworkArtifacts:
        if self.context.framework is None:
            raise ValueError("Proxy and infrastructure artifacts are required for this operation")
        return self.context.framework

    def _commit(self) -> None:
        self.network_file.save()

    # Push

    def push(
        self,
        aliases: Optional[Sequence[str]] = None,
        accepted_reorders: Iterable[str] = (),
        force: bool = False,
    ) -> PushReport:
        """
        Deploy logic contracts whose bytecode changed since the last push.

        Args:
            aliases: Contract aliases to push (defaults to all in the manifest)
            accepted_reorders: Variable names whose reorder is explicitly accepted
            force: Redeploy even when the fingerprint is unchanged

        Returns:
            PushReport listing pushed, failed and skipped aliases. Unchanged
            contracts and everything after the first failure are skipped.

        Raises:
            DependencyDeployNotAllowedError: If linked dependencies still need
                                             deploying and the session does
                                             not allow it
        """
        network_file = self.network_file
        if Dependency.has_dependencies_for_deploy(self.project, network_file):
            self.deploy_dependencies()

        aliases = list(aliases) if aliases is not None else sorted(self.project.contracts)
        accepted = list(accepted_reorders)
        report = PushReport(network=self.context.network)

        for index, alias in enumerate(aliases):
            try:
                issues = self._push_contract(alias, accepted, force)
            except DeploymentError as e:
                path = None
                if isinstance(e, StorageCollisionError) and e.issues:
                    path = e.issues[0].path
                logger.error(f"{PUSH} Failed to push {alias} to '{self.context.network}': {e}")
                report.failed.append(FailedStep(name=alias, error=e, path=path))
                report.skipped.extend(aliases[index + 1 :])
                break

            if issues is None:
                report.skipped.append(alias)
                continue

            report.succeeded.append(alias)
            if issues:
                report.warnings[alias] = issues

        return report

    def _push_contract(self, alias: str, accepted: List[str], force: bool) -> Optional[List[StorageIssue]]:
        """
        Push one contract.

        Returns:
            None when skipped as unchanged, else the non-fatal storage issues
        """
        network_file = self.network_file
        compiled = self._compiled(self.project.contract_name(alias))
        fp = fingerprint(compiled.bytecode, compiled.link_references, compiled.runtime_offset)

        prior = network_file.contracts.get(alias)
        if prior is not None and not force and prior.local_hash == fp.local_hash:
            current = self._current_libraries(compiled)
            if current is not None and prior.deployed_hash == resolve(
                fp.local_hash, compiled.bytecode, compiled.link_references, current, compiled.runtime_offset
            ):
                logger.debug(f"{PUSH} {alias} unchanged on '{self.context.network}', skipping")
                return None

        issues: List[StorageIssue] = []
        if prior is not None:
            issues = compare_storage_layouts(
                prior.storage, prior.types, compiled.storage, compiled.types, accepted
            )
        fatal = fatal_issues(issues)
        if fatal:
            paths = ", ".join(f"{issue.kind.value} {issue.path}" for issue in fatal)
            raise StorageCollisionError(
                f"Storage layout of {alias} on '{self.context.network}' is incompatible: {paths}",
                contract_name=alias,
                network=self.context.network,
                issues=fatal,
            )

        warnings = warning_kinds(issues)
        if compiled.has_constructor_args():
            warnings.add(WarningKind.HAS_CONSTRUCTOR)

        # Libraries go out only once the layout is known to be safe
        libraries = self._push_libraries(compiled)
        deployed_hash = resolve(
            fp.local_hash, compiled.bytecode, compiled.link_references, libraries, compiled.runtime_offset
        )
        bytecode = link(compiled.bytecode, compiled.link_references, libraries)
        address = self.context.client.deploy_bytecode(bytecode, self.context.tx_params)

        network_file.set_contract(
            ContractRecord(
                name=alias,
                address=address,
                constructor_hash=fp.constructor_hash,
                body_hash=fp.body_hash,
                local_hash=fp.local_hash,
                deployed_hash=deployed_hash,
                types=dict(compiled.types),
                storage=list(compiled.storage),
                warnings=warnings,
            )
        )
        self._commit()
        logger.info(f"{PUSH} Pushed {alias} to '{self.context.network}' at {address}")

        if network_file.provider:
            framework.register_implementation(
                self.context.client, network_file.provider, alias, address, self.context.tx_params
            )

        return issues

    def _current_libraries(self, compiled: CompiledContract) -> Optional[Dict[str, str]]:
        """Recorded addresses of the libraries ``compiled`` links against, or None if any changed."""
        addresses: Dict[str, str] = {}
        for library in compiled.linked_libraries:
            lib_compiled = self._compiled(library)
            fp = fingerprint(lib_compiled.bytecode, lib_compiled.link_references, lib_compiled.runtime_offset)
            prior = self.network_file.book.solidity_lib(library)
            if prior is None or prior.local_hash != fp.local_hash:
                return None
            addresses[library] = prior.address
        return addresses

    def _push_libraries(self, compiled: CompiledContract) -> Dict[str, str]:
        """Deploy the libraries ``compiled`` links against when they changed."""
        network_file = self.network_file
        addresses: Dict[str, str] = {}

        for library in compiled.linked_libraries:
            lib_compiled = self._compiled(library)
            fp = fingerprint(lib_compiled.bytecode, lib_compiled.link_references, lib_compiled.runtime_offset)

            prior = network_file.book.solidity_lib(library)
            if prior is not None and prior.local_hash == fp.local_hash:
                addresses[library] = prior.address
                continue

            bytecode = link(lib_compiled.bytecode, lib_compiled.link_references, {})
            address = self.context.client.deploy_bytecode(bytecode, self.context.tx_params)
            network_file.book.set_solidity_lib(
                ContractRecord(
                    name=library,
                    address=address,
                    constructor_hash=fp.constructor_hash,
                    body_hash=fp.body_hash,
                    local_hash=fp.local_hash,
                    deployed_hash=resolve(
                        fp.local_hash, lib_compiled.bytecode, lib_compiled.link_references, {}, lib_compiled.runtime_offset
                    ),
                )
            )
            self._commit()
            logger.info(f"{PUSH} Pushed library {library} to '{self.context.network}' at {address}")
            addresses[library] = address

        return addresses

    # Proxies

    def _current_implementation(self, package_name: str, alias: str) -> Tuple[str, str]:
        """Return (implementation address, version) a new or updated proxy should use."""
        network_file = self.network_file
        if package_name == self.project.name:
            return network_file.contract(alias).address, network_file.app_version

        dependency_link = network_file.dependency(package_name)
        if dependency_link is None:
            raise ContractNotFoundError(
                f"Dependency '{package_name}' is not linked on network '{self.context.network}'"
            )
        dependency = Dependency(package_name, dependency_link.requirement, self.context.project_root)
        dependency_file = dependency.get_network_file(self.context.network)
        return dependency_file.contract(alias).address, dependency.version

    def _ensure_proxy_admin(self) -> str:
        network_file = self.network_file
        if network_file.proxy_admin is None:
            address = framework.deploy_proxy_admin(self.context.client, self._framework(), self.context.tx_params)
            network_file.set_singleton("proxyAdmin", address)
            self._commit()
            logger.info(f"{PROXY} Deployed proxy admin on '{self.context.network}' at {address}")
        return network_file.proxy_admin

    def create(
        self,
        alias: str,
        package_name: Optional[str] = None,
        init_method: Optional[str] = None,
        init_args: Sequence[Any] = (),
        init_types: Sequence[str] = (),
    ) -> ProxyRecord:
        """
        Create a proxy for a pushed contract.

        Args:
            alias: Contract alias in the project (or in the dependency)
            package_name: Dependency name; defaults to the project itself
            init_method: Initializer to call once through the new proxy
            init_args: Initializer arguments
            init_types: ABI types of the initializer arguments

        Returns:
            The recorded ProxyRecord
        """
        package_name = package_name or self.project.name
        implementation, version = self._current_implementation(package_name, alias)
        admin = self._ensure_proxy_admin()
        init_data = framework.encode_initializer(init_method, init_types, init_args)

        address = framework.deploy_proxy(
            self.context.client, self._framework(), implementation, admin, init_data, self.context.tx_params
        )

        proxy = ProxyRecord(
            address=address,
            version=version,
            implementation=implementation,
            package=package_name,
            contract=alias,
            admin=admin,
        )
        self.network_file.add_proxy(proxy)
        self._commit()
        logger.info(f"{PROXY} Created {package_name}/{alias} proxy at {address} -> {implementation}")
        return proxy

    def update(
        self,
        alias: Optional[str] = None,
        package_name: Optional[str] = None,
        proxy_address: Optional[str] = None,
        init_method: Optional[str] = None,
        init_args: Sequence[Any] = (),
        init_types: Sequence[str] = (),
    ) -> PushReport:
        """
        Point existing proxies at the current implementation.

        Selects one proxy by address, every proxy of an alias, or every proxy
        in the ledger. Addresses never change; only implementation and
        version do.

        Returns:
            PushReport keyed by proxy address
        """
        network_file = self.network_file
        if proxy_address is not None:
            targets = [network_file.book.find_proxy(proxy_address)]
        else:
            targets = [
                proxy
                for proxy in network_file.book.all_proxies()
                if (package_name is None or proxy.package == package_name)
                and (alias is None or proxy.contract == alias)
            ]

        init_data = framework.encode_initializer(init_method, init_types, init_args)
        report = PushReport(network=self.context.network)

        for index, proxy in enumerate(targets):
            try:
                implementation, version = self._current_implementation(proxy.package, proxy.contract)
                if proxy.implementation.lower() == implementation.lower() and not init_method:
                    report.skipped.append(proxy.address)
                    continue

                framework.upgrade_proxy(
                    self.context.client,
                    proxy.admin or self._ensure_proxy_admin(),
                    proxy.address,
                    implementation,
                    init_data,
                    self.context.tx_params,
                )
            except DeploymentError as e:
                logger.error(f"{PROXY} Failed to update proxy {proxy.address}: {e}")
                report.failed.append(FailedStep(name=proxy.address, error=e))
                report.skipped.extend(p.address for p in targets[index + 1 :])
                break

            network_file.book.update_proxy(proxy.address, implementation, version)
            self._commit()
            logger.info(f"{PROXY} Updated proxy {proxy.address} -> {implementation} ({version})")
            report.succeeded.append(proxy.address)

        return report

    # Publish

    def publish(self) -> NetworkFile:
        """
        Deploy the project's provider, package and app.

        Singletons recorded by an interrupted earlier attempt are reused.

        Raises:
            AlreadyPublishedError: If the app is already recorded
        """
        network_file = self.network_file
        if network_file.app is not None:
            raise AlreadyPublishedError(
                f"Project '{self.project.name}' is already published on '{self.context.network}'"
            )

        fw = self._framework()
        client = self.context.client
        tx_params = self.context.tx_params

        if network_file.provider is None:
            provider = framework.deploy_directory(client, fw, tx_params)
            network_file.set_singleton("provider", provider)
            self._commit()
            logger.info(f"{PUBLISH} Deployed provider at {provider}")

        for alias, record in sorted(network_file.contracts.items()):
            framework.register_implementation(client, network_file.provider, alias, record.address, tx_params)

        if network_file.package is None:
            package = framework.deploy_package(client, fw, tx_params)
            logger.info(f"{PUBLISH} Deployed package at {package}")
            # A recorded package always holds the app version
            framework.add_version(client, package, network_file.app_version, network_file.provider, tx_params)
            network_file.set_singleton("package", package)
            self._commit()

        app = framework.deploy_app(client, fw, tx_params)
        framework.set_app_package(
            client, app, self.project.name, network_file.package, network_file.app_version, tx_params
        )
        network_file.set_singleton("app", app)
        self._commit()
        logger.info(f"{PUBLISH} Published '{self.project.name}' on '{self.context.network}', app at {app}")

        if not self.project.publish:
            self.project.publish = True
            self.project.save()

        return network_file

    # Dependencies

    def link(self, names_with_versions: Sequence[str], install: bool = False) -> List[Dependency]:
        """
        Link dependencies into the manifest and the network ledger.

        Args:
            names_with_versions: Entries like "mock-pkg@^1.1.0"
            install: Install missing packages through the session installer

        Returns:
            The resolved dependencies
        """
        network_file = self.network_file
        dependencies = []

        for name_with_version in names_with_versions:
            if install:
                if self.context.installer is None:
                    raise ValueError("A package installer is required to install dependencies")
                dependency = Dependency.install(name_with_version, self.context.installer, self.context.project_root)
            else:
                dependency = Dependency.from_name_with_version(name_with_version, self.context.project_root)

            package_address = None
            if dependency.has_network_file(self.context.network):
                package_address = dependency.get_network_file(self.context.network).package

            self.project.set_dependency(dependency.name, dependency.requirement)
            network_file.set_dependency(dependency.to_link(package_address))
            logger.info(f"{DEPENDENCY} Linked {dependency.name}@{dependency.version}")
            dependencies.append(dependency)

        self.project.save()
        self._commit()
        return dependencies

    def unlink(self, names: Sequence[str]) -> None:
        for name in names:
            self.project.unset_dependency(name)
            self.network_file.unset_dependency(name)
        self.project.save()
        self._commit()

    def deploy_dependencies(self) -> List[DeployedProject]:
        """
        Deploy every declared dependency that has no package on this network.

        A dependency whose own ledger already holds a package for this
        network is linked without redeploying. A partial deployment is
        written to the dependency's ledger so a retry resumes from it.

        Raises:
            DependencyDeployNotAllowedError: If the session does not allow
                                             deploying dependencies
        """
        network_file = self.network_file
        pending = [
            name
            for name in sorted(self.project.dependencies)
            if network_file.dependency(name) is None or not network_file.dependency(name).package_address
        ]
        if not pending:
            return []

        if not self.context.allow_dependency_deploy:
            raise DependencyDeployNotAllowedError(
                f"Dependencies {', '.join(pending)} have no package on '{self.context.network}'. "
                "Deploy them or allow dependency deploys for this session."
            )

        fw = self._framework()
        deployed_projects = []
        for name in pending:
            dependency = Dependency(name, self.project.dependencies[name], self.context.project_root)

            previous = None
            if dependency.has_network_file(self.context.network):
                dependency_file = dependency.get_network_file(self.context.network)
                if dependency_file.package:
                    network_file.set_dependency(dependency.to_link(dependency_file.package))
                    self._commit()
                    continue
                previous = DeployedProject(
                    name=name,
                    version=dependency.version,
                    implementations={a: r.address for a, r in dependency_file.contracts.items()},
                    libraries={n: r.address for n, r in dependency_file.solidity_libs.items()},
                )

            try:
                deployed = dependency.deploy(self.context.client, self.context.tx_params, fw, previous)
            except DeploymentFailedError as e:
                if e.partial is not None:
                    self._record_dependency(dependency, e.partial)
                raise

            self._record_dependency(dependency, deployed)
            network_file.set_dependency(dependency.to_link(deployed.package_address, custom_deploy=True))
            self._commit()
            logger.info(f"{DEPENDENCY} Deployed {name}@{dependency.version} to '{self.context.network}'")
            deployed_projects.append(deployed)

        return deployed_projects

    def _record_dependency(self, dependency: Dependency, deployed: DeployedProject) -> None:
        """Write a dependency deployment into the dependency's own ledger."""
        network = self.context.network
        dependency_file = NetworkFile.load_or_create(
            dependency.network_file_path(network), network, app_version=dependency.version
        )

        for library, address in deployed.libraries.items():
            compiled = dependency.compiler.get(library)
            dependency_file.book.set_solidity_lib(self._record_for(library, address, compiled, {}))

        for alias, address in deployed.implementations.items():
            compiled = dependency.compiler.get(dependency.project_file.contract_name(alias))
            libraries = {lib: deployed.libraries[lib] for lib in compiled.linked_libraries if lib in deployed.libraries}
            dependency_file.set_contract(self._record_for(alias, address, compiled, libraries))

        if deployed.package_address:
            dependency_file.set_singleton("package", deployed.package_address)
        dependency_file.save()

    @staticmethod
    def _record_for(name: str, address: str, compiled: CompiledContract, libraries: Dict[str, str]) -> ContractRecord:
        fp = fingerprint(compiled.bytecode, compiled.link_references, compiled.runtime_offset)
        return ContractRecord(
            name=name,
            address=address,
            constructor_hash=fp.constructor_hash,
            body_hash=fp.body_hash,
            local_hash=fp.local_hash,
            deployed_hash=resolve(
                fp.local_hash, compiled.bytecode, compiled.link_references, libraries, compiled.runtime_offset
            ),
            types=dict(compiled.types),
            storage=list(compiled.storage),
        )

    # Versions and status

    def bump_version(self, version: str) -> None:
        """Set the project version and the ledger's app version."""
        # Both are checked before either file is written
        self.network_file.bump_app_version(version)
        self.project.bump_version(version)
        self._commit()
        self.project.save()

    def status(self) -> Dict[str, Dict[str, Any]]:
        """
        Report each contract's state on this network.

        Returns:
            alias -> {"state": "unpushed" | "pushed" | "outdated",
                      "address": str or None, "proxies": int}
        """
        network_file = self.network_file
        result: Dict[str, Dict[str, Any]] = {}
        for alias, contract_name in sorted(self.project.contracts.items()):
            proxies = len(network_file.proxies_of(self.project.name, alias))
            record = network_file.contracts.get(alias)
            if record is None:
                result[alias] = {"state": "unpushed", "address": None, "proxies": proxies}
                continue
            compiled = self._compiled(contract_name)
            fp = fingerprint(compiled.bytecode, compiled.link_references, compiled.runtime_offset)
            state = "pushed" if fp.local_hash == record.local_hash else "outdated"
            result[alias] = {"state": state, "address": record.address, "proxies": proxies}
        return result

    def verify(self) -> None:
        """
        Check the ledger's cross references, including dependency proxies.

        Proxies not yet updated after a push are reported as dangling.

        Raises:
            LedgerIntegrityError: Describing every inconsistency
        """
        network_file = self.network_file
        dependency_addresses: Dict[str, List[str]] = {}
        for name, dependency_link in network_file.dependencies.items():
            dependency = Dependency(name, dependency_link.requirement, self.context.project_root)
            if dependency.has_network_file(self.context.network):
                dependency_file = dependency.get_network_file(self.context.network)
                dependency_addresses[name] = [r.address for r in dependency_file.contracts.values()]
        network_file.check_integrity(dependency_addresses)
