"""Custom exception classes for upgradeable-deployments library."""

from typing import Any, List, Optional, Sequence


class DeploymentError(Exception):
    """Base exception for deployment-related errors."""

    pass


class ManifestNotFoundError(DeploymentError, FileNotFoundError):
    """Raised when a project manifest (project.json) cannot be found."""

    pass


class PackageNotFoundError(ManifestNotFoundError):
    """Raised when a dependency is not installed (no manifest in its package root)."""

    pass


class NetworkFileNotFoundError(DeploymentError, FileNotFoundError):
    """Raised when a project was never pushed to the requested network."""

    pass


class VersionMismatchError(DeploymentError, ValueError):
    """Raised when an installed version does not satisfy the requested requirement."""

    pass


class UnresolvedLinkError(DeploymentError, ValueError):
    """Raised when bytecode still references libraries with no known address."""

    def __init__(self, message: str, missing: Sequence[str] = ()):
        super().__init__(message)
        self.missing = list(missing)


class StorageCollisionError(DeploymentError, ValueError):
    """
    Raised when a new storage layout is incompatible with the pushed one.

    The fatal issues found by the comparator are kept on ``issues`` so the
    caller can report the offending slot paths.
    """

    def __init__(
        self,
        message: str,
        contract_name: Optional[str] = None,
        network: Optional[str] = None,
        issues: Optional[List[Any]] = None,
    ):
        super().__init__(message)
        self.contract_name = contract_name
        self.network = network
        self.issues = list(issues or [])


class AlreadyPublishedError(DeploymentError, ValueError):
    """Raised when publishing a project that already has app/package/provider."""

    pass


class ContractNotFoundError(DeploymentError, ValueError):
    """Raised when a contract alias is not in the manifest or ledger."""

    pass


class ProxyNotFoundError(DeploymentError, ValueError):
    """Raised when no proxy matches the requested address or contract."""

    pass


class DuplicateAddressError(DeploymentError, ValueError):
    """Raised when recording a proxy address that is already in the ledger."""

    pass


class LedgerIntegrityError(DeploymentError, ValueError):
    """Raised when a network ledger breaks one of its cross-reference rules."""

    pass


class DependencyDeployNotAllowedError(DeploymentError, ValueError):
    """Raised when dependencies need deploying but the session does not allow it."""

    pass


class ConcurrentWriteError(DeploymentError, RuntimeError):
    """Raised when a ledger changed on disk between load and save."""

    pass


class RpcError(DeploymentError, RuntimeError):
    """Raised when the JSON-RPC node cannot be reached or returns an error."""

    pass


class DeploymentFailedError(DeploymentError, RuntimeError):
    """
    Raised when a deploy or transaction did not reach a successful receipt.

    ``partial`` holds whatever the failing step managed to complete before
    the failure (for example a partially deployed dependency).
    """

    def __init__(self, message: str, partial: Any = None):
        super().__init__(message)
        self.partial = partial
