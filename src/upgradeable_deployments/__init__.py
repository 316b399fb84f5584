"""
upgradeable-deployments: Python library for tracking and upgrading proxied smart contract deployments
"""

from importlib.metadata import PackageNotFoundError, version

from .bytecode import fingerprint, link, resolve
from .dependency import Dependency, satisfies_version
from .exceptions import (
    AlreadyPublishedError,
    ConcurrentWriteError,
    ContractNotFoundError,
    DependencyDeployNotAllowedError,
    DeploymentError,
    DeploymentFailedError,
    ManifestNotFoundError,
    NetworkFileNotFoundError,
    StorageCollisionError,
    UnresolvedLinkError,
    VersionMismatchError,
)
from .network_file import NetworkFile
from .orchestrator import DeploymentOrchestrator, SessionContext
from .project_file import ProjectFile
from .storage import compare_storage_layouts
from .types import ContractRecord, ProxyRecord, PushReport, StorageIssue

try:
    __version__ = version("upgradeable-deployments")
except PackageNotFoundError:
    __version__ = None

__all__ = [
    "DeploymentOrchestrator",
    "SessionContext",
    "ProjectFile",
    "NetworkFile",
    "Dependency",
    "satisfies_version",
    "fingerprint",
    "link",
    "resolve",
    "compare_storage_layouts",
    "ContractRecord",
    "ProxyRecord",
    "PushReport",
    "StorageIssue",
    "DeploymentError",
    "ManifestNotFoundError",
    "NetworkFileNotFoundError",
    "VersionMismatchError",
    "UnresolvedLinkError",
    "StorageCollisionError",
    "AlreadyPublishedError",
    "ConcurrentWriteError",
    "ContractNotFoundError",
    "DependencyDeployNotAllowedError",
    "DeploymentFailedError",
]
