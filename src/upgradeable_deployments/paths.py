"""Path management utilities for upgradeable-deployments library."""

from pathlib import Path
from typing import Optional, Union

from .constants import (
    DEPENDENCIES_DIR_NAME,
    NETWORKS_CONFIG_FILE_NAME,
    PROJECT_DIR_NAME,
    PROJECT_FILE_NAME,
)

PathLike = Union[Path, str]


def get_project_root(project_root: Optional[PathLike] = None) -> Path:
    """
    Resolve the project root directory.

    Args:
        project_root: Custom root (defaults to the current working directory)

    Returns:
        Absolute path to the project root
    """
    if project_root is None:
        return Path.cwd()
    return Path(project_root).absolute()


def get_project_dir(project_root: Optional[PathLike] = None) -> Path:
    """Return the directory holding the manifest and network ledgers (./.upgrades)."""
    return get_project_root(project_root) / PROJECT_DIR_NAME


def get_project_file_path(project_root: Optional[PathLike] = None) -> Path:
    """Return the path of the project manifest (./.upgrades/project.json)."""
    return get_project_dir(project_root) / PROJECT_FILE_NAME


def get_network_file_path(network: str, project_root: Optional[PathLike] = None) -> Path:
    """
    Return the path of a network ledger.

    Args:
        network: Ledger name as returned by networks.network_name()
        project_root: Custom project root

    Returns:
        Path to ./.upgrades/<network>.json
    """
    return get_project_dir(project_root) / f"{network}.json"


def get_networks_config_path(project_root: Optional[PathLike] = None) -> Path:
    """Return the path of the local network alias configuration."""
    return get_project_dir(project_root) / NETWORKS_CONFIG_FILE_NAME


def get_dependency_root(name: str, project_root: Optional[PathLike] = None) -> Path:
    """Return the directory an installed dependency package lives in."""
    return get_project_root(project_root) / DEPENDENCIES_DIR_NAME / name
