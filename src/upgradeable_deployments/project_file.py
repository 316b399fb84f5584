"""Project manifest (project.json) for upgradeable-deployments library."""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

import semantic_version

from .constants import MANIFEST_VERSION
from .exceptions import ContractNotFoundError, ManifestNotFoundError
from .logging import get_logger
from .logging_tags import LEDGER

logger = get_logger(__name__)


def _validate_version(version: str) -> str:
    if not semantic_version.validate(version):
        raise ValueError(f"'{version}' is not a valid semantic version")
    return version


class ProjectFile:
    """
    The human-authored side of a project: its contracts and dependencies.

    Mutated only by explicit operations (add, link, bump); nothing here
    talks to a network.
    """

    def __init__(
        self,
        path: Union[Path, str],
        name: str,
        version: str = "0.1.0",
        publish: bool = False,
        contracts: Optional[Dict[str, str]] = None,
        dependencies: Optional[Dict[str, str]] = None,
        manifest_version: str = MANIFEST_VERSION,
    ):
        self.path = Path(path)
        self.name = name
        self.version = _validate_version(version)
        self.publish = publish
        self.contracts: Dict[str, str] = dict(contracts or {})
        self.dependencies: Dict[str, str] = dict(dependencies or {})
        self.manifest_version = manifest_version

    @classmethod
    def load(cls, path: Union[Path, str]) -> "ProjectFile":
        """
        Load a manifest from disk.

        Raises:
            ManifestNotFoundError: If the file does not exist
        """
        path = Path(path)
        if not path.exists():
            raise ManifestNotFoundError(f"Could not find a project.json file at {path}")

        with open(path) as f:
            data = json.load(f)

        return cls(
            path=path,
            name=data["name"],
            version=data["version"],
            publish=bool(data.get("publish", False)),
            contracts=data.get("contracts", {}),
            dependencies=data.get("dependencies", {}),
            manifest_version=data.get("manifestVersion", MANIFEST_VERSION),
        )

    @classmethod
    def create(
        cls,
        path: Union[Path, str],
        name: str,
        version: str = "0.1.0",
        publish: bool = False,
    ) -> "ProjectFile":
        """
        Initialize a new manifest and write it.

        Raises:
            FileExistsError: If a manifest is already there
        """
        path = Path(path)
        if path.exists():
            raise FileExistsError(f"A project manifest already exists at {path}")

        project = cls(path=path, name=name, version=version, publish=publish)
        project.save()
        return project

    def to_json(self) -> Dict[str, Any]:
        return {
            "manifestVersion": self.manifest_version,
            "name": self.name,
            "version": self.version,
            "publish": self.publish,
            "contracts": dict(sorted(self.contracts.items())),
            "dependencies": dict(sorted(self.dependencies.items())),
        }

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self.to_json(), f, indent=2)
        logger.debug(f"{LEDGER} Wrote {self.path}")

    def has_contract(self, alias: str) -> bool:
        return alias in self.contracts

    def contract_name(self, alias: str) -> str:
        """
        Return the compiled contract name behind an alias.

        Raises:
            ContractNotFoundError: If the alias was never added
        """
        if alias not in self.contracts:
            raise ContractNotFoundError(f"Contract '{alias}' is not part of project '{self.name}'")
        return self.contracts[alias]

    def add_contract(self, alias: str, contract_name: Optional[str] = None) -> None:
        self.contracts[alias] = contract_name or alias

    def remove_contract(self, alias: str) -> None:
        if alias not in self.contracts:
            raise ContractNotFoundError(f"Contract '{alias}' is not part of project '{self.name}'")
        del self.contracts[alias]

    def set_dependency(self, name: str, requirement: str) -> None:
        self.dependencies[name] = requirement

    def unset_dependency(self, name: str) -> None:
        self.dependencies.pop(name, None)

    def bump_version(self, version: str) -> None:
        self.version = _validate_version(version)
