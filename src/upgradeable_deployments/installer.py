"""Dependency package installation for upgradeable-deployments library."""

import os
import subprocess
from typing import Optional, Protocol

from .logging import get_logger
from .logging_tags import DEPENDENCY
from .paths import PathLike, get_project_root

logger = get_logger(__name__)


class PackageInstaller(Protocol):
    """Fetches a versioned package into the project's dependency directory."""

    def install(self, name_at_version: str) -> None:
        ...


class NpmPackageInstaller:
    """Installs dependency packages with ``npm install --save``."""

    def __init__(self, project_root: Optional[PathLike] = None, npm: str = "npm"):
        self.project_root = get_project_root(project_root)
        self.npm = npm

    def install(self, name_at_version: str) -> None:
        """
        Install a package into ./node_modules and save it to package.json.

        Raises:
            RuntimeError: If npm is missing or the install fails
        """
        # Fail instead of waiting on a credentials prompt
        env = os.environ.copy()
        env["npm_config_yes"] = "true"

        logger.info(f"{DEPENDENCY} Installing {name_at_version}")
        try:
            subprocess.run(
                [self.npm, "install", "--save", name_at_version],
                cwd=str(self.project_root),
                check=True,
                capture_output=True,
                env=env,
            )
        except FileNotFoundError as e:
            raise RuntimeError(f"Could not run '{self.npm}': {e}") from e
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"Failed to install {name_at_version}: {e.stderr.decode()}") from e
