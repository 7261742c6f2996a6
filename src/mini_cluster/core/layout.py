"""Working directory layout of a mini cluster."""

import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..utils.logging import ConfigError, LogContext, get_logger
from ..utils.process import HOME_ENV

logger = get_logger(__name__, LogContext.LAYOUT)


@dataclass(frozen=True)
class ClusterLayout:
    """Paths of the directories a cluster keeps under its root."""

    root: Path

    @property
    def conf_dir(self) -> Path:
        return self.root / "conf"

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def coordination_data_dir(self) -> Path:
        return self.root / "coordination-service-data"

    @property
    def log_dir(self) -> Path:
        return self.root / "logs"

    @property
    def wal_dir(self) -> Path:
        return self.root / "walog"

    @property
    def lib_dir(self) -> Path:
        return self.root / "lib"

    def directories(self) -> list[Path]:
        return [
            self.conf_dir,
            self.data_dir,
            self.coordination_data_dir,
            self.log_dir,
            self.wal_dir,
            self.lib_dir,
        ]

    def validate(self) -> None:
        """Check that the root is usable without touching the filesystem.

        Raises:
            ConfigError: If the root is a file or a non-empty directory
        """
        if self.root.exists() and not self.root.is_dir():
            raise ConfigError(
                f"Must pass in directory, {self.root} is a file",
                context={"directory": str(self.root)},
            )

        if self.root.exists() and any(self.root.iterdir()):
            raise ConfigError(
                f"Directory {self.root} is not empty",
                context={"directory": str(self.root)},
            )

    def create(self) -> None:
        """Validate the root, then create every cluster subdirectory."""
        self.validate()
        for directory in self.directories():
            directory.mkdir(parents=True, exist_ok=True)
        logger.debug("Created cluster layout", root=str(self.root))

    def seed_library(self, source: Path | None) -> bool:
        """Copy an external library directory into ``lib/``.

        Returns:
            True if something was copied
        """
        if source is None or not source.exists():
            logger.warning(
                "No library directory to seed",
                source=str(source) if source else None,
            )
            return False

        copy_file_or_directory(source, self.lib_dir)
        logger.info("Seeded library directory", source=str(source))
        return True


def default_library_source(environ: dict[str, str] | None = None) -> Path | None:
    """``$MINI_CLUSTER_HOME/lib`` of the given environment, if set."""
    environ = os.environ if environ is None else environ
    home = environ.get(HOME_ENV)
    return Path(home) / "lib" if home else None


def copy_file_or_directory(src: Path, dest: Path) -> None:
    """Mirror ``src`` onto ``dest``, overwriting files that already exist."""
    if src.is_dir():
        shutil.copytree(src, dest, copy_function=shutil.copyfile, dirs_exist_ok=True)
    else:
        shutil.copyfile(src, dest)
