"""
Default on-disk locations.

Layout under the data root (HIVESTORE_HOME, else ./data):

    hive-mind.db    coordination database
    logs/           rotating log files, only with HIVESTORE_FILE_LOGGING
"""

import os
from pathlib import Path
from typing import Optional, Union

HOME_ENV = "HIVESTORE_HOME"


class HivePaths:
    """Paths derived from one data root, resolved when accessed."""

    DB_NAME = "hive-mind.db"
    LOGS_DIR = "logs"

    def __init__(self, data_root: Optional[Union[str, Path]] = None):
        self._data_root = Path(data_root) if data_root is not None else None

    @property
    def data_dir(self) -> Path:
        if self._data_root is not None:
            return self._data_root
        home = os.getenv(HOME_ENV)
        return Path(home) if home else Path.cwd() / "data"

    @property
    def db_file(self) -> Path:
        return self.data_dir / self.DB_NAME

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / self.LOGS_DIR

    def ensure_dirs(self) -> None:
        self.logs_dir.mkdir(parents=True, exist_ok=True)


def get_paths(data_root: Optional[Union[str, Path]] = None) -> HivePaths:
    """Paths rooted at data_root, or at the HIVESTORE_HOME / ./data default."""
    return HivePaths(data_root)
