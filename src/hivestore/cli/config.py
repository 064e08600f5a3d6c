"""
CLI Configuration

Output mode for the hivestore CLI. Machine mode (minified JSON, no tables,
no console logs) is the default so the commands can be scripted; human mode
switches to rich tables.
"""

import os
from typing import Optional

HUMAN_MODE_ENV = "HIVESTORE_HUMAN_MODE"


class CLIConfig:
    """Process-wide CLI settings, set once per invocation by the app callback."""

    # Rows shown by table views before truncating
    TABLE_ROW_LIMIT = 50

    _machine_mode: Optional[bool] = None

    @classmethod
    def set_machine_mode(cls, enabled: bool) -> None:
        cls._machine_mode = enabled

    @classmethod
    def is_machine_mode(cls) -> bool:
        """
        An explicit --human flag wins, then HIVESTORE_HUMAN_MODE, then the
        machine-mode default.
        """
        if cls._machine_mode is not None:
            return cls._machine_mode
        return os.getenv(HUMAN_MODE_ENV, "").lower() not in ("1", "true", "yes")

    @classmethod
    def wants_json(cls, json_flag: bool = False) -> bool:
        """True if a command should emit JSON: --json was passed or machine mode is on."""
        return json_flag or cls.is_machine_mode()

    @classmethod
    def reset(cls) -> None:
        """Forget the explicit mode (between invocations in one process)."""
        cls._machine_mode = None
