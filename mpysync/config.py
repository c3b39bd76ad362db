"""Configuration management for mpysync.

Settings are resolved from, in order of precedence:

1. Environment variables (``MPYSYNC_PORT``, ``MPYSYNC_BAUD``,
   ``MPYSYNC_ROOT``, ``MPYSYNC_TOOL``)
2. The workspace file ``<workspace>/.mpysync/config.json``
3. The user file ``~/.config/mpysync/config`` (``KEY=value`` lines)
4. Built-in defaults
"""

import json
import logging
import os
import shlex
from pathlib import Path
from typing import Any, Optional

from .exceptions import MpySyncConfigError
from .utils import DEFAULT_BAUD_RATE, STATE_DIR_NAME, normalize_port

logger = logging.getLogger(__name__)

DEFAULT_TOOL = "python3 pyserial_tool.py"

DEFAULTS: dict[str, Any] = {
    "port": "auto",
    "baud_rate": DEFAULT_BAUD_RATE,
    "root_path": "/",
    "tool": DEFAULT_TOOL,
    "auto_suspend": True,
    "pre_list_delay_ms": 150,
}

ENV_KEYS: dict[str, str] = {
    "MPYSYNC_PORT": "port",
    "MPYSYNC_BAUD": "baud_rate",
    "MPYSYNC_ROOT": "root_path",
    "MPYSYNC_TOOL": "tool",
}

# User-file keys, upper case as written in ~/.config/mpysync/config
FILE_KEYS: dict[str, str] = {
    "PORT": "port",
    "BAUD_RATE": "baud_rate",
    "ROOT_PATH": "root_path",
    "TOOL": "tool",
    "AUTO_SUSPEND": "auto_suspend",
    "PRE_LIST_DELAY_MS": "pre_list_delay_ms",
}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def _parse_int(key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MpySyncConfigError(f"Invalid value for {key}: {value!r}") from e


class Config:
    """Layered configuration for one workspace."""

    def __init__(
        self,
        workspace: Optional[Path] = None,
        config_dir: Optional[Path] = None,
    ):
        """Initialize configuration.

        Args:
            workspace: Workspace root; the workspace file is skipped when None
            config_dir: Directory of the user config file
                (default: ~/.config/mpysync)
        """
        self.config_dir = config_dir or Path.home() / ".config" / "mpysync"
        self.config_file = self.config_dir / "config"
        self.workspace: Optional[Path] = None
        self._values: dict[str, Any] = {}
        self.load(workspace)

    def load(self, workspace: Optional[Path] = None) -> None:
        """(Re)load all configuration layers."""
        self.workspace = workspace
        values = dict(DEFAULTS)
        values.update(self._load_user_file())
        values.update(self._load_workspace_file())
        for env_key, key in ENV_KEYS.items():
            env_value = os.environ.get(env_key)
            if env_value:
                values[key] = env_value
        self._values = values

    def _load_user_file(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if not self.config_file.exists():
            return values
        try:
            with open(self.config_file, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    name, _, value = line.partition("=")
                    key = FILE_KEYS.get(name.strip().upper())
                    if key:
                        values[key] = _unquote(value.strip())
        except OSError as e:
            logger.warning(f"Could not read config file {self.config_file}: {e}")
        return values

    def _load_workspace_file(self) -> dict[str, Any]:
        path = self.get_workspace_config_path()
        if path is None or not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable workspace config {path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring workspace config {path}: not a JSON object")
            return {}
        return {k: v for k, v in data.items() if k in DEFAULTS}

    def get_config_path(self) -> Path:
        """Get the path to the user configuration file."""
        return self.config_file

    def get_workspace_config_path(self) -> Optional[Path]:
        """Get the path to the workspace configuration file, if any."""
        if self.workspace is None:
            return None
        return self.workspace / STATE_DIR_NAME / "config.json"

    @property
    def port(self) -> str:
        """Configured serial port, normalized ("auto" when unset)."""
        return normalize_port(str(self._values["port"])) or "auto"

    @property
    def baud_rate(self) -> int:
        return _parse_int("baud_rate", self._values["baud_rate"])

    @property
    def root_path(self) -> str:
        return str(self._values["root_path"]) or "/"

    @property
    def tool(self) -> list[str]:
        """Device tool command line, split with shell quoting rules."""
        try:
            return shlex.split(str(self._values["tool"]))
        except ValueError as e:
            raise MpySyncConfigError(f"Invalid tool command: {e}") from e

    @property
    def auto_suspend(self) -> bool:
        return _parse_bool(self._values["auto_suspend"])

    @property
    def pre_list_delay(self) -> float:
        """Pre-listing settle delay in seconds."""
        return _parse_int("pre_list_delay_ms", self._values["pre_list_delay_ms"]) / 1000

    def save_port(self, port: str) -> Path:
        """Persist the selected port in the workspace config.

        Falls back to the user config file when no workspace is loaded.

        Returns:
            Path of the file that was written
        """
        port = normalize_port(port)
        path = self.get_workspace_config_path()
        if path is None:
            self._save_user_value("PORT", port)
            self._values["port"] = port
            return self.config_file

        data: dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError):
                data = {}
        data["port"] = port
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        self._values["port"] = port
        return path

    def _save_user_value(self, name: str, value: str) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        lines: list[str] = []
        if self.config_file.exists():
            with open(self.config_file, encoding="utf-8") as f:
                lines = [
                    line.rstrip("\n")
                    for line in f
                    if line.partition("=")[0].strip().upper() != name
                ]
        lines.append(f"{name}={value}")
        with open(self.config_file, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
        self.config_file.chmod(0o600)


# Global config instance
config = Config()
