"""Tests for layered configuration."""

import json
import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from mpysync.config import DEFAULT_TOOL, ENV_KEYS, Config
from mpysync.exceptions import MpySyncConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Make sure no MPYSYNC_* variables leak in from the environment."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def dirs():
    """Temporary workspace and user config directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        workspace = root / "ws"
        (workspace / ".mpysync").mkdir(parents=True)
        yield workspace, root / "user"


def write_user_file(config_dir: Path, text: str) -> None:
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "config").write_text(text)


def write_workspace_file(workspace: Path, data: dict) -> None:
    (workspace / ".mpysync" / "config.json").write_text(json.dumps(data))


class TestConfigLayers:
    """Tests for precedence of configuration sources."""

    def test_defaults(self, dirs):
        workspace, config_dir = dirs
        config = Config(workspace, config_dir)
        assert config.port == "auto"
        assert config.baud_rate == 115200
        assert config.root_path == "/"
        assert config.tool == DEFAULT_TOOL.split()
        assert config.auto_suspend is True
        assert config.pre_list_delay == pytest.approx(0.15)

    def test_user_file(self, dirs):
        workspace, config_dir = dirs
        write_user_file(
            config_dir,
            "# comment\nPORT=/dev/ttyUSB1\nBAUD_RATE=460800\n"
            'TOOL="mpytool --fast"\nAUTO_SUSPEND=no\nbogus line\n',
        )
        config = Config(workspace, config_dir)
        assert config.port == "/dev/ttyUSB1"
        assert config.baud_rate == 460800
        assert config.tool == ["mpytool", "--fast"]
        assert config.auto_suspend is False

    def test_workspace_overrides_user(self, dirs):
        workspace, config_dir = dirs
        write_user_file(config_dir, "PORT=/dev/ttyUSB1\nROOT_PATH=/flash\n")
        write_workspace_file(workspace, {"port": "serial:///dev/ttyACM0", "extra": 1})
        config = Config(workspace, config_dir)
        assert config.port == "/dev/ttyACM0"
        assert config.root_path == "/flash"

    def test_environment_wins(self, dirs):
        workspace, config_dir = dirs
        write_workspace_file(workspace, {"port": "/dev/ttyACM0", "baud_rate": 9600})
        with patch.dict(os.environ, {"MPYSYNC_PORT": "COM3", "MPYSYNC_ROOT": "/app"}):
            config = Config(workspace, config_dir)
        assert config.port == "COM3"
        assert config.root_path == "/app"
        assert config.baud_rate == 9600

    def test_tool_with_quoted_path(self, dirs):
        workspace, config_dir = dirs
        write_user_file(
            config_dir, "TOOL=python3 '/opt/my tools/pyserial_tool.py' --quiet\n"
        )
        config = Config(workspace, config_dir)
        assert config.tool == ["python3", "/opt/my tools/pyserial_tool.py", "--quiet"]

        tool = 'python3 "C:/Program Files/tool.py"'
        with patch.dict(os.environ, {"MPYSYNC_TOOL": tool}):
            config = Config(workspace, config_dir)
        assert config.tool == ["python3", "C:/Program Files/tool.py"]

    def test_unbalanced_tool_quotes(self, dirs):
        workspace, config_dir = dirs
        with patch.dict(os.environ, {"MPYSYNC_TOOL": "python3 'tool.py"}):
            config = Config(workspace, config_dir)
        with pytest.raises(MpySyncConfigError, match="tool"):
            config.tool

    def test_unreadable_workspace_file_is_ignored(self, dirs):
        workspace, config_dir = dirs
        (workspace / ".mpysync" / "config.json").write_text("{not json")
        assert Config(workspace, config_dir).port == "auto"

    def test_invalid_baud_rate(self, dirs):
        workspace, config_dir = dirs
        with patch.dict(os.environ, {"MPYSYNC_BAUD": "fast"}):
            config = Config(workspace, config_dir)
        with pytest.raises(MpySyncConfigError, match="baud_rate"):
            config.baud_rate


class TestSavePort:
    """Tests for persisting the selected port."""

    def test_save_to_workspace(self, dirs):
        workspace, config_dir = dirs
        write_workspace_file(workspace, {"root_path": "/app"})
        config = Config(workspace, config_dir)

        path = config.save_port("serial:///dev/ttyUSB0")

        assert path == workspace / ".mpysync" / "config.json"
        data = json.loads(path.read_text())
        assert data == {"root_path": "/app", "port": "/dev/ttyUSB0"}
        assert config.port == "/dev/ttyUSB0"

    def test_save_to_user_file_without_workspace(self, dirs):
        _, config_dir = dirs
        write_user_file(config_dir, "PORT=/dev/old\nBAUD_RATE=9600\n")
        config = Config(None, config_dir)

        path = config.save_port("/dev/ttyUSB0")

        assert path == config.get_config_path()
        lines = path.read_text().splitlines()
        assert "PORT=/dev/ttyUSB0" in lines
        assert "PORT=/dev/old" not in lines
        assert "BAUD_RATE=9600" in lines
        assert Config(None, config_dir).port == "/dev/ttyUSB0"
