"""Unit tests for the mpysync CLI commands."""

import asyncio
import json
import signal
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from click.testing import CliRunner

from mpysync.cli import create_engine, main
from mpysync.client import DeviceClient
from mpysync.exceptions import (
    DeviceError,
    NoDiffStateError,
    PortBusyError,
    PortNotSelectedError,
)
from mpysync.models import NodeKind, RemoteNode, WipeResult
from mpysync.output import OutputFormatter
from mpysync.session import SessionCoordinator, SessionState
from mpysync.session.notices import BUSY_NOTICE
from mpysync.sync import (
    CrossDiff,
    DiffMarkers,
    RemoteTreeCache,
    SyncDirection,
    SyncEngine,
)
from mpysync.sync.engine import new_stats


@pytest.fixture
def runner():
    """Provide a Click CLI test runner with a wide console."""
    return CliRunner(env={"COLUMNS": "200"})


@pytest.fixture
def mock_config():
    """Mock the config module with plain settings."""
    with patch("mpysync.cli.config") as mock:
        mock.port = "auto"
        mock.tool = ["python3", "pyserial_tool.py"]
        mock.baud_rate = 115200
        mock.root_path = "/"
        mock.auto_suspend = True
        mock.pre_list_delay = 0.15
        yield mock


@pytest.fixture
def mock_engine():
    """Mock sync engine returned by create_engine."""
    engine = Mock(spec=SyncEngine)
    engine.root_path = "/"
    engine.markers = Mock(spec=DiffMarkers)
    for name in (
        "push_all",
        "pull_all",
        "check_diffs",
        "sync_diffs",
        "list_dir",
        "upload_file",
        "download_file",
        "delete_remote",
        "make_remote_dir",
        "rename_remote",
        "wipe_device",
        "run_file",
        "soft_reset",
    ):
        setattr(engine, name, AsyncMock())
    with patch("mpysync.cli.create_engine", return_value=engine):
        yield engine


@pytest.fixture
def workspace():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def stats(**values):
    result = new_stats()
    result.update(values)
    return result


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "MicroPython" in result.output
        for command in ("init", "push", "pull", "check", "sync", "wipe", "ls"):
            assert command in result.output

    def test_loads_workspace_config(self, runner, mock_config, mock_engine, workspace):
        mock_engine.soft_reset.return_value = None
        result = runner.invoke(main, ["-w", str(workspace), "reset"])
        assert result.exit_code == 0
        mock_config.load.assert_called_once_with(workspace.resolve())


class TestInitCommand:
    """Tests for the init command."""

    def test_init_creates_state(self, runner, mock_config, workspace):
        result = runner.invoke(
            main, ["-w", str(workspace), "init", "--port", "/dev/ttyUSB0"]
        )

        assert result.exit_code == 0, result.output
        assert "Initialization Complete" in result.output
        assert (workspace / ".mpysync" / "manifest.json").exists()
        assert (workspace / ".mpysyncignore").exists()
        mock_config.save_port.assert_called_once_with("/dev/ttyUSB0")

    def test_init_json(self, runner, mock_config, workspace):
        result = runner.invoke(main, ["-w", str(workspace), "--json", "init"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["workspace"] == str(workspace.resolve())
        mock_config.save_port.assert_not_called()


class TestPortCommands:
    """Tests for ports and set-port."""

    @patch("mpysync.cli.create_client")
    def test_ports_table(self, mock_create_client, runner, mock_config):
        client = Mock(spec=DeviceClient)
        client.devs = AsyncMock(return_value=["/dev/ttyUSB0", "/dev/ttyACM0"])
        mock_create_client.return_value = client

        result = runner.invoke(main, ["ports"])

        assert result.exit_code == 0
        assert "/dev/ttyUSB0" in result.output
        assert "/dev/ttyACM0" in result.output

    @patch("mpysync.cli.create_client")
    def test_no_ports(self, mock_create_client, runner, mock_config):
        client = Mock(spec=DeviceClient)
        client.devs = AsyncMock(return_value=[])
        mock_create_client.return_value = client

        result = runner.invoke(main, ["ports"])

        assert result.exit_code == 0
        assert "No serial ports detected" in result.output

    def test_set_port(self, runner, mock_config):
        mock_config.save_port.return_value = Path("/ws/.mpysync/config.json")
        mock_config.port = "/dev/ttyACM0"

        result = runner.invoke(main, ["set-port", "serial:///dev/ttyACM0"])

        assert result.exit_code == 0
        assert "Port set to /dev/ttyACM0" in result.output
        mock_config.save_port.assert_called_once_with("serial:///dev/ttyACM0")


class TestTransferCommands:
    """Tests for push, pull, check and sync."""

    def test_push_summary(self, runner, mock_config, mock_engine):
        mock_engine.push_all.return_value = stats(uploads=3, dirs_created=1)

        result = runner.invoke(main, ["-q", "push"])

        assert result.exit_code == 0
        assert "Push Complete" in result.output
        assert "3 file(s)" in result.output

    def test_push_with_failures_exits_1(self, runner, mock_config, mock_engine):
        mock_engine.push_all.return_value = stats(
            uploads=1, failed=1, failed_paths=["lib/big.py"]
        )

        result = runner.invoke(main, ["-q", "push"])

        assert result.exit_code == 1
        assert "lib/big.py" in result.output

    def test_push_without_port(self, runner, mock_config, mock_engine):
        mock_engine.push_all.side_effect = PortNotSelectedError()

        result = runner.invoke(main, ["-q", "push"])

        assert result.exit_code == 1
        assert "Select a specific serial port" in result.output

    def test_pull_json(self, runner, mock_config, mock_engine):
        mock_engine.pull_all.return_value = stats(downloads=2)

        result = runner.invoke(main, ["--json", "pull"])

        assert result.exit_code == 0
        assert json.loads(result.output)["downloads"] == 2

    def test_check_in_sync(self, runner, mock_config, mock_engine):
        mock_engine.check_diffs.return_value = CrossDiff()

        result = runner.invoke(main, ["check"])

        assert result.exit_code == 0
        assert "in sync" in result.output

    def test_check_lists_differences(self, runner, mock_config, mock_engine):
        mock_engine.check_diffs.return_value = CrossDiff(
            changed={"main.py"}, local_only={"lib/new.py"}, remote_only={"old.py"}
        )

        result = runner.invoke(main, ["check"])

        assert result.exit_code == 0
        for text in ("main.py", "lib/new.py", "old.py", "device only"):
            assert text in result.output

    def test_check_json(self, runner, mock_config, mock_engine):
        mock_engine.check_diffs.return_value = CrossDiff(changed={"main.py"})
        mock_engine.markers.to_dict.return_value = {
            "rootPath": "/",
            "changed": ["main.py"],
            "remoteOnly": [],
            "localOnly": [],
        }

        result = runner.invoke(main, ["--json", "check"])

        assert result.exit_code == 0
        assert json.loads(result.output)["changed"] == ["main.py"]

    def test_sync_requires_direction(self, runner, mock_config, mock_engine):
        result = runner.invoke(main, ["sync"])

        assert result.exit_code == 2
        mock_engine.sync_diffs.assert_not_awaited()

    def test_sync_to_device(self, runner, mock_config, mock_engine):
        mock_engine.sync_diffs.return_value = stats(uploads=1)

        result = runner.invoke(main, ["-q", "sync", "--to-device"])

        assert result.exit_code == 0
        mock_engine.sync_diffs.assert_awaited_once_with(SyncDirection.TO_DEVICE, None)
        mock_engine.check_diffs.assert_not_awaited()

    def test_sync_with_check(self, runner, mock_config, mock_engine):
        mock_engine.sync_diffs.return_value = stats(downloads=1)

        result = runner.invoke(main, ["-q", "sync", "--to-local", "--check"])

        assert result.exit_code == 0
        mock_engine.check_diffs.assert_awaited_once()
        mock_engine.sync_diffs.assert_awaited_once_with(SyncDirection.TO_LOCAL, None)

    def test_sync_without_check_result(self, runner, mock_config, mock_engine):
        mock_engine.sync_diffs.side_effect = NoDiffStateError()

        result = runner.invoke(main, ["-q", "sync", "--to-device"])

        assert result.exit_code == 1
        assert "run a check first" in result.output


class TestDeviceCommands:
    """Tests for single-item device commands."""

    def test_ls(self, runner, mock_config, mock_engine):
        mock_engine.list_dir.return_value = [
            RemoteNode(NodeKind.DIR, "lib", "/lib"),
            RemoteNode(NodeKind.FILE, "main.py", "/main.py"),
            RemoteNode(NodeKind.FILE, "new.py", "/new.py", local_only=True),
        ]

        result = runner.invoke(main, ["ls", "--refresh"])

        assert result.exit_code == 0
        assert "lib/" in result.output
        assert "main.py" in result.output
        assert "local only" in result.output
        mock_engine.list_dir.assert_awaited_once_with(None, force=True)

    def test_wipe_confirmed(self, runner, mock_config, mock_engine):
        mock_engine.wipe_device.return_value = WipeResult(deleted_count=4)

        result = runner.invoke(main, ["wipe", "--yes"])

        assert result.exit_code == 0
        assert "4 item(s)" in result.output

    def test_wipe_aborted(self, runner, mock_config, mock_engine):
        result = runner.invoke(main, ["wipe"], input="n\n")

        assert result.exit_code == 1
        mock_engine.wipe_device.assert_not_awaited()

    def test_wipe_with_errors(self, runner, mock_config, mock_engine):
        mock_engine.wipe_device.return_value = WipeResult(
            deleted_count=2, errors=["/boot.py: EACCES"]
        )

        result = runner.invoke(main, ["wipe", "-y"])

        assert result.exit_code == 1
        assert "/boot.py: EACCES" in result.output

    def test_upload(self, runner, mock_config, mock_engine, workspace):
        (workspace / "main.py").write_text("print(1)")
        mock_engine.upload_file.return_value = "/main.py"

        result = runner.invoke(
            main, ["-w", str(workspace), "upload", str(workspace / "main.py")]
        )

        assert result.exit_code == 0
        mock_engine.upload_file.assert_awaited_once_with("main.py")
        assert "Uploaded main.py" in result.output

    def test_upload_outside_workspace(
        self, runner, mock_config, mock_engine, workspace
    ):
        with tempfile.NamedTemporaryFile(suffix=".py") as outside:
            result = runner.invoke(main, ["-w", str(workspace), "upload", outside.name])

        assert result.exit_code == 1
        assert "not inside the workspace" in result.output
        mock_engine.upload_file.assert_not_awaited()

    def test_rm_and_mv(self, runner, mock_config, mock_engine):
        result = runner.invoke(main, ["rm", "/old.py"])
        assert result.exit_code == 0
        mock_engine.delete_remote.assert_awaited_once_with("/old.py")

        result = runner.invoke(main, ["mv", "/a.py", "/b.py"])
        assert result.exit_code == 0
        mock_engine.rename_remote.assert_awaited_once_with("/a.py", "/b.py")

    def test_run_prints_output(self, runner, mock_config, mock_engine):
        mock_engine.run_file.return_value = "blink\n"
        with runner.isolated_filesystem():
            Path("blink.py").write_text("print('blink')")
            result = runner.invoke(main, ["run", "blink.py"])

        assert result.exit_code == 0
        assert "blink" in result.output

    def test_reset_failure(self, runner, mock_config, mock_engine):
        mock_engine.soft_reset.side_effect = PortNotSelectedError()

        result = runner.invoke(main, ["reset"])

        assert result.exit_code == 1
        assert "Reset failed" in result.output


class TestEngineWiring:
    """Tests for the objects create_engine puts together."""

    @pytest.fixture
    def ctx(self, workspace):
        ctx = Mock()
        ctx.obj = {
            "out": Mock(spec=OutputFormatter),
            "workspace": workspace,
            "port": "/dev/ttyUSB0",
            "root": None,
            "baud": None,
        }
        return ctx

    @pytest.mark.asyncio
    async def test_busy_port_warning_reaches_the_user(self, mock_config, ctx):
        engine = create_engine(ctx)
        busy = MagicMock()
        busy.communicate = AsyncMock(
            return_value=(b"", b"could not open port: [Errno 16] Resource busy")
        )
        busy.returncode = 1

        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock) as spawn:
            spawn.return_value = busy
            for _ in range(3):
                with pytest.raises(PortBusyError):
                    await engine.coordinator.run(
                        lambda: engine.client.mkdir("/x"), label="mkdir /x"
                    )

        assert spawn.await_count == 3
        ctx.obj["out"].warning.assert_called_once_with(BUSY_NOTICE)
        assert engine.coordinator.notifier is engine.client.notifier


class TestMonitorCommand:
    """Tests for the long-running monitor command."""

    @pytest.fixture
    def coordinator(self, mock_engine):
        coordinator = Mock(spec=SessionCoordinator)
        coordinator.state = SessionState()
        coordinator.open_monitor = AsyncMock()
        coordinator.release = AsyncMock()
        coordinator.cancel = AsyncMock(return_value=True)
        mock_engine.coordinator = coordinator
        mock_engine.client = Mock(spec=DeviceClient)
        mock_engine.client.port = "/dev/ttyUSB0"
        mock_engine.client.has_port = True
        mock_engine.tree = Mock(spec=RemoteTreeCache)
        return coordinator

    @patch("mpysync.cli.WorkspaceWatcher")
    def test_auto_sync_session(
        self, mock_watcher_cls, runner, mock_config, mock_engine, coordinator
    ):
        watch = mock_watcher_cls.return_value.watch = AsyncMock()

        result = runner.invoke(main, ["monitor"])

        assert result.exit_code == 0, result.output
        coordinator.open_monitor.assert_awaited_once_with("/dev/ttyUSB0")
        mock_watcher_cls.assert_called_once_with(mock_engine)
        watch.assert_awaited_once()
        coordinator.release.assert_awaited_once()
        mock_engine.tree.subscribe.assert_called_once()
        mock_engine.tree.subscribe.return_value.assert_called_once_with()
        assert "Monitor closed" in result.output

    def test_ctrl_c_when_idle_closes_the_monitor(
        self, runner, mock_config, mock_engine, coordinator
    ):
        async def attach(port):
            signal.raise_signal(signal.SIGINT)

        coordinator.open_monitor.side_effect = attach

        result = runner.invoke(main, ["monitor", "--no-sync"])

        assert result.exit_code == 0, result.output
        coordinator.cancel.assert_not_awaited()
        coordinator.release.assert_awaited_once()

    @patch("mpysync.cli.WorkspaceWatcher")
    def test_ctrl_c_during_upload_cancels_it(
        self, mock_watcher_cls, runner, mock_config, mock_engine, coordinator
    ):
        stop_states = []

        async def watch(stop):
            coordinator.state.busy = True
            signal.raise_signal(signal.SIGINT)
            await asyncio.sleep(0.05)
            coordinator.state.busy = False
            stop_states.append(stop.is_set())

        mock_watcher_cls.return_value.watch = AsyncMock(side_effect=watch)

        result = runner.invoke(main, ["monitor"])

        assert result.exit_code == 0, result.output
        coordinator.cancel.assert_awaited_once()
        assert stop_states == [False]
        assert "Cancelling the running transfer" in result.output
        coordinator.release.assert_awaited_once()

    def test_requires_a_port(self, runner, mock_config, mock_engine, coordinator):
        mock_engine.client.has_port = False

        result = runner.invoke(main, ["monitor"])

        assert result.exit_code == 1
        assert "Select a specific serial port" in result.output
        coordinator.open_monitor.assert_not_awaited()

    def test_attach_failure(self, runner, mock_config, mock_engine, coordinator):
        coordinator.open_monitor.side_effect = DeviceError("Failed to start monitor")

        result = runner.invoke(main, ["monitor", "--no-sync"])

        assert result.exit_code == 1
        assert "Failed to start monitor" in result.output
        coordinator.release.assert_awaited_once()
