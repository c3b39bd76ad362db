"""CLI interface for mpysync."""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Optional

import click

from .cli_progress import run_with_progress
from .client import DeviceClient
from .config import config
from .exceptions import MpySyncError, PortNotSelectedError
from .output import OutputFormatter
from .session import MonitorSession, SessionCoordinator, StatusNotifier
from .sync import (
    DiffMarkers,
    RemoteTreeCache,
    SyncDirection,
    SyncEngine,
    WorkspaceWatcher,
    coordinated_lister,
    create_ignore_matcher,
)

logger = logging.getLogger(__name__)


def create_client(ctx: Any) -> DeviceClient:
    """Build a device client from the CLI options and configuration."""
    out: OutputFormatter = ctx.obj["out"]
    return DeviceClient(
        ctx.obj["port"] or config.port,
        config.tool,
        baud_rate=ctx.obj["baud"] or config.baud_rate,
        notifier=StatusNotifier(out),
    )


def create_engine(ctx: Any) -> SyncEngine:
    """Wire client, coordinator, tree cache and markers into a sync engine."""
    out: OutputFormatter = ctx.obj["out"]
    workspace: Path = ctx.obj["workspace"]
    root_path = ctx.obj["root"] or config.root_path

    client = create_client(ctx)
    coordinator = SessionCoordinator(
        client,
        MonitorSession(baud_rate=client.baud_rate),
        notifier=client.notifier,
        auto_suspend=config.auto_suspend,
        pre_list_delay=config.pre_list_delay,
    )
    matcher = create_ignore_matcher(workspace)
    markers = DiffMarkers.for_workspace(workspace)
    tree = RemoteTreeCache(
        coordinated_lister(coordinator, client),
        matcher=matcher,
        root_path=root_path,
        markers=markers,
    )
    return SyncEngine(
        client,
        coordinator,
        tree,
        markers,
        workspace,
        root_path=root_path,
        output=out,
        matcher=matcher,
    )


def _show_progress(out: OutputFormatter) -> bool:
    return not (out.quiet or out.json_output)


def _print_stats(out: OutputFormatter, title: str, stats: dict) -> None:
    if out.json_output:
        out.output_json(stats)
        return
    items = []
    if stats["uploads"]:
        items.append(("Uploaded", f"{stats['uploads']} file(s)"))
    if stats["downloads"]:
        items.append(("Downloaded", f"{stats['downloads']} file(s)"))
    if stats["dirs_created"]:
        items.append(("Directories created", str(stats["dirs_created"])))
    if stats["skipped"]:
        items.append(("Skipped", f"{stats['skipped']} file(s)"))
    if stats["failed"]:
        items.append(("Failed", ", ".join(stats["failed_paths"])))
    if not items:
        items.append(("Status", "Nothing to transfer"))
    out.print_summary(title, items)


async def _run_monitor(
    engine: SyncEngine, out: OutputFormatter, auto_sync: bool
) -> None:
    """Hold the monitor open, uploading saved files, until interrupted."""
    coordinator = engine.coordinator
    port = engine.client.port
    if not engine.client.has_port:
        raise PortNotSelectedError()

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    cancels: list[asyncio.Task] = []

    def interrupt() -> None:
        if coordinator.state.busy:
            out.warning("Cancelling the running transfer")
            cancels.append(loop.create_task(coordinator.cancel()))
        else:
            stop.set()

    handled = []
    for signum, handler in ((signal.SIGINT, interrupt), (signal.SIGTERM, stop.set)):
        try:
            loop.add_signal_handler(signum, handler)
        except NotImplementedError:
            logger.debug(f"No asyncio signal handler for {signum!r} on this platform")
            continue
        handled.append(signum)

    unsubscribe = engine.tree.subscribe(
        lambda directory: logger.debug(f"Device tree changed under {directory}")
    )
    try:
        await coordinator.open_monitor(port)
        if auto_sync:
            out.info(f"Monitoring {port}, uploading saved files. Ctrl-C to quit.")
            await WorkspaceWatcher(engine).watch(stop)
        else:
            out.info(f"Monitoring {port}. Ctrl-C to quit.")
            await stop.wait()
    finally:
        unsubscribe()
        for signum in handled:
            loop.remove_signal_handler(signum)
        if cancels:
            await asyncio.gather(*cancels)
        await coordinator.release()


@click.group()
@click.option("--port", "-p", help="Serial port of the board (overrides config)")
@click.option(
    "--workspace",
    "-w",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Local workspace directory",
)
@click.option("--root", help="Device directory mirroring the workspace")
@click.option("--baud", type=int, help="Serial baud rate")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="mpysync")
@click.pass_context
def main(
    ctx: Any,
    port: Optional[str],
    workspace: Path,
    root: Optional[str],
    baud: Optional[int],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """mpysync - Mirror a workspace to a MicroPython board over serial."""
    ctx.ensure_object(dict)
    workspace = workspace.resolve()
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["workspace"] = workspace
    ctx.obj["port"] = port
    ctx.obj["root"] = root
    ctx.obj["baud"] = baud

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("mpysync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        config.load(workspace)
    except MpySyncError as e:
        ctx.obj["out"].error(str(e))
        ctx.exit(1)


@main.command()
@click.option("--port", "-p", "init_port", help="Serial port to remember")
@click.pass_context
def init(ctx: Any, init_port: Optional[str]) -> None:
    """Initialize the workspace.

    Creates .mpysync/ with an empty manifest and a commented .mpysyncignore.
    """
    out: OutputFormatter = ctx.obj["out"]
    workspace: Path = ctx.obj["workspace"]

    try:
        engine = create_engine(ctx)
        created = engine.ensure_initialized()
        if init_port:
            config.save_port(init_port)
    except (MpySyncError, OSError) as e:
        out.error(f"Initialization failed: {e}")
        ctx.exit(1)

    if out.json_output:
        out.output_json(
            {"workspace": str(workspace), "created": [str(p) for p in created]}
        )
        return
    items = [("Workspace", str(workspace))]
    items.extend(("Created", str(path.relative_to(workspace))) for path in created)
    if init_port:
        items.append(("Port", init_port))
    out.print_summary("Initialization Complete", items)


@main.command()
@click.pass_context
def ports(ctx: Any) -> None:
    """List serial ports."""
    out: OutputFormatter = ctx.obj["out"]
    found = asyncio.run(create_client(ctx).devs())
    if out.json_output:
        out.output_json(found)
        return
    if not found:
        out.warning("No serial ports detected. Check that pyserial is installed.")
        return
    out.output_table([{"port": p} for p in found], ["port"], {"port": "Port"})


@main.command("set-port")
@click.argument("port")
@click.pass_context
def set_port(ctx: Any, port: str) -> None:
    """Remember PORT for this workspace."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        path = config.save_port(port)
    except OSError as e:
        out.error(f"Could not save port: {e}")
        ctx.exit(1)
    out.success(f"Port set to {config.port} ({path})")


@main.command()
@click.argument("path", required=False)
@click.option("--refresh", "-r", is_flag=True, help="List again even if cached")
@click.pass_context
def ls(ctx: Any, path: Optional[str], refresh: bool) -> None:
    """List a device directory (default: the device root)."""
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    try:
        nodes = asyncio.run(engine.list_dir(path, force=refresh))
    except MpySyncError as e:
        out.error(str(e))
        ctx.exit(1)

    rows = [
        {
            "name": node.name + ("/" if node.is_dir else ""),
            "type": node.kind.value,
            "path": node.path,
            "status": "local only" if node.local_only else "",
        }
        for node in nodes
    ]
    out.output_table(rows, ["name", "status"], {"name": "Name", "status": ""})


@main.command()
@click.pass_context
def push(ctx: Any) -> None:
    """Upload every workspace file to the device."""
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    try:
        stats = run_with_progress(engine.push_all, _show_progress(out))
    except MpySyncError as e:
        out.error(f"Push failed: {e}")
        ctx.exit(1)
    _print_stats(out, "Push Complete", stats)
    if stats["failed"]:
        ctx.exit(1)


@main.command()
@click.pass_context
def pull(ctx: Any) -> None:
    """Download every device file into the workspace."""
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    try:
        stats = run_with_progress(engine.pull_all, _show_progress(out))
    except MpySyncError as e:
        out.error(f"Pull failed: {e}")
        ctx.exit(1)
    _print_stats(out, "Pull Complete", stats)
    if stats["failed"]:
        ctx.exit(1)


@main.command()
@click.pass_context
def check(ctx: Any) -> None:
    """Compare the workspace with the device by file size."""
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    try:
        diff = asyncio.run(engine.check_diffs())
    except MpySyncError as e:
        out.error(f"Check failed: {e}")
        ctx.exit(1)

    if out.json_output:
        out.output_json(engine.markers.to_dict())
        return
    if diff.is_empty:
        out.success("Workspace and device are in sync")
        return
    rows = (
        [{"path": p, "status": "changed"} for p in sorted(diff.changed)]
        + [{"path": p, "status": "local only"} for p in sorted(diff.local_only)]
        + [{"path": p, "status": "device only"} for p in sorted(diff.remote_only)]
    )
    out.output_table(rows, ["status", "path"], {"status": "Status", "path": "Path"})
    out.info("")
    out.info("Run 'mpysync sync --to-device' or 'mpysync sync --to-local' to apply.")


@main.command()
@click.option(
    "--to-device",
    "direction",
    flag_value=SyncDirection.TO_DEVICE.value,
    help="Upload changed and local-only files",
)
@click.option(
    "--to-local",
    "direction",
    flag_value=SyncDirection.TO_LOCAL.value,
    help="Download changed and device-only files",
)
@click.option("--check", "run_check", is_flag=True, help="Run a check first")
@click.pass_context
def sync(ctx: Any, direction: Optional[str], run_check: bool) -> None:
    """Transfer the files flagged by the last check."""
    out: OutputFormatter = ctx.obj["out"]
    if direction is None:
        out.error("Choose a direction: --to-device or --to-local")
        ctx.exit(2)
    engine = create_engine(ctx)
    sync_direction = SyncDirection(direction)

    try:
        if run_check:
            asyncio.run(engine.check_diffs())
        stats = run_with_progress(
            lambda tracker: engine.sync_diffs(sync_direction, tracker),
            _show_progress(out),
        )
    except MpySyncError as e:
        out.error(f"Sync failed: {e}")
        ctx.exit(1)
    _print_stats(out, "Sync Complete", stats)
    if stats["failed"]:
        ctx.exit(1)


@main.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def wipe(ctx: Any, yes: bool) -> None:
    """Delete everything on the device below the root."""
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    if not yes:
        click.confirm(
            f"Delete ALL files under {engine.root_path} on the device?", abort=True
        )
    try:
        result = asyncio.run(engine.wipe_device())
    except MpySyncError as e:
        out.error(f"Wipe failed: {e}")
        ctx.exit(1)

    if out.json_output:
        out.output_json(
            {"deleted_count": result.deleted_count, "errors": result.errors}
        )
    else:
        out.print_summary(
            "Wipe Complete",
            [
                ("Deleted", f"{result.deleted_count} item(s)"),
                ("Errors", str(len(result.errors))),
            ],
        )
        for error in result.errors:
            out.warning(error)
    if result.errors:
        ctx.exit(1)


@main.command()
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def upload(ctx: Any, file: Path) -> None:
    """Upload one workspace FILE to the device."""
    out: OutputFormatter = ctx.obj["out"]
    workspace: Path = ctx.obj["workspace"]
    engine = create_engine(ctx)
    local = file if file.is_absolute() else Path.cwd() / file
    try:
        rel_path = local.resolve().relative_to(workspace).as_posix()
    except ValueError:
        out.error(f"{file} is not inside the workspace {workspace}")
        ctx.exit(1)

    try:
        device_path = asyncio.run(engine.upload_file(rel_path))
    except MpySyncError as e:
        out.error(f"Upload failed: {e}")
        ctx.exit(1)
    if device_path is None:
        out.warning(f"{rel_path} is ignored, not uploaded")
    else:
        out.success(f"Uploaded {rel_path} -> {device_path}")


@main.command()
@click.argument("device_path")
@click.option(
    "--dest",
    "-d",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Local target (default: the matching workspace path)",
)
@click.pass_context
def download(ctx: Any, device_path: str, dest: Optional[Path]) -> None:
    """Download one device file."""
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    try:
        target = asyncio.run(engine.download_file(device_path, dest))
    except MpySyncError as e:
        out.error(f"Download failed: {e}")
        ctx.exit(1)
    out.success(f"Downloaded {device_path} -> {target}")


@main.command()
@click.argument("device_path")
@click.pass_context
def rm(ctx: Any, device_path: str) -> None:
    """Delete a device file or directory."""
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    try:
        asyncio.run(engine.delete_remote(device_path))
    except MpySyncError as e:
        out.error(f"Delete failed: {e}")
        ctx.exit(1)
    out.success(f"Deleted {device_path}")


@main.command()
@click.argument("device_path")
@click.pass_context
def mkdir(ctx: Any, device_path: str) -> None:
    """Create a device directory."""
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    try:
        asyncio.run(engine.make_remote_dir(device_path))
    except MpySyncError as e:
        out.error(f"mkdir failed: {e}")
        ctx.exit(1)
    out.success(f"Created {device_path}")


@main.command()
@click.argument("src")
@click.argument("dst")
@click.pass_context
def mv(ctx: Any, src: str, dst: str) -> None:
    """Rename or move a device path."""
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    try:
        asyncio.run(engine.rename_remote(src, dst))
    except MpySyncError as e:
        out.error(f"Rename failed: {e}")
        ctx.exit(1)
    out.success(f"Renamed {src} -> {dst}")


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def run(ctx: Any, file: Path) -> None:
    """Run a local script on the device and print its output."""
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    try:
        output = asyncio.run(engine.run_file(file))
    except MpySyncError as e:
        out.error(f"Run failed: {e}")
        ctx.exit(1)
    if out.json_output:
        out.output_json({"file": str(file), "output": output})
    else:
        out.print(output.rstrip("\n"))


@main.command()
@click.pass_context
def reset(ctx: Any) -> None:
    """Soft-reset the board."""
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    try:
        asyncio.run(engine.soft_reset())
    except MpySyncError as e:
        out.error(f"Reset failed: {e}")
        ctx.exit(1)
    out.success("Board reset")


@main.command()
@click.option("--no-sync", is_flag=True, help="Only show device output, do not upload")
@click.pass_context
def monitor(ctx: Any, no_sync: bool) -> None:
    """Attach the serial monitor and upload workspace files as they are saved.

    Each upload detaches the monitor and reattaches it afterwards. Ctrl-C
    cancels a running upload; when nothing is running it closes the monitor.
    """
    out: OutputFormatter = ctx.obj["out"]
    engine = create_engine(ctx)
    try:
        asyncio.run(_run_monitor(engine, out, auto_sync=not no_sync))
    except MpySyncError as e:
        out.error(f"Monitor failed: {e}")
        ctx.exit(1)
    out.success("Monitor closed")


if __name__ == "__main__":
    main()
