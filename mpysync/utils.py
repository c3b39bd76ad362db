"""Utility functions and constants for mpysync."""

import posixpath
from typing import Optional

# =============================================================================
# Link timing constants
# =============================================================================

# Serial speed used when none is configured
DEFAULT_BAUD_RATE: int = 115200

# Delay before the single retry of a disconnected call (seconds)
DEFAULT_RETRY_DELAY: float = 0.3

# Minimum interval between two busy/disconnect warnings (seconds)
DEFAULT_NOTICE_COOLDOWN: float = 6.0

# Timeout for discrete listing calls (seconds)
DEFAULT_LIST_TIMEOUT: float = 10.0

# Settle time after the monitor releases the port (seconds)
DEFAULT_SETTLE_DELAY: float = 0.4

# Settle time before a directory listing (seconds)
DEFAULT_PRE_LIST_DELAY: float = 0.15

# Monitor detach script: (bytes to send, delay after sending in seconds)
DETACH_SEQUENCE: tuple[tuple[bytes, float], ...] = (
    (b"\x1d", 0.12),
    (b"q", 0.06),
    (b"\r", 0.2),
)

# Name of the per-workspace state directory
STATE_DIR_NAME: str = ".mpysync"


# =============================================================================
# Formatting
# =============================================================================


def format_size(size: int) -> str:
    """Format file size in human-readable format.

    Args:
        size: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 KB")
    """
    value = float(size)
    for unit in ["B", "KB", "MB", "GB"]:
        if value < 1024.0:
            if unit == "B":
                return f"{int(value)} {unit}"
            return f"{value:.1f} {unit}"
        value /= 1024.0
    return f"{value:.1f} TB"


# =============================================================================
# Port and path helpers
# =============================================================================


def normalize_port(port: Optional[str]) -> str:
    """Strip URI-style prefixes from a port identifier.

    Examples:
        >>> normalize_port("serial:///dev/ttyUSB0")
        '/dev/ttyUSB0'
        >>> normalize_port("COM3")
        'COM3'
    """
    if not port:
        return ""
    port = port.strip()
    if port.startswith("serial://"):
        return port[len("serial://") :]
    if port.startswith("serial:/"):
        return port[len("serial:/") :]
    return port


def is_concrete_port(port: Optional[str]) -> bool:
    """Return True if the port names an actual device."""
    port = normalize_port(port)
    return bool(port) and port != "auto"


def normalize_root(root_path: Optional[str]) -> str:
    """Normalize a device root to an absolute POSIX path without trailing slash."""
    if not root_path:
        return "/"
    root = "/" + root_path.replace("\\", "/").strip("/")
    return posixpath.normpath(root) if root != "/" else "/"


def to_local_relative(device_path: str, root_path: str = "/") -> str:
    """Project an absolute device path onto a workspace-relative path.

    Args:
        device_path: Absolute path on the device
        root_path: Device directory that mirrors the workspace root

    Returns:
        POSIX relative path, "" for the root itself and for paths
        outside the root

    Examples:
        >>> to_local_relative("/lib/util.py")
        'lib/util.py'
        >>> to_local_relative("/app/main.py", "/app")
        'main.py'
        >>> to_local_relative("/other/x.py", "/app")
        ''
    """
    root = normalize_root(root_path)
    path = device_path.replace("\\", "/")
    if root != "/":
        if not path.startswith(root + "/"):
            return ""
        path = path[len(root) :]
    return path.lstrip("/")


def to_device_path(rel_path: str, root_path: str = "/") -> str:
    """Build the absolute device path for a workspace-relative path."""
    root = normalize_root(root_path)
    rel = rel_path.replace("\\", "/").strip("/")
    if not rel:
        return root
    return f"/{rel}" if root == "/" else f"{root}/{rel}"


def parent_path(path: str) -> str:
    """Return the parent of an absolute device path ("/" for top-level)."""
    parent = posixpath.dirname(path.rstrip("/"))
    return parent or "/"


def ancestor_paths(rel_path: str) -> list[str]:
    """Return every ancestor directory of a relative path, outermost first.

    Examples:
        >>> ancestor_paths("a/b/c.py")
        ['a', 'a/b']
        >>> ancestor_paths("main.py")
        []
    """
    parts = rel_path.strip("/").split("/")[:-1]
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]
