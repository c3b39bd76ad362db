"""Ignore rules for workspace and device paths.

Patterns use a gitignore-like glob grammar:

- ``**`` matches any number of path segments, including none
- ``*`` matches within one segment, ``?`` matches one character
- a trailing ``/`` only matches directories, and everything beneath them
- a leading ``/`` anchors the pattern at the workspace root; any other
  pattern matches at any depth

Rules come from a built-in default list plus the optional
``.mpysyncignore`` file at the workspace root (and
``.mpysync/.mpysyncignore``). A path is ignored if any rule matches it.

Examples:
    >>> matcher = compile_patterns(["**/*.pyc", "/build/"])
    >>> matcher("a/b/c.pyc", False)
    True
    >>> matcher("build/x.py", False)
    True
    >>> matcher("other/build", True)
    False
"""

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Optional

import pathspec

from ..utils import STATE_DIR_NAME

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".mpysyncignore"

DEFAULT_IGNORE_PATTERNS: list[str] = [
    ".git/",
    ".vscode/",
    "node_modules/",
    "dist/",
    "out/",
    "build/",
    "__pycache__/",
    ".DS_Store",
    f"{STATE_DIR_NAME}/",
    IGNORE_FILE_NAME,
]

DEFAULT_IGNORE_FILE_CONTENT = f"""# {IGNORE_FILE_NAME}
# Paths matching these patterns are neither uploaded nor downloaded.
#
#   **/*.pyc    any .pyc file at any depth
#   /secrets.py only secrets.py at the workspace root
#   logs/       any logs directory and everything beneath it
#
# Built-in defaults (always applied):
{chr(10).join("#   " + p for p in DEFAULT_IGNORE_PATTERNS)}
"""


def _normalize_path(rel_path: str) -> str:
    return rel_path.replace("\\", "/").strip("/")


class IgnoreRule:
    """One compiled ignore pattern."""

    def __init__(self, pattern: str):
        """Compile a pattern.

        Args:
            pattern: Glob pattern (see module docstring)

        Raises:
            ValueError: The pattern is empty or a negation
        """
        pattern = pattern.strip()
        if not pattern or pattern.startswith("#"):
            raise ValueError("Empty ignore pattern")
        if pattern.startswith("!"):
            raise ValueError(f"Negated patterns are not supported: {pattern}")
        self.pattern = pattern
        self.dir_only = pattern.endswith("/")

        body = pattern.rstrip("/")
        if not body.startswith("/") and "/" in body and not body.startswith("**/"):
            # Inner slashes would anchor a gitignore pattern; keep it floating
            body = "**/" + body
        self._spec = pathspec.PathSpec.from_lines(
            "gitignore", [body + ("/" if self.dir_only else "")]
        )

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        """Return True if the rule matches a normalized relative path."""
        if not rel_path:
            return False
        candidate = rel_path + "/" if is_dir else rel_path
        return self._spec.match_file(candidate)

    def __repr__(self) -> str:
        return f"IgnoreRule({self.pattern!r})"


class IgnoreMatcher:
    """Ordered set of ignore rules, matched as a logical OR.

    Instances are callable as ``matcher(rel_path, is_dir)``.
    """

    def __init__(self, rules: Optional[list[IgnoreRule]] = None):
        self.rules: list[IgnoreRule] = rules or []

    @property
    def patterns(self) -> list[str]:
        return [rule.pattern for rule in self.rules]

    def __call__(self, rel_path: str, is_dir: bool = False) -> bool:
        return self.is_ignored(rel_path, is_dir)

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        """Check a workspace-relative path.

        Args:
            rel_path: Relative path; backslashes are treated as separators
            is_dir: Whether the path is a directory

        Returns:
            True if any rule matches
        """
        path = _normalize_path(rel_path)
        return any(rule.matches(path, is_dir) for rule in self.rules)

    def __len__(self) -> int:
        return len(self.rules)


def compile_patterns(patterns: Iterable[str]) -> IgnoreMatcher:
    """Compile patterns into a matcher, skipping unusable lines."""
    rules = []
    for pattern in patterns:
        try:
            rules.append(IgnoreRule(pattern))
        except ValueError as e:
            if pattern.strip() and not pattern.strip().startswith("#"):
                logger.warning(f"Skipping ignore pattern: {e}")
    return IgnoreMatcher(rules)


def load_ignore_file(path: Path) -> list[str]:
    """Read patterns from an ignore file.

    Blank lines and ``#`` comments are skipped. A missing file yields no
    patterns; an unreadable one is logged and yields none.
    """
    if not path.is_file():
        return []
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read ignore file {path}: {e}")
        return []
    patterns = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            patterns.append(stripped)
    return patterns


def ignore_file_paths(workspace: Path) -> list[Path]:
    """Locations of the optional workspace ignore files."""
    return [
        workspace / IGNORE_FILE_NAME,
        workspace / STATE_DIR_NAME / IGNORE_FILE_NAME,
    ]


def create_ignore_matcher(workspace: Optional[Path]) -> IgnoreMatcher:
    """Compile the default rules plus the workspace ignore files."""
    patterns = list(DEFAULT_IGNORE_PATTERNS)
    if workspace is not None:
        for path in ignore_file_paths(workspace):
            patterns.extend(load_ignore_file(path))
    matcher = compile_patterns(patterns)
    logger.debug(f"Compiled {len(matcher)} ignore rules for {workspace}")
    return matcher


def write_default_ignore_file(workspace: Path) -> Optional[Path]:
    """Create a commented ``.mpysyncignore`` if there is none.

    Returns:
        Path of the created file, None if one already existed
    """
    path = workspace / IGNORE_FILE_NAME
    if path.exists():
        return None
    path.write_text(DEFAULT_IGNORE_FILE_CONTENT, encoding="utf-8")
    return path
