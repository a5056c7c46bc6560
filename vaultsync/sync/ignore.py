"""Ignore pattern matching for sync operations.

Patterns come from three sources which are combined by
:func:`resolve_ignore_patterns`: the built-in defaults, the sync
configuration, and an optional ``.vaultsync-ignore`` file at the root of the
local directory.

Two kinds of patterns are supported:

* Directory patterns end with ``/`` (``build/``). They match a path whose
  first segment is that directory.
* Everything else is a gitignore-style glob matched with pathspec
  (``*.tmp``, ``drafts/*.md``). ``*`` and ``?`` never cross a ``/``, ``**``
  does. A glob without a slash matches at any depth, so ``.DS_Store`` also
  matches ``sub/.DS_Store``. Later ``!`` globs re-include earlier matches.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pathspec import PathSpec

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".vaultsync-ignore"

DEFAULT_IGNORE_PATTERNS = [
    ".git/",
    ".svn/",
    ".hg/",
    "node_modules/",
    "*.tmp",
    ".DS_Store",
    "Thumbs.db",
    ".vaultsync/",
    ".vaultsync-*",
]


def load_ignore_file(local_path: Path) -> list[str]:
    """Load ignore patterns from a ``.vaultsync-ignore`` file.

    Blank lines and ``#`` comments are skipped, surrounding whitespace is
    stripped.

    Args:
        local_path: Root directory of the sync pair

    Returns:
        List of patterns (empty if the file is missing or unreadable)
    """
    ignore_file = Path(local_path) / IGNORE_FILE_NAME
    if not ignore_file.exists():
        return []
    try:
        content = ignore_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to read {ignore_file}: {e}")
        return []
    patterns = []
    for line in content.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


def resolve_ignore_patterns(config_ignore: list[str], local_path: Path) -> list[str]:
    """Combine default, config-level and ignore-file patterns.

    Order is preserved and duplicates are dropped.
    """
    combined = [*DEFAULT_IGNORE_PATTERNS, *config_ignore, *load_ignore_file(local_path)]
    return list(dict.fromkeys(combined))


@lru_cache(maxsize=128)
def _glob_spec(patterns: tuple[str, ...]) -> PathSpec:
    return PathSpec.from_lines("gitwildmatch", patterns)


def should_ignore(doc_path: str, patterns: list[str]) -> bool:
    """Check whether a document path should be excluded from sync.

    Args:
        doc_path: Relative path using forward slashes
        patterns: Ordered list of ignore patterns

    Returns:
        True if any pattern matches

    Examples:
        >>> should_ignore(".git/config", [".git/"])
        True
        >>> should_ignore("src/.git/config", [".git/"])
        False
        >>> should_ignore("deep/dir/x.tmp", ["*.tmp"])
        True
    """
    if not patterns:
        return False

    globs = []
    for pattern in patterns:
        if pattern.endswith("/"):
            dir_pattern = pattern[:-1]
            if doc_path.startswith(dir_pattern + "/") or doc_path == dir_pattern:
                return True
        else:
            globs.append(pattern)
    return bool(globs) and _glob_spec(tuple(globs)).match_file(doc_path)


def should_ignore_tree(doc_path: str, patterns: list[str]) -> bool:
    """Like :func:`should_ignore`, but also checks every parent directory.

    Matches what a directory walk that prunes ignored directories would
    exclude, e.g. ``sub/node_modules/a.md`` with the pattern ``node_modules``.
    """
    segments = doc_path.split("/")
    for depth in range(1, len(segments)):
        if should_ignore("/".join(segments[:depth]) + "/", patterns):
            return True
    return should_ignore(doc_path, patterns)
