"""Allow-list checks for agent file and shell operations.

Paths must resolve inside one of the allowed directories. Commands must not
contain any blocked substring. The command check is a plain case-insensitive
substring test and is bypassed by an equivalent spelling such as "rm -r -f".
It is a tripwire for model suggestions, not a sandbox.

Files listed in a .aiignore file (plus a default set of secrets) are hidden
from every file operation except exists.
"""

import fnmatch
from pathlib import Path

IGNORE_FILE = ".aiignore"

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    ".env",
    "node_modules/",
    ".git/",
    "*.env",
    ".env.*",
    "*.pem",
    "*.key",
    "secrets.json",
    "credentials.json",
)


def is_path_allowed(path, allowed_directories) -> bool:
    """True if path resolves to an allowed directory or one of its descendants.

    Both sides are resolved first, so ".." segments and symlinks cannot be
    used to step outside. An empty allow-list allows nothing.
    """
    resolved = Path(path).expanduser().resolve()
    for root in allowed_directories:
        if resolved.is_relative_to(Path(root).expanduser().resolve()):
            return True
    return False


def blocked_substring(command_line: str, disallowed_commands) -> str | None:
    """Return the first blocked entry contained in command_line, or None."""
    lowered = command_line.lower()
    for blocked in disallowed_commands:
        if blocked and blocked.lower() in lowered:
            return blocked
    return None


def is_command_allowed(command_line: str, disallowed_commands) -> bool:
    return blocked_substring(command_line, disallowed_commands) is None


def load_ignore_patterns(directory) -> list[str]:
    """Return the default ignore patterns plus those in <directory>/.aiignore.

    Blank lines and lines starting with # are skipped. An unreadable file
    contributes nothing.
    """
    patterns = list(DEFAULT_IGNORE_PATTERNS)
    ignore_path = Path(directory) / IGNORE_FILE
    try:
        text = ignore_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return patterns
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#") and line not in patterns:
            patterns.append(line)
    return patterns


def is_path_ignored(path, patterns, base) -> bool:
    """Match path against ignore patterns, relative to base.

    A pattern matches when it equals the relative path or its basename,
    when it ends in "/" and names one of the path's directories, or when
    it is a glob matching the relative path or the basename.
    Paths outside base are matched on their basename only.
    """
    resolved = Path(path).expanduser().resolve()
    base = Path(base).expanduser().resolve()
    if resolved == base:
        return False
    if resolved.is_relative_to(base):
        rel = resolved.relative_to(base).as_posix()
        parts = rel.split("/")
    else:
        rel = resolved.name
        parts = [rel]
    name = parts[-1]

    for pattern in patterns:
        if pattern.endswith("/"):
            dirname = pattern.rstrip("/")
            if rel == dirname or rel.startswith(pattern) or dirname in parts:
                return True
            continue
        if pattern in (rel, name):
            return True
        if "*" in pattern or "?" in pattern:
            if fnmatch.fnmatch(rel, pattern) or fnmatch.fnmatch(name, pattern):
                return True
    return False
