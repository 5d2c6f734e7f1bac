"""Scanner for the agent operation tokens embedded in model replies.

Tokens are recognized left to right, either raw or echoed back from an
earlier turn:

    {{agent:fs:ACTION:PATH[:CONTENT]}}
    {{agent:exec:COMMAND}}
    (Executed: PAYLOAD)

The payload holds at least one character, never spans a newline and ends
at the first closing "}}" (or ")" for the echoed form). Anything that does
not fit is left alone as plain text.
"""

import os
from dataclasses import dataclass
from pathlib import Path

AGENT_OPEN = "{{agent:"
AGENT_CLOSE = "}}"
EXECUTED_OPEN = "(Executed: "
EXECUTED_CLOSE = ")"
NOT_EXECUTED_OPEN = "(Command not executed: "

_AGENT_TYPES = ("fs", "exec")
_FS_PREFIXES = ("mkdir", "rm ", "cp ", "mv ")


@dataclass(frozen=True)
class FileOperation:
    raw_spec: str
    matched_span: str
    start: int
    end: int
    action: str
    path: str
    content: str | None = None

    @property
    def kind(self) -> str:
        return "filesystem"


@dataclass(frozen=True)
class ShellOperation:
    raw_spec: str
    matched_span: str
    start: int
    end: int
    command_line: str

    @property
    def kind(self) -> str:
        return "shell"


Operation = FileOperation | ShellOperation


@dataclass(frozen=True)
class _Token:
    kind: str  # "fs" or "exec"
    payload: str
    start: int
    end: int
    echoed: bool


def _payload_end(text: str, payload_start: int, close: str) -> int | None:
    """Index of the closing delimiter, or None if the payload is invalid."""
    end = text.find(close, payload_start + 1)
    if end == -1:
        return None
    if "\n" in text[payload_start:end]:
        return None
    return end


def _read_agent_token(text: str, start: int) -> _Token | None:
    type_start = start + len(AGENT_OPEN)
    for kind in _AGENT_TYPES:
        prefix = kind + ":"
        if text.startswith(prefix, type_start):
            payload_start = type_start + len(prefix)
            end = _payload_end(text, payload_start, AGENT_CLOSE)
            if end is None:
                return None
            return _Token(
                kind, text[payload_start:end], start, end + len(AGENT_CLOSE), False
            )
    return None


def _infer_kind(payload: str) -> str:
    if payload.startswith(_FS_PREFIXES) or ":" in payload:
        return "fs"
    return "exec"


def _read_executed_token(text: str, start: int) -> _Token | None:
    payload_start = start + len(EXECUTED_OPEN)
    end = _payload_end(text, payload_start, EXECUTED_CLOSE)
    if end is None:
        return None
    payload = text[payload_start:end]
    return _Token(
        _infer_kind(payload), payload, start, end + len(EXECUTED_CLOSE), True
    )


def _tokens(text: str, *, include_echoed: bool = True):
    pos = 0
    while True:
        agent_at = text.find(AGENT_OPEN, pos)
        executed_at = text.find(EXECUTED_OPEN, pos) if include_echoed else -1
        found = [i for i in (agent_at, executed_at) if i != -1]
        if not found:
            return
        start = min(found)
        if start == agent_at:
            token = _read_agent_token(text, start)
        else:
            token = _read_executed_token(text, start)
        if token is None:
            pos = start + 1
            continue
        yield token
        pos = token.end


def parse_fs_payload(payload: str) -> tuple[str, str, str | None] | None:
    """Split "ACTION:PATH[:CONTENT]" into its parts.

    Content keeps any further colons. Returns None when there is no path.
    """
    parts = payload.split(":")
    if len(parts) < 2 or not parts[1].strip():
        return None
    action = parts[0].strip()
    path = parts[1].strip()
    content = ":".join(parts[2:]).strip() if len(parts) > 2 else None
    return action, path, content


def rebase_path(path: str, document_root) -> str:
    """Place path under document_root unless it already sits there.

    Absolute paths outside the root keep their full path below it
    ("/etc/hosts" becomes "<root>/etc/hosts"); relative paths are joined.
    """
    root = Path(document_root)
    candidate = Path(os.path.normpath(Path(path).expanduser()))
    if candidate.is_absolute():
        if candidate.is_relative_to(root):
            return str(candidate)
        candidate = candidate.relative_to(candidate.anchor)
    return os.path.normpath(root / candidate)


def _to_operation(text: str, token: _Token, document_root) -> Operation | None:
    span = text[token.start : token.end]
    if token.kind == "exec":
        return ShellOperation(
            raw_spec=token.payload,
            matched_span=span,
            start=token.start,
            end=token.end,
            command_line=token.payload.strip(),
        )
    parsed = parse_fs_payload(token.payload)
    if parsed is None:
        return None
    action, path, content = parsed
    if document_root is not None:
        path = rebase_path(path, document_root)
    return FileOperation(
        raw_spec=token.payload,
        matched_span=span,
        start=token.start,
        end=token.end,
        action=action,
        path=path,
        content=content,
    )


def extract_operations(text: str, document_root=None) -> list[Operation]:
    """Return every operation in text, in order of appearance.

    File paths are rebased under document_root when one is given.
    """
    operations = []
    for token in _tokens(text):
        op = _to_operation(text, token, document_root)
        if op is not None:
            operations.append(op)
    return operations


def find_pending_token(text: str, document_root=None) -> Operation | None:
    """Return the first unresolved {{agent:...}} operation in text, if any."""
    for token in _tokens(text, include_echoed=False):
        op = _to_operation(text, token, document_root)
        if op is not None:
            return op
    return None


def has_operations(text: str) -> bool:
    return next(_tokens(text), None) is not None
