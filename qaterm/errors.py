"""Error types shared across qaterm."""


class AgentError(Exception):
    """Raised by the chat loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (bad TOML, wrong value types, etc.)."""


class AccessDenied(AgentError):
    """A path falls outside every allowed directory, or is ignored by .aiignore."""


class CommandNotAllowed(AgentError):
    """A shell command contains a blocked substring."""

    def __init__(self, command: str, blocked: str):
        super().__init__(f"command contains blocked pattern {blocked!r}: {command}")
        self.command = command
        self.blocked = blocked


class ProviderUnavailable(AgentError):
    """No API key is configured for the selected provider."""


class ProviderError(AgentError):
    """The provider call failed (network, auth, rate limit, bad request)."""


class ClassificationParseError(AgentError):
    """The classifier reply carried neither a classification nor a confidence."""


class IoError(AgentError):
    """A file operation or process spawn failed."""
