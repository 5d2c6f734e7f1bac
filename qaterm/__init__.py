"""qaterm: terminal LLM chat with confirmed file and shell operations."""

from .errors import AgentError, ConfigError
from .session import AskResult, ConversationSession

__all__ = ["AgentError", "AskResult", "ConfigError", "ConversationSession"]
