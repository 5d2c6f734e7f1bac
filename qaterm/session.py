"""Conversation state and the ask-execute-respond cycle."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import tiktoken

from . import fmt
from .commands import extract_operations, has_operations
from .errors import AgentError, ProviderError, ProviderUnavailable
from .pipeline import OperationRunner, resolve_operations
from .providers import ProviderClient
from .router import (
    LIGHT,
    POWERFUL,
    RouteDecision,
    apply_reasoning,
    route_query,
)

logger = logging.getLogger(__name__)

_encoder = tiktoken.get_encoding("cl100k_base")

BASE_SYSTEM_PROMPT = "You are a helpful AI assistant in a terminal environment."

DIRECT_COMMAND_HINT = (
    "For file and terminal operations, ALWAYS use the most direct approach. "
    "When asked to list files or show directory contents, use the "
    "{{agent:exec:ls -la /path}} or {{agent:fs:list:/path}} syntax immediately "
    "without unnecessary explanation. Be concise and action-oriented."
)

AGENT_INSTRUCTIONS = """You can suggest file system or terminal operations by using {{agent:fs:operation:path[:content]}} or {{agent:exec:command}} syntax. The user will be asked for permission before executing any command. File operations include: read, write, list, exists.
Examples:
- To read a file: {{agent:fs:read:/path/to/file.txt}}
- To list directory contents: {{agent:fs:list:/path/to/directory}}
- To check if file exists: {{agent:fs:exists:/path/to/file.txt}}
- To write to a file: {{agent:fs:write:/path/to/file.txt:Content to write}}
- To run a terminal command: {{agent:exec:ls -la}}"""

APOLOGY = "Sorry, I encountered an error while processing your request."

CHAT_TEMPERATURE = 0.7


def estimate_tokens(messages: list) -> int:
    """Count tokens across all messages using tiktoken."""
    total = 0
    for m in messages:
        total += len(_encoder.encode(m.get("content", "") or ""))
    # Per-message overhead (role, separators), ~4 tokens each
    total += 4 * len(messages)
    return total


@dataclass
class AskResult:
    """Result of one ask cycle.

    answer is the reply as the model wrote it; stored is what went into
    history after operations were resolved.
    """

    answer: str
    stored: str
    decision: RouteDecision | None = None
    intermediate: list[str] = field(default_factory=list)
    error: AgentError | None = None


def _deny(message: str) -> bool:
    return False


class ConversationSession:
    """Owns the message history and drives one question at a time.

    complete(model, messages, **options) -> str talks to the provider and
    confirm(message) -> bool asks the user about each operation. Both
    default to the real provider and to declining everything.
    """

    def __init__(
        self,
        settings,
        *,
        complete=None,
        confirm=None,
        working_directory=None,
        display=None,
        verbose: bool = False,
    ):
        self.settings = settings
        self.complete = complete or ProviderClient(settings)
        self.confirm = confirm or _deny
        self.display = display
        self.verbose = verbose
        self.runner = OperationRunner(settings, working_directory or Path.cwd())
        self._history: list[dict] = []

    @property
    def working_directory(self) -> Path:
        return self.runner.working_directory

    @working_directory.setter
    def working_directory(self, path) -> None:
        self.runner.working_directory = Path(path)

    @property
    def messages(self) -> list[dict]:
        return [dict(m) for m in self._history]

    def append_message(self, role: str, content: str) -> None:
        self._history.append({"role": role, "content": content})
        limit = 2 * self.settings.max_context_messages
        if len(self._history) > limit:
            del self._history[: len(self._history) - limit]

    def record_exchange(self, user_text: str, assistant_text: str) -> None:
        """Note a manual operation in history as a user/assistant pair."""
        self.append_message("user", user_text)
        self.append_message("assistant", assistant_text)

    def clear(self) -> int:
        dropped = len(self._history)
        self._history.clear()
        return dropped

    def system_prompt(self, direct_command: bool = False) -> str:
        parts = [BASE_SYSTEM_PROMPT]
        if direct_command:
            parts.append(DIRECT_COMMAND_HINT)
        if self.settings.agent_enabled:
            parts.append(AGENT_INSTRUCTIONS)
        return " ".join(parts)

    def build_messages(self, direct_command: bool = False) -> list[dict]:
        return [
            {"role": "system", "content": self.system_prompt(direct_command)}
        ] + self.messages

    def _decide(self, question: str, force_powerful: bool) -> RouteDecision:
        if force_powerful:
            return RouteDecision(POWERFUL, None, False, "Using powerful model (forced)")
        if not self.settings.routing_enabled:
            return RouteDecision(POWERFUL, None, False, "Using main model")
        if self.verbose:
            with fmt.llm_spinner("Analyzing query"):
                return route_query(question, self.settings, self.complete)
        return route_query(question, self.settings, self.complete)

    def _call(self, model: str, messages: list[dict], decision: RouteDecision):
        """Return (reply, intermediate) from a plain call or the reasoning loop."""
        if self.settings.reasoning_enabled and not decision.skip_reasoning:
            result = apply_reasoning(
                messages, self.complete, model, self.settings.reasoning_iterations
            )
            return result.final, result.intermediate
        return self.complete(model, messages, temperature=CHAT_TEMPERATURE), []

    def ask(self, question: str, *, force_powerful: bool = False) -> AskResult:
        """Send a question, resolve any operations in the reply, store the result.

        Provider failures end this cycle only: the apology is stored and
        returned in place of an answer. A KeyboardInterrupt propagates after
        history is put back the way it was before the question.
        """
        snapshot = list(self._history)
        try:
            return self._ask(question, force_powerful)
        except KeyboardInterrupt:
            self._history[:] = snapshot
            raise

    def _ask(self, question: str, force_powerful: bool) -> AskResult:
        self.append_message("user", question)
        decision = None
        try:
            decision = self._decide(question, force_powerful)
            model = (
                self.settings.light_model
                if decision.tier == LIGHT
                else self.settings.model
            )
            if self.verbose:
                fmt.routing(decision.tier, model, decision.reason)

            direct = bool(
                decision.classification and decision.classification.is_direct_command
            )
            messages = self.build_messages(direct)
            if self.verbose:
                label = (
                    "Applying reasoning steps"
                    if self.settings.reasoning_enabled and not decision.skip_reasoning
                    else "Thinking"
                )
                with fmt.llm_spinner(label):
                    reply, intermediate = self._call(model, messages, decision)
            else:
                reply, intermediate = self._call(model, messages, decision)
        except (ProviderError, ProviderUnavailable) as e:
            logger.debug("ask failed: %s", e)
            fmt.error(str(e))
            self.append_message("assistant", APOLOGY)
            return AskResult(APOLOGY, APOLOGY, decision, [], e)

        if intermediate and self.settings.show_intermediate:
            for i, step in enumerate(intermediate, 1):
                fmt.reasoning_step(i, len(intermediate), step)
            fmt.reasoning_final()

        if self.display is not None:
            self.display(reply)

        self.append_message("assistant", reply)
        stored = reply
        if self.settings.agent_enabled and has_operations(reply):
            operations = extract_operations(reply, self.settings.document_root)
            stored = resolve_operations(
                reply,
                operations,
                confirm=self.confirm,
                runner=self.runner,
                disallowed_commands=self.settings.disallowed_commands,
            )
            self._history[-1]["content"] = stored

        if self.verbose:
            fmt.context_stats(len(self._history), estimate_tokens(self._history))
        return AskResult(reply, stored, decision, intermediate)
