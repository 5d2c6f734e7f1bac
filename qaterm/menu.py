"""Interactive settings menu (/menu).

Every change goes through Settings.update() and is saved to the global
config file once the menu is closed.
"""

from . import fmt
from .config import MAX_REASONING_ITERATIONS, save_settings
from .errors import ConfigError
from .providers import PROVIDERS


def _prompt(message: str, default: str = "") -> str:
    from prompt_toolkit import prompt

    return prompt(f"{message} ", default=default)


def _on_off(value: bool) -> str:
    return "on" if value else "off"


class SettingsMenu:
    """Numbered-choice menu over a Settings object.

    ask(message, default) -> str reads one answer; it defaults to a
    prompt_toolkit prompt and is replaced in tests.
    """

    def __init__(self, settings, *, ask=None, save=None):
        self.settings = settings
        self.ask = ask or _prompt
        self.save = save or save_settings
        self.changed = False

    def choose(self, title: str, options: list[str]) -> int | None:
        """Show numbered options, return the 0-based index picked or None."""
        fmt.info(title)
        for i, label in enumerate(options, 1):
            fmt.info(f"  {i}. {label}")
        answer = self.ask("Choice:", "").strip()
        if not answer.isdigit() or not 1 <= int(answer) <= len(options):
            return None
        return int(answer) - 1

    def apply(self, **changes) -> bool:
        try:
            self.settings.update(**changes)
        except ConfigError as e:
            fmt.warning(str(e))
            return False
        self.changed = True
        return True

    def run(self) -> None:
        sections = [
            ("Provider and model", self.provider_section),
            ("Context size", self.context_section),
            ("Agent file and terminal access", self.agent_section),
            ("Query routing", self.routing_section),
            ("Reasoning", self.reasoning_section),
        ]
        while True:
            labels = [name for name, _ in sections] + ["Done"]
            index = self.choose("Settings Menu - select a category:", labels)
            if index is None or index == len(sections):
                break
            sections[index][1]()

        if self.changed:
            try:
                path = self.save(self.settings)
            except ConfigError as e:
                fmt.error(str(e))
                return
            fmt.info(f"settings saved to {path}")

    def provider_section(self) -> None:
        s = self.settings
        names = list(PROVIDERS)
        index = self.choose(
            f"Provider (current: {s.provider}):", [f"{n} ({s.models[n]})" for n in names]
        )
        if index is not None:
            self.apply(provider=names[index])
        model = self.ask(f"Model for {s.provider}:", s.model).strip()
        if model and model != s.model:
            self.apply(models={s.provider: model})

    def context_section(self) -> None:
        s = self.settings
        answer = self.ask(
            "Messages kept in context:", str(s.max_context_messages)
        ).strip()
        if answer.isdigit():
            self.apply(max_context_messages=int(answer))
        elif answer:
            fmt.warning(f"invalid number: {answer}")

    def agent_section(self) -> None:
        s = self.settings
        index = self.choose(
            "Agent settings:",
            [
                f"File and terminal operations: {_on_off(s.agent_enabled)}",
                f"Run commands in a container: {_on_off(s.use_virtual_environment)}",
            ],
        )
        if index == 0:
            self.apply(agent_enabled=not s.agent_enabled)
        elif index == 1:
            self.apply(use_virtual_environment=not s.use_virtual_environment)

    def routing_section(self) -> None:
        s = self.settings
        index = self.choose(
            "Routing settings:",
            [
                f"Routing: {_on_off(s.routing_enabled)}",
                f"Threshold: {s.routing_threshold}",
                f"Light model: {s.light_model}",
            ],
        )
        if index == 0:
            self.apply(routing_enabled=not s.routing_enabled)
        elif index == 1:
            answer = self.ask("Threshold (0.0-1.0):", str(s.routing_threshold)).strip()
            try:
                self.apply(routing_threshold=float(answer))
            except ValueError:
                fmt.warning(f"invalid number: {answer}")
        elif index == 2:
            model = self.ask(f"Light model for {s.provider}:", s.light_model).strip()
            if model:
                self.apply(light_models={s.provider: model})

    def reasoning_section(self) -> None:
        s = self.settings
        index = self.choose(
            "Reasoning settings:",
            [
                f"Reasoning: {_on_off(s.reasoning_enabled)}",
                f"Iterations: {s.reasoning_iterations}",
                f"Show intermediate steps: {_on_off(s.show_intermediate)}",
            ],
        )
        if index == 0:
            self.apply(reasoning_enabled=not s.reasoning_enabled)
        elif index == 1:
            answer = self.ask(
                f"Iterations (1-{MAX_REASONING_ITERATIONS}):",
                str(s.reasoning_iterations),
            ).strip()
            if answer.isdigit():
                self.apply(reasoning_iterations=int(answer))
            else:
                fmt.warning(f"invalid number: {answer}")
        elif index == 2:
            self.apply(show_intermediate=not s.show_intermediate)
