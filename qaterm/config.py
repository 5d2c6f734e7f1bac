"""Configuration file loading, merging and saving for qaterm.

Reads TOML config from ~/.config/qaterm/config.toml (global) and
<base_dir>/qaterm.toml (project). Precedence: CLI > project > global > defaults.
Changes made from the REPL (/menu, /add-dir) are written back to the global file.
"""

import argparse
import logging
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w

from .errors import ConfigError
from .providers import PROVIDERS

logger = logging.getLogger(__name__)

_UNSET = object()  # Sentinel for "not set by CLI"

DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-7-sonnet-20250219",
    "google": "gemini-2.0-flash",
    "openrouter": "deepseek/deepseek-r1:free",
}

DEFAULT_LIGHT_MODELS: dict[str, str] = {
    "openai": "gpt-3.5-turbo",
    "anthropic": "claude-3-haiku-20240307",
    "google": "gemini-2.0-flash-lite",
    "openrouter": "deepseek/deepseek-chat:free",
}

DEFAULT_DISALLOWED_COMMANDS: list[str] = [
    "rm -rf",
    "sudo",
    "chmod",
    "chown",
    "mv /",
    "cp /",
    "find /",
    "> /dev",
    "curl | bash",
    "wget | bash",
]

MAX_REASONING_ITERATIONS = 5


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "provider": str,
    "models": dict,
    "light_models": dict,
    "max_context_messages": int,
    "routing_enabled": bool,
    "routing_threshold": (int, float),
    "reasoning_enabled": bool,
    "reasoning_iterations": int,
    "show_intermediate": bool,
    "agent_enabled": bool,
    "use_virtual_environment": bool,
    "allowed_dirs": list,
    "disallowed_commands": list,
    "color": bool,
    "quiet": bool,
}

_LIST_OF_STR_KEYS = {"allowed_dirs", "disallowed_commands"}
_MODEL_TABLE_KEYS = {"models", "light_models"}

# Config key -> argparse dest (only where they differ)
_CONFIG_TO_ARGPARSE: dict[str, str] = {
    "allowed_dirs": "allow_dir",
}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "provider": "anthropic",
    "model": None,
    "light_model": None,
    "models": None,
    "light_models": None,
    "max_context_messages": 100,
    "routing_enabled": False,
    "routing_threshold": 0.7,
    "reasoning_enabled": False,
    "reasoning_iterations": 3,
    "show_intermediate": False,
    "agent_enabled": True,
    "use_virtual_environment": False,
    "allow_dir": [],
    "disallowed_commands": None,
    "color": False,
    "no_color": False,
    "quiet": False,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "qaterm"
    return Path.home() / ".config" / "qaterm"


def _type_name(expected: type | tuple[type, ...]) -> str:
    """Format an expected type spec as a human-readable string."""
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types and ranges in a parsed config dict.

    Raises ConfigError for type mismatches or out-of-range values.
    Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int; reject bools for non-bool fields explicitly.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

        if key in _LIST_OF_STR_KEYS:
            for i, elem in enumerate(value):
                if not isinstance(elem, str):
                    raise ConfigError(
                        f"{source}: {key}[{i}]: expected string, got {type(elem).__name__}"
                    )

        if key in _MODEL_TABLE_KEYS:
            for name, model in value.items():
                if name not in PROVIDERS:
                    raise ConfigError(f"{source}: {key}.{name}: unknown provider")
                if not isinstance(model, str) or not model:
                    raise ConfigError(
                        f"{source}: {key}.{name}: expected non-empty string"
                    )

    if "provider" in config and config["provider"] not in PROVIDERS:
        raise ConfigError(
            f"{source}: 'provider' must be one of {', '.join(PROVIDERS)}, "
            f"got {config['provider']!r}"
        )
    if "routing_threshold" in config and not 0 <= config["routing_threshold"] <= 1:
        raise ConfigError(f"{source}: 'routing_threshold' must be between 0 and 1")
    if "reasoning_iterations" in config and not (
        1 <= config["reasoning_iterations"] <= MAX_REASONING_ITERATIONS
    ):
        raise ConfigError(
            f"{source}: 'reasoning_iterations' must be between 1 and "
            f"{MAX_REASONING_ITERATIONS}"
        )
    if "max_context_messages" in config and config["max_context_messages"] < 1:
        raise ConfigError(f"{source}: 'max_context_messages' must be at least 1")


def _resolve_paths(config: dict, config_dir: Path) -> None:
    """Resolve relative allowed_dirs against the config file's parent directory.

    Applies expanduser() before checking is_absolute(), so that ~/... paths
    expand to the user's home directory instead of becoming <config_dir>/~/...
    """
    if "allowed_dirs" in config:
        resolved = []
        for p in config["allowed_dirs"]:
            expanded = Path(p).expanduser()
            if expanded.is_absolute():
                resolved.append(str(expanded))
            else:
                resolved.append(str(config_dir / p))
        config["allowed_dirs"] = resolved


def _read_toml(path: Path, label: str) -> dict:
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    config = _read_toml(path, label)
    if not config:
        return {}
    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with config-canonical keys. Only keys that were
    actually set in config files are included (no defaults injected).
    The model tables are merged per provider rather than replaced.
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))
    if global_config:
        _resolve_paths(global_config, global_path.parent)
        logger.debug("loaded global config %s", global_path)

    project_path = Path(base_dir).resolve() / "qaterm.toml"
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _resolve_paths(project_config, project_path.parent)
        logger.debug("loaded project config %s", project_path)

    merged = {**global_config, **project_config}
    for key in _MODEL_TABLE_KEYS:
        if key in global_config and key in project_config:
            merged[key] = {**global_config[key], **project_config[key]}
    return merged


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    For each config key, maps to the argparse dest name and checks if
    the value is still _UNSET. If so, applies the config value. After
    processing all config keys, sweeps remaining _UNSET sentinels and
    replaces them with hardcoded defaults from _ARGPARSE_DEFAULTS.
    """
    # Dests that use None as sentinel (argparse append actions can't use _UNSET)
    _NONE_SENTINEL_DESTS = {"allow_dir"}

    def _is_unset(dest: str) -> bool:
        val = getattr(args, dest, _UNSET)
        if dest in _NONE_SENTINEL_DESTS:
            return val is None
        return val is _UNSET

    # A single config key controls the mutually exclusive color pair
    if "color" in config:
        color_val = config["color"]
        if _is_unset("color") and _is_unset("no_color"):
            args.color = color_val
            args.no_color = not color_val

    for key, value in config.items():
        if key == "color":
            continue
        dest = _CONFIG_TO_ARGPARSE.get(key, key)
        if _is_unset(dest):
            setattr(args, dest, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


@dataclass
class Settings:
    """Runtime settings shared by the session, the router and the REPL.

    Mutate through update() or add_allowed_directory() so that every
    change goes through the same validation as the config files.
    """

    provider: str = "anthropic"
    models: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MODELS))
    light_models: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_LIGHT_MODELS)
    )
    max_context_messages: int = 100
    routing_enabled: bool = False
    routing_threshold: float = 0.7
    reasoning_enabled: bool = False
    reasoning_iterations: int = 3
    show_intermediate: bool = False
    agent_enabled: bool = True
    use_virtual_environment: bool = False
    allowed_dirs: list[str] = field(default_factory=list)
    disallowed_commands: list[str] = field(
        default_factory=lambda: list(DEFAULT_DISALLOWED_COMMANDS)
    )
    # Directories added with /add-dir; the only ones written back on save.
    added_dirs: list[str] = field(default_factory=list)
    # Command-line values for this run only: key ("provider", "models.openai")
    # -> the value the config files hold, which is what gets saved instead.
    cli_baselines: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def model(self) -> str:
        return self.models[self.provider]

    @property
    def light_model(self) -> str:
        return self.light_models[self.provider]

    @property
    def document_root(self) -> Path:
        """First allowed directory; agent file paths are rebased under it."""
        if not self.allowed_dirs:
            return Path.cwd()
        return Path(self.allowed_dirs[0])

    def update(self, **changes) -> None:
        """Validate and apply a set of changes."""
        _validate_config(changes, "settings")
        for key, value in changes.items():
            if not hasattr(self, key) or key not in CONFIG_KEYS:
                raise ConfigError(f"settings: {key!r} cannot be changed at runtime")
            if key in _MODEL_TABLE_KEYS:
                for name in value:
                    self.cli_baselines.pop(f"{key}.{name}", None)
                value = {**getattr(self, key), **value}
            elif key in _LIST_OF_STR_KEYS:
                value = list(value)
            self.cli_baselines.pop(key, None)
            setattr(self, key, value)
        logger.debug("settings updated: %s", sorted(changes))

    def add_allowed_directory(self, path_str: str) -> Path:
        """Add a directory to the allow-list. Returns the resolved path.

        Raises ConfigError if the path is not an existing directory or is
        the filesystem root.
        """
        p = Path(path_str).expanduser().resolve()
        if not p.is_dir():
            raise ConfigError(f"not a directory: {path_str}")
        if p == Path(p.anchor):
            raise ConfigError("cannot add filesystem root")
        if str(p) not in self.allowed_dirs:
            self.allowed_dirs.append(str(p))
            self.added_dirs.append(str(p))
        return p

    def to_config(self) -> dict:
        """Return the persistable subset of the settings as a config dict.

        The allow-list is left out (see save_settings), and values that
        only came from the command line are replaced by their config values.
        """
        config = {
            "provider": self.provider,
            "models": dict(self.models),
            "light_models": dict(self.light_models),
            "max_context_messages": self.max_context_messages,
            "routing_enabled": self.routing_enabled,
            "routing_threshold": float(self.routing_threshold),
            "reasoning_enabled": self.reasoning_enabled,
            "reasoning_iterations": self.reasoning_iterations,
            "show_intermediate": self.show_intermediate,
            "agent_enabled": self.agent_enabled,
            "use_virtual_environment": self.use_virtual_environment,
            "disallowed_commands": list(self.disallowed_commands),
        }
        for key, saved in self.cli_baselines.items():
            table, _, name = key.partition(".")
            if name:
                config[table][name] = saved
            else:
                config[key] = saved
        return config


_CLI_SCALARS = (
    "provider",
    "max_context_messages",
    "routing_enabled",
    "routing_threshold",
    "reasoning_enabled",
    "reasoning_iterations",
    "show_intermediate",
    "agent_enabled",
    "use_virtual_environment",
)


def _cli_baselines(settings: Settings, config: dict) -> dict[str, Any]:
    """Map every value that differs from the config files to the config value."""
    baselines = {}
    for key in _CLI_SCALARS:
        saved = config.get(key, _ARGPARSE_DEFAULTS[key])
        if getattr(settings, key) != saved:
            baselines[key] = saved
    for table, defaults in (
        ("models", DEFAULT_MODELS),
        ("light_models", DEFAULT_LIGHT_MODELS),
    ):
        saved_table = {**defaults, **config.get(table, {})}
        for name, model in getattr(settings, table).items():
            if model != saved_table[name]:
                baselines[f"{table}.{name}"] = saved_table[name]
    return baselines


def settings_from_args(
    args: argparse.Namespace, base_dir: Path, config: dict | None = None
) -> Settings:
    """Build Settings from a namespace already passed through apply_config_to_args.

    --model and --light-model override the entry for the selected provider.
    base_dir is always the first allowed directory; configured or --allow-dir
    directories follow it. config is what load_config() returned, so that
    command-line values can be told apart from saved ones.
    """
    settings = Settings(provider=args.provider)
    changes = {
        "max_context_messages": args.max_context_messages,
        "routing_enabled": args.routing_enabled,
        "routing_threshold": args.routing_threshold,
        "reasoning_enabled": args.reasoning_enabled,
        "reasoning_iterations": args.reasoning_iterations,
        "show_intermediate": args.show_intermediate,
        "agent_enabled": args.agent_enabled,
        "use_virtual_environment": args.use_virtual_environment,
    }
    if args.models:
        changes["models"] = args.models
    if args.light_models:
        changes["light_models"] = args.light_models
    if args.model:
        changes.setdefault("models", {})
        changes["models"] = {**changes["models"], args.provider: args.model}
    if args.light_model:
        changes.setdefault("light_models", {})
        changes["light_models"] = {
            **changes["light_models"],
            args.provider: args.light_model,
        }
    if args.disallowed_commands is not None:
        changes["disallowed_commands"] = args.disallowed_commands
    settings.update(**changes)
    settings.cli_baselines = _cli_baselines(settings, config or {})

    dirs = [str(base_dir)] + list(args.allow_dir or [])
    for d in dirs:
        resolved = str(Path(d).expanduser().resolve())
        if resolved not in settings.allowed_dirs:
            settings.allowed_dirs.append(resolved)
    return settings


def save_settings(settings: Settings, path: Path | None = None) -> Path:
    """Write settings into the global config file, keeping unrelated keys.

    The saved allow-list is the one already in the file plus directories
    added with /add-dir; the working directory of this run is never saved.
    Returns the path written.
    """
    if path is None:
        path = global_config_dir() / "config.toml"
    existing = _read_toml(path, str(path))
    existing.update(settings.to_config())
    if settings.added_dirs:
        saved_dirs = list(existing.get("allowed_dirs", []))
        saved_dirs += [d for d in settings.added_dirs if d not in saved_dirs]
        existing["allowed_dirs"] = saved_dirs
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            tomli_w.dump(existing, f)
    except OSError as e:
        raise ConfigError(f"{path}: cannot write config: {e}") from e
    logger.debug("saved settings to %s", path)
    return path


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# qaterm configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/qaterm.toml' if project else '~/.config/qaterm/config.toml'}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "# API keys are read from the environment or a .env file, never from here.",
        "",
        "# --- Provider / model ---",
        '# provider = "anthropic"        # "openai" | "anthropic" | "google" | "openrouter"',
        "",
        "# [models]",
        '# openai = "gpt-4o"',
        '# anthropic = "claude-3-7-sonnet-20250219"',
        "",
        "# [light_models]",
        '# anthropic = "claude-3-haiku-20240307"',
        "",
        "# --- Conversation ---",
        "# max_context_messages = 100",
        "",
        "# --- Routing and reasoning ---",
        "# routing_enabled = false",
        "# routing_threshold = 0.7",
        "# reasoning_enabled = false",
        "# reasoning_iterations = 3",
        "# show_intermediate = false",
        "",
        "# --- Agent operations ---",
        "# agent_enabled = true",
        "# use_virtual_environment = false  # prefix commands with docker run",
        '# allowed_dirs = ["~/projects", "../shared"]  # besides the working directory',
        '# disallowed_commands = ["rm -rf", "sudo"]',
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        "",
    ]
    return "\n".join(lines)
