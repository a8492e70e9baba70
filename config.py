"""
Configuration management for planrunner.

WHAT THIS FILE DOES:
-------------------
Loads configuration from YAML files with sensible defaults. Everything the
engine treats as a tunable (which LLM to talk to, the package manager, the
pacing delays between writes and commands, how hard recovery tries, which
binaries the shell may run) lives here instead of being scattered as magic
numbers through the handlers.

CONFIG FILE LOCATION:
--------------------
Default: ~/.planrunner/config.yaml (then ./planrunner.yaml, ./planrunner.yml)

CONFIG FORMAT:
-------------
```yaml
models:
  claude:
    provider: "anthropic"
    model: "claude-sonnet-4-20250514"
    api_key_env: "ANTHROPIC_API_KEY"

chat:
  model: "claude"

engine:
  package_manager: "npm"
  min_content_length: 10

timing:
  file_delay: 0.1
  command_delay: 0.5

recovery:
  max_retries: 1
  port_conflict: true
  build_errors: true

shell:
  timeout: 600
```
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


# Number of times a failed command is retried after a recovery action.
# Callers that need a different bound set recovery.max_retries.
MAX_RECOVERY_RETRIES = 1

DEFAULT_SUPPORTED_LANGUAGES = [
    "typescript", "javascript", "python", "java", "go", "rust", "cpp", "c",
]

DEFAULT_ALLOWED_COMMANDS = [
    # JavaScript / Node
    "npm", "yarn", "pnpm", "node", "next", "npx",
    # inspection and file utilities
    "ls", "cat", "grep", "find", "pwd", "head", "tail", "wc",
    "mkdir", "touch", "echo", "cp", "mv", "rm",
    "git",
    # JVM
    "java", "javac", "javap", "jar", "mvn", "gradle",
    # Python
    "python", "python3", "pip", "pip3", "py",
    # Go / Rust / C family
    "go", "rustc", "cargo", "gcc", "g++", "clang", "clang++", "make", "cmake",
    # environment and network inspection
    "which", "whereis", "type", "env", "printenv", "curl", "wget",
    # port release helpers
    "netstat", "taskkill", "for", "lsof", "fuser", "xargs", "kill",
]


# =============================================================================
# CONFIGURATION DATA CLASSES
# =============================================================================

@dataclass
class ModelConfig:
    """Configuration for a single model."""
    provider: str
    model: str
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for provider compatibility."""
        result = {
            "provider": self.provider,
            "model": self.model,
        }
        if self.api_key_env:
            result["api_key_env"] = self.api_key_env
        if self.base_url:
            result["base_url"] = self.base_url
        return result


@dataclass
class ChatConfig:
    """Which configured model answers analysis and fix prompts."""
    model: str = "claude"
    max_tokens: int = 4096


@dataclass
class EngineConfig:
    """Behavioural knobs of the step handlers."""
    package_manager: str = "npm"
    min_content_length: int = 10
    supported_languages: list[str] = field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_LANGUAGES)
    )
    check_after_write: bool = True


@dataclass
class TimingConfig:
    """Pacing delays, in seconds. Tests set these to zero."""
    file_delay: float = 0.1
    command_delay: float = 0.5
    port_release_wait: float = 2.0
    rebuild_wait: float = 1.0


@dataclass
class RecoveryConfig:
    """How failed commands are recovered."""
    max_retries: int = MAX_RECOVERY_RETRIES
    port_conflict: bool = True
    build_errors: bool = True
    fix_attempts: int = 3


@dataclass
class ShellConfig:
    """Limits for the shell collaborator."""
    allowed_commands: list[str] = field(
        default_factory=lambda: list(DEFAULT_ALLOWED_COMMANDS)
    )
    timeout: Optional[float] = None
    max_output: int = 100_000


@dataclass
class LoggingConfig:
    """Log level for the planrunner loggers."""
    level: str = "INFO"


@dataclass
class Config:
    """
    Complete configuration for planrunner.

    This is the main configuration object that holds all settings.
    It can be loaded from a YAML file or created with defaults.
    """
    models: dict[str, ModelConfig] = field(default_factory=dict)
    chat: ChatConfig = field(default_factory=ChatConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    shell: ShellConfig = field(default_factory=ShellConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_provider_config(self) -> dict:
        """Convert to the dict format expected by get_provider()."""
        return {
            "models": {
                name: model.to_dict()
                for name, model in self.models.items()
            }
        }

    def list_models(self) -> list[str]:
        """List all configured model names."""
        return list(self.models.keys())


# =============================================================================
# DEFAULT CONFIGURATION
# =============================================================================

def get_default_config() -> Config:
    """
    Get the default configuration.

    Returns a Config with sensible defaults that work out of the box
    (assuming API keys are set in environment).
    """
    return Config(
        models={
            "claude": ModelConfig(
                provider="anthropic",
                model="claude-sonnet-4-20250514",
                api_key_env="ANTHROPIC_API_KEY"
            ),
            "gpt4": ModelConfig(
                provider="openai",
                model="gpt-5.2",
                api_key_env="OPENAI_API_KEY"
            ),
            "deepseek": ModelConfig(
                provider="ollama",
                model="deepseek-coder-v2:16b",
                base_url="http://localhost:11434"
            ),
        },
        chat=ChatConfig(model="claude"),
    )


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================

def _default_paths() -> list[Path]:
    return [
        Path.home() / ".planrunner" / "config.yaml",
        Path("./planrunner.yaml"),
        Path("./planrunner.yml"),
    ]


def _parse_model_config(data: dict) -> ModelConfig:
    """Parse a model configuration from dict."""
    return ModelConfig(
        provider=data.get("provider", "anthropic"),
        model=data.get("model", "claude-sonnet-4-20250514"),
        api_key_env=data.get("api_key_env"),
        base_url=data.get("base_url"),
    )


def _parse_config(data: dict) -> Config:
    """Parse a complete configuration from dict."""
    config = get_default_config()

    # Parse models
    if "models" in data:
        config.models = {}
        for name, model_data in data["models"].items():
            config.models[name] = _parse_model_config(model_data)

    if "chat" in data:
        chat_data = data["chat"] or {}
        config.chat = ChatConfig(
            model=chat_data.get("model", "claude"),
            max_tokens=chat_data.get("max_tokens", 4096),
        )

    if "engine" in data:
        engine_data = data["engine"] or {}
        config.engine = EngineConfig(
            package_manager=engine_data.get("package_manager", "npm"),
            min_content_length=engine_data.get("min_content_length", 10),
            supported_languages=engine_data.get(
                "supported_languages", list(DEFAULT_SUPPORTED_LANGUAGES)
            ),
            check_after_write=engine_data.get("check_after_write", True),
        )

    if "timing" in data:
        timing_data = data["timing"] or {}
        config.timing = TimingConfig(
            file_delay=timing_data.get("file_delay", 0.1),
            command_delay=timing_data.get("command_delay", 0.5),
            port_release_wait=timing_data.get("port_release_wait", 2.0),
            rebuild_wait=timing_data.get("rebuild_wait", 1.0),
        )

    if "recovery" in data:
        recovery_data = data["recovery"] or {}
        config.recovery = RecoveryConfig(
            max_retries=recovery_data.get("max_retries", MAX_RECOVERY_RETRIES),
            port_conflict=recovery_data.get("port_conflict", True),
            build_errors=recovery_data.get("build_errors", True),
            fix_attempts=recovery_data.get("fix_attempts", 3),
        )

    if "shell" in data:
        shell_data = data["shell"] or {}
        config.shell = ShellConfig(
            allowed_commands=shell_data.get(
                "allowed_commands", list(DEFAULT_ALLOWED_COMMANDS)
            ),
            timeout=shell_data.get("timeout"),
            max_output=shell_data.get("max_output", 100_000),
        )

    if "logging" in data:
        logging_data = data["logging"] or {}
        config.logging = LoggingConfig(level=logging_data.get("level", "INFO"))

    return config


def load_config(path: Optional[Path] = None) -> Config:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to config file. If None, tries default locations:
              1. ~/.planrunner/config.yaml
              2. ./planrunner.yaml (or .yml)
              3. Falls back to defaults

    Returns:
        Loaded configuration (or defaults if file not found)
    """
    if path:
        path = Path(path).expanduser()
        if path.exists():
            return load_config_from_file(path)
        raise FileNotFoundError(f"Config file not found: {path}")

    for default_path in _default_paths():
        if default_path.exists():
            return load_config_from_file(default_path)

    return get_default_config()


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a specific file.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is invalid
    """
    path = Path(path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    return _parse_config(data)


def save_config(config: Config, path: Path) -> None:
    """Save configuration to a YAML file."""
    data = {
        "models": {
            name: model.to_dict()
            for name, model in config.models.items()
        },
        "chat": {
            "model": config.chat.model,
            "max_tokens": config.chat.max_tokens,
        },
        "engine": {
            "package_manager": config.engine.package_manager,
            "min_content_length": config.engine.min_content_length,
            "supported_languages": list(config.engine.supported_languages),
            "check_after_write": config.engine.check_after_write,
        },
        "timing": {
            "file_delay": config.timing.file_delay,
            "command_delay": config.timing.command_delay,
            "port_release_wait": config.timing.port_release_wait,
            "rebuild_wait": config.timing.rebuild_wait,
        },
        "recovery": {
            "max_retries": config.recovery.max_retries,
            "port_conflict": config.recovery.port_conflict,
            "build_errors": config.recovery.build_errors,
            "fix_attempts": config.recovery.fix_attempts,
        },
        "shell": {
            "allowed_commands": list(config.shell.allowed_commands),
            "max_output": config.shell.max_output,
        },
        "logging": {
            "level": config.logging.level,
        },
    }

    if config.shell.timeout is not None:
        data["shell"]["timeout"] = config.shell.timeout

    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def get_config_path() -> Optional[Path]:
    """
    Get the path to the active config file, if any exists.

    Returns:
        Path to config file or None if using defaults
    """
    for path in _default_paths():
        if path.exists():
            return path

    return None
