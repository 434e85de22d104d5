import os
from dataclasses import dataclass, field, fields
from typing import Optional

import yaml

from kanban_agent.harness.errors import ConfigError

DEFAULT_CONFIG_PATH = "kanban_agent.yaml"
CONFIG_PATH_ENV = "KANBAN_AGENT_CONFIG"


class Config:
    """
    Configuration loaded from a YAML file.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.config = self.load_config()

    def load_config(self) -> dict:
        """
        Loads the configuration from a YAML file.

        A missing file yields an empty configuration, so every setting
        falls back to its default.

        Returns:
            A dictionary containing the configuration.
        """
        if not self.config_path or not os.path.exists(self.config_path):
            return {}
        try:
            with open(self.config_path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not load config {self.config_path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config {self.config_path} must contain a mapping")
        return data

    def get(self, key: str, default=None):
        """
        Gets a configuration value.

        Args:
            key: The dotted key of the configuration value, e.g. "agent.cli_path".
            default: The default value to return if the key is not found.

        Returns:
            The configuration value.
        """
        keys = key.split(".")
        value = self.config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default
        return value


@dataclass
class OrchestratorConfig:
    """Settings for spawning the agent and running tasks."""

    # Agent CLI
    cli_path: str = "claude"
    permission_mode: str = "bypassPermissions"
    allowed_tools: list[str] = field(
        default_factory=lambda: ["Read", "Edit", "Write", "Glob", "Grep"]
    )
    shell_tool: str = "Bash"
    default_model: str = "opus"
    terminate_grace_seconds: float = 5.0

    # Ralph loop defaults
    default_max_iterations: int = 10
    default_completion_promise: str = "TASK_COMPLETE"

    # Codebase analysis
    analysis_model: str = "haiku"
    analysis_tools: list[str] = field(default_factory=lambda: ["Read", "Glob", "Grep"])
    analysis_timeout_seconds: float = 120.0

    # Storage and logging
    db_path: str = ".kanban/kanban.db"
    log_file: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_config(cls, config: Config) -> "OrchestratorConfig":
        """Build settings from the agent/ralph/analysis/storage/logging sections."""
        sections = {
            "cli_path": "agent.cli_path",
            "permission_mode": "agent.permission_mode",
            "allowed_tools": "agent.allowed_tools",
            "shell_tool": "agent.shell_tool",
            "default_model": "agent.model",
            "terminate_grace_seconds": "agent.terminate_grace_seconds",
            "default_max_iterations": "ralph.max_iterations",
            "default_completion_promise": "ralph.completion_promise",
            "analysis_model": "analysis.model",
            "analysis_tools": "analysis.allowed_tools",
            "analysis_timeout_seconds": "analysis.timeout_seconds",
            "db_path": "storage.db_path",
            "log_file": "logging.file",
            "log_level": "logging.level",
        }
        values = {}
        for name, key in sections.items():
            value = config.get(key)
            if value is not None:
                values[name] = value

        settings = cls(**values)
        settings.validate()
        return settings

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "OrchestratorConfig":
        """Load settings from config_path, $KANBAN_AGENT_CONFIG or ./kanban_agent.yaml."""
        path = config_path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH
        return cls.from_config(Config(path))

    def validate(self) -> None:
        for name in ("allowed_tools", "analysis_tools"):
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, value.split())
        if self.default_max_iterations < 1:
            raise ConfigError("ralph.max_iterations must be a positive integer")
        if self.analysis_timeout_seconds <= 0:
            raise ConfigError("analysis.timeout_seconds must be positive")
        if self.terminate_grace_seconds < 0:
            raise ConfigError("agent.terminate_grace_seconds must not be negative")

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}
