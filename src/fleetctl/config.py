"""Configuration management for fleetctl using Pydantic."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fleetctl.core.exceptions import ConfigError
from fleetctl.core.output import OutputFormat
from fleetctl.core.logging import LogLevel


class EnvSettings(BaseSettings):
    """Overrides read from ``FLEETCTL_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="FLEETCTL_", extra="ignore")

    state_dir: str | None = None
    max_concurrent: int | None = None
    ssh_connect_timeout: int | None = None


class SSHConfig(BaseModel):
    """SSH transport configuration."""

    port: int = 22
    connect_timeout: int = 10
    command_timeout: int = 900
    strict_host_key_checking: bool = True
    extra_options: list[str] = Field(default_factory=list)

    def get_connect_timeout(self) -> int:
        """Get connect timeout from config or environment."""
        env = EnvSettings()
        return env.ssh_connect_timeout or self.connect_timeout


class DeployConfig(BaseModel):
    """Deployment pipeline configuration."""

    max_concurrent: int = 5
    node_major: int = 22
    nvm_install_url: str = "https://raw.githubusercontent.com/nvm-sh/nvm/v0.39.0/install.sh"
    agent_package: str = "openclaw"
    agent_binary: str = "openclaw"
    remote_config_path: str = "~/.openclaw/openclaw.json"
    agent_config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("max_concurrent")
    @classmethod
    def validate_max_concurrent(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrent must be at least 1")
        return v

    def get_max_concurrent(self) -> int:
        """Get worker concurrency limit from config or environment."""
        env = EnvSettings()
        return env.max_concurrent or self.max_concurrent


class ProfileConfig(BaseModel):
    """Profile configuration grouping all settings."""

    ssh: SSHConfig = Field(default_factory=SSHConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)


class GlobalConfig(BaseModel):
    """Global settings."""

    output_format: OutputFormat = OutputFormat.TABLE
    color: str = "auto"  # auto, always, never
    verbosity: LogLevel = LogLevel.WARNING
    confirm_destructive: bool = True
    state_dir: str | None = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        if v not in ("auto", "always", "never"):
            raise ValueError("color must be 'auto', 'always', or 'never'")
        return v

    def get_state_dir(self) -> Path:
        """Directory holding the server registry and deployment records."""
        env = EnvSettings()
        raw = env.state_dir or self.state_dir
        if raw:
            return Path(raw).expanduser()
        return Path.home() / ".fleetctl"


class FleetCtlConfig(BaseModel):
    """Main configuration model."""

    model_config = {"populate_by_name": True}

    version: str = "1"
    global_settings: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    profiles: dict[str, ProfileConfig] = Field(default_factory=lambda: {"default": ProfileConfig()})

    def get_profile(self, name: str | None = None) -> ProfileConfig:
        """Get a profile by name, defaulting to 'default'."""
        profile_name = name or "default"
        if profile_name not in self.profiles:
            raise ConfigError(f"Profile '{profile_name}' not found")
        return self.profiles[profile_name]




def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``, recursing into nested dicts."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


class ConfigLoader:
    """Builds a FleetCtlConfig from layered YAML files.

    Later layers win: user config, then the nearest project config, then an
    explicit ``--config`` file.
    """

    PROJECT_FILENAMES = ("fleetctl.yaml", "fleetctl.yml", ".fleetctl.yaml", ".fleetctl.yml")

    def __init__(self, user_config: Path | None = None):
        self.user_config = user_config or Path.home() / ".fleetctl" / "config.yaml"

    def load(
        self,
        config_file: str | Path | None = None,
        profile: str | None = None,
    ) -> FleetCtlConfig:
        """Load and validate configuration.

        Args:
            config_file: Optional explicit config file path
            profile: Profile that must exist in the result

        Returns:
            Merged configuration

        Raises:
            ConfigError: If a file is missing or unreadable, or the result is invalid
        """
        if config_file and not Path(config_file).exists():
            raise ConfigError(f"Config file not found: {config_file}")

        merged: dict[str, Any] = {}
        for path in self.sources(config_file):
            merged = deep_merge(merged, self._read(path))

        try:
            config = FleetCtlConfig(**merged)
        except ValueError as e:
            raise ConfigError(f"Invalid configuration: {e}")

        if profile:
            config.get_profile(profile)
        return config

    def sources(self, config_file: str | Path | None = None) -> list[Path]:
        """Existing config files in merge order."""
        paths = [self.user_config] if self.user_config.exists() else []
        project = self.find_project_config()
        if project:
            paths.append(project)
        if config_file:
            paths.append(Path(config_file))
        return paths

    def find_project_config(self, start: Path | None = None) -> Path | None:
        """Nearest project config in ``start`` (default: cwd) or a parent."""
        directory = (start or Path.cwd()).resolve()
        for candidate_dir in (directory, *directory.parents):
            for filename in self.PROJECT_FILENAMES:
                candidate = candidate_dir / filename
                if candidate.is_file():
                    return candidate
        return None

    def _read(self, path: Path) -> dict[str, Any]:
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping at the top of {path}")
        return data


def load_config(
    config_file: str | Path | None = None,
    profile: str | None = None,
) -> FleetCtlConfig:
    """Load fleetctl configuration from the standard locations."""
    return ConfigLoader().load(config_file, profile)


def get_default_config() -> FleetCtlConfig:
    """Configuration with every default, ignoring files."""
    return FleetCtlConfig()
