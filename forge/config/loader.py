"""Configuration loader with validation."""

from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import ForgeConfig

DEFAULT_CONFIG_PATH = Path(".agent/forge.yaml")


class ConfigError(Exception):
    """Configuration error."""

    pass


def _relative_to(base_dir: Path, raw) -> Path:
    """Expand ~ and anchor a relative path at base_dir."""
    path = Path(str(raw)).expanduser()
    if path.is_absolute():
        return path
    return (base_dir / path).resolve()


def load_config(config_path: Path) -> ForgeConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to config YAML file

    Returns:
        Validated ForgeConfig instance

    Raises:
        ConfigError: If config file missing or invalid
    """
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}")

    if not data:
        raise ConfigError(f"Empty configuration file: {config_path}")

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration must be a mapping: {config_path}")

    base_dir = config_path.parent
    workspaces = data.get("workspaces")
    if isinstance(workspaces, dict):
        for workspace_id, raw in workspaces.items():
            if raw is not None:
                workspaces[workspace_id] = _relative_to(base_dir, raw)

    logging_section = data.get("logging")
    if isinstance(logging_section, dict) and logging_section.get("log_dir"):
        logging_section["log_dir"] = _relative_to(base_dir, logging_section["log_dir"])

    try:
        return ForgeConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}")


def load_config_or_default(config_path: Path | None) -> ForgeConfig:
    """Load config_path when it exists, otherwise return the built-in defaults.

    An explicitly given path that is invalid still raises ConfigError.
    """
    if config_path is None or not config_path.exists():
        return ForgeConfig()
    return load_config(config_path)


def create_default_config(config_path: Path) -> None:
    """Create default configuration file.

    Args:
        config_path: Path where config should be created
    """
    config_path.parent.mkdir(parents=True, exist_ok=True)

    default_config = ForgeConfig().model_dump(mode="json")
    # Starter files log next to themselves; the built-in default is console only.
    default_config["logging"]["log_dir"] = "logs"

    with open(config_path, "w") as f:
        f.write("# Forge configuration. Relative paths resolve against this file.\n")
        yaml.safe_dump(default_config, f, default_flow_style=False, sort_keys=False)
