import json
import logging
import os
from pathlib import Path
from pydantic import ValidationError
from dotenv import dotenv_values, set_key

from .schemas import AppConfig, ChangeStrategy
from .display import Display

log = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".gateway-node"
DEFAULT_ENV_FILE = DEFAULT_CONFIG_DIR / ".env"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / ".gateway-node.json"

# .env / environment keys and the AppConfig fields they override
ENV_OVERRIDES = {
    "AR_IO_NODE_PATH": "node_path",
    "DOCKER_PROJECT": "project_name",
    "GITHUB_RELEASE_REPO": "release_repository",
    "DEFAULT_CHANGE_STRATEGY": "default_change_strategy",
}


def get_default_config_dir() -> Path:
    return DEFAULT_CONFIG_DIR


def get_default_config_file() -> Path:
    return DEFAULT_CONFIG_FILE


def get_default_env_file() -> Path:
    return DEFAULT_ENV_FILE


def _apply_overrides(app_config: AppConfig, values: dict) -> AppConfig:
    """Copies recognised keys onto the config, skipping empty values."""
    updates = {}
    for key, field in ENV_OVERRIDES.items():
        value = values.get(key)
        if not value:
            continue
        if field == "default_change_strategy":
            try:
                value = ChangeStrategy(value.strip().lower())
            except ValueError:
                log.warning(f"Ignoring unknown {key} value '{value}'")
                continue
        updates[field] = value
    if not updates:
        return app_config
    return app_config.model_copy(update=updates)


def load_config(
    display: Display,
    config_path: Path = DEFAULT_CONFIG_FILE,
    env_path: Path = DEFAULT_ENV_FILE,
) -> tuple[AppConfig, bool]:
    """
    Loads the application configuration from JSON and .env files.
    If they don't exist, it creates default configurations.

    Process environment variables take precedence over the .env file, so
    AR_IO_NODE_PATH and DOCKER_PROJECT behave the same way they do for the
    rest of the node tooling.

    Returns:
        tuple: (AppConfig, fell_back_to_defaults)
    """
    if not config_path.exists() or not env_path.exists():
        log.info(f"Creating default configuration files in {config_path.parent}")
        app_config = AppConfig()
        save_config(display, app_config, config_path, env_path)
        return _apply_overrides(app_config, dict(os.environ)), False

    fell_back = False
    try:
        with open(config_path, "r") as f:
            data = json.load(f)
        app_config = AppConfig(**data)
    except (json.JSONDecodeError, ValidationError) as e:
        log.debug(f"Config fallback: {type(e).__name__}")
        app_config = AppConfig()
        fell_back = True

    app_config = _apply_overrides(app_config, dotenv_values(env_path))
    app_config = _apply_overrides(app_config, dict(os.environ))
    return app_config, fell_back


def save_config(
    display: Display,
    config: AppConfig,
    config_path: Path = DEFAULT_CONFIG_FILE,
    env_path: Path = DEFAULT_ENV_FILE,
):
    """Saves the application configuration to JSON and .env files."""
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            f.write(config.model_dump_json(indent=4, exclude={"node_path", "project_name"}))

        env_path.parent.mkdir(parents=True, exist_ok=True)
        set_key(str(env_path), "AR_IO_NODE_PATH", config.node_path)
        set_key(str(env_path), "DOCKER_PROJECT", config.project_name)

    except IOError:
        log.error(f"Could not save configuration to {config_path}.", exc_info=True)


class Config:
    """A configuration manager that handles loading and accessing app configuration."""

    def __init__(self, display: Display, config_path: Path = DEFAULT_CONFIG_FILE, env_path: Path = DEFAULT_ENV_FILE):
        """Initialize the Config with a loaded AppConfig."""
        self._display = display
        self._config_path = config_path
        self._env_path = env_path
        self._app_config, self._fell_back_to_defaults = load_config(display, config_path, env_path)

    @property
    def app_config(self) -> AppConfig:
        """Returns the loaded AppConfig object."""
        return self._app_config

    @property
    def fell_back_to_defaults(self) -> bool:
        """Returns True if the config fell back to defaults due to loading errors."""
        return self._fell_back_to_defaults

    def save(self):
        """Save the current configuration to file."""
        save_config(self._display, self._app_config, self._config_path, self._env_path)
