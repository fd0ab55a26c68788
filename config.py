"""
Environment configuration for the n8n MCP server

Resolves a named environment to its n8n host and API key. Configuration is
read from .config.json when present, otherwise from N8N_HOST / N8N_API_KEY
(optionally supplied through a .env file). A ConfigLoader caches what it
loaded for its own lifetime; construct a new one to reload.
"""
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from dotenv import dotenv_values

from errors import ConfigurationError, EnvironmentNotFoundError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".config.json"
ENV_FILENAME = ".env"
DEFAULT_ENV_NAME = "default"
API_SUFFIX = "/api/v1"

_PROJECT_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class N8NInstance:
    """Connection parameters for one n8n instance"""
    host: str
    api_key: str


@dataclass(frozen=True)
class MultiInstanceConfig:
    environments: dict[str, N8NInstance]
    default_env: str


def normalize_base_url(host: str) -> str:
    """Return the canonical API base URL for an n8n host.

    Trailing slashes are removed, then a single trailing ``/api/v1`` is
    removed, then exactly one ``/api/v1`` is appended. Applying the function
    to its own output returns the same string.
    """
    url = host.rstrip("/")
    if url.endswith(API_SUFFIX):
        url = url[: -len(API_SUFFIX)]
    return url + API_SUFFIX


def _instance_from(name: str, data: Any) -> N8NInstance:
    if not isinstance(data, dict) or not data.get("n8n_host") or not data.get("n8n_api_key"):
        raise ConfigurationError(
            f"Environment '{name}' is missing required fields (n8n_host, n8n_api_key)"
        )
    return N8NInstance(host=data["n8n_host"], api_key=data["n8n_api_key"])


def parse_config(data: Any) -> MultiInstanceConfig:
    """Validate a decoded .config.json document."""
    if not isinstance(data, dict):
        raise ConfigurationError("Invalid configuration format in .config.json")

    if data.get("environments") and data.get("defaultEnv"):
        environments = data["environments"]
        if not isinstance(environments, dict):
            raise ConfigurationError("'environments' must be an object")
        default_env = data["defaultEnv"]
        if default_env not in environments:
            raise ConfigurationError(f"Default environment '{default_env}' not found in environments")
        return MultiInstanceConfig(
            environments={name: _instance_from(name, env) for name, env in environments.items()},
            default_env=default_env,
        )

    if data.get("n8n_host") and data.get("n8n_api_key"):
        return MultiInstanceConfig(
            environments={DEFAULT_ENV_NAME: _instance_from(DEFAULT_ENV_NAME, data)},
            default_env=DEFAULT_ENV_NAME,
        )

    raise ConfigurationError("Invalid configuration format in .config.json")


class ConfigLoader:
    """Loads and caches the multi-environment configuration"""

    def __init__(
        self,
        config_paths: Optional[Sequence[Path]] = None,
        env_paths: Optional[Sequence[Path]] = None,
        environ: Optional[Mapping[str, str]] = None
    ):
        """
        Args:
            config_paths: Candidate .config.json locations, first existing wins
                (default: working directory, then the project directory)
            env_paths: Candidate .env locations for the environment variable fallback
            environ: Environment variables to read (default: os.environ)
        """
        self.config_paths = list(config_paths) if config_paths is not None else [
            Path.cwd() / CONFIG_FILENAME,
            _PROJECT_DIR / CONFIG_FILENAME,
        ]
        self.env_paths = list(env_paths) if env_paths is not None else [
            Path.cwd() / ENV_FILENAME,
            _PROJECT_DIR / ENV_FILENAME,
        ]
        self.environ = environ if environ is not None else os.environ
        self._config: Optional[MultiInstanceConfig] = None

    def load(self) -> MultiInstanceConfig:
        if self._config is None:
            self._config = self._load()
        return self._config

    def _load(self) -> MultiInstanceConfig:
        for path in self.config_paths:
            logger.debug("Checking for config at: %s", path)
            if path.is_file():
                logger.debug("Loading config from: %s", path)
                return self._load_json(path)

        logger.debug("No %s found, falling back to environment variables", CONFIG_FILENAME)
        return self._load_env()

    def _load_json(self, path: Path) -> MultiInstanceConfig:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format in {path.name}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read {path}: {e}") from e
        return parse_config(data)

    def _load_env(self) -> MultiInstanceConfig:
        values: dict[str, Optional[str]] = {}
        for path in self.env_paths:
            if path.is_file():
                logger.debug("Loading .env from: %s", path)
                values = dotenv_values(path)
                break

        # Real environment variables take precedence over .env entries
        host = self.environ.get("N8N_HOST") or values.get("N8N_HOST")
        api_key = self.environ.get("N8N_API_KEY") or values.get("N8N_API_KEY")

        if not host or not api_key:
            raise ConfigurationError(
                "Missing required environment variables: N8N_HOST and N8N_API_KEY must be set"
            )

        return MultiInstanceConfig(
            environments={DEFAULT_ENV_NAME: N8NInstance(host=host, api_key=api_key)},
            default_env=DEFAULT_ENV_NAME,
        )

    def resolve_name(self, instance: Optional[str] = None) -> str:
        """Return the environment name to use, validating it exists."""
        config = self.load()
        name = instance or config.default_env
        if name not in config.environments:
            raise EnvironmentNotFoundError(
                f"Environment '{name}' not found. "
                f"Available environments: {', '.join(config.environments)}"
            )
        return name

    def get_environment_config(self, instance: Optional[str] = None) -> N8NInstance:
        return self.load().environments[self.resolve_name(instance)]

    def get_available_environments(self) -> list[str]:
        return list(self.load().environments)

    def get_default_environment(self) -> str:
        return self.load().default_env
