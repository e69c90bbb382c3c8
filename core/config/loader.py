"""Configuration loader - loads operator settings and YAML manifests."""

import logging
import os
from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

import yaml

from core.config.exceptions import (
    ConfigNotFoundError,
    ConfigParseError,
    ConfigValidationError,
)
from core.config.merger import deep_merge
from core.schema.duration import parse_duration

logger = logging.getLogger(__name__)

# Default paths relative to project root
CONFIG_DIR = Path(__file__).parent.parent.parent / "config"

ENV_PREFIX = "SECRET_SYNC_"


@dataclass
class Settings:
    """Operator settings."""

    log_level: str = "INFO"
    log_format: str = "standard"
    log_file: Optional[str] = None
    metrics_port: int = 8080
    min_refresh_interval: timedelta = timedelta(seconds=60)
    requeue_after: timedelta = timedelta(seconds=30)
    scheduler_workers: int = 10
    namespace: str = ""
    session_name: str = "secret-manager"

    @classmethod
    def from_dict(cls, data: Mapping) -> "Settings":
        """
        Build settings from a (merged) mapping, ignoring unknown keys.

        Raises:
            ConfigValidationError: If a value has the wrong shape
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown settings: {', '.join(sorted(unknown))}")

        values = {k: v for k, v in data.items() if k in known}
        try:
            for key in ("metrics_port", "scheduler_workers"):
                if key in values:
                    values[key] = int(values[key])
        except (TypeError, ValueError) as e:
            raise ConfigValidationError(f"Invalid integer setting: {e}") from e

        for key in ("min_refresh_interval", "requeue_after"):
            if key in values:
                values[key] = parse_duration(values[key])

        settings = cls(**values)
        if settings.scheduler_workers < 1:
            raise ConfigValidationError("scheduler_workers must be at least 1")
        if settings.log_format not in ("standard", "json"):
            raise ConfigValidationError(f"Unknown log_format: {settings.log_format}")
        if not hasattr(logging, str(settings.log_level).upper()):
            raise ConfigValidationError(f"Unknown log_level: {settings.log_level}")
        return settings


class ConfigLoader:
    """
    Loads and merges operator settings from multiple sources.

    Load order (later wins):
        1. operator.yaml (base settings, optional)
        2. environments/{env}.yaml (optional environment overrides)
        3. SECRET_SYNC_* environment variables

    Usage:
        loader = ConfigLoader()
        settings = loader.load(environment="prod")
    """

    def __init__(self, config_dir: Optional[Path] = None, environ: Optional[Mapping] = None):
        self.config_dir = Path(config_dir) if config_dir else CONFIG_DIR
        self.environ = os.environ if environ is None else environ

    def _load_yaml(self, path: Path) -> dict:
        """Load and parse a YAML file."""
        if not path.exists():
            raise ConfigNotFoundError(f"Config file not found: {path}")

        try:
            with open(path) as f:
                content = yaml.safe_load(f) or {}
                logger.debug(f"Loaded config: {path}")
        except yaml.YAMLError as e:
            raise ConfigParseError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(content, dict):
            raise ConfigParseError(f"Expected a mapping in {path}")
        return content

    def _load_if_exists(self, path: Path) -> dict:
        """Load YAML file if it exists, otherwise return empty dict."""
        if path.exists():
            return self._load_yaml(path)
        return {}

    def _load_env(self) -> dict:
        """Collect SECRET_SYNC_* overrides (SECRET_SYNC_LOG_LEVEL -> log_level)."""
        overrides = {}
        for key, value in self.environ.items():
            if key.startswith(ENV_PREFIX):
                overrides[key[len(ENV_PREFIX):].lower()] = value
        return overrides

    def load(self, environment: Optional[str] = None) -> Settings:
        """
        Load complete operator settings.

        Args:
            environment: Optional environment (e.g., "prod", "dev")

        Returns:
            Validated Settings
        """
        # 1. Base settings
        base_path = self.config_dir / "operator.yaml"
        config = self._load_if_exists(base_path)
        if config:
            logger.info(f"Loaded operator config: {base_path}")

        # 2. Environment overrides (if specified)
        if environment:
            env_path = self.config_dir / "environments" / f"{environment}.yaml"
            env_config = self._load_if_exists(env_path)
            if env_config:
                config = deep_merge(config, env_config)
                logger.info(f"Merged environment config: {env_path}")

        # 3. Process environment
        env_overrides = self._load_env()
        if env_overrides:
            config = deep_merge(config, env_overrides)
            logger.info(f"Applied {len(env_overrides)} settings from environment")

        return Settings.from_dict(config)


def load_manifests(path) -> list:
    """
    Load every YAML document from a file, or from all *.yaml/*.yml files
    in a directory (sorted by name).

    Raises:
        ConfigNotFoundError: If the path doesn't exist
        ConfigParseError: If a file has invalid YAML or a document isn't a mapping
    """
    path = Path(path)
    if not path.exists():
        raise ConfigNotFoundError(f"Manifest path not found: {path}")

    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.suffix in (".yaml", ".yml"))
    else:
        files = [path]

    manifests = []
    for file in files:
        try:
            with open(file) as f:
                docs = [doc for doc in yaml.safe_load_all(f) if doc]
        except yaml.YAMLError as e:
            raise ConfigParseError(f"Invalid YAML in {file}: {e}") from e

        for doc in docs:
            if not isinstance(doc, dict) or "kind" not in doc:
                raise ConfigParseError(f"Manifest in {file} has no kind")
            manifests.append(doc)
        logger.debug(f"Loaded {len(docs)} manifests from {file}")

    return manifests
