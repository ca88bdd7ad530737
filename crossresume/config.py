"""Configuration resolved once from the environment and an optional YAML file.

Provider homes: ``CLAUDE_HOME``, ``CODEX_HOME``, ``GEMINI_HOME``,
``VIBE_HOME``, ``FACTORY_HOME``. Verbosity: ``CROSSRESUME_LOG_LEVEL``.
Config file: ``CROSSRESUME_CONFIG`` (default
``~/.config/crossresume/config.yaml``). Environment wins over the file.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .providers.base import SessionProvider
from .providers.registry import ProviderRegistry, default_registry

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "CROSSRESUME_LOG_LEVEL"
CONFIG_ENV = "CROSSRESUME_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/crossresume/config.yaml")
DEFAULT_LOG_LEVEL = "WARNING"


@dataclass
class ResolvedConfig:
    """Explicit settings threaded through discovery, pipeline and CLI."""

    # Explicit home overrides by provider slug; others use the default home.
    homes: dict[str, Path] = field(default_factory=dict)
    log_level: str = DEFAULT_LOG_LEVEL
    config_path: Path | None = None

    def home_for(self, provider: SessionProvider) -> Path:
        return self.homes.get(provider.slug) or provider.default_home()

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        config_path: Path | None = None,
        registry: ProviderRegistry | None = None,
    ) -> ResolvedConfig:
        """Resolve provider homes and log level.

        ``config_path`` (e.g. from ``--config``) takes precedence over
        ``CROSSRESUME_CONFIG``; an explicitly named file must exist.
        """
        env = os.environ if environ is None else environ
        registry = registry or default_registry()

        explicit = config_path is not None or bool(env.get(CONFIG_ENV))
        path = Path(config_path or env.get(CONFIG_ENV) or DEFAULT_CONFIG_PATH).expanduser()
        file_values = load_config_file(path, required=explicit)

        sections = file_values.get("providers") or {}
        homes: dict[str, Path] = {}
        for provider in registry:
            section = sections.get(provider.slug) or sections.get(provider.alias) or {}
            if not isinstance(section, dict):
                raise ConfigError(path, f"providers.{provider.slug} must be a mapping")
            home = env.get(provider.env_var) or section.get("home")
            if home:
                homes[provider.slug] = Path(str(home)).expanduser()

        log_level = str(env.get(LOG_LEVEL_ENV) or file_values.get("log_level") or DEFAULT_LOG_LEVEL)
        config = cls(
            homes=homes,
            log_level=log_level.upper(),
            config_path=path if file_values else None,
        )
        if homes:
            logger.info(
                "ResolvedConfig.from_env: home overrides: %s",
                ", ".join(f"{slug}={home}" for slug, home in sorted(homes.items())),
            )
        else:
            logger.debug("ResolvedConfig.from_env: no home overrides, using defaults")
        return config


def load_config_file(path: Path, *, required: bool = False) -> dict[str, Any]:
    """Load the YAML config file, or ``{}`` when an optional file is absent."""
    if not path.is_file():
        if required:
            raise ConfigError(path, "file not found")
        logger.debug("load_config_file: no config at %s", path)
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        logger.error("load_config_file: YAML parse error in %s: %s", path, exc)
        raise ConfigError(path, f"YAML parse error: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(path, str(exc)) from exc

    if not isinstance(data, dict):
        raise ConfigError(path, "top level must be a mapping")
    if not isinstance(data.get("providers") or {}, dict):
        raise ConfigError(path, "'providers' must be a mapping")
    logger.info(
        "load_config_file: loaded %s (sections: %s)",
        path, ", ".join(sorted(data)) or "empty",
    )
    return data
