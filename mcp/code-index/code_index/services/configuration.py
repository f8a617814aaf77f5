"""Configuration manager for one code index engine.

Wraps the persistent config file and decides, on every reload, whether the
running engine has to be rebuilt (requires_restart) and whether the existing
vectors became unusable (requires_clear: the embedding dimension changed).
"""

from __future__ import annotations

import logging
from pathlib import Path

from code_index.paths import CONFIG_PATH, SECRETS_DIR
from code_index.schemas.base import StrictModel
from code_index.schemas.config import (
    CodeIndexConfig,
    EmbedderConfig,
    OllamaEmbedderConfig,
    OpenAIEmbedderConfig,
    load_config,
    resolve_openai_api_key,
)

__all__ = [
    'ConfigManager',
    'ConfigurationChange',
    'IndexNotConfiguredError',
]

logger = logging.getLogger(__name__)


class IndexNotConfiguredError(ValueError):
    """Code indexing is disabled or missing required settings."""


class ConfigurationChange(StrictModel):
    """What a configuration reload means for the running engine."""

    requires_restart: bool
    requires_clear: bool


class ConfigManager:
    """Loads CodeIndexConfig and answers enabled/configured questions."""

    def __init__(
        self,
        config_path: Path = CONFIG_PATH,
        secrets_dir: Path = SECRETS_DIR,
        *,
        config: CodeIndexConfig | None = None,
    ) -> None:
        """Initialize manager.

        Args:
            config_path: Config file read by load_configuration().
            secrets_dir: Directory holding provider API key files.
            config: Initial config. Until load_configuration() runs the
                manager reports this (defaults: disabled).
        """
        self._config_path = config_path
        self._secrets_dir = secrets_dir
        self._config = config or CodeIndexConfig()

    @property
    def config(self) -> CodeIndexConfig:
        return self._config

    @property
    def is_feature_enabled(self) -> bool:
        return self._config.enabled

    @property
    def is_feature_configured(self) -> bool:
        """Embedder credentials, vector store URL and vector dimension are all known."""
        return self._is_configured(self._config)

    def load_configuration(self) -> ConfigurationChange:
        """Reload the config file and diff it against the current config.

        Raises:
            ValueError: If the config file is invalid.
        """
        previous = self._config
        current = load_config(self._config_path)
        self._config = current
        return self.diff(previous, current)

    def set_config(self, config: CodeIndexConfig) -> ConfigurationChange:
        """Replace the in-memory config (not persisted) and diff it."""
        previous = self._config
        self._config = config
        return self.diff(previous, config)

    def diff(self, previous: CodeIndexConfig, current: CodeIndexConfig) -> ConfigurationChange:
        was_active = previous.enabled and self._is_configured(previous)
        is_active = current.enabled and self._is_configured(current)

        requires_clear = (
            was_active
            and is_active
            and previous.embedder.vector_dimension() != current.embedder.vector_dimension()
        )

        if not is_active:
            requires_restart = False
        elif not was_active:
            requires_restart = True
        else:
            requires_restart = self._connection_key(previous) != self._connection_key(current)

        change = ConfigurationChange(requires_restart=requires_restart, requires_clear=requires_clear)
        if requires_restart or requires_clear:
            logger.info(f'[CONFIG] Configuration changed: restart={requires_restart}, clear={requires_clear}')
        return change

    def embedder_config(self) -> EmbedderConfig:
        """Current embedder config with the API key resolved from env/secrets."""
        embedder = self._config.embedder
        if isinstance(embedder, OpenAIEmbedderConfig) and embedder.api_key is None:
            api_key = resolve_openai_api_key(embedder, self._secrets_dir)
            if api_key is not None:
                return embedder.model_copy(update={'api_key': api_key})
        return embedder

    def _is_configured(self, config: CodeIndexConfig) -> bool:
        if not config.qdrant_url or config.embedder.vector_dimension() is None:
            return False
        match config.embedder:
            case OpenAIEmbedderConfig():
                return resolve_openai_api_key(config.embedder, self._secrets_dir) is not None
            case OllamaEmbedderConfig():
                return bool(config.embedder.base_url)
        return False

    def _connection_key(self, config: CodeIndexConfig) -> tuple[object, ...]:
        embedder = config.embedder
        api_key = (
            resolve_openai_api_key(embedder, self._secrets_dir) if isinstance(embedder, OpenAIEmbedderConfig) else None
        )
        return (
            embedder.provider,
            embedder.model,
            embedder.base_url,
            embedder.vector_dimension(),
            api_key,
            config.qdrant_url,
            config.qdrant_api_key,
        )
