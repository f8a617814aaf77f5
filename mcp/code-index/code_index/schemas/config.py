"""Code index configuration schema.

Persistent configuration: enablement, embedding provider, and vector store
location. Changing the embedding model's dimension invalidates the index, which
the configuration manager reports as requires_clear.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Literal

import pydantic
from pydantic import Field, TypeAdapter

from code_index.paths import CONFIG_PATH, SECRETS_DIR
from code_index.schemas.base import StrictModel

__all__ = [
    'MODEL_DIMENSIONS',
    'CodeIndexConfig',
    'EmbedderConfig',
    'EmbedderProvider',
    'OllamaEmbedderConfig',
    'OpenAIEmbedderConfig',
    'load_config',
    'resolve_openai_api_key',
    'save_config',
]

logger = logging.getLogger(__name__)

# Provider type
type EmbedderProvider = Literal['openai', 'ollama']

# Native output dimensions of known embedding models
MODEL_DIMENSIONS: Mapping[EmbedderProvider, Mapping[str, int]] = {
    'openai': {
        'text-embedding-3-small': 1536,
        'text-embedding-3-large': 3072,
        'text-embedding-ada-002': 1536,
    },
    'ollama': {
        'nomic-embed-text': 768,
        'mxbai-embed-large': 1024,
        'all-minilm': 384,
    },
}


class OpenAIEmbedderConfig(StrictModel):
    """OpenAI-compatible embedding configuration.

    api_key falls back to OPENAI_API_KEY, then the workspace secrets file.
    """

    provider: Literal['openai'] = 'openai'
    model: str = 'text-embedding-3-small'
    base_url: str = 'https://api.openai.com/v1'
    api_key: str | None = None
    dimensions: int | None = None  # Override for models missing from MODEL_DIMENSIONS

    def vector_dimension(self) -> int | None:
        """Embedding size, or None if the model is unknown and no override is set."""
        return self.dimensions or MODEL_DIMENSIONS['openai'].get(self.model)


class OllamaEmbedderConfig(StrictModel):
    """Local Ollama embedding configuration."""

    provider: Literal['ollama'] = 'ollama'
    model: str = 'nomic-embed-text'
    base_url: str = 'http://localhost:11434'
    dimensions: int | None = None

    def vector_dimension(self) -> int | None:
        """Embedding size, or None if the model is unknown and no override is set."""
        return self.dimensions or MODEL_DIMENSIONS['ollama'].get(self.model)


# Discriminated union - type alias for annotations
type EmbedderConfig = OpenAIEmbedderConfig | OllamaEmbedderConfig


class CodeIndexConfig(StrictModel):
    """Top-level code index configuration."""

    enabled: bool = False
    embedder: Annotated[OpenAIEmbedderConfig | OllamaEmbedderConfig, Field(discriminator='provider')] = Field(
        default_factory=OpenAIEmbedderConfig
    )
    qdrant_url: str | None = 'http://localhost:6333'
    qdrant_api_key: str | None = None


_config_adapter: TypeAdapter[CodeIndexConfig] = TypeAdapter(CodeIndexConfig)


def load_config(config_path: Path = CONFIG_PATH) -> CodeIndexConfig:
    """Load config from file, or defaults (disabled) if the file doesn't exist.

    Raises:
        ValueError: If config file exists but is invalid.
    """
    if not config_path.exists():
        return CodeIndexConfig()

    try:
        data = json.loads(config_path.read_text())
        return _config_adapter.validate_python(data)
    except (json.JSONDecodeError, pydantic.ValidationError) as e:
        raise ValueError(f'Invalid config file at {config_path}: {e}') from e


def save_config(config: CodeIndexConfig, config_path: Path = CONFIG_PATH) -> None:
    """Save config to file, creating parent directories if needed."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config.model_dump(mode='json'), indent=2) + '\n')
    logger.info(f'Saved code index config: provider={config.embedder.provider}, model={config.embedder.model}')


def resolve_openai_api_key(config: OpenAIEmbedderConfig, secrets_dir: Path = SECRETS_DIR) -> str | None:
    """Find the API key: explicit config, environment, then secrets file."""
    if config.api_key:
        return config.api_key
    if env_key := os.environ.get('OPENAI_API_KEY'):
        return env_key
    key_path = secrets_dir / 'openai_api_key'
    if key_path.exists():
        return key_path.read_text().strip() or None
    return None
