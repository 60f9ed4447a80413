"""Configuration loading and validation."""

from .loader import find_config_file, load_config
from .schema import (
    AnthropicConfig,
    ChunkingConfig,
    CoalesceConfig,
    FileMode,
    FilePattern,
    LoggingConfig,
    OutputConfig,
    RetryConfig,
    ReviewConfig,
    RunnerConfig,
)

__all__ = [
    # Loader
    "load_config",
    "find_config_file",
    # Root config
    "ReviewConfig",
    # Sections
    "AnthropicConfig",
    "RunnerConfig",
    "ChunkingConfig",
    "CoalesceConfig",
    "FilePattern",
    "FileMode",
    "OutputConfig",
    "RetryConfig",
    "LoggingConfig",
]
