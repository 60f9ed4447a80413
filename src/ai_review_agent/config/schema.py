"""Pydantic models for configuration schema."""

from enum import StrEnum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SeverityThreshold = Literal["critical", "high", "medium", "low", "info", "off"]


class AnthropicConfig(BaseModel):
    """Anthropic-specific configuration."""

    api_key: str | None = None
    model: str = "claude-sonnet-4-20250514"
    extraction_model: str = "claude-3-5-haiku-20241022"
    max_tokens: int = Field(4096, ge=256, le=64000)
    temperature: float = Field(0.0, ge=0.0, le=1.0)
    base_url: str | None = None


class RunnerConfig(BaseModel):
    """Skill execution configuration."""

    max_turns: int = Field(5, ge=1, le=50)
    context_lines: int = Field(20, ge=0, le=200)
    parallel: bool = True
    file_concurrency: int = Field(5, ge=1, le=50, description="Max files analyzed concurrently")
    secondary_extraction: bool = True


class FileMode(StrEnum):
    """How files matching a pattern are processed."""

    PER_HUNK = "per-hunk"
    WHOLE_FILE = "whole-file"
    SKIP = "skip"


class FilePattern(BaseModel):
    """A glob pattern and the processing mode for matching files."""

    pattern: str = Field(min_length=1)
    mode: FileMode = FileMode.SKIP


class CoalesceConfig(BaseModel):
    """Merging of nearby hunks into fewer analysis calls."""

    enabled: bool = True
    max_gap_lines: int = Field(30, ge=0, le=1000)
    max_chunk_size: int = Field(8000, ge=100, le=200000)


class ChunkingConfig(BaseModel):
    """File classification and hunk coalescing configuration."""

    file_patterns: list[FilePattern] = []
    coalesce: CoalesceConfig = CoalesceConfig()


class OutputConfig(BaseModel):
    """Report thresholds."""

    fail_on: SeverityThreshold = "high"
    report_on: SeverityThreshold = "info"
    max_stale_resolutions: int = Field(50, ge=0, le=1000)


class FileLoggingConfig(BaseModel):
    """File logging configuration."""

    enabled: bool = False
    path: Path = Path("ai-review-agent.log")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: Literal["json", "console"] = "console"
    file: FileLoggingConfig = FileLoggingConfig()


class RetryConfig(BaseModel):
    """Retry configuration for transient failures."""

    max_attempts: int = Field(3, ge=1, le=10)
    initial_delay: float = Field(1.0, ge=0.1, le=10.0)
    max_delay: float = Field(30.0, ge=1.0, le=300.0)


class ReviewConfig(BaseSettings):
    """Root configuration for AI Review Agent."""

    anthropic: AnthropicConfig = AnthropicConfig()
    runner: RunnerConfig = RunnerConfig()
    chunking: ChunkingConfig = ChunkingConfig()
    output: OutputConfig = OutputConfig()
    retry: RetryConfig = RetryConfig()
    logging: LoggingConfig = LoggingConfig()
    skills: list[str] = []

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        env_prefix="AI_REVIEW_",
        extra="ignore",
    )

    @field_validator("skills")
    @classmethod
    def validate_skills(cls, v: list[str]) -> list[str]:
        """Reject blank skill references."""
        for skill in v:
            if not skill.strip():
                raise ValueError("Skill references must not be empty")
        return v

    @model_validator(mode="after")
    def check_retry_delays(self) -> "ReviewConfig":
        """Initial retry delay may not exceed the maximum delay."""
        if self.retry.initial_delay > self.retry.max_delay:
            raise ValueError("retry.initial_delay must not exceed retry.max_delay")
        return self
