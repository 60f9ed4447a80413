"""Configuration loader with YAML parsing and environment variable substitution."""

import os
import re
from pathlib import Path

import yaml

from .schema import ReviewConfig

DEFAULT_CONFIG_NAMES = ("ai-review.yaml", ".ai-review.yaml", ".ai-review.yml")


_ENV_VAR = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def substitute_env_vars(text: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` from the environment.

    Raises:
        ValueError: If a variable without a default is not set
    """

    def replacer(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        value = os.environ.get(name, default)
        if value is None:
            raise ValueError(f"Environment variable {name} not found")
        return value

    return _ENV_VAR.sub(replacer, text)


def find_config_file(repo_path: Path) -> Path | None:
    """Return the first default config file present in the repository root."""
    for name in DEFAULT_CONFIG_NAMES:
        candidate = repo_path / name
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Path | None = None, require_api_key: bool = True) -> ReviewConfig:
    """
    Load configuration from YAML file with environment variable substitution.

    Without a path, defaults plus environment variables are used.

    Args:
        path: Path to YAML configuration file
        require_api_key: Fail when no Anthropic API key is available

    Returns:
        Validated ReviewConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If environment variables are missing or config is invalid
        ValidationError: If config doesn't match schema
    """
    if path is None:
        config = ReviewConfig()
    else:
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with path.open() as f:
            raw_yaml = f.read()

        yaml_with_env = substitute_env_vars(raw_yaml)
        config_dict = yaml.safe_load(yaml_with_env) or {}
        if not isinstance(config_dict, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        config = ReviewConfig.model_validate(config_dict)

    validate_config(config, require_api_key=require_api_key)

    return config


def validate_config(config: ReviewConfig, require_api_key: bool = True) -> None:
    """
    Perform additional cross-field validation.

    Args:
        config: Configuration to validate
        require_api_key: Require an API key in config or ANTHROPIC_API_KEY

    Raises:
        ValueError: If the configuration is inconsistent
    """
    if require_api_key and not (config.anthropic.api_key or os.environ.get("ANTHROPIC_API_KEY")):
        raise ValueError("Anthropic API key missing: set anthropic.api_key or ANTHROPIC_API_KEY")

    from ..core.severity import severity_rank

    fail_on = config.output.fail_on
    report_on = config.output.report_on
    if fail_on != "off" and report_on != "off" and severity_rank(fail_on) > severity_rank(report_on):
        raise ValueError(
            f"output.fail_on ({fail_on}) is less severe than output.report_on ({report_on}); "
            "the run would fail on findings it does not report"
        )
