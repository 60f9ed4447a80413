"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from ai_review_agent.config.loader import (
    find_config_file,
    load_config,
    substitute_env_vars,
    validate_config,
)
from ai_review_agent.config.schema import (
    AnthropicConfig,
    CoalesceConfig,
    FileMode,
    FilePattern,
    OutputConfig,
    RetryConfig,
    ReviewConfig,
    RunnerConfig,
)


class TestSubstituteEnvVars:
    """Test environment variable substitution."""

    def test_substitute_single_var(self, monkeypatch):
        """Test substituting a single environment variable."""
        monkeypatch.setenv("TEST_VAR", "test_value")
        assert substitute_env_vars("Value is ${TEST_VAR}") == "Value is test_value"

    def test_substitute_multiple_vars(self, monkeypatch):
        """Test substituting multiple environment variables."""
        monkeypatch.setenv("VAR1", "value1")
        monkeypatch.setenv("VAR2", "value2")
        assert substitute_env_vars("${VAR1} and ${VAR2}") == "value1 and value2"

    def test_missing_env_var_raises(self, monkeypatch):
        """Test that missing environment variables raise ValueError."""
        monkeypatch.delenv("MISSING", raising=False)
        with pytest.raises(ValueError, match="Environment variable MISSING not found"):
            substitute_env_vars("Value is ${MISSING}")

    def test_default_used_when_unset(self, monkeypatch):
        """Test ${VAR:-default} falls back when the variable is unset."""
        monkeypatch.delenv("REVIEW_MODEL", raising=False)
        assert substitute_env_vars("model: ${REVIEW_MODEL:-claude-x}") == "model: claude-x"

    def test_set_value_wins_over_default(self, monkeypatch):
        """Test a set variable overrides its default."""
        monkeypatch.setenv("REVIEW_MODEL", "claude-y")
        assert substitute_env_vars("${REVIEW_MODEL:-claude-x}") == "claude-y"

    def test_empty_default(self, monkeypatch):
        """Test an empty default is allowed."""
        monkeypatch.delenv("REVIEW_FILE", raising=False)
        assert substitute_env_vars("file: '${REVIEW_FILE:-}'") == "file: ''"

    def test_no_substitution_needed(self):
        """Test text without environment variables passes through unchanged."""
        assert substitute_env_vars("plain text without vars") == "plain text without vars"


class TestSchema:
    """Test section validation."""

    def test_defaults(self):
        """Test the defaults of every section."""
        config = ReviewConfig()
        assert config.runner.max_turns == 5
        assert config.runner.context_lines == 20
        assert config.runner.file_concurrency == 5
        assert config.chunking.coalesce.max_gap_lines == 30
        assert config.output.fail_on == "high"
        assert config.output.report_on == "info"
        assert config.skills == []

    @pytest.mark.parametrize("value", [0, 51])
    def test_max_turns_bounds(self, value):
        """Test the turn budget must be between 1 and 50."""
        with pytest.raises(ValidationError):
            RunnerConfig(max_turns=value)

    def test_concurrency_bounds(self):
        """Test file concurrency must be positive."""
        with pytest.raises(ValidationError):
            RunnerConfig(file_concurrency=0)

    def test_unknown_severity_rejected(self):
        """Test thresholds must be a severity name or 'off'."""
        with pytest.raises(ValidationError):
            OutputConfig(fail_on="urgent")
        assert OutputConfig(fail_on="off").fail_on == "off"

    def test_file_pattern_mode_default(self):
        """Test file patterns skip by default."""
        assert FilePattern(pattern="**/*.snap").mode == FileMode.SKIP
        assert FilePattern(pattern="a", mode="whole-file").mode == FileMode.WHOLE_FILE

    def test_empty_file_pattern_rejected(self):
        """Test an empty glob is invalid."""
        with pytest.raises(ValidationError):
            FilePattern(pattern="")

    def test_chunk_size_bounds(self):
        """Test the chunk size has a lower bound."""
        with pytest.raises(ValidationError):
            CoalesceConfig(max_chunk_size=10)

    def test_blank_skill_rejected(self):
        """Test blank skill references are rejected."""
        with pytest.raises(ValidationError, match="Skill references must not be empty"):
            ReviewConfig(skills=["security", "  "])

    def test_retry_delays(self):
        """Test the initial delay may not exceed the maximum."""
        with pytest.raises(ValidationError, match="initial_delay"):
            ReviewConfig(retry=RetryConfig(initial_delay=5.0, max_delay=2.0))

    def test_env_override(self, monkeypatch):
        """Test nested settings can come from the environment."""
        monkeypatch.setenv("AI_REVIEW_RUNNER__MAX_TURNS", "9")
        assert ReviewConfig().runner.max_turns == 9


class TestValidateConfig:
    """Test cross-field validation."""

    def test_api_key_from_config(self, monkeypatch):
        """Test a configured key satisfies the requirement."""
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        validate_config(ReviewConfig(anthropic=AnthropicConfig(api_key="sk-test")))

    def test_api_key_from_environment(self, monkeypatch):
        """Test ANTHROPIC_API_KEY satisfies the requirement."""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        validate_config(ReviewConfig())

    def test_missing_api_key(self, monkeypatch):
        """Test a missing key is reported."""
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="API key missing"):
            validate_config(ReviewConfig())
        validate_config(ReviewConfig(), require_api_key=False)

    def test_fail_on_less_severe_than_report_on(self):
        """Test failing on findings that are never reported is rejected."""
        config = ReviewConfig(output=OutputConfig(fail_on="low", report_on="high"))
        with pytest.raises(ValueError, match="less severe"):
            validate_config(config, require_api_key=False)

    def test_off_thresholds_allowed(self):
        """Test 'off' on either side skips the ordering check."""
        validate_config(
            ReviewConfig(output=OutputConfig(fail_on="off", report_on="critical")),
            require_api_key=False,
        )
        validate_config(
            ReviewConfig(output=OutputConfig(fail_on="info", report_on="off")),
            require_api_key=False,
        )


class TestLoadConfig:
    """Test YAML loading."""

    def test_load_yaml(self, tmp_path: Path, monkeypatch):
        """Test a YAML file with substitution is validated."""
        monkeypatch.setenv("TEST_ANTHROPIC_KEY", "sk-from-env")
        path = tmp_path / "ai-review.yaml"
        path.write_text(
            "anthropic:\n"
            "  api_key: ${TEST_ANTHROPIC_KEY}\n"
            "runner:\n"
            "  max_turns: 8\n"
            "chunking:\n"
            "  file_patterns:\n"
            "    - pattern: 'migrations/**'\n"
            "      mode: whole-file\n"
            "skills:\n"
            "  - security\n"
        )

        config = load_config(path)

        assert config.anthropic.api_key == "sk-from-env"
        assert config.runner.max_turns == 8
        assert config.chunking.file_patterns[0].mode == FileMode.WHOLE_FILE
        assert config.skills == ["security"]

    def test_missing_file(self, tmp_path: Path):
        """Test a missing path raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file_uses_defaults(self, tmp_path: Path):
        """Test an empty YAML document yields the defaults."""
        path = tmp_path / "ai-review.yaml"
        path.write_text("")
        assert load_config(path, require_api_key=False).runner.max_turns == 5

    def test_non_mapping_root(self, tmp_path: Path):
        """Test a YAML list at the root is rejected."""
        path = tmp_path / "ai-review.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="must be a mapping"):
            load_config(path, require_api_key=False)

    def test_invalid_values(self, tmp_path: Path):
        """Test schema violations surface as ValidationError."""
        path = tmp_path / "ai-review.yaml"
        path.write_text("runner:\n  max_turns: 0\n")
        with pytest.raises(ValidationError):
            load_config(path, require_api_key=False)

    def test_no_path(self, monkeypatch):
        """Test loading without a file uses defaults and the environment."""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        assert load_config().output.fail_on == "high"


class TestFindConfigFile:
    """Test default config discovery."""

    def test_finds_first_default_name(self, tmp_path: Path):
        """Test the default names are tried in order."""
        (tmp_path / ".ai-review.yml").write_text("")
        (tmp_path / "ai-review.yaml").write_text("")
        assert find_config_file(tmp_path) == tmp_path / "ai-review.yaml"

    def test_none_when_absent(self, tmp_path: Path):
        """Test None when no config exists."""
        assert find_config_file(tmp_path) is None
