"""Tests for settings in agentcore_stack/config.py."""

import pytest

from agentcore_stack.config import AwsSettings, StackSettings


class TestStackSettings:
    """Test StackSettings."""

    def test_defaults(self) -> None:
        settings = StackSettings()

        assert settings.strict_config is True
        assert settings.secret_prefix == "agentcore"
        assert settings.config_dir == ".agentcore"
        assert settings.template_file == "template.json"
        assert "{account}" in settings.bootstrap_command
        assert "{template}" in settings.apply_command

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """AGENTCORE_* variables override defaults."""
        monkeypatch.setenv("AGENTCORE_STRICT_CONFIG", "false")
        monkeypatch.setenv("AGENTCORE_SECRET_PREFIX", "team-a")
        monkeypatch.setenv("AGENTCORE_APPLY_COMMAND", "echo {stack}")

        settings = StackSettings()

        assert settings.strict_config is False
        assert settings.secret_prefix == "team-a"
        assert settings.apply_command == "echo {stack}"

    def test_reads_dotenv_in_cwd(self, tmp_path) -> None:
        """A .env in the working directory is honored."""
        (tmp_path / ".env").write_text("AGENTCORE_LOG_LEVEL=DEBUG\nOPENAI_API_KEY=ignored\n")

        assert StackSettings().log_level == "DEBUG"


class TestAwsSettings:
    """Test AwsSettings."""

    def test_default_region(self) -> None:
        assert AwsSettings().region == "us-east-1"

    def test_region_precedence(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """AWS_REGION beats AWS_DEFAULT_REGION."""
        monkeypatch.setenv("AWS_DEFAULT_REGION", "us-west-2")
        assert AwsSettings().region == "us-west-2"

        monkeypatch.setenv("AWS_REGION", "eu-central-1")
        assert AwsSettings().region == "eu-central-1"
