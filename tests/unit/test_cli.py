"""Tests for CLI in agentcore_stack/cli.py.

Tests cover:
- validate command
- plan command
- synth command
- include command
- init command
- outputs command
- push-secrets command
- deploy command (dry run)
"""

import json
import logging
from collections.abc import Generator
from pathlib import Path
from unittest.mock import patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from agentcore_stack import cli
from agentcore_stack.cli import app

from tests.conftest import make_demo_config, make_full_config, write_json, write_yaml

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch: pytest.MonkeyPatch) -> None:
    """Render tables without wrapping."""
    monkeypatch.setattr(cli, "console", Console(width=200))


@pytest.fixture(autouse=True)
def restore_logging() -> Generator[None, None, None]:
    """Commands install log handlers bound to the runner's streams."""
    root_logger = logging.getLogger()
    handlers, level = list(root_logger.handlers), root_logger.level
    yield
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)


@pytest.fixture
def quiet_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep log lines out of machine-readable output."""
    monkeypatch.setenv("AGENTCORE_LOG_LEVEL", "WARNING")


class TestValidateCommand:
    """Test validate command."""

    def test_validate_valid_stack(self) -> None:
        """Validate command succeeds for a valid stack."""
        write_yaml(Path("stack.yaml"), make_demo_config())

        result = runner.invoke(app, ["validate", "stack.yaml"])

        assert result.exit_code == 0
        assert "valid" in result.output.lower()

    def test_validate_verbose_lists_agents(self) -> None:
        """Verbose output shows the agents table."""
        write_json(Path("stack.json"), make_full_config())

        result = runner.invoke(app, ["validate", "stack.json", "--verbose"])

        assert result.exit_code == 0
        assert "coordinator" in result.output
        assert "researcher" in result.output

    def test_validate_invalid_stack(self) -> None:
        """Validate command fails for an invalid stack."""
        write_yaml(Path("stack.yaml"), {"invalid": "data"})

        result = runner.invoke(app, ["validate", "stack.yaml"])

        assert result.exit_code == 1

    def test_validate_unknown_field_strict(self) -> None:
        """Unknown fields fail unless --lenient is given."""
        data = make_demo_config()
        data["agents"][0]["colour"] = "blue"
        write_json(Path("stack.json"), data)

        strict = runner.invoke(app, ["validate", "stack.json"])
        lenient = runner.invoke(app, ["validate", "stack.json", "--lenient"])

        assert strict.exit_code == 1
        assert "unknown field" in strict.output
        assert lenient.exit_code == 0

    def test_validate_missing_file(self) -> None:
        """Missing files fail."""
        result = runner.invoke(app, ["validate", "nope.yaml"])

        assert result.exit_code == 1
        assert "not found" in result.output


class TestPlanCommand:
    """Test plan command."""

    def test_plan_table(self) -> None:
        """Plan shows resources and stages."""
        write_json(Path("stack.json"), make_demo_config())

        result = runner.invoke(app, ["plan", "stack.json"])

        assert result.exit_code == 0
        assert "demo-worker-runtime" in result.output
        assert "Stage" in result.output

    def test_plan_json(self, quiet_logs) -> None:
        """JSON output is the serialized graph."""
        write_json(Path("stack.json"), make_demo_config())

        result = runner.invoke(app, ["plan", "stack.json", "--format", "json"])

        assert result.exit_code == 0
        graph = json.loads(result.output)
        assert graph["stackName"] == "demo"
        assert graph["nodes"][0]["logicalId"] == "demo-network"

    def test_plan_invalid_format(self) -> None:
        """Unknown formats are rejected."""
        write_json(Path("stack.json"), make_demo_config())

        result = runner.invoke(app, ["plan", "stack.json", "--format", "xml"])

        assert result.exit_code == 1

    def test_plan_config_error(self) -> None:
        """Config errors exit 1 with the field path."""
        data = make_demo_config()
        data["agents"][0]["memoryMB"] = 300
        write_json(Path("stack.json"), data)

        result = runner.invoke(app, ["plan", "stack.json"])

        assert result.exit_code == 1
        assert "agents[0].memoryMB" in result.output


class TestSynthCommand:
    """Test synth command."""

    def test_synth_writes_template(self) -> None:
        """Synth writes a CloudFormation template."""
        write_json(Path("stack.json"), make_demo_config())

        result = runner.invoke(app, ["synth", "stack.json", "--output", "out.json"])

        assert result.exit_code == 0
        template = json.loads(Path("out.json").read_text())
        assert template["AWSTemplateFormatVersion"] == "2010-09-09"
        assert "DemoWorkerEndpoint" in template["Resources"]

    def test_synth_rejects_rendering_collisions(self) -> None:
        """Names that collide once rendered fail before any file is written."""
        config = make_demo_config()
        config["agents"] = [
            {"name": "worker", "containerImage": "x"},
            {"name": "Worker", "containerImage": "y"},
        ]
        write_json(Path("stack.json"), config)

        result = runner.invoke(app, ["synth", "stack.json", "--output", "out.json"])

        assert result.exit_code == 1
        assert "agents[1].name" in result.output
        assert not Path("out.json").exists()


EXISTING_TEMPLATE = {
    "Parameters": {"Environment": {"Type": "String", "Default": "dev"}},
    "Resources": {
        "Bucket": {"Type": "AWS::S3::Bucket", "Properties": {"Tags": [{"Key": "Team", "Value": "a"}]}}
    },
    "Outputs": {"BucketName": {"Value": {"Ref": "Bucket"}}},
}


class TestIncludeCommand:
    """Test include command."""

    def test_include_standalone(self) -> None:
        """Parameters and tags are applied to the included template."""
        write_json(Path("existing.json"), EXISTING_TEMPLATE)

        result = runner.invoke(
            app,
            [
                "include", "existing.json",
                "--stack-name", "stats",
                "--parameter", "Environment=production",
                "--tag", "Project=stats",
                "--output", "out.json",
            ],
        )

        assert result.exit_code == 0
        assert "Project=stats" in result.output
        template = json.loads(Path("out.json").read_text())
        assert template["Parameters"]["Environment"]["Default"] == "production"
        assert {"Key": "Project", "Value": "stats"} in template["Resources"]["Bucket"]["Properties"]["Tags"]

    def test_include_merged_with_config(self) -> None:
        """With --config the stack name comes from the config and ids can be renamed."""
        write_json(Path("existing.json"), EXISTING_TEMPLATE)
        write_yaml(Path("stack.yaml"), make_demo_config())

        result = runner.invoke(
            app,
            ["include", "existing.json", "--config", "stack.yaml", "--rename-ids", "-o", "out.json"],
        )

        assert result.exit_code == 0
        template = json.loads(Path("out.json").read_text())
        assert "DemoWorkerRuntime" in template["Resources"]
        assert "DemoBucket" in template["Resources"]
        assert template["Outputs"]["BucketName"]["Value"] == {"Ref": "DemoBucket"}

    def test_include_requires_stack_name(self) -> None:
        write_json(Path("existing.json"), EXISTING_TEMPLATE)

        result = runner.invoke(app, ["include", "existing.json"])

        assert result.exit_code == 1
        assert "--stack-name" in result.output

    def test_include_bad_parameter_syntax(self) -> None:
        write_json(Path("existing.json"), EXISTING_TEMPLATE)

        result = runner.invoke(app, ["include", "existing.json", "-s", "stats", "-p", "Environment"])

        assert result.exit_code == 1
        assert "KEY=VALUE" in result.output


class TestInitCommand:
    """Test init command."""

    def test_init_then_validate(self) -> None:
        """The example config is valid."""
        result = runner.invoke(app, ["init", "agentcore.yaml"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["validate", "agentcore.yaml"])
        assert result.exit_code == 0

    def test_init_refuses_overwrite(self) -> None:
        """Existing files need --force."""
        Path("agentcore.json").write_text("{}")

        assert runner.invoke(app, ["init", "agentcore.json"]).exit_code == 1
        assert runner.invoke(app, ["init", "agentcore.json", "--force"]).exit_code == 0
        assert json.loads(Path("agentcore.json").read_text())["stackName"] == "research-agents"


class TestOutputsCommand:
    """Test outputs command."""

    def test_outputs_json_pending(self, quiet_logs) -> None:
        """Without provisioned values entries are pending."""
        write_json(Path("stack.json"), make_demo_config())

        result = runner.invoke(app, ["outputs", "stack.json", "--format", "json"])

        assert result.exit_code == 0
        outputs = json.loads(result.output)
        assert outputs["NetworkId"] == "<pending>"
        assert outputs["Agent-worker-Image"] == "repo/worker:v1"

    def test_outputs_with_provisioned(self, quiet_logs) -> None:
        """Provisioned identifiers fill in values."""
        write_json(Path("stack.json"), make_demo_config())
        write_json(Path("ids.json"), {"demo-network": {"NetworkId": "vpc-9"}})

        result = runner.invoke(
            app, ["outputs", "stack.json", "--provisioned", "ids.json", "--format", "json"]
        )

        assert result.exit_code == 0
        assert json.loads(result.output)["NetworkId"] == "vpc-9"

    def test_outputs_table(self) -> None:
        write_json(Path("stack.json"), make_demo_config())

        result = runner.invoke(app, ["outputs", "stack.json"])

        assert result.exit_code == 0
        assert "AgentCount" in result.output


class TestPushSecretsCommand:
    """Test push-secrets command."""

    def test_dry_run(self) -> None:
        """Dry run previews groups without calling AWS."""
        Path("prod.env").write_text("OPENAI_API_KEY=sk-abcdefghijkl\nUNKNOWN_FLAG=1\n")

        with patch("agentcore_stack.deploy.secrets.boto3") as mock_boto3:
            result = runner.invoke(app, ["push-secrets", "prod.env", "--dry-run", "--prefix", "demo"])

        assert result.exit_code == 0
        assert "demo/llm" in result.output
        assert "dry-run" in result.output
        assert "sk-abcdefghijkl" not in result.output
        mock_boto3.client.assert_not_called()

    def test_no_env_file(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """A missing .env exits 1."""
        monkeypatch.setenv("HOME", str(tmp_path / "home"))

        result = runner.invoke(app, ["push-secrets"])

        assert result.exit_code == 1
        assert "No .env file found" in result.output


class TestDeployCommand:
    """Test deploy command."""

    def test_dry_run(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Dry run renders the template and applies nothing."""
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        write_json(Path("stack.json"), make_demo_config())

        with patch("agentcore_stack.deploy.tools.subprocess.run") as mock_run:
            result = runner.invoke(
                app, ["deploy", "stack.json", "--dry-run", "--skip-secrets", "--template", "t.json"]
            )

        assert result.exit_code == 0
        assert "Deployment Complete" in result.output
        assert Path("t.json").exists()
        mock_run.assert_not_called()

    def test_config_error(self) -> None:
        """Invalid configs fail before any step."""
        write_yaml(Path("stack.yaml"), {"stackName": "demo", "agents": []})

        result = runner.invoke(app, ["deploy", "stack.yaml", "--dry-run"])

        assert result.exit_code == 1
        assert "Deployment failed" in result.output
