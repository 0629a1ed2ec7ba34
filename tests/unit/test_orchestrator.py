"""Tests for the deployment orchestrator.

All external calls go through mocked runners and sessions.
"""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from agentcore_stack.core.exceptions import ConfigError, ExternalToolFailure
from agentcore_stack.deploy.orchestrator import DeploymentOrchestrator, DeployOptions
from agentcore_stack.stack.outputs import PENDING, entries_to_dict

from tests.conftest import make_demo_config, write_json


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Keep the user's ~/.agentcore/.env out of the search path."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return write_json(tmp_path / "stack.json", make_demo_config())


@pytest.fixture
def env_file(tmp_path: Path) -> Path:
    path = tmp_path / "secrets.env"
    path.write_text("OPENAI_API_KEY=sk-abcdefghijkl\nLLM_MODEL=gpt-4o\n")
    return path


def make_session() -> MagicMock:
    session = MagicMock()
    clients = {
        "sts": MagicMock(),
        "secretsmanager": MagicMock(),
        "cloudformation": MagicMock(),
    }
    clients["sts"].get_caller_identity.return_value = {"Account": "123456789012"}
    clients["cloudformation"].describe_stacks.return_value = {
        "Stacks": [
            {
                "Outputs": [
                    {"OutputKey": "NetworkId", "OutputValue": "vpc-42"},
                    {"OutputKey": "AgentWorkerRuntimeArn", "OutputValue": "arn:runtime"},
                ]
            }
        ]
    }
    session.client.side_effect = lambda name: clients[name]
    session.clients = clients
    return session


def make_options(config_path: Path, tmp_path: Path, **overrides) -> DeployOptions:
    data = {
        "config_path": config_path,
        "region": "us-east-1",
        "prefix": "agentcore",
        "template_path": tmp_path / "out" / "template.json",
    }
    data.update(overrides)
    return DeployOptions(**data)


class TestDryRun:
    """Test dry-run mode."""

    def test_no_external_calls(self, config_path: Path, env_file: Path, tmp_path: Path) -> None:
        """Dry run never touches the runner or AWS."""
        runner = MagicMock()
        session_factory = MagicMock()
        orchestrator = DeploymentOrchestrator(runner=runner, session_factory=session_factory)

        result = orchestrator.run(make_options(config_path, tmp_path, env_file=env_file, dry_run=True))

        runner.run.assert_not_called()
        session_factory.assert_not_called()
        assert [(s.step, s.status) for s in result.steps] == [
            ("push-secrets", "dry-run"),
            ("bootstrap", "dry-run"),
            ("apply", "dry-run"),
        ]
        assert result.account is None
        assert "agentcore/llm" in result.steps[0].detail
        assert "agentcore/config" in result.steps[0].detail

    def test_writes_template(self, config_path: Path, tmp_path: Path) -> None:
        """The template is rendered even in dry-run mode."""
        result = DeploymentOrchestrator(runner=MagicMock()).run(
            make_options(config_path, tmp_path, dry_run=True, skip_secrets=True)
        )

        template = json.loads(result.template_path.read_text())
        assert "DemoWorkerRuntime" in template["Resources"]
        assert "--stack-name demo" in result.steps[2].detail

    def test_outputs_pending(self, config_path: Path, tmp_path: Path) -> None:
        """Without provisioning every provider value is pending."""
        result = DeploymentOrchestrator(runner=MagicMock()).run(
            make_options(config_path, tmp_path, dry_run=True, skip_secrets=True)
        )

        outputs = entries_to_dict(result.outputs)
        assert outputs["NetworkId"] == PENDING
        assert outputs["AgentCount"] == "1"


class TestPipeline:
    """Test the full pipeline with mocked tools."""

    def test_success(self, config_path: Path, env_file: Path, tmp_path: Path) -> None:
        """Every step runs in order and outputs are read back."""
        runner = MagicMock()
        session = make_session()
        orchestrator = DeploymentOrchestrator(runner=runner, session_factory=lambda region: session)

        result = orchestrator.run(make_options(config_path, tmp_path, env_file=env_file))

        assert result.account == "123456789012"
        assert [(s.step, s.status) for s in result.steps] == [
            ("push-secrets", "ok"),
            ("bootstrap", "ok"),
            ("apply", "ok"),
        ]
        steps = [c.args[0] for c in runner.run.call_args_list]
        assert steps == ["bootstrap", "apply"]
        assert runner.run.call_args_list[0].args[1] == "cdk bootstrap aws://123456789012/us-east-1"
        assert session.clients["secretsmanager"].put_secret_value.call_count == 2

        outputs = entries_to_dict(result.outputs)
        assert outputs["NetworkId"] == "vpc-42"
        assert outputs["Agent-worker-RuntimeArn"] == "arn:runtime"
        assert outputs["Agent-worker-EndpointArn"] == PENDING

    def test_bootstrap_failure_continues(self, config_path: Path, tmp_path: Path) -> None:
        """An ignorable bootstrap failure does not stop apply."""
        runner = MagicMock()

        def run(step, command, ignorable=False):
            if step == "bootstrap":
                raise ExternalToolFailure(step, "exited with status 1", ignorable)

        runner.run.side_effect = run
        orchestrator = DeploymentOrchestrator(runner=runner, session_factory=lambda region: make_session())

        result = orchestrator.run(make_options(config_path, tmp_path, skip_secrets=True))

        assert [(s.step, s.status) for s in result.steps] == [
            ("push-secrets", "skipped"),
            ("bootstrap", "ignored-failure"),
            ("apply", "ok"),
        ]

    def test_apply_failure_raises(self, config_path: Path, tmp_path: Path) -> None:
        """Apply failures abort the run."""
        runner = MagicMock()

        def run(step, command, ignorable=False):
            if step == "apply":
                raise ExternalToolFailure(step, "exited with status 255", ignorable)

        runner.run.side_effect = run
        orchestrator = DeploymentOrchestrator(runner=runner, session_factory=lambda region: make_session())

        with pytest.raises(ExternalToolFailure) as exc_info:
            orchestrator.run(make_options(config_path, tmp_path, skip_secrets=True))

        assert exc_info.value.step == "apply"

    def test_skip_flags(self, config_path: Path, env_file: Path, tmp_path: Path) -> None:
        """Skipped steps make no calls."""
        runner = MagicMock()
        session = make_session()
        orchestrator = DeploymentOrchestrator(runner=runner, session_factory=lambda region: session)

        result = orchestrator.run(
            make_options(config_path, tmp_path, env_file=env_file, skip_secrets=True, skip_bootstrap=True)
        )

        assert result.steps[0].status == "skipped"
        assert result.steps[1].status == "skipped"
        session.clients["secretsmanager"].put_secret_value.assert_not_called()
        assert [c.args[0] for c in runner.run.call_args_list] == ["apply"]

    def test_missing_env_file_skips_secrets(self, config_path: Path, tmp_path: Path) -> None:
        """No .env anywhere means the push step is skipped."""
        runner = MagicMock()
        orchestrator = DeploymentOrchestrator(runner=runner, session_factory=lambda region: make_session())

        result = orchestrator.run(make_options(config_path, tmp_path))

        assert result.steps[0].status == "skipped"
        assert result.steps[0].detail == "no .env file found"

    def test_identity_failure_is_fatal(self, config_path: Path, tmp_path: Path) -> None:
        """Credentials problems stop the run before any step."""
        runner = MagicMock()
        session = make_session()
        session.clients["sts"].get_caller_identity.side_effect = ClientError(
            {"Error": {"Code": "ExpiredToken", "Message": "expired"}}, "GetCallerIdentity"
        )
        orchestrator = DeploymentOrchestrator(runner=runner, session_factory=lambda region: session)

        with pytest.raises(ExternalToolFailure, match="resolving AWS account"):
            orchestrator.run(make_options(config_path, tmp_path))

        runner.run.assert_not_called()

    def test_unreadable_outputs_pending(self, config_path: Path, tmp_path: Path) -> None:
        """Output read failures leave values pending."""
        session = make_session()
        session.clients["cloudformation"].describe_stacks.side_effect = ClientError(
            {"Error": {"Code": "ValidationError", "Message": "missing"}}, "DescribeStacks"
        )
        orchestrator = DeploymentOrchestrator(runner=MagicMock(), session_factory=lambda region: session)

        result = orchestrator.run(make_options(config_path, tmp_path, skip_secrets=True))

        assert entries_to_dict(result.outputs)["NetworkId"] == PENDING


class TestConfigErrors:
    """Test that config problems stop the run first."""

    def test_invalid_config_before_external_calls(self, tmp_path: Path) -> None:
        """A bad config fails before any session or tool call."""
        data = make_demo_config()
        data["agents"][0]["memoryMB"] = 300
        path = write_json(tmp_path / "bad.json", data)
        runner = MagicMock()
        session_factory = MagicMock()

        with pytest.raises(ConfigError) as exc_info:
            DeploymentOrchestrator(runner=runner, session_factory=session_factory).run(
                make_options(path, tmp_path)
            )

        assert exc_info.value.field_path == "agents[0].memoryMB"
        runner.run.assert_not_called()
        session_factory.assert_not_called()
