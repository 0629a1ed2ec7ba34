"""Tests for secret classification and pushing."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from agentcore_stack.core.exceptions import ExternalToolFailure
from agentcore_stack.deploy.secrets import (
    SECRET_GROUPS,
    SecretPusher,
    classify_secrets,
    mask_secret_values,
    parse_env_file,
    secret_name,
)


def client_error(code: str, operation: str = "PutSecretValue") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestParseEnvFile:
    """Test .env parsing."""

    def test_parses_values(self, tmp_path: Path) -> None:
        """Comments, quotes and export prefixes are handled."""
        env = tmp_path / ".env"
        env.write_text(
            "# comment\n"
            "OPENAI_API_KEY=sk-abcdefghijkl\n"
            'LLM_MODEL="gpt-4o"\n'
            "export SERPER_API_KEY='serper-123456'\n"
        )

        assert parse_env_file(env) == {
            "OPENAI_API_KEY": "sk-abcdefghijkl",
            "LLM_MODEL": "gpt-4o",
            "SERPER_API_KEY": "serper-123456",
        }

    def test_skips_empty_and_placeholders(self, tmp_path: Path) -> None:
        """Empty values and your-... placeholders are dropped."""
        env = tmp_path / ".env"
        env.write_text("EMPTY=\nGOOGLE_API_KEY=your-google-key\nLLM_PROVIDER=gemini\n")

        assert parse_env_file(env) == {"LLM_PROVIDER": "gemini"}


class TestClassify:
    """Test grouping by exact key name."""

    def test_groups(self) -> None:
        """Keys land in their group, unknown keys are dropped."""
        grouped = classify_secrets(
            {
                "OPENAI_API_KEY": "sk-1",
                "SERPER_API_KEY": "s-1",
                "LLM_MODEL": "m",
                "UNKNOWN_FLAG": "x",
            }
        )

        assert grouped == {
            "llm": {"OPENAI_API_KEY": "sk-1"},
            "search": {"SERPER_API_KEY": "s-1"},
            "config": {"LLM_MODEL": "m"},
        }

    def test_exact_match_only(self) -> None:
        """Prefixes and substrings do not match."""
        grouped = classify_secrets({"MY_OPENAI_API_KEY": "x", "openai_api_key": "y"})
        assert all(not keys for keys in grouped.values())

    def test_group_order(self) -> None:
        """Groups are reported in fixed order."""
        assert list(classify_secrets({})) == [group.name for group in SECRET_GROUPS]

    def test_secret_name(self) -> None:
        """Secrets are namespaced by prefix."""
        assert secret_name("agentcore", "llm") == "agentcore/llm"


class TestMask:
    """Test value masking."""

    def test_masks_api_keys(self) -> None:
        """Only the first characters of keys are shown."""
        masked = mask_secret_values(json.dumps({"OPENAI_API_KEY": "sk-abcdefghijklmnop"}))

        assert "sk-abcde***" in masked
        assert "ijklmnop" not in masked

    def test_leaves_other_values(self) -> None:
        """Non-key values are shown as is."""
        payload = json.dumps({"LLM_MODEL": "gemini-2.0-flash"})
        assert mask_secret_values(payload) == payload


class TestSecretPusher:
    """Test pushing groups to the secret store."""

    def test_dry_run_makes_no_calls(self) -> None:
        """Dry run never creates a client."""
        with patch("agentcore_stack.deploy.secrets.boto3") as mock_boto3:
            pusher = SecretPusher("us-east-1", "agentcore", dry_run=True)
            results = pusher.push({"OPENAI_API_KEY": "sk-abcdefghijkl"})

        mock_boto3.client.assert_not_called()
        assert [r.action for r in results] == ["dry-run", "skipped", "skipped"]
        assert results[0].secret_name == "agentcore/llm"
        assert results[0].keys == ["OPENAI_API_KEY"]
        assert "sk-abcde***" in results[0].preview

    def test_updates_existing_secret(self) -> None:
        """put_secret_value is tried first."""
        client = MagicMock()
        pusher = SecretPusher("us-east-1", "proj", client=client)

        results = pusher.push({"SERPER_API_KEY": "s-1"})

        client.put_secret_value.assert_called_once_with(
            SecretId="proj/search", SecretString='{"SERPER_API_KEY": "s-1"}'
        )
        client.create_secret.assert_not_called()
        assert results[1].action == "updated"

    def test_creates_missing_secret(self) -> None:
        """A missing secret is created."""
        client = MagicMock()
        client.put_secret_value.side_effect = client_error("ResourceNotFoundException")
        pusher = SecretPusher("us-east-1", "proj", client=client)

        results = pusher.push({"LLM_MODEL": "m"})

        client.create_secret.assert_called_once()
        kwargs = client.create_secret.call_args.kwargs
        assert kwargs["Name"] == "proj/config"
        assert json.loads(kwargs["SecretString"]) == {"LLM_MODEL": "m"}
        assert results[2].action == "created"

    def test_empty_groups_skipped(self) -> None:
        """Groups without keys make no calls."""
        client = MagicMock()
        results = SecretPusher("us-east-1", "proj", client=client).push({"UNKNOWN": "x"})

        assert [r.action for r in results] == ["skipped", "skipped", "skipped"]
        client.put_secret_value.assert_not_called()

    def test_access_denied_raises(self) -> None:
        """Other client errors abort the step."""
        client = MagicMock()
        client.put_secret_value.side_effect = client_error("AccessDeniedException")

        with pytest.raises(ExternalToolFailure) as exc_info:
            SecretPusher("us-east-1", "proj", client=client).push({"OPENAI_API_KEY": "k"})

        assert exc_info.value.step == "push-secrets"
        assert not exc_info.value.ignorable
        client.create_secret.assert_not_called()

    def test_connection_error_raises(self) -> None:
        """Transport errors abort the step."""
        client = MagicMock()
        client.put_secret_value.side_effect = EndpointConnectionError(endpoint_url="https://x")

        with pytest.raises(ExternalToolFailure, match="updating secret proj/llm"):
            SecretPusher("us-east-1", "proj", client=client).push({"OPENAI_API_KEY": "k"})

    def test_create_failure_raises(self) -> None:
        """A failed create aborts the step."""
        client = MagicMock()
        client.put_secret_value.side_effect = client_error("ResourceNotFoundException")
        client.create_secret.side_effect = client_error("LimitExceededException", "CreateSecret")

        with pytest.raises(ExternalToolFailure, match="creating secret"):
            SecretPusher("us-east-1", "proj", client=client).push({"OPENAI_API_KEY": "k"})

    def test_lazy_client(self) -> None:
        """The client is created once, in the pusher's region."""
        with patch("agentcore_stack.deploy.secrets.boto3") as mock_boto3:
            pusher = SecretPusher("eu-west-1", "proj")
            pusher.push({"OPENAI_API_KEY": "k"})
            pusher.push({"OPENAI_API_KEY": "k"})

        mock_boto3.client.assert_called_once_with("secretsmanager", region_name="eu-west-1")
