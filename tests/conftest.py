"""Shared pytest fixtures for the test suite.

Provides reusable stack configurations and environment isolation.
"""

import json

# Add project root to path
import sys
from collections.abc import Generator
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent))

from agentcore_stack.stack.loader import ConfigLoader  # noqa: E402
from agentcore_stack.stack.models import StackSpec  # noqa: E402

ENV_VARS = (
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
    "AGENTCORE_SECRET_PREFIX",
    "AGENTCORE_STRICT_CONFIG",
    "AGENTCORE_LOG_LEVEL",
    "AGENTCORE_LOG_JSON",
)


def write_yaml(path: Path, data: dict) -> Path:
    """Helper to write YAML files."""
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


def write_json(path: Path, data: dict) -> Path:
    """Helper to write JSON files."""
    path.write_text(json.dumps(data))
    return path


def make_demo_config() -> dict:
    """The single-agent "demo" stack with a created network."""
    return {
        "stackName": "demo",
        "agents": [
            {
                "name": "worker",
                "containerImage": "repo/worker:v1",
                "protocol": "HTTP",
                "isDefault": True,
            }
        ],
        "network": {"cidrBlock": "10.0.0.0/16"},
    }


def make_full_config() -> dict:
    """A two-agent stack exercising every optional section."""
    return {
        "stackName": "research",
        "description": "Research stack",
        "agents": [
            {
                "name": "coordinator",
                "containerImage": "repo/coordinator:v2",
                "memoryMB": 1024,
                "timeoutSeconds": 300,
                "protocol": "MCP",
                "environment": {"LOG_LEVEL": "debug", "OBSERVABILITY_PROJECT": "override"},
                "secretReferences": ["arn:aws:secretsmanager:us-east-1:123456789012:secret:search-AbCdEf"],
            },
            {
                "name": "researcher",
                "containerImage": "repo/researcher:v2",
                "secretReferences": [
                    "arn:aws:secretsmanager:us-east-1:123456789012:secret:search-AbCdEf",
                    "agentcore/llm",
                ],
            },
        ],
        "network": {"availabilityZoneCount": 3},
        "secrets": {"createSecrets": True, "secretValues": {"API_TOKEN": "t0ken"}},
        "observability": {"provider": "opik", "project": "research", "logRetentionDays": 10},
        "identity": {
            "modelIds": ["anthropic.claude-3-haiku", "amazon.nova-pro"],
            "additionalPolicies": ["arn:aws:iam::aws:policy/AmazonS3ReadOnlyAccess"],
        },
        "gateway": {"enabled": True, "description": "Tools"},
        "tags": {"Team": "agents"},
        "teardownPolicy": "retain",
    }


def load_spec(data: dict, strict: bool = True) -> StackSpec:
    return ConfigLoader(strict=strict).load_dict(data)


@pytest.fixture
def demo_config() -> dict:
    """Fixture providing the "demo" config document."""
    return make_demo_config()


@pytest.fixture
def full_config() -> dict:
    """Fixture providing a config with every section set."""
    return make_full_config()


@pytest.fixture
def demo_spec() -> StackSpec:
    return load_spec(make_demo_config())


@pytest.fixture
def full_spec() -> StackSpec:
    return load_spec(make_full_config())


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Isolate tests from the caller's AWS and tool environment.

    Runs every test from an empty temporary directory so no stray .env file
    is picked up.
    """
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield


@pytest.fixture
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent
