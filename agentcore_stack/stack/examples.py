"""Example stack configurations used by ``agentcore-stack init``."""

import json
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from .loader import detect_format


def example_config() -> Dict[str, Any]:
    """A multi-agent research stack exercising most options."""
    return {
        "stackName": "research-agents",
        "description": "Multi-agent research system",
        "agents": [
            {
                "name": "coordinator",
                "description": "Routes research requests to specialists",
                "containerImage": "123456789012.dkr.ecr.us-east-1.amazonaws.com/coordinator:latest",
                "memoryMB": 1024,
                "timeoutSeconds": 300,
                "protocol": "HTTP",
                "isDefault": True,
                "environment": {"LOG_LEVEL": "info"},
            },
            {
                "name": "researcher",
                "description": "Searches and summarizes sources",
                "containerImage": "123456789012.dkr.ecr.us-east-1.amazonaws.com/researcher:latest",
                "memoryMB": 2048,
                "timeoutSeconds": 600,
                "secretReferences": ["agentcore/search"],
            },
        ],
        "network": {
            "cidrBlock": "10.0.0.0/16",
            "availabilityZoneCount": 2,
            "enableServiceEndpoints": True,
        },
        "observability": {
            "provider": "opik",
            "project": "research-agents",
            "enableLogging": True,
            "logRetentionDays": 30,
        },
        "identity": {
            "enableModelAccess": True,
            "modelIds": ["anthropic.claude-3-5-sonnet-20241022-v2:0"],
        },
        "gateway": {
            "enabled": False,
        },
        "tags": {
            "Project": "research-agents",
            "Environment": "dev",
        },
        "teardownPolicy": "destroy",
    }


def json_config_example() -> str:
    return json.dumps(example_config(), indent=2) + "\n"


def yaml_config_example() -> str:
    return yaml.safe_dump(example_config(), sort_keys=False)


def write_example_config(path: Union[str, Path], overwrite: bool = False) -> Path:
    """Write the example config in the format implied by the file extension.

    Raises:
        FileExistsError: If the file exists and overwrite is False
        ConfigError: If the extension is not .json, .yaml or .yml
    """
    path = Path(path)
    fmt = detect_format(path)
    if path.exists() and not overwrite:
        raise FileExistsError(f"{path} already exists")

    content = json_config_example() if fmt == "json" else yaml_config_example()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path
