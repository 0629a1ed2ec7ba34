"""Secret distribution - push .env values to AWS Secrets Manager.

Keys are classified into fixed groups by exact name. Each group becomes one
JSON secret named ``<prefix>/<group>``. Keys that match no group are dropped.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, NamedTuple, Optional, Tuple, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import dotenv_values
from pydantic import BaseModel

from ..core.exceptions import ExternalToolFailure

logger = logging.getLogger(__name__)

STEP_NAME = "push-secrets"
PLACEHOLDER_PREFIX = "your-"


class SecretGroup(NamedTuple):
    """A named collection of secret keys."""

    name: str
    description: str
    keys: Tuple[str, ...]


SECRET_GROUPS = (
    SecretGroup(
        "llm",
        "LLM provider API keys",
        (
            "GOOGLE_API_KEY",
            "GEMINI_API_KEY",
            "ANTHROPIC_API_KEY",
            "CLAUDE_API_KEY",
            "OPENAI_API_KEY",
            "XAI_API_KEY",
            "LLM_API_KEY",
        ),
    ),
    SecretGroup(
        "search",
        "Search provider API keys",
        ("SERPER_API_KEY", "SERPAPI_API_KEY"),
    ),
    SecretGroup(
        "config",
        "Configuration and observability settings",
        (
            "LLM_PROVIDER",
            "LLM_MODEL",
            "LLM_BASE_URL",
            "SEARCH_PROVIDER",
            "OBSERVABILITY_ENABLED",
            "OBSERVABILITY_PROVIDER",
            "OPIK_API_KEY",
            "OPIK_WORKSPACE",
            "OPIK_PROJECT",
            "LANGFUSE_PUBLIC_KEY",
            "LANGFUSE_SECRET_KEY",
            "PHOENIX_API_KEY",
        ),
    ),
)

# Show the first 8 characters of key-like values, mask the rest
_MASK_PATTERN = re.compile(r'("(?:[^"]*API_KEY|KEY)[^"]*"\s*:\s*")([^"]{8})([^"]*)"')


def parse_env_file(path: Union[str, Path]) -> Dict[str, str]:
    """Read KEY=value pairs from a .env file.

    Handles comments, quotes and ``export`` prefixes. Empty values and
    ``your-...`` placeholders are skipped.
    """
    values = {}
    for key, value in dotenv_values(path).items():
        if value is None:
            continue
        value = value.strip().strip("\"'")
        if not value or value.startswith(PLACEHOLDER_PREFIX):
            logger.debug(f"Skipping empty or placeholder value for {key}")
            continue
        values[key] = value
    return values


def classify_secrets(values: Dict[str, str]) -> Dict[str, Dict[str, str]]:
    """Group values by exact key match.

    Returns:
        Group name -> {key: value} for every group, in group order.
        Unmatched keys appear nowhere.
    """
    grouped: Dict[str, Dict[str, str]] = {group.name: {} for group in SECRET_GROUPS}
    for key in sorted(values):
        for group in SECRET_GROUPS:
            if key in group.keys:
                grouped[group.name][key] = values[key]
                break
        else:
            logger.debug(f"Dropping unclassified key {key}")
    return grouped


def mask_secret_values(secret_json: str) -> str:
    return _MASK_PATTERN.sub(r'\1\2***"', secret_json)


def secret_name(prefix: str, group: str) -> str:
    return f"{prefix}/{group}"


class PushResult(BaseModel):
    """Outcome of pushing one secret group."""

    secret_name: str
    action: Literal["created", "updated", "skipped", "dry-run"]
    keys: List[str] = []
    preview: Optional[str] = None


class SecretPusher:
    """Create or update one secret per non-empty group.

    Tries ``put_secret_value`` first and falls back to ``create_secret``
    when the secret does not exist yet. In dry-run mode no client is created
    and no AWS call is made.
    """

    def __init__(
        self,
        region: str,
        prefix: str,
        dry_run: bool = False,
        client: Any = None,
    ):
        self.region = region
        self.prefix = prefix
        self.dry_run = dry_run
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("secretsmanager", region_name=self.region)
        return self._client

    def push(self, values: Dict[str, str]) -> List[PushResult]:
        """Classify values and push every non-empty group.

        Raises:
            ExternalToolFailure: If the secret store rejects a request
        """
        results = []
        grouped = classify_secrets(values)
        for group in SECRET_GROUPS:
            results.append(self.push_group(group, grouped[group.name]))
        return results

    def push_group(self, group: SecretGroup, keys: Dict[str, str]) -> PushResult:
        name = secret_name(self.prefix, group.name)
        if not keys:
            logger.info(f"Skipping {name} (no keys found)")
            return PushResult(secret_name=name, action="skipped")

        payload = json.dumps(keys, sort_keys=True)
        key_names = sorted(keys)

        if self.dry_run:
            preview = mask_secret_values(payload)
            logger.info(f"[DRY RUN] Would create or update {name} with keys: {', '.join(key_names)}")
            return PushResult(secret_name=name, action="dry-run", keys=key_names, preview=preview)

        try:
            self.client.put_secret_value(SecretId=name, SecretString=payload)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") != "ResourceNotFoundException":
                raise ExternalToolFailure(STEP_NAME, f"updating secret {name}", cause=e) from e
            return self._create(group, name, payload, key_names)
        except BotoCoreError as e:
            raise ExternalToolFailure(STEP_NAME, f"updating secret {name}", cause=e) from e

        logger.info(f"Updated existing secret {name}", extra={"step": STEP_NAME})
        return PushResult(secret_name=name, action="updated", keys=key_names)

    def _create(self, group: SecretGroup, name: str, payload: str, key_names: List[str]) -> PushResult:
        try:
            self.client.create_secret(Name=name, Description=group.description, SecretString=payload)
        except (ClientError, BotoCoreError) as e:
            raise ExternalToolFailure(STEP_NAME, f"creating secret {name}", cause=e) from e

        logger.info(f"Created new secret {name}", extra={"step": STEP_NAME})
        return PushResult(secret_name=name, action="created", keys=key_names)
