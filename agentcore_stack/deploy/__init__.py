"""Deployment tooling: secret distribution and pipeline orchestration."""

from .environment import detect_project_name, find_env_file, resolve_prefix, resolve_region
from .orchestrator import DeploymentOrchestrator, DeploymentResult, DeployOptions, StepResult
from .secrets import SECRET_GROUPS, SecretPusher, classify_secrets, mask_secret_values, parse_env_file
from .tools import ExternalToolRunner

__all__ = [
    "DeployOptions",
    "DeploymentOrchestrator",
    "DeploymentResult",
    "ExternalToolRunner",
    "SECRET_GROUPS",
    "SecretPusher",
    "StepResult",
    "classify_secrets",
    "detect_project_name",
    "find_env_file",
    "mask_secret_values",
    "parse_env_file",
    "resolve_prefix",
    "resolve_region",
]
