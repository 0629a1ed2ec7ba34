"""Resolve region, namespace prefix, project name and .env location."""

import json
import logging
from pathlib import Path
from typing import Optional

from ..config import AwsSettings, StackSettings

logger = logging.getLogger(__name__)


def resolve_region(flag: Optional[str] = None) -> str:
    """CLI flag, then AWS_REGION, then AWS_DEFAULT_REGION, then us-east-1."""
    if flag:
        return flag
    return AwsSettings().region


def resolve_prefix(flag: Optional[str] = None) -> str:
    """CLI flag, then AGENTCORE_SECRET_PREFIX, then the built-in default."""
    if flag:
        return flag
    return StackSettings().secret_prefix


def detect_project_name(cwd: Optional[Path] = None) -> str:
    """Project name from ``stackName`` in config.json, else the directory name.

    Looks in the working directory, then its parent.
    """
    cwd = Path(cwd or Path.cwd())
    for candidate in (cwd / "config.json", cwd.parent / "config.json"):
        if not candidate.is_file():
            continue
        try:
            data = json.loads(candidate.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.debug(f"Ignoring unreadable {candidate}: {e}")
            continue
        if isinstance(data, dict) and data.get("stackName"):
            return str(data["stackName"])
    return cwd.name


def env_file_candidates(
    project: Optional[str] = None,
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
) -> list[Path]:
    """Search order for .env files."""
    cwd = Path(cwd or Path.cwd())
    home = Path(home or Path.home())
    config_dir = home / StackSettings().config_dir

    candidates = [cwd / ".env", cwd.parent / ".env"]
    if project:
        candidates.append(config_dir / "projects" / project / ".env")
    candidates.append(config_dir / ".env")
    return candidates


def find_env_file(
    project: Optional[str] = None,
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
) -> Optional[Path]:
    """First existing .env file in search order, or None."""
    for candidate in env_file_candidates(project, cwd, home):
        if candidate.is_file():
            logger.debug(f"Using env file {candidate}")
            return candidate
    return None
