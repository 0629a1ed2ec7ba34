"""External tool invocation."""

import logging
import shlex
import subprocess
from typing import List, Union

from ..core.exceptions import ExternalToolFailure

logger = logging.getLogger(__name__)


class ExternalToolRunner:
    """Run external commands as blocking pipeline steps.

    Timeouts are left to the tools themselves.
    """

    def run(
        self,
        step: str,
        command: Union[str, List[str]],
        ignorable: bool = False,
    ) -> subprocess.CompletedProcess:
        """Run a command, streaming its output to the terminal.

        Args:
            step: Pipeline step name, used in errors and logs
            command: Command line or argument list
            ignorable: Whether a failure may be logged and skipped

        Returns:
            Completed process

        Raises:
            ExternalToolFailure: If the command is missing or exits non-zero
        """
        args = shlex.split(command) if isinstance(command, str) else list(command)
        logger.info(f"Running: {shlex.join(args)}", extra={"step": step})

        try:
            result = subprocess.run(args, check=False)
        except FileNotFoundError as e:
            raise ExternalToolFailure(step, f"command not found: {args[0]}", ignorable, cause=e) from e

        if result.returncode != 0:
            raise ExternalToolFailure(
                step, f"'{shlex.join(args)}' exited with status {result.returncode}", ignorable
            )
        return result
