"""Custom exception hierarchy for agentcore-stack.

Provides structured exceptions with error codes and recovery hints.
"""


class StackError(Exception):
    """Base exception for stack tooling errors.

    Attributes:
        message: Human-readable error message.
        code: Machine-readable error code.
        recoverable: Whether the error is potentially recoverable.
    """

    def __init__(
        self,
        message: str,
        code: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, str | bool]:
        """Convert exception to dictionary for JSON serialization.

        Returns:
            Dictionary with error details.
        """
        return {
            "error": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
        }


class ConfigError(StackError):
    """Invalid stack configuration.

    Raised for malformed input, schema violations, unresolvable references
    and invalid enumerated values. Always fatal.
    """

    def __init__(self, field_path: str, message: str) -> None:
        location = field_path or "<root>"
        full_message = f"Invalid configuration at '{location}': {message}"
        super().__init__(full_message, "CONFIG", recoverable=False)
        self.field_path = field_path
        self.reason = message

    def to_dict(self) -> dict[str, str | bool]:
        data = super().to_dict()
        data["field"] = self.field_path
        return data


class InvariantViolation(StackError):
    """Resource graph invariant violated.

    Raised by the graph builder for duplicate logical ids, dangling or
    undeclared references and dependency cycles.
    """

    def __init__(self, message: str, logical_id: str | None = None) -> None:
        full_message = message
        if logical_id:
            full_message = f"{message} (node '{logical_id}')"
        super().__init__(full_message, "INVARIANT", recoverable=False)
        self.logical_id = logical_id


class ExternalToolFailure(StackError):
    """An external step of the deployment pipeline failed.

    Ignorable failures (bootstrap) are logged and the pipeline continues;
    everything else aborts the remaining steps.
    """

    def __init__(
        self,
        step: str,
        message: str,
        ignorable: bool = False,
        cause: Exception | None = None,
    ) -> None:
        full_message = f"Step '{step}' failed: {message}"
        if cause:
            full_message += f": {cause}"
        super().__init__(full_message, "EXTERNAL_TOOL", recoverable=ignorable)
        self.step = step
        self.ignorable = ignorable
        self.cause = cause

    def to_dict(self) -> dict[str, str | bool]:
        data = super().to_dict()
        data["step"] = self.step
        return data
