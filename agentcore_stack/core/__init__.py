"""Core types and exceptions."""

from .exceptions import (
    ConfigError,
    ExternalToolFailure,
    InvariantViolation,
    StackError,
)
from .types import (
    CfnOutput,
    CfnResource,
    CfnTemplate,
    PolicyStatement,
    ProvisionedAttributes,
)

__all__ = [
    # Types
    "CfnOutput",
    "CfnResource",
    "CfnTemplate",
    "PolicyStatement",
    "ProvisionedAttributes",
    # Exceptions
    "ConfigError",
    "ExternalToolFailure",
    "InvariantViolation",
    "StackError",
]
