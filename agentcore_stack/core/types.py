"""TypedDict definitions for rendered templates and provider identifiers.

Provides type safety and documentation for the plain-dict structures handed
to external tooling.
"""

from typing import Any, NotRequired, TypedDict


class CfnResource(TypedDict):
    """A single CloudFormation resource entry."""

    Type: str
    Properties: dict[str, Any]
    DependsOn: NotRequired[list[str]]
    DeletionPolicy: NotRequired[str]
    UpdateReplacePolicy: NotRequired[str]


class CfnOutput(TypedDict):
    """A CloudFormation stack output."""

    Value: Any
    Description: str


class CfnTemplate(TypedDict):
    """A complete CloudFormation template document."""

    AWSTemplateFormatVersion: str
    Description: str
    Resources: dict[str, CfnResource]
    Outputs: NotRequired[dict[str, CfnOutput]]


class PolicyStatement(TypedDict):
    """IAM policy statement as rendered into a role policy."""

    Sid: str
    Effect: str
    Action: list[str]
    Resource: list[Any]


# Logical id -> attribute name -> provider-assigned value.
ProvisionedAttributes = dict[str, dict[str, str]]
