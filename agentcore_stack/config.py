"""Centralized configuration for agentcore-stack.

Uses pydantic-settings for environment variable loading and validation.
All settings can be overridden via environment variables with appropriate prefixes.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StackSettings(BaseSettings):
    """Settings for config loading and deployment tooling.

    Environment variables:
        AGENTCORE_STRICT_CONFIG: Reject unknown fields in stack configs
        AGENTCORE_SECRET_PREFIX: Namespace prefix for pushed secrets
        AGENTCORE_CONFIG_DIR: Per-user config directory under $HOME
        AGENTCORE_LOG_LEVEL: Logging level
        AGENTCORE_LOG_JSON: Enable JSON log format
        AGENTCORE_TEMPLATE_FILE: Where deploy writes the rendered template
        AGENTCORE_BOOTSTRAP_COMMAND: Bootstrap command template
        AGENTCORE_APPLY_COMMAND: Apply command template
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Config loading
    strict_config: bool = Field(
        default=True,
        description="Reject unknown fields in stack configuration documents",
    )

    # Secret distribution
    secret_prefix: str = Field(
        default="agentcore",
        description="Namespace prefix for secret collections (<prefix>/llm, ...)",
    )
    config_dir: str = Field(
        default=".agentcore",
        description="Per-user configuration directory, relative to $HOME",
    )

    # Observability settings
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Enable JSON log format",
    )

    # Provisioning engine
    template_file: str = Field(
        default="template.json",
        description="Path the deploy command writes the rendered template to",
    )
    bootstrap_command: str = Field(
        default="cdk bootstrap aws://{account}/{region}",
        description="Bootstrap command; {account} and {region} are substituted",
    )
    apply_command: str = Field(
        default=(
            "aws cloudformation deploy --template-file {template} "
            "--stack-name {stack} --region {region} "
            "--capabilities CAPABILITY_NAMED_IAM --no-fail-on-empty-changeset"
        ),
        description="Apply command; {template}, {stack} and {region} are substituted",
    )


class AwsSettings(BaseSettings):
    """AWS environment resolution.

    Environment variables:
        AWS_REGION: Target region (preferred)
        AWS_DEFAULT_REGION: Target region (fallback)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices("AWS_REGION", "AWS_DEFAULT_REGION"),
        description="AWS region used when no --region flag is given",
    )


# Global settings instances - import these directly
settings = StackSettings()
aws_settings = AwsSettings()
