"""Pydantic models for AgentCore stack definitions."""

import ipaddress
from typing import Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

VALID_MEMORY_MB = (512, 1024, 2048, 4096, 8192, 16384)
NAME_PATTERN = r"^[A-Za-z][A-Za-z0-9_-]*$"

DEFAULT_MEMORY_MB = 512
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_PROTOCOL = "HTTP"
DEFAULT_CIDR_BLOCK = "10.0.0.0/16"
DEFAULT_AZ_COUNT = 2
DEFAULT_LOG_RETENTION_DAYS = 30

Protocol = Literal["HTTP", "MCP", "A2A"]


class SpecModel(BaseModel):
    """Base for all stack configuration models.

    Field names are snake_case in Python and camelCase on the wire.
    Instances are immutable once validated.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# ============================================================================
# Agent Configuration
# ============================================================================

class AgentSpec(SpecModel):
    """One deployable agent."""

    name: str = Field(..., pattern=NAME_PATTERN, description="Unique agent name within the stack")
    description: str = Field("", description="Human-readable description")
    container_image: str = Field(..., description="Container image reference")
    memory_mb: int = Field(DEFAULT_MEMORY_MB, alias="memoryMB", description="Memory allocation in MB")
    timeout_seconds: int = Field(
        DEFAULT_TIMEOUT_SECONDS, ge=1, le=900, description="Maximum invocation lifetime in seconds"
    )
    environment: Dict[str, str] = Field(default_factory=dict, description="Environment variables")
    secret_references: List[str] = Field(
        default_factory=list, description="External secret identifiers the agent reads"
    )
    protocol: Protocol = Field(DEFAULT_PROTOCOL, description="Invocation protocol")
    is_default: bool = Field(False, description="Whether this is the stack's default agent")

    @field_validator("memory_mb", "timeout_seconds", "protocol", mode="before")
    @classmethod
    def unset_means_default(cls, v, info):
        """Treat an explicit null like an omitted field."""
        if v is None:
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("container_image")
    @classmethod
    def validate_container_image(cls, v: str) -> str:
        """Ensure the image reference is non-empty."""
        if not v.strip():
            raise ValueError("containerImage must not be empty")
        return v

    @field_validator("memory_mb")
    @classmethod
    def validate_memory(cls, v: int) -> int:
        """Ensure memory is one of the supported allocations."""
        if v not in VALID_MEMORY_MB:
            allowed = ", ".join(str(m) for m in VALID_MEMORY_MB)
            raise ValueError(f"memoryMB must be one of {allowed} (got {v})")
        return v


# ============================================================================
# Network Configuration
# ============================================================================

class NetworkSpec(SpecModel):
    """Network connectivity: reference an existing network or create one."""

    # Reference mode
    external_network_id: Optional[str] = Field(None, description="Existing network (VPC) id")
    subnet_ids: List[str] = Field(default_factory=list, description="Existing subnet ids")
    security_group_ids: List[str] = Field(
        default_factory=list, description="Existing security boundary ids"
    )

    # Create mode
    cidr_block: Optional[str] = Field(None, description="CIDR block for a new network")
    availability_zone_count: Optional[int] = Field(
        None, ge=1, le=6, description="Availability zones for a new network"
    )
    enable_service_endpoints: Optional[bool] = Field(
        None, description="Create private endpoints for managed services"
    )

    @field_validator("cidr_block")
    @classmethod
    def validate_cidr(cls, v: Optional[str]) -> Optional[str]:
        """Ensure the CIDR is an IPv4 network between /16 and /24."""
        if v is None:
            return v
        try:
            network = ipaddress.ip_network(v, strict=True)
        except ValueError as e:
            raise ValueError(f"cidrBlock is not a valid network: {e}") from e
        if network.version != 4 or not 16 <= network.prefixlen <= 24:
            raise ValueError("cidrBlock must be an IPv4 network between /16 and /24")
        return v

    @property
    def is_reference(self) -> bool:
        """Whether this spec points at an existing network."""
        return bool(self.external_network_id)

    @property
    def creation_fields_set(self) -> List[str]:
        """Wire names of create-mode fields that were given a value."""
        fields = {
            "cidrBlock": self.cidr_block,
            "availabilityZoneCount": self.availability_zone_count,
            "enableServiceEndpoints": self.enable_service_endpoints,
        }
        return [name for name, value in fields.items() if value is not None]

    @property
    def effective_cidr_block(self) -> str:
        return self.cidr_block or DEFAULT_CIDR_BLOCK

    @property
    def effective_az_count(self) -> int:
        return self.availability_zone_count or DEFAULT_AZ_COUNT

    @property
    def effective_service_endpoints(self) -> bool:
        if self.enable_service_endpoints is None:
            return True
        return self.enable_service_endpoints


# ============================================================================
# Secrets, Observability, Identity, Gateway
# ============================================================================

class SecretsSpec(SpecModel):
    """Stack-managed secret material."""

    create_secrets: bool = Field(False, description="Materialize secretValues as a managed secret")
    secret_name: Optional[str] = Field(None, description="Secret name (defaults to <stack>-secrets)")
    secret_values: Dict[str, str] = Field(default_factory=dict, description="Inline key-value map")


class ObservabilitySpec(SpecModel):
    """Tracing provider settings and log sink."""

    provider: Literal["opik", "langfuse", "phoenix", "cloudwatch"] = Field(
        "cloudwatch", description="Observability provider"
    )
    project: str = Field("", description="Provider project name")
    endpoint: Optional[str] = Field(None, description="Provider endpoint override")
    api_key_secret_arn: Optional[str] = Field(None, description="Secret holding the provider API key")
    enable_logging: bool = Field(True, description="Create a log sink for agent logs")
    log_retention_days: int = Field(
        DEFAULT_LOG_RETENTION_DAYS, gt=0, description="Requested log retention in days"
    )


class IdentitySpec(SpecModel):
    """Execution identity: reference an existing role or create one."""

    # Reference mode
    role_arn: Optional[str] = Field(None, description="Existing role ARN")

    # Create mode
    enable_model_access: Optional[bool] = Field(None, description="Grant model invocation")
    model_ids: List[str] = Field(default_factory=list, description="Model allow-list")
    additional_policies: List[str] = Field(
        default_factory=list, description="Managed policy ARNs attached verbatim"
    )
    permissions_boundary: Optional[str] = Field(None, description="Permissions boundary ARN")

    @property
    def is_reference(self) -> bool:
        return bool(self.role_arn)

    @property
    def creation_fields_set(self) -> List[str]:
        fields = {
            "enableModelAccess": self.enable_model_access is not None,
            "modelIds": bool(self.model_ids),
            "additionalPolicies": bool(self.additional_policies),
            "permissionsBoundary": self.permissions_boundary is not None,
        }
        return [name for name, present in fields.items() if present]

    @property
    def effective_model_access(self) -> bool:
        if self.enable_model_access is None:
            return True
        return self.enable_model_access


class GatewaySpec(SpecModel):
    """Shared entry point exposing external tools to agents."""

    enabled: bool = Field(False, description="Create the gateway")
    name: Optional[str] = Field(None, description="Gateway name (defaults to <stack>-gateway)")
    description: str = Field("", description="Human-readable description")
    protocol: Optional[Protocol] = Field(
        None, description="Protocol label (defaults to the first agent's protocol)"
    )


# ============================================================================
# Complete Stack Definition
# ============================================================================

class StackSpec(SpecModel):
    """Complete stack definition."""

    stack_name: str = Field(
        ...,
        pattern=NAME_PATTERN,
        validation_alias=AliasChoices("stackName", "name", "stack_name"),
        serialization_alias="stackName",
        description="Stack name, namespace for all child resources",
    )
    description: str = Field("", description="Human-readable description")
    agents: List[AgentSpec] = Field(..., min_length=1, description="Agent definitions")
    network: Optional[NetworkSpec] = Field(None, description="Network configuration")
    secrets: Optional[SecretsSpec] = Field(None, description="Secrets configuration")
    observability: Optional[ObservabilitySpec] = Field(None, description="Observability configuration")
    identity: Optional[IdentitySpec] = Field(None, description="Identity configuration")
    gateway: Optional[GatewaySpec] = Field(None, description="Gateway configuration")
    tags: Dict[str, str] = Field(default_factory=dict, description="Tags applied to all resources")
    teardown_policy: Literal["destroy", "retain"] = Field(
        "destroy", description="What happens to stateful resources on stack deletion"
    )

    @field_validator("agents")
    @classmethod
    def validate_unique_agent_names(cls, v: List[AgentSpec]) -> List[AgentSpec]:
        """Ensure agent names are unique."""
        seen: set[str] = set()
        for agent in v:
            if agent.name in seen:
                raise ValueError(f"Agent names must be unique ('{agent.name}' repeated)")
            seen.add(agent.name)
        return v

    @field_validator("agents")
    @classmethod
    def validate_single_default(cls, v: List[AgentSpec]) -> List[AgentSpec]:
        """Ensure at most one agent is marked as default."""
        defaults = [agent.name for agent in v if agent.is_default]
        if len(defaults) > 1:
            raise ValueError(
                f"At most one agent may set isDefault (got {', '.join(defaults)})"
            )
        return v

    def get_agent(self, name: str) -> Optional[AgentSpec]:
        """Get agent configuration by name."""
        for agent in self.agents:
            if agent.name == name:
                return agent
        return None

    def get_agent_names(self) -> list[str]:
        """Get agent names in declaration order."""
        return [agent.name for agent in self.agents]

    @property
    def default_agent(self) -> AgentSpec:
        """The marked default agent, else the first one."""
        for agent in self.agents:
            if agent.is_default:
                return agent
        return self.agents[0]

    def secret_references(self) -> list[str]:
        """All secret references across agents, de-duplicated and sorted."""
        return sorted({ref for agent in self.agents for ref in agent.secret_references})
