"""Resource graph builder - translate a stack definition into resource nodes.

The builder is a pure function of its input: no I/O, no shared state. Nodes
are emitted in a fixed order and every cross-resource reference is a
``ResourceRef`` backed by a ``dependsOn`` entry.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.exceptions import ConfigError
from .graph import (
    SERVICE_ENDPOINTS,
    ResourceGraph,
    ResourceKind,
    ResourceNode,
    ResourceRef,
    make_logical_id,
)
from .models import AgentSpec, StackSpec
from .validation import StackValidator

logger = logging.getLogger(__name__)

# Supported log retention tiers in days
RETENTION_TIERS = (1, 7, 14, 30, 90, 180, 365)
UNLIMITED_RETENTION = "unlimited"

TRUSTED_SERVICES = ["bedrock-agentcore.amazonaws.com", "bedrock.amazonaws.com"]

MODEL_INVOKE_ACTIONS = ["bedrock:InvokeModel", "bedrock:InvokeModelWithResponseStream"]
LOG_WRITE_ACTIONS = ["logs:CreateLogGroup", "logs:CreateLogStream", "logs:PutLogEvents"]
SECRET_READ_ACTIONS = ["secretsmanager:DescribeSecret", "secretsmanager:GetSecretValue"]
REGISTRY_PULL_ACTIONS = [
    "ecr:BatchCheckLayerAvailability",
    "ecr:BatchGetImage",
    "ecr:GetAuthorizationToken",
    "ecr:GetDownloadUrlForLayer",
]

MODEL_RESOURCE = "arn:aws:bedrock:*:*:foundation-model/{model_id}"
LOG_RESOURCE = "arn:aws:logs:*:*:*"
SECRET_NAME_RESOURCE = "arn:aws:secretsmanager:*:*:secret:{name}-*"
LOG_GROUP_NAME = "/aws/agentcore/{stack}"


def retention_tier(days: int) -> Union[int, str]:
    """Round a requested retention up to the nearest supported tier.

    Args:
        days: Requested retention in days

    Returns:
        Smallest supported tier >= days, or "unlimited" beyond a year

    Raises:
        ConfigError: If days is zero or negative
    """
    if days <= 0:
        raise ConfigError(
            "observability.logRetentionDays",
            f"must be a positive number of days (got {days})",
        )
    for tier in RETENTION_TIERS:
        if days <= tier:
            return tier
    return UNLIMITED_RETENTION


# ============================================================================
# Capability statements
# ============================================================================

class StatementKind(str, Enum):
    """Kinds of capability statements, in output order."""

    MODEL_INVOKE = "model-invoke"
    LOG_WRITE = "log-write"
    SECRET_READ = "secret-read"
    REGISTRY_PULL = "registry-pull"
    MANAGED_POLICY = "managed-policy"


STATEMENT_ORDER = {kind: rank for rank, kind in enumerate(StatementKind)}


class CapabilityStatement(BaseModel):
    """One allow-rule granted to the stack's identity."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    kind: StatementKind
    actions: List[str] = Field(default_factory=list)
    resources: List[Union[ResourceRef, str]] = Field(default_factory=list)
    policy_arn: Optional[str] = None

    @property
    def resource_pattern(self) -> str:
        """Stable text form of what the statement applies to."""
        if self.policy_arn:
            return self.policy_arn
        parts = []
        for resource in self.resources:
            if isinstance(resource, ResourceRef):
                parts.append(f"ref:{resource.logical_id}.{resource.attribute}")
            else:
                parts.append(resource)
        return ",".join(parts)

    def sort_key(self) -> tuple[int, str]:
        return (STATEMENT_ORDER[self.kind], self.resource_pattern)


def secret_resource(reference: str) -> str:
    """Resource pattern for an external secret given by ARN or by name."""
    if reference.startswith("arn:"):
        return reference
    return SECRET_NAME_RESOURCE.format(name=reference)


# ============================================================================
# Builder
# ============================================================================

class ResourceGraphBuilder:
    """Build the ordered resource graph for a stack.

    Emission order: Network (and its service endpoints), SecurityBoundary,
    SecretStore, Identity, LogSink, Runtime and Endpoint per agent, Gateway.
    """

    def __init__(self, validator: Optional[StackValidator] = None):
        self.validator = validator or StackValidator()

    def build(self, spec: StackSpec) -> ResourceGraph:
        """Build and validate the graph for a stack definition.

        Args:
            spec: Validated stack definition

        Returns:
            Complete resource graph

        Raises:
            ConfigError: If the definition is inconsistent
            InvariantViolation: If the emitted graph is malformed
        """
        self.validator.validate(spec)

        nodes: List[ResourceNode] = []

        network = self._emit_network(spec, nodes)
        boundary = self._emit_security_boundary(spec, network, nodes)
        secret_store = self._emit_secret_store(spec, nodes)
        identity = self._emit_identity(spec, secret_store, nodes)
        self._emit_log_sink(spec, nodes)

        default_name = spec.default_agent.name
        for agent in spec.agents:
            runtime = self._emit_runtime(
                spec, agent, agent.name == default_name, network, boundary, identity, nodes
            )
            self._emit_endpoint(spec, agent, runtime, nodes)

        self._emit_gateway(spec, identity, nodes)

        graph = ResourceGraph(stack_name=spec.stack_name, nodes=nodes)
        graph.validate_graph()

        logger.info(
            f"Built resource graph for '{spec.stack_name}': {len(nodes)} nodes",
            extra={"stack": spec.stack_name},
        )
        return graph

    # ------------------------------------------------------------------------
    # Stack-level nodes
    # ------------------------------------------------------------------------

    def _emit_network(self, spec: StackSpec, nodes: List[ResourceNode]) -> Optional[ResourceNode]:
        network_spec = spec.network
        if network_spec is None:
            return None

        logical_id = make_logical_id(spec.stack_name, ResourceKind.NETWORK)

        if network_spec.is_reference:
            network = ResourceNode(
                kind=ResourceKind.NETWORK,
                logical_id=logical_id,
                properties={
                    "mode": "reference",
                    "networkId": network_spec.external_network_id,
                    "subnetIds": list(network_spec.subnet_ids),
                },
            )
            nodes.append(network)
            return network

        network = ResourceNode(
            kind=ResourceKind.NETWORK,
            logical_id=logical_id,
            properties={
                "mode": "create",
                "name": f"{spec.stack_name}-vpc",
                "cidrBlock": network_spec.effective_cidr_block,
                "availabilityZoneCount": network_spec.effective_az_count,
                "enableServiceEndpoints": network_spec.effective_service_endpoints,
                "natGateways": 1,
                "subnetTiers": ["public", "private"],
                "tags": self._tags(spec),
            },
        )
        nodes.append(network)

        if network_spec.effective_service_endpoints:
            for endpoint in SERVICE_ENDPOINTS:
                if endpoint.endpoint_type == "Gateway":
                    placement = {"routeTableIds": network.ref("PrivateRouteTableIds")}
                else:
                    placement = {"subnetIds": network.ref("PrivateSubnetIds")}
                nodes.append(
                    ResourceNode(
                        kind=ResourceKind.NETWORK,
                        logical_id=make_logical_id(
                            spec.stack_name, ResourceKind.NETWORK, qualifier=endpoint.qualifier
                        ),
                        properties={
                            "mode": "create",
                            "service": endpoint.service,
                            "endpointType": endpoint.endpoint_type,
                            "purpose": endpoint.purpose,
                            "networkId": network.ref("NetworkId"),
                            **placement,
                        },
                        depends_on=[network.logical_id],
                    )
                )

        return network

    def _emit_security_boundary(
        self,
        spec: StackSpec,
        network: Optional[ResourceNode],
        nodes: List[ResourceNode],
    ) -> ResourceNode:
        logical_id = make_logical_id(spec.stack_name, ResourceKind.SECURITY_BOUNDARY)

        if spec.network is not None and spec.network.security_group_ids:
            group_ids = list(spec.network.security_group_ids)
            boundary = ResourceNode(
                kind=ResourceKind.SECURITY_BOUNDARY,
                logical_id=logical_id,
                properties={
                    "mode": "reference",
                    "securityGroupId": group_ids[0],
                    "securityGroupIds": group_ids,
                },
            )
            nodes.append(boundary)
            return boundary

        properties: Dict[str, Any] = {
            "mode": "create",
            "name": f"{spec.stack_name}-sg",
            "description": f"Security group for {spec.stack_name} agents",
            "ingress": [
                {
                    "source": "self",
                    "protocol": "all",
                    "description": "Allow traffic between agents in the stack",
                }
            ],
            "egress": [
                {
                    "destination": "0.0.0.0/0",
                    "protocol": "all",
                    "description": "Allow all outbound traffic",
                }
            ],
            "tags": self._tags(spec),
        }
        depends_on = []
        if network is not None:
            properties["networkId"] = network.ref("NetworkId")
            depends_on.append(network.logical_id)

        boundary = ResourceNode(
            kind=ResourceKind.SECURITY_BOUNDARY,
            logical_id=logical_id,
            properties=properties,
            depends_on=depends_on,
        )
        nodes.append(boundary)
        return boundary

    def _emit_secret_store(self, spec: StackSpec, nodes: List[ResourceNode]) -> Optional[ResourceNode]:
        secrets = spec.secrets
        if secrets is None or not secrets.create_secrets or not secrets.secret_values:
            return None

        store = ResourceNode(
            kind=ResourceKind.SECRET_STORE,
            logical_id=make_logical_id(spec.stack_name, ResourceKind.SECRET_STORE),
            properties={
                "mode": "create",
                "name": secrets.secret_name or f"{spec.stack_name}-secrets",
                "description": f"Secrets for {spec.stack_name} agents",
                "secretValues": dict(sorted(secrets.secret_values.items())),
                "teardownPolicy": spec.teardown_policy,
                "tags": self._tags(spec),
            },
        )
        nodes.append(store)
        return store

    def _emit_identity(
        self,
        spec: StackSpec,
        secret_store: Optional[ResourceNode],
        nodes: List[ResourceNode],
    ) -> ResourceNode:
        logical_id = make_logical_id(spec.stack_name, ResourceKind.IDENTITY)
        identity_spec = spec.identity

        if identity_spec is not None and identity_spec.is_reference:
            identity = ResourceNode(
                kind=ResourceKind.IDENTITY,
                logical_id=logical_id,
                properties={"mode": "reference", "roleArn": identity_spec.role_arn},
            )
            nodes.append(identity)
            return identity

        depends_on = [secret_store.logical_id] if secret_store is not None else []
        identity = ResourceNode(
            kind=ResourceKind.IDENTITY,
            logical_id=logical_id,
            properties={
                "mode": "create",
                "name": f"{spec.stack_name}-execution-role",
                "description": f"Execution role for {spec.stack_name} agents",
                "trustedServices": list(TRUSTED_SERVICES),
                "statements": self.capability_statements(spec, secret_store),
                "permissionsBoundary": identity_spec.permissions_boundary if identity_spec else None,
                "tags": self._tags(spec),
            },
            depends_on=depends_on,
        )
        nodes.append(identity)
        return identity

    def capability_statements(
        self,
        spec: StackSpec,
        secret_store: Optional[ResourceNode] = None,
    ) -> List[CapabilityStatement]:
        """Collect the allow-rules granted to a created identity.

        Statements are sorted by kind, then by resource pattern, and secret
        references are de-duplicated across agents.

        Args:
            spec: Stack definition
            secret_store: Stack-created secret store, if any

        Returns:
            Sorted capability statements
        """
        identity_spec = spec.identity
        statements: List[CapabilityStatement] = []

        # Model invocation
        model_access = identity_spec.effective_model_access if identity_spec else True
        if model_access:
            model_ids = identity_spec.model_ids if identity_spec else []
            if model_ids:
                for model_id in sorted(set(model_ids)):
                    statements.append(
                        CapabilityStatement(
                            kind=StatementKind.MODEL_INVOKE,
                            actions=list(MODEL_INVOKE_ACTIONS),
                            resources=[MODEL_RESOURCE.format(model_id=model_id)],
                        )
                    )
            else:
                statements.append(
                    CapabilityStatement(
                        kind=StatementKind.MODEL_INVOKE,
                        actions=list(MODEL_INVOKE_ACTIONS),
                        resources=[MODEL_RESOURCE.format(model_id="*")],
                    )
                )

        statements.append(
            CapabilityStatement(
                kind=StatementKind.LOG_WRITE,
                actions=list(LOG_WRITE_ACTIONS),
                resources=[LOG_RESOURCE],
            )
        )

        # External secrets by raw reference, stack-created secret by token
        for reference in spec.secret_references():
            statements.append(
                CapabilityStatement(
                    kind=StatementKind.SECRET_READ,
                    actions=list(SECRET_READ_ACTIONS),
                    resources=[secret_resource(reference)],
                )
            )
        if secret_store is not None:
            statements.append(
                CapabilityStatement(
                    kind=StatementKind.SECRET_READ,
                    actions=list(SECRET_READ_ACTIONS),
                    resources=[secret_store.ref("Arn")],
                )
            )

        statements.append(
            CapabilityStatement(
                kind=StatementKind.REGISTRY_PULL,
                actions=list(REGISTRY_PULL_ACTIONS),
                resources=["*"],
            )
        )

        if identity_spec is not None:
            for policy_arn in identity_spec.additional_policies:
                statements.append(
                    CapabilityStatement(kind=StatementKind.MANAGED_POLICY, policy_arn=policy_arn)
                )

        unique = {}
        for statement in statements:
            unique.setdefault(statement.sort_key(), statement)
        return [unique[key] for key in sorted(unique)]

    def _emit_log_sink(self, spec: StackSpec, nodes: List[ResourceNode]) -> Optional[ResourceNode]:
        observability = spec.observability
        if observability is None or not observability.enable_logging:
            return None

        log_sink = ResourceNode(
            kind=ResourceKind.LOG_SINK,
            logical_id=make_logical_id(spec.stack_name, ResourceKind.LOG_SINK),
            properties={
                "mode": "create",
                "name": LOG_GROUP_NAME.format(stack=spec.stack_name),
                "retentionDays": retention_tier(observability.log_retention_days),
                "teardownPolicy": spec.teardown_policy,
                "tags": self._tags(spec),
            },
        )
        nodes.append(log_sink)
        return log_sink

    # ------------------------------------------------------------------------
    # Per-agent nodes
    # ------------------------------------------------------------------------

    def _emit_runtime(
        self,
        spec: StackSpec,
        agent: AgentSpec,
        is_default: bool,
        network: Optional[ResourceNode],
        boundary: ResourceNode,
        identity: ResourceNode,
        nodes: List[ResourceNode],
    ) -> ResourceNode:
        depends_on = [boundary.logical_id, identity.logical_id]

        if network is None:
            network_config: Dict[str, Any] = {"mode": "PUBLIC"}
        else:
            depends_on.append(network.logical_id)
            if network.is_reference_only:
                subnets: Any = list(network.properties["subnetIds"])
            else:
                subnets = network.ref("PrivateSubnetIds")
            network_config = {
                "mode": "VPC",
                "securityGroupIds": [boundary.ref("GroupId")],
                "subnetIds": subnets,
            }

        runtime = ResourceNode(
            kind=ResourceKind.RUNTIME,
            logical_id=make_logical_id(spec.stack_name, ResourceKind.RUNTIME, agent_name=agent.name),
            properties={
                "mode": "create",
                "name": agent.name,
                "description": agent.description or f"AgentCore runtime for {agent.name}",
                "containerImage": agent.container_image,
                "roleArn": identity.ref("Arn"),
                "network": network_config,
                "environment": self.resolve_environment(spec, agent, is_default),
                "protocol": agent.protocol,
                "memoryMB": agent.memory_mb,
                "timeoutSeconds": agent.timeout_seconds,
                "isDefault": is_default,
                "tags": self._tags(spec, agent),
            },
            depends_on=depends_on,
        )
        nodes.append(runtime)
        return runtime

    def _emit_endpoint(
        self,
        spec: StackSpec,
        agent: AgentSpec,
        runtime: ResourceNode,
        nodes: List[ResourceNode],
    ) -> ResourceNode:
        endpoint = ResourceNode(
            kind=ResourceKind.ENDPOINT,
            logical_id=make_logical_id(spec.stack_name, ResourceKind.ENDPOINT, agent_name=agent.name),
            properties={
                "mode": "create",
                "name": f"{agent.name}-endpoint",
                "description": f"Endpoint for {agent.name}",
                "runtimeId": runtime.ref("RuntimeId"),
                "tags": self._tags(spec, agent),
            },
            depends_on=[runtime.logical_id],
        )
        nodes.append(endpoint)
        return endpoint

    def resolve_environment(self, spec: StackSpec, agent: AgentSpec, is_default: bool) -> Dict[str, str]:
        """Merge system, observability and agent variables.

        Agent-level keys win on conflict. Keys are sorted for stable output.
        """
        env = {"AGENTCORE_AGENT_NAME": agent.name}
        if is_default:
            env["AGENTCORE_DEFAULT_AGENT"] = agent.name

        observability = spec.observability
        if observability is not None:
            env["OBSERVABILITY_ENABLED"] = "true"
            env["OBSERVABILITY_PROVIDER"] = observability.provider
            env["OBSERVABILITY_PROJECT"] = observability.project or spec.stack_name
            if observability.endpoint:
                env["OBSERVABILITY_ENDPOINT"] = observability.endpoint

        env.update(agent.environment)
        return dict(sorted(env.items()))

    # ------------------------------------------------------------------------
    # Gateway
    # ------------------------------------------------------------------------

    def _emit_gateway(
        self,
        spec: StackSpec,
        identity: ResourceNode,
        nodes: List[ResourceNode],
    ) -> Optional[ResourceNode]:
        gateway_spec = spec.gateway
        if gateway_spec is None or not gateway_spec.enabled:
            return None

        gateway = ResourceNode(
            kind=ResourceKind.GATEWAY,
            logical_id=make_logical_id(spec.stack_name, ResourceKind.GATEWAY),
            properties={
                "mode": "create",
                "name": gateway_spec.name or f"{spec.stack_name}-gateway",
                "description": gateway_spec.description or f"Tool gateway for {spec.stack_name}",
                "protocolType": gateway_spec.protocol or spec.agents[0].protocol,
                "authorizerType": "NONE",
                "roleArn": identity.ref("Arn"),
                "tags": self._tags(spec),
            },
            depends_on=[identity.logical_id],
        )
        nodes.append(gateway)
        return gateway

    def _tags(self, spec: StackSpec, agent: Optional[AgentSpec] = None) -> Dict[str, str]:
        tags = dict(spec.tags)
        if agent is not None:
            tags["Agent"] = agent.name
        return dict(sorted(tags.items()))
