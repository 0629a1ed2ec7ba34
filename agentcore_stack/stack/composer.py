"""Fluent composition of stack definitions in Python code.

Composers collect plain wire-format data and hand it to ``ConfigLoader`` so
that programmatic stacks get exactly the same defaults and validation as
JSON or YAML documents.
"""

from typing import Any, Dict, Iterable, Optional

from .builder import ResourceGraphBuilder
from .graph import ResourceGraph
from .loader import ConfigLoader
from .models import StackSpec


class AgentComposer:
    """Compose one agent definition."""

    def __init__(self, name: str, container_image: str):
        self._data: Dict[str, Any] = {"name": name, "containerImage": container_image}

    def with_description(self, description: str) -> "AgentComposer":
        self._data["description"] = description
        return self

    def with_memory(self, memory_mb: int) -> "AgentComposer":
        self._data["memoryMB"] = memory_mb
        return self

    def with_timeout(self, timeout_seconds: int) -> "AgentComposer":
        self._data["timeoutSeconds"] = timeout_seconds
        return self

    def with_environment(self, env: Dict[str, str]) -> "AgentComposer":
        self._data.setdefault("environment", {}).update(env)
        return self

    def with_env_var(self, key: str, value: str) -> "AgentComposer":
        self._data.setdefault("environment", {})[key] = value
        return self

    def with_secrets(self, *secret_references: str) -> "AgentComposer":
        self._data.setdefault("secretReferences", []).extend(secret_references)
        return self

    def with_protocol(self, protocol: str) -> "AgentComposer":
        self._data["protocol"] = protocol
        return self

    def as_default(self) -> "AgentComposer":
        self._data["isDefault"] = True
        return self

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)


class StackComposer:
    """Compose a complete stack definition.

    Example:
        spec = (
            StackComposer("demo")
            .with_agent(AgentComposer("worker", "repo/worker:v1").as_default())
            .with_new_network()
            .spec()
        )
    """

    def __init__(self, stack_name: str, loader: Optional[ConfigLoader] = None):
        self._data: Dict[str, Any] = {"stackName": stack_name, "agents": []}
        self._loader = loader or ConfigLoader(strict=True)

    def with_description(self, description: str) -> "StackComposer":
        self._data["description"] = description
        return self

    # Agents

    def with_agent(self, agent: AgentComposer) -> "StackComposer":
        self._data["agents"].append(agent.to_dict())
        return self

    def with_agents(self, agents: Iterable[AgentComposer]) -> "StackComposer":
        for agent in agents:
            self.with_agent(agent)
        return self

    def with_simple_agent(self, name: str, container_image: str) -> "StackComposer":
        return self.with_agent(AgentComposer(name, container_image))

    def with_default_agent(self, name: str, container_image: str) -> "StackComposer":
        return self.with_agent(AgentComposer(name, container_image).as_default())

    # Network

    def with_new_network(
        self,
        cidr_block: Optional[str] = None,
        availability_zone_count: Optional[int] = None,
        enable_service_endpoints: Optional[bool] = None,
    ) -> "StackComposer":
        network: Dict[str, Any] = {}
        if cidr_block is not None:
            network["cidrBlock"] = cidr_block
        if availability_zone_count is not None:
            network["availabilityZoneCount"] = availability_zone_count
        if enable_service_endpoints is not None:
            network["enableServiceEndpoints"] = enable_service_endpoints
        self._data["network"] = network
        return self

    def with_existing_network(
        self,
        network_id: str,
        subnet_ids: Iterable[str],
        security_group_ids: Iterable[str] = (),
    ) -> "StackComposer":
        self._data["network"] = {
            "externalNetworkId": network_id,
            "subnetIds": list(subnet_ids),
            "securityGroupIds": list(security_group_ids),
        }
        return self

    # Secrets

    def with_secret_values(self, values: Dict[str, str], secret_name: Optional[str] = None) -> "StackComposer":
        secrets: Dict[str, Any] = {"createSecrets": True, "secretValues": dict(values)}
        if secret_name:
            secrets["secretName"] = secret_name
        self._data["secrets"] = secrets
        return self

    # Observability

    def with_observability(self, provider: str, project: str = "", **options: Any) -> "StackComposer":
        self._data["observability"] = {"provider": provider, "project": project, **options}
        return self

    def with_opik(self, project: str, api_key_secret_arn: Optional[str] = None) -> "StackComposer":
        return self.with_observability("opik", project, apiKeySecretArn=api_key_secret_arn)

    def with_langfuse(self, project: str, api_key_secret_arn: Optional[str] = None) -> "StackComposer":
        return self.with_observability("langfuse", project, apiKeySecretArn=api_key_secret_arn)

    def with_cloudwatch(self, retention_days: int = 30) -> "StackComposer":
        return self.with_observability("cloudwatch", logRetentionDays=retention_days)

    # Identity

    def with_existing_role(self, role_arn: str) -> "StackComposer":
        self._data["identity"] = {"roleArn": role_arn}
        return self

    def with_model_ids(self, *model_ids: str) -> "StackComposer":
        identity = self._data.setdefault("identity", {})
        identity["enableModelAccess"] = True
        identity.setdefault("modelIds", []).extend(model_ids)
        return self

    def with_additional_policies(self, *policy_arns: str) -> "StackComposer":
        self._data.setdefault("identity", {}).setdefault("additionalPolicies", []).extend(policy_arns)
        return self

    def with_permissions_boundary(self, boundary_arn: str) -> "StackComposer":
        self._data.setdefault("identity", {})["permissionsBoundary"] = boundary_arn
        return self

    # Gateway

    def with_gateway(
        self,
        name: Optional[str] = None,
        description: str = "",
        protocol: Optional[str] = None,
    ) -> "StackComposer":
        gateway: Dict[str, Any] = {"enabled": True, "description": description}
        if name:
            gateway["name"] = name
        if protocol:
            gateway["protocol"] = protocol
        self._data["gateway"] = gateway
        return self

    # Tags and teardown

    def with_tags(self, tags: Dict[str, str]) -> "StackComposer":
        self._data.setdefault("tags", {}).update(tags)
        return self

    def with_tag(self, key: str, value: str) -> "StackComposer":
        self._data.setdefault("tags", {})[key] = value
        return self

    def retain_on_delete(self) -> "StackComposer":
        self._data["teardownPolicy"] = "retain"
        return self

    def destroy_on_delete(self) -> "StackComposer":
        self._data["teardownPolicy"] = "destroy"
        return self

    # Results

    def to_dict(self) -> Dict[str, Any]:
        """Wire-format document, without nulls."""
        return _drop_none(self._data)

    def spec(self) -> StackSpec:
        """Validate and return the stack definition.

        Raises:
            ConfigError: If the composed definition is invalid
        """
        return self._loader.load_dict(self.to_dict())

    def build(self, builder: Optional[ResourceGraphBuilder] = None) -> ResourceGraph:
        return (builder or ResourceGraphBuilder()).build(self.spec())


def _drop_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_none(v) for v in value]
    return value
