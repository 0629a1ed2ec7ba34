"""Resource graph types produced by the graph builder.

A graph is an ordered list of ``ResourceNode``s. Nodes refer to attributes of
other nodes through ``ResourceRef`` tokens, never through string
placeholders, so a provisioning engine can resolve them mechanically.
"""

import json
import re
from enum import Enum
from typing import Any, Dict, Iterator, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.exceptions import InvariantViolation


class ResourceKind(str, Enum):
    """Kinds of logical infrastructure resources."""

    NETWORK = "Network"
    SECURITY_BOUNDARY = "SecurityBoundary"
    IDENTITY = "Identity"
    SECRET_STORE = "SecretStore"
    LOG_SINK = "LogSink"
    RUNTIME = "Runtime"
    ENDPOINT = "Endpoint"
    GATEWAY = "Gateway"


# Logical id segment per kind
KIND_SEGMENTS: Dict[ResourceKind, str] = {
    ResourceKind.NETWORK: "network",
    ResourceKind.SECURITY_BOUNDARY: "security-boundary",
    ResourceKind.IDENTITY: "identity",
    ResourceKind.SECRET_STORE: "secret-store",
    ResourceKind.LOG_SINK: "log-sink",
    ResourceKind.RUNTIME: "runtime",
    ResourceKind.ENDPOINT: "endpoint",
    ResourceKind.GATEWAY: "gateway",
}

AGENT_KINDS = (ResourceKind.RUNTIME, ResourceKind.ENDPOINT)


class ServiceEndpoint(NamedTuple):
    """A managed-service endpoint created inside a new network."""

    qualifier: str
    service: str
    endpoint_type: str
    purpose: str


# Registry pull path, secret-store path, log-sink path, model-invocation path
SERVICE_ENDPOINTS = (
    ServiceEndpoint("endpoint-ecr-api", "ecr.api", "Interface", "registry"),
    ServiceEndpoint("endpoint-ecr-dkr", "ecr.dkr", "Interface", "registry"),
    ServiceEndpoint("endpoint-s3", "s3", "Gateway", "registry"),
    ServiceEndpoint("endpoint-secretsmanager", "secretsmanager", "Interface", "secret-store"),
    ServiceEndpoint("endpoint-logs", "logs", "Interface", "log-sink"),
    ServiceEndpoint("endpoint-bedrock", "bedrock", "Interface", "model-invocation"),
    ServiceEndpoint("endpoint-bedrock-runtime", "bedrock-runtime", "Interface", "model-invocation"),
)


def make_logical_id(
    stack_name: str,
    kind: ResourceKind,
    agent_name: Optional[str] = None,
    qualifier: Optional[str] = None,
) -> str:
    """Derive a logical id from stack name, kind and optional agent name.

    Stack-level nodes are ``<stack>-<kind>[-<qualifier>]``; per-agent nodes
    are ``<stack>-<agent>-<kind>``.

    Args:
        stack_name: Stack name (namespace).
        kind: Resource kind.
        agent_name: Agent name for Runtime/Endpoint nodes.
        qualifier: Extra suffix for child nodes of a stack-level kind.

    Returns:
        Deterministic logical id.
    """
    segment = KIND_SEGMENTS[kind]
    if kind in AGENT_KINDS:
        if not agent_name:
            raise InvariantViolation(f"{kind.value} nodes require an agent name")
        return f"{stack_name}-{agent_name}-{segment}"
    logical_id = f"{stack_name}-{segment}"
    if qualifier:
        logical_id = f"{logical_id}-{qualifier}"
    return logical_id


def cfn_logical_id(logical_id: str) -> str:
    """Convert a graph logical id into an alphanumeric CloudFormation id.

    ``demo-worker-runtime`` becomes ``DemoWorkerRuntime``.
    """
    parts = re.split(r"[^A-Za-z0-9]+", logical_id)
    return "".join(part[:1].upper() + part[1:] for part in parts if part)


def runtime_name(name: str) -> str:
    """AgentCore runtime and endpoint names allow letters, digits and underscores."""
    return name.replace("-", "_")


def reserved_logical_ids(stack_name: str) -> set[str]:
    """Every stack-level logical id a stack may contain."""
    reserved = {
        make_logical_id(stack_name, kind) for kind in ResourceKind if kind not in AGENT_KINDS
    }
    reserved.update(
        make_logical_id(stack_name, ResourceKind.NETWORK, qualifier=endpoint.qualifier)
        for endpoint in SERVICE_ENDPOINTS
    )
    return reserved


def reserved_agent_names() -> set[str]:
    """Agent names that would shadow a stack-level node's name."""
    return {segment for kind, segment in KIND_SEGMENTS.items() if kind not in AGENT_KINDS}


# ============================================================================
# Reference tokens and nodes
# ============================================================================

class ResourceRef(BaseModel):
    """Symbolic reference to an attribute of another node.

    The value is unknown until the provisioning engine realizes the target.
    """

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    logical_id: str
    attribute: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "ref": {
                "kind": self.kind.value,
                "logicalId": self.logical_id,
                "attribute": self.attribute,
            }
        }


def to_plain(value: Any) -> Any:
    """Convert node properties into JSON-compatible data.

    Reference tokens become ``{"ref": {...}}`` objects and nested models are
    dumped by alias.
    """
    if isinstance(value, ResourceRef):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return {
            (field.serialization_alias or field.alias or name): to_plain(getattr(value, name))
            for name, field in type(value).model_fields.items()
        }
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def iter_refs(value: Any) -> Iterator[ResourceRef]:
    """Yield every reference token nested anywhere inside ``value``."""
    if isinstance(value, ResourceRef):
        yield value
    elif isinstance(value, BaseModel):
        for name in type(value).model_fields:
            yield from iter_refs(getattr(value, name))
    elif isinstance(value, dict):
        for v in value.values():
            yield from iter_refs(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from iter_refs(v)


class ResourceNode(BaseModel):
    """One logical infrastructure resource."""

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    logical_id: str
    properties: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)

    @field_validator("depends_on")
    @classmethod
    def normalize_depends_on(cls, v: List[str]) -> List[str]:
        """Store dependencies as a sorted set."""
        return sorted(set(v))

    def ref(self, attribute: str) -> ResourceRef:
        """Reference one of this node's provider-assigned attributes."""
        return ResourceRef(kind=self.kind, logical_id=self.logical_id, attribute=attribute)

    def refs(self) -> List[ResourceRef]:
        return list(iter_refs(self.properties))

    @property
    def is_reference_only(self) -> bool:
        """Whether the node points at an existing resource instead of creating one."""
        return self.properties.get("mode") == "reference"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "logicalId": self.logical_id,
            "properties": to_plain(self.properties),
            "dependsOn": list(self.depends_on),
        }


# ============================================================================
# Graph
# ============================================================================

class ResourceGraph(BaseModel):
    """Ordered, validated set of resource nodes for one stack."""

    model_config = ConfigDict(frozen=True)

    stack_name: str
    nodes: List[ResourceNode] = Field(default_factory=list)

    def get(self, logical_id: str) -> Optional[ResourceNode]:
        """Get node by logical id."""
        for node in self.nodes:
            if node.logical_id == logical_id:
                return node
        return None

    def by_kind(self, kind: ResourceKind) -> List[ResourceNode]:
        """Nodes of one kind, in emission order."""
        return [node for node in self.nodes if node.kind == kind]

    def logical_ids(self) -> List[str]:
        return [node.logical_id for node in self.nodes]

    def validate_graph(self) -> None:
        """Check the graph invariants.

        Raises:
            InvariantViolation: On duplicate ids, unknown dependencies,
                references missing from dependsOn, or cycles.
        """
        index: Dict[str, ResourceNode] = {}
        for node in self.nodes:
            if node.logical_id in index:
                raise InvariantViolation("Duplicate logical id", node.logical_id)
            index[node.logical_id] = node

        for node in self.nodes:
            for dep in node.depends_on:
                if dep not in index:
                    raise InvariantViolation(
                        f"Depends on unknown node '{dep}'", node.logical_id
                    )
                if dep == node.logical_id:
                    raise InvariantViolation("Node depends on itself", node.logical_id)

            for ref in node.refs():
                target = index.get(ref.logical_id)
                if target is None:
                    raise InvariantViolation(
                        f"Unresolvable reference to '{ref.logical_id}'", node.logical_id
                    )
                if target.kind != ref.kind:
                    raise InvariantViolation(
                        f"Reference to '{ref.logical_id}' expects {ref.kind.value}, "
                        f"found {target.kind.value}",
                        node.logical_id,
                    )
                if ref.logical_id not in node.depends_on:
                    raise InvariantViolation(
                        f"Reference to '{ref.logical_id}' is not declared in dependsOn",
                        node.logical_id,
                    )

        # Check for cycles using DFS
        def has_cycle(node_id: str, visited: set[str], rec_stack: set[str]) -> bool:
            visited.add(node_id)
            rec_stack.add(node_id)

            for neighbor in index[node_id].depends_on:
                if neighbor not in visited:
                    if has_cycle(neighbor, visited, rec_stack):
                        return True
                elif neighbor in rec_stack:
                    return True

            rec_stack.remove(node_id)
            return False

        visited: set[str] = set()
        for node_id in index:
            if node_id not in visited:
                if has_cycle(node_id, visited, set()):
                    raise InvariantViolation("Dependency graph contains a cycle", node_id)

    def stages(self) -> List[List[str]]:
        """Group nodes into stages that can be realized in parallel.

        Every node appears in a later stage than all of its dependencies.
        Within a stage, nodes keep emission order.

        Returns:
            List of stages of logical ids.
        """
        in_degree: Dict[str, int] = {node.logical_id: len(node.depends_on) for node in self.nodes}
        dependents: Dict[str, List[str]] = {node.logical_id: [] for node in self.nodes}
        for node in self.nodes:
            for dep in node.depends_on:
                dependents[dep].append(node.logical_id)

        order = self.logical_ids()
        stages: List[List[str]] = []
        remaining = set(order)

        while remaining:
            current_stage = [node_id for node_id in order if node_id in remaining and in_degree[node_id] == 0]

            if not current_stage:
                raise InvariantViolation("Dependency graph contains a cycle")

            stages.append(current_stage)

            for node_id in current_stage:
                remaining.remove(node_id)
                for dependent in dependents[node_id]:
                    in_degree[dependent] -= 1

        return stages

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stackName": self.stack_name,
            "nodes": [node.to_dict() for node in self.nodes],
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to byte-stable JSON."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)
