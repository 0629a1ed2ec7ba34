"""Output collector - summarize provider-assigned identifiers for humans and CI."""

import json
import logging
from pathlib import Path
from typing import Dict, List, Mapping, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict

from ..core.exceptions import ConfigError, InvariantViolation
from ..core.types import ProvisionedAttributes
from .graph import ResourceGraph, ResourceKind, ResourceNode, make_logical_id
from .models import StackSpec

logger = logging.getLogger(__name__)

# Requested but not yet known. Never an empty string or null.
PENDING = "<pending>"


class OutputEntry(BaseModel):
    """One (label, value) pair of the stack summary."""

    model_config = ConfigDict(frozen=True)

    label: str
    value: str
    description: str = ""

    @property
    def is_pending(self) -> bool:
        return self.value == PENDING


class OutputBinding(NamedTuple):
    """Where an output's value comes from.

    ``known`` is set when the value does not depend on provisioning
    (referenced resources, container images, counts).
    """

    label: str
    description: str
    logical_id: Optional[str]
    attribute: Optional[str]
    known: Optional[str] = None


class OutputCollector:
    """Derive the ordered output summary of a stack.

    Order: stack-level entries, then per-agent entries in agent order, then
    gateway entries. Entries for resources that were not requested are
    omitted.
    """

    def bindings(self, graph: ResourceGraph) -> List[OutputBinding]:
        """Output bindings for every requested resource in the graph."""
        stack = graph.stack_name
        bindings: List[OutputBinding] = []

        network = graph.get(make_logical_id(stack, ResourceKind.NETWORK))
        if network is not None:
            bindings.append(
                self._bind(network, "NetworkId", "Network (VPC) ID", "NetworkId", "networkId")
            )

        boundary = graph.get(make_logical_id(stack, ResourceKind.SECURITY_BOUNDARY))
        if boundary is not None:
            bindings.append(
                self._bind(
                    boundary, "SecurityBoundaryId", "Security group ID", "GroupId", "securityGroupId"
                )
            )

        identity = graph.get(make_logical_id(stack, ResourceKind.IDENTITY))
        if identity is not None:
            bindings.append(
                self._bind(identity, "IdentityRoleArn", "Execution role ARN", "Arn", "roleArn")
            )

        log_sink = graph.get(make_logical_id(stack, ResourceKind.LOG_SINK))
        if log_sink is not None:
            bindings.append(self._bind(log_sink, "LogSinkName", "Log group name", "Name"))

        runtimes = graph.by_kind(ResourceKind.RUNTIME)
        bindings.append(
            OutputBinding("AgentCount", "Number of agents", None, None, known=str(len(runtimes)))
        )

        for runtime in runtimes:
            name = runtime.properties["name"]
            endpoint_id = make_logical_id(stack, ResourceKind.ENDPOINT, agent_name=name)
            bindings.extend(
                [
                    OutputBinding(
                        f"Agent-{name}-RuntimeArn", f"Runtime ARN for {name}", runtime.logical_id, "Arn"
                    ),
                    OutputBinding(
                        f"Agent-{name}-RuntimeId", f"Runtime ID for {name}", runtime.logical_id, "RuntimeId"
                    ),
                    OutputBinding(
                        f"Agent-{name}-EndpointArn", f"Endpoint ARN for {name}", endpoint_id, "Arn"
                    ),
                    OutputBinding(
                        f"Agent-{name}-Image",
                        f"Container image for {name}",
                        None,
                        None,
                        known=runtime.properties["containerImage"],
                    ),
                ]
            )

        gateway = graph.get(make_logical_id(stack, ResourceKind.GATEWAY))
        if gateway is not None:
            bindings.extend(
                [
                    OutputBinding("GatewayArn", "Gateway ARN", gateway.logical_id, "Arn"),
                    OutputBinding("GatewayId", "Gateway ID", gateway.logical_id, "Id"),
                    OutputBinding("GatewayUrl", "Gateway URL", gateway.logical_id, "Url"),
                ]
            )

        return bindings

    def collect(
        self,
        spec: StackSpec,
        graph: ResourceGraph,
        provisioned: Optional[ProvisionedAttributes] = None,
    ) -> List[OutputEntry]:
        """Produce the ordered output list.

        Args:
            spec: Stack definition the graph was built from
            graph: Built resource graph
            provisioned: Logical id -> attribute -> provider-assigned value

        Returns:
            Ordered output entries; unknown values are PENDING

        Raises:
            InvariantViolation: If the graph was built for a different stack
        """
        if graph.stack_name != spec.stack_name:
            raise InvariantViolation(
                f"Graph for '{graph.stack_name}' does not match stack '{spec.stack_name}'"
            )

        provisioned = provisioned or {}
        entries = []
        for binding in self.bindings(graph):
            if binding.known is not None:
                value = binding.known
            else:
                value = provisioned.get(binding.logical_id, {}).get(binding.attribute) or PENDING
            entries.append(OutputEntry(label=binding.label, value=value, description=binding.description))

        pending = sum(1 for entry in entries if entry.is_pending)
        if pending:
            logger.info(f"{pending} output(s) pending for '{spec.stack_name}'")
        return entries

    def _bind(
        self,
        node: ResourceNode,
        label: str,
        description: str,
        attribute: str,
        reference_property: Optional[str] = None,
    ) -> OutputBinding:
        known = None
        if node.is_reference_only and reference_property:
            known = node.properties.get(reference_property)
        return OutputBinding(label, description, node.logical_id, attribute, known=known)


def entries_to_dict(entries: List[OutputEntry]) -> Dict[str, str]:
    """Flatten entries into an ordered label -> value mapping."""
    return {entry.label: entry.value for entry in entries}


def provisioned_from_outputs(
    graph: ResourceGraph,
    outputs: Mapping[str, str],
    key_for_label=None,
) -> ProvisionedAttributes:
    """Rebuild the provisioned mapping from stack outputs keyed by label.

    Args:
        graph: Built resource graph
        outputs: Output key -> value, as reported by the provisioning engine
        key_for_label: Maps a label to its output key (identity by default)

    Returns:
        Logical id -> attribute -> value
    """
    key_for_label = key_for_label or (lambda label: label)
    provisioned: ProvisionedAttributes = {}
    for binding in OutputCollector().bindings(graph):
        if binding.logical_id is None or binding.attribute is None:
            continue
        value = outputs.get(key_for_label(binding.label))
        if value:
            provisioned.setdefault(binding.logical_id, {})[binding.attribute] = value
    return provisioned


def load_provisioned(path: Union[str, Path]) -> ProvisionedAttributes:
    """Read the logical id -> attribute -> value mapping from a JSON file.

    Raises:
        ConfigError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError("", f"Provisioned identifiers file not found: {path}")

    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError("", f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("", "Provisioned identifiers must be a mapping of logical id to attributes")

    provisioned: ProvisionedAttributes = {}
    for logical_id, attributes in data.items():
        if not isinstance(attributes, dict):
            raise ConfigError(logical_id, "expected a mapping of attribute name to value")
        provisioned[logical_id] = {str(k): str(v) for k, v in attributes.items() if v is not None}
    return provisioned
