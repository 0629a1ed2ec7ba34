"""CloudFormation rendering of a resource graph.

Each node becomes one or more CloudFormation resources. ``ResourceRef``
tokens are resolved mechanically to ``Ref`` / ``Fn::GetAtt`` expressions;
reference-only nodes produce no resources and resolve to their literals.
"""

import ipaddress
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Union

from ..core.exceptions import InvariantViolation
from ..core.types import CfnOutput, CfnResource, CfnTemplate, PolicyStatement
from .builder import UNLIMITED_RETENTION, CapabilityStatement, StatementKind
from .graph import (
    ResourceGraph,
    ResourceKind,
    ResourceNode,
    ResourceRef,
    cfn_logical_id,
    runtime_name,
)
from .outputs import OutputCollector

logger = logging.getLogger(__name__)

TEMPLATE_VERSION = "2010-09-09"
POLICY_VERSION = "2012-10-17"

# CloudFormation attribute expression per (kind, graph attribute)
GET_ATT_NAMES = {
    (ResourceKind.SECURITY_BOUNDARY, "GroupId"): "GroupId",
    (ResourceKind.IDENTITY, "Arn"): "Arn",
    (ResourceKind.RUNTIME, "RuntimeId"): "AgentRuntimeId",
    (ResourceKind.RUNTIME, "Arn"): "AgentRuntimeArn",
    (ResourceKind.ENDPOINT, "Arn"): "AgentRuntimeEndpointArn",
    (ResourceKind.GATEWAY, "Arn"): "GatewayArn",
    (ResourceKind.GATEWAY, "Id"): "GatewayIdentifier",
    (ResourceKind.GATEWAY, "Url"): "GatewayUrl",
}
REF_ATTRIBUTES = {
    (ResourceKind.NETWORK, "NetworkId"),
    (ResourceKind.SECRET_STORE, "Arn"),
    (ResourceKind.LOG_SINK, "Name"),
}
REFERENCE_LITERALS = {
    (ResourceKind.NETWORK, "NetworkId"): "networkId",
    (ResourceKind.NETWORK, "PrivateSubnetIds"): "subnetIds",
    (ResourceKind.SECURITY_BOUNDARY, "GroupId"): "securityGroupId",
    (ResourceKind.IDENTITY, "Arn"): "roleArn",
}


def output_key(label: str) -> str:
    return cfn_logical_id(label)


class TemplateRenderer:
    """Render a ``ResourceGraph`` as a CloudFormation template."""

    def __init__(self, description: str | None = None):
        self.description = description

    def render(self, graph: ResourceGraph) -> CfnTemplate:
        """Render the graph.

        Args:
            graph: Validated resource graph

        Returns:
            CloudFormation template as a plain dict

        Raises:
            InvariantViolation: If two nodes map to the same CloudFormation id
                or a reference cannot be resolved
        """
        self._graph = graph
        self._ids = self._assign_ids(graph)

        resources: Dict[str, CfnResource] = {}
        handlers: Dict[ResourceKind, Callable[[ResourceNode], Dict[str, CfnResource]]] = {
            ResourceKind.NETWORK: self._render_network,
            ResourceKind.SECURITY_BOUNDARY: self._render_security_boundary,
            ResourceKind.SECRET_STORE: self._render_secret_store,
            ResourceKind.IDENTITY: self._render_identity,
            ResourceKind.LOG_SINK: self._render_log_sink,
            ResourceKind.RUNTIME: self._render_runtime,
            ResourceKind.ENDPOINT: self._render_endpoint,
            ResourceKind.GATEWAY: self._render_gateway,
        }

        for node in graph.nodes:
            if node.is_reference_only:
                continue
            for cfn_id, resource in handlers[node.kind](node).items():
                if cfn_id in resources:
                    raise InvariantViolation(
                        f"CloudFormation id '{cfn_id}' generated twice", node.logical_id
                    )
                resources[cfn_id] = resource

        template: CfnTemplate = {
            "AWSTemplateFormatVersion": TEMPLATE_VERSION,
            "Description": self.description or f"AgentCore stack {graph.stack_name}",
            "Resources": resources,
        }
        outputs = self._render_outputs(graph)
        if outputs:
            template["Outputs"] = outputs

        logger.info(f"Rendered {len(resources)} CloudFormation resources for '{graph.stack_name}'")
        return template

    def to_json(self, graph: ResourceGraph, indent: int = 2) -> str:
        return json.dumps(self.render(graph), indent=indent, sort_keys=True)

    # ------------------------------------------------------------------------
    # Reference resolution
    # ------------------------------------------------------------------------

    def _assign_ids(self, graph: ResourceGraph) -> Dict[str, str]:
        ids: Dict[str, str] = {}
        seen: Dict[str, str] = {}
        for node in graph.nodes:
            cfn_id = cfn_logical_id(node.logical_id)
            if cfn_id in seen:
                raise InvariantViolation(
                    f"Logical ids '{seen[cfn_id]}' and '{node.logical_id}' both map to '{cfn_id}'",
                    node.logical_id,
                )
            seen[cfn_id] = node.logical_id
            ids[node.logical_id] = cfn_id
        return ids

    def resolve_ref(self, ref: ResourceRef) -> Any:
        """Translate a reference token into a CloudFormation expression."""
        target = self._graph.get(ref.logical_id)
        if target is None:
            raise InvariantViolation(f"Unresolvable reference to '{ref.logical_id}'")

        key = (ref.kind, ref.attribute)
        if target.is_reference_only:
            prop = REFERENCE_LITERALS.get(key)
            if prop is None or prop not in target.properties:
                raise InvariantViolation(
                    f"Attribute '{ref.attribute}' is not known for referenced resource", ref.logical_id
                )
            return target.properties[prop]

        cfn_id = self._ids[ref.logical_id]
        if key in REF_ATTRIBUTES:
            return {"Ref": cfn_id}
        if key in GET_ATT_NAMES:
            return {"Fn::GetAtt": [cfn_id, GET_ATT_NAMES[key]]}
        if key == (ResourceKind.NETWORK, "PrivateSubnetIds"):
            return [{"Ref": sub_id} for sub_id in self._subnet_ids(target, "Private")]
        if key == (ResourceKind.NETWORK, "PrivateRouteTableIds"):
            count = target.properties["availabilityZoneCount"]
            return [{"Ref": f"{cfn_id}PrivateRouteTable{i + 1}"} for i in range(count)]

        raise InvariantViolation(f"Unsupported attribute '{ref.attribute}'", ref.logical_id)

    def _resolve(self, value: Any) -> Any:
        if isinstance(value, ResourceRef):
            return self.resolve_ref(value)
        if isinstance(value, dict):
            return {k: self._resolve(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve(v) for v in value]
        return value

    def _depends_on(self, node: ResourceNode) -> List[str]:
        """CloudFormation DependsOn, skipping reference-only targets."""
        deps = []
        for dep in node.depends_on:
            target = self._graph.get(dep)
            if target is not None and not target.is_reference_only:
                deps.append(self._ids[dep])
        return deps

    def _resource(self, node: ResourceNode, cfn_type: str, properties: Dict[str, Any]) -> CfnResource:
        resource: CfnResource = {"Type": cfn_type, "Properties": properties}
        deps = self._depends_on(node)
        if deps:
            resource["DependsOn"] = deps
        return resource

    @staticmethod
    def _tag_list(tags: Dict[str, str], name: str | None = None) -> List[Dict[str, str]]:
        items = dict(tags)
        if name:
            items.setdefault("Name", name)
        return [{"Key": key, "Value": value} for key, value in sorted(items.items())]

    # ------------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------------

    def _subnet_ids(self, network: ResourceNode, tier: str) -> List[str]:
        cfn_id = self._ids[network.logical_id]
        count = network.properties["availabilityZoneCount"]
        return [f"{cfn_id}{tier}Subnet{i + 1}" for i in range(count)]

    @staticmethod
    def subnet_cidrs(cidr_block: str, az_count: int) -> tuple[list[str], list[str]]:
        """Split the network into public and private subnets, one per AZ.

        Subnets are /24 where the block has room, else as large as fits.
        """
        network = ipaddress.ip_network(cidr_block)
        bits = (2 * az_count - 1).bit_length()
        new_prefix = max(network.prefixlen + bits, 24)
        subnets = [str(s) for s in network.subnets(new_prefix=new_prefix)][: 2 * az_count]
        return subnets[:az_count], subnets[az_count:]

    def _render_network(self, node: ResourceNode) -> Dict[str, CfnResource]:
        if "service" in node.properties:
            return self._render_service_endpoint(node)

        props = node.properties
        vpc_id = self._ids[node.logical_id]
        az_count = props["availabilityZoneCount"]
        tags = props.get("tags", {})
        public_cidrs, private_cidrs = self.subnet_cidrs(props["cidrBlock"], az_count)

        resources: Dict[str, CfnResource] = {
            vpc_id: self._resource(
                node,
                "AWS::EC2::VPC",
                {
                    "CidrBlock": props["cidrBlock"],
                    "EnableDnsHostnames": True,
                    "EnableDnsSupport": True,
                    "Tags": self._tag_list(tags, props["name"]),
                },
            ),
            f"{vpc_id}InternetGateway": {
                "Type": "AWS::EC2::InternetGateway",
                "Properties": {"Tags": self._tag_list(tags, props["name"])},
            },
            f"{vpc_id}GatewayAttachment": {
                "Type": "AWS::EC2::VPCGatewayAttachment",
                "Properties": {
                    "VpcId": {"Ref": vpc_id},
                    "InternetGatewayId": {"Ref": f"{vpc_id}InternetGateway"},
                },
            },
            f"{vpc_id}PublicRouteTable": {
                "Type": "AWS::EC2::RouteTable",
                "Properties": {"VpcId": {"Ref": vpc_id}, "Tags": self._tag_list(tags)},
            },
            f"{vpc_id}PublicDefaultRoute": {
                "Type": "AWS::EC2::Route",
                "DependsOn": [f"{vpc_id}GatewayAttachment"],
                "Properties": {
                    "RouteTableId": {"Ref": f"{vpc_id}PublicRouteTable"},
                    "DestinationCidrBlock": "0.0.0.0/0",
                    "GatewayId": {"Ref": f"{vpc_id}InternetGateway"},
                },
            },
        }

        public_ids = self._subnet_ids(node, "Public")
        private_ids = self._subnet_ids(node, "Private")

        for i, (subnet_id, cidr) in enumerate(zip(public_ids, public_cidrs)):
            resources[subnet_id] = {
                "Type": "AWS::EC2::Subnet",
                "Properties": {
                    "VpcId": {"Ref": vpc_id},
                    "CidrBlock": cidr,
                    "AvailabilityZone": {"Fn::Select": [i, {"Fn::GetAZs": ""}]},
                    "MapPublicIpOnLaunch": True,
                    "Tags": self._tag_list(tags),
                },
            }
            resources[f"{subnet_id}RouteTableAssociation"] = {
                "Type": "AWS::EC2::SubnetRouteTableAssociation",
                "Properties": {
                    "SubnetId": {"Ref": subnet_id},
                    "RouteTableId": {"Ref": f"{vpc_id}PublicRouteTable"},
                },
            }

        # Single NAT gateway in the first public subnet
        resources[f"{vpc_id}NatEip"] = {
            "Type": "AWS::EC2::EIP",
            "DependsOn": [f"{vpc_id}GatewayAttachment"],
            "Properties": {"Domain": "vpc"},
        }
        resources[f"{vpc_id}NatGateway"] = {
            "Type": "AWS::EC2::NatGateway",
            "Properties": {
                "AllocationId": {"Fn::GetAtt": [f"{vpc_id}NatEip", "AllocationId"]},
                "SubnetId": {"Ref": public_ids[0]},
                "Tags": self._tag_list(tags),
            },
        }

        for i, (subnet_id, cidr) in enumerate(zip(private_ids, private_cidrs)):
            route_table_id = f"{vpc_id}PrivateRouteTable{i + 1}"
            resources[subnet_id] = {
                "Type": "AWS::EC2::Subnet",
                "Properties": {
                    "VpcId": {"Ref": vpc_id},
                    "CidrBlock": cidr,
                    "AvailabilityZone": {"Fn::Select": [i, {"Fn::GetAZs": ""}]},
                    "MapPublicIpOnLaunch": False,
                    "Tags": self._tag_list(tags),
                },
            }
            resources[route_table_id] = {
                "Type": "AWS::EC2::RouteTable",
                "Properties": {"VpcId": {"Ref": vpc_id}, "Tags": self._tag_list(tags)},
            }
            resources[f"{vpc_id}PrivateDefaultRoute{i + 1}"] = {
                "Type": "AWS::EC2::Route",
                "Properties": {
                    "RouteTableId": {"Ref": route_table_id},
                    "DestinationCidrBlock": "0.0.0.0/0",
                    "NatGatewayId": {"Ref": f"{vpc_id}NatGateway"},
                },
            }
            resources[f"{subnet_id}RouteTableAssociation"] = {
                "Type": "AWS::EC2::SubnetRouteTableAssociation",
                "Properties": {
                    "SubnetId": {"Ref": subnet_id},
                    "RouteTableId": {"Ref": route_table_id},
                },
            }

        return resources

    def _render_service_endpoint(self, node: ResourceNode) -> Dict[str, CfnResource]:
        props = node.properties
        properties: Dict[str, Any] = {
            "ServiceName": {"Fn::Sub": f"com.amazonaws.${{AWS::Region}}.{props['service']}"},
            "VpcId": self._resolve(props["networkId"]),
            "VpcEndpointType": props["endpointType"],
        }
        if props["endpointType"] == "Gateway":
            properties["RouteTableIds"] = self._resolve(props["routeTableIds"])
        else:
            properties["SubnetIds"] = self._resolve(props["subnetIds"])
            properties["PrivateDnsEnabled"] = True
        return {self._ids[node.logical_id]: self._resource(node, "AWS::EC2::VPCEndpoint", properties)}

    # ------------------------------------------------------------------------
    # Security boundary, identity, secrets, logs
    # ------------------------------------------------------------------------

    def _render_security_boundary(self, node: ResourceNode) -> Dict[str, CfnResource]:
        props = node.properties
        group_id = self._ids[node.logical_id]
        egress = props["egress"][0]
        ingress = props["ingress"][0]

        properties: Dict[str, Any] = {
            "GroupDescription": props["description"],
            "SecurityGroupEgress": [
                {
                    "IpProtocol": "-1",
                    "CidrIp": egress["destination"],
                    "Description": egress["description"],
                }
            ],
            "Tags": self._tag_list(props.get("tags", {}), props["name"]),
        }
        if props.get("networkId") is not None:
            properties["VpcId"] = self._resolve(props["networkId"])

        return {
            group_id: self._resource(node, "AWS::EC2::SecurityGroup", properties),
            f"{group_id}SelfIngress": {
                "Type": "AWS::EC2::SecurityGroupIngress",
                "Properties": {
                    "GroupId": {"Fn::GetAtt": [group_id, "GroupId"]},
                    "SourceSecurityGroupId": {"Fn::GetAtt": [group_id, "GroupId"]},
                    "IpProtocol": "-1",
                    "Description": ingress["description"],
                },
            },
        }

    def policy_statements(self, statements: List[CapabilityStatement]) -> List[PolicyStatement]:
        """Render inline statements; managed policies are attached separately."""
        rendered: List[PolicyStatement] = []
        counters: Dict[StatementKind, int] = {}
        for statement in statements:
            if statement.kind == StatementKind.MANAGED_POLICY:
                continue
            counters[statement.kind] = counters.get(statement.kind, 0) + 1
            sid = cfn_logical_id(statement.kind.value) + str(counters[statement.kind])
            rendered.append(
                {
                    "Sid": sid,
                    "Effect": "Allow",
                    "Action": list(statement.actions),
                    "Resource": [self._resolve(r) for r in statement.resources],
                }
            )
        return rendered

    def _render_identity(self, node: ResourceNode) -> Dict[str, CfnResource]:
        props = node.properties
        statements: List[CapabilityStatement] = props["statements"]

        properties: Dict[str, Any] = {
            "RoleName": props["name"],
            "Description": props["description"],
            "AssumeRolePolicyDocument": {
                "Version": POLICY_VERSION,
                "Statement": [
                    {
                        "Effect": "Allow",
                        "Principal": {"Service": list(props["trustedServices"])},
                        "Action": "sts:AssumeRole",
                    }
                ],
            },
            "Policies": [
                {
                    "PolicyName": f"{props['name']}-policy",
                    "PolicyDocument": {
                        "Version": POLICY_VERSION,
                        "Statement": self.policy_statements(statements),
                    },
                }
            ],
            "Tags": self._tag_list(props.get("tags", {})),
        }

        managed = [s.policy_arn for s in statements if s.kind == StatementKind.MANAGED_POLICY]
        if managed:
            properties["ManagedPolicyArns"] = managed
        if props.get("permissionsBoundary"):
            properties["PermissionsBoundary"] = props["permissionsBoundary"]

        return {self._ids[node.logical_id]: self._resource(node, "AWS::IAM::Role", properties)}

    @staticmethod
    def _deletion_policy(resource: CfnResource, teardown_policy: str) -> CfnResource:
        policy = "Retain" if teardown_policy == "retain" else "Delete"
        resource["DeletionPolicy"] = policy
        resource["UpdateReplacePolicy"] = policy
        return resource

    def _render_secret_store(self, node: ResourceNode) -> Dict[str, CfnResource]:
        props = node.properties
        resource = self._resource(
            node,
            "AWS::SecretsManager::Secret",
            {
                "Name": props["name"],
                "Description": props["description"],
                "SecretString": json.dumps(props["secretValues"], sort_keys=True),
                "Tags": self._tag_list(props.get("tags", {})),
            },
        )
        return {self._ids[node.logical_id]: self._deletion_policy(resource, props["teardownPolicy"])}

    def _render_log_sink(self, node: ResourceNode) -> Dict[str, CfnResource]:
        props = node.properties
        properties: Dict[str, Any] = {
            "LogGroupName": props["name"],
            "Tags": self._tag_list(props.get("tags", {})),
        }
        if props["retentionDays"] != UNLIMITED_RETENTION:
            properties["RetentionInDays"] = props["retentionDays"]

        resource = self._resource(node, "AWS::Logs::LogGroup", properties)
        return {self._ids[node.logical_id]: self._deletion_policy(resource, props["teardownPolicy"])}

    # ------------------------------------------------------------------------
    # Runtimes, endpoints, gateway
    # ------------------------------------------------------------------------

    def _render_runtime(self, node: ResourceNode) -> Dict[str, CfnResource]:
        props = node.properties
        network = props["network"]

        network_config: Dict[str, Any] = {"NetworkMode": network["mode"]}
        if network["mode"] == "VPC":
            network_config["NetworkModeConfig"] = {
                "SecurityGroups": self._resolve(network["securityGroupIds"]),
                "Subnets": self._resolve(network["subnetIds"]),
            }

        properties = {
            "AgentRuntimeName": runtime_name(props["name"]),
            "Description": props["description"],
            "RoleArn": self._resolve(props["roleArn"]),
            "AgentRuntimeArtifact": {
                "ContainerConfiguration": {"ContainerUri": props["containerImage"]},
            },
            "NetworkConfiguration": network_config,
            "LifecycleConfiguration": {"MaxLifetime": props["timeoutSeconds"]},
            "ProtocolConfiguration": props["protocol"],
            "EnvironmentVariables": dict(props["environment"]),
            "Tags": dict(props.get("tags", {})),
        }
        return {
            self._ids[node.logical_id]: self._resource(node, "AWS::BedrockAgentCore::Runtime", properties)
        }

    def _render_endpoint(self, node: ResourceNode) -> Dict[str, CfnResource]:
        props = node.properties
        properties = {
            "Name": runtime_name(props["name"]),
            "Description": props["description"],
            "AgentRuntimeId": self._resolve(props["runtimeId"]),
            "Tags": dict(props.get("tags", {})),
        }
        return {
            self._ids[node.logical_id]: self._resource(
                node, "AWS::BedrockAgentCore::RuntimeEndpoint", properties
            )
        }

    def _render_gateway(self, node: ResourceNode) -> Dict[str, CfnResource]:
        props = node.properties
        properties = {
            "Name": props["name"],
            "Description": props["description"],
            "ProtocolType": props["protocolType"],
            "AuthorizerType": props["authorizerType"],
            "RoleArn": self._resolve(props["roleArn"]),
            "Tags": dict(props.get("tags", {})),
        }
        return {
            self._ids[node.logical_id]: self._resource(node, "AWS::BedrockAgentCore::Gateway", properties)
        }

    # ------------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------------

    def _render_outputs(self, graph: ResourceGraph) -> Dict[str, CfnOutput]:
        outputs: Dict[str, CfnOutput] = {}
        for binding in OutputCollector().bindings(graph):
            if binding.known is not None:
                value: Any = binding.known
            else:
                value = self.resolve_ref(
                    ResourceRef(
                        kind=graph.get(binding.logical_id).kind,
                        logical_id=binding.logical_id,
                        attribute=binding.attribute,
                    )
                )
            outputs[output_key(binding.label)] = {"Value": value, "Description": binding.description}
        return outputs


def write_template(graph: ResourceGraph, path: Union[str, Path], description: str | None = None) -> Path:
    """Render the graph and write the template as JSON.

    Returns:
        Path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(TemplateRenderer(description).to_json(graph) + "\n")
    logger.info(f"Wrote CloudFormation template to {path}")
    return path
