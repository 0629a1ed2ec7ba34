"""Stack definitions and resource graph construction."""

from .builder import CapabilityStatement, ResourceGraphBuilder, StatementKind, retention_tier
from .cloudformation import TemplateRenderer, write_template
from .composer import AgentComposer, StackComposer
from .graph import ResourceGraph, ResourceKind, ResourceNode, ResourceRef, make_logical_id
from .include import IncludeConfig, TemplateInclude, include_template, load_template, merge_templates
from .loader import ConfigLoader, apply_defaults, resolve_default_agent
from .models import (
    AgentSpec,
    GatewaySpec,
    IdentitySpec,
    NetworkSpec,
    ObservabilitySpec,
    SecretsSpec,
    StackSpec,
)
from .outputs import PENDING, OutputCollector, OutputEntry, load_provisioned
from .validation import StackValidator

__all__ = [
    # Models
    "AgentSpec",
    "GatewaySpec",
    "IdentitySpec",
    "NetworkSpec",
    "ObservabilitySpec",
    "SecretsSpec",
    "StackSpec",
    # Loading
    "ConfigLoader",
    "StackValidator",
    "apply_defaults",
    "resolve_default_agent",
    # Graph
    "CapabilityStatement",
    "ResourceGraph",
    "ResourceGraphBuilder",
    "ResourceKind",
    "ResourceNode",
    "ResourceRef",
    "StatementKind",
    "make_logical_id",
    "retention_tier",
    # Outputs and rendering
    "PENDING",
    "OutputCollector",
    "OutputEntry",
    "TemplateRenderer",
    "load_provisioned",
    "write_template",
    # Composition
    "AgentComposer",
    "StackComposer",
    # Template inclusion
    "IncludeConfig",
    "TemplateInclude",
    "include_template",
    "load_template",
    "merge_templates",
]
