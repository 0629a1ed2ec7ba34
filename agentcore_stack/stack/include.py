"""Include existing CloudFormation templates.

An included template keeps its resources. Parameter overrides become the
parameters' defaults, stack tags are added to every resource that already
declares ``Tags``, and logical ids are either preserved or namespaced under
the stack name. The result can be written on its own or merged with a
template rendered from a stack definition.
"""

import copy
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..core.exceptions import ConfigError, InvariantViolation
from .graph import cfn_logical_id
from .loader import config_error_from_validation, detect_format

logger = logging.getLogger(__name__)

MERGED_SECTIONS = ("Parameters", "Mappings", "Conditions", "Resources", "Outputs")

SUB_VARIABLE = re.compile(r"\$\{([A-Za-z0-9]+)((?:\.[A-Za-z0-9.]+)?)\}")


# ============================================================================
# YAML with CloudFormation short-form functions
# ============================================================================

class TemplateYamlLoader(yaml.SafeLoader):
    """Safe loader that understands ``!Ref``, ``!GetAtt``, ``!Sub`` and friends."""


def _construct_intrinsic(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Dict[str, Any]:
    if isinstance(node, yaml.ScalarNode):
        value: Any = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)

    if tag_suffix == "Ref":
        return {"Ref": value}
    if tag_suffix == "Condition":
        return {"Condition": value}
    if tag_suffix == "GetAtt" and isinstance(value, str):
        value = value.split(".", 1)
    return {f"Fn::{tag_suffix}": value}


TemplateYamlLoader.add_multi_constructor("!", _construct_intrinsic)
# Template versions such as 2010-09-09 stay strings
TemplateYamlLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def load_template(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a CloudFormation template from JSON or YAML.

    Raises:
        ConfigError: If the file is missing, unparsable or has no resources
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError("", f"Template file not found: {path}")

    fmt = detect_format(path)
    text = path.read_text()
    try:
        if fmt == "json":
            template = json.loads(text)
        else:
            template = yaml.load(text, Loader=TemplateYamlLoader)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError("", f"Invalid {fmt.upper()} in {path}: {e}") from e

    if not isinstance(template, dict):
        raise ConfigError("", "Template must be a mapping")
    resources = template.get("Resources")
    if not isinstance(resources, dict) or not resources:
        raise ConfigError("Resources", "template must declare at least one resource")
    return template


# ============================================================================
# Include configuration
# ============================================================================

class IncludeConfig(BaseModel):
    """How an existing template is included."""

    stack_name: str = Field(..., pattern=r"^[A-Za-z][A-Za-z0-9-_]*$")
    template_file: Path
    parameters: Dict[str, str] = Field(default_factory=dict)
    preserve_logical_ids: bool = True
    tags: Dict[str, str] = Field(default_factory=dict)


def apply_parameters(template: Dict[str, Any], overrides: Dict[str, str]) -> None:
    """Set overridden parameters' defaults in place.

    Raises:
        ConfigError: If a parameter is not declared or the value is not allowed
    """
    declared = template.get("Parameters") or {}
    for name, value in overrides.items():
        if name not in declared:
            raise ConfigError(f"Parameters.{name}", "is not declared by the template")
        allowed = declared[name].get("AllowedValues")
        if allowed is not None and value not in [str(v) for v in allowed]:
            raise ConfigError(
                f"Parameters.{name}",
                f"'{value}' is not one of {', '.join(str(v) for v in allowed)}",
            )
        declared[name]["Default"] = value


def apply_tags(template: Dict[str, Any], tags: Dict[str, str]) -> int:
    """Add stack tags to resources that declare ``Tags``; existing keys win.

    Returns:
        Number of resources tagged
    """
    tagged = 0
    for resource in template["Resources"].values():
        properties = resource.get("Properties") or {}
        existing = properties.get("Tags")
        if isinstance(existing, list):
            keys = {tag.get("Key") for tag in existing if isinstance(tag, dict)}
            existing.extend({"Key": k, "Value": v} for k, v in sorted(tags.items()) if k not in keys)
        elif isinstance(existing, dict):
            for key, value in tags.items():
                existing.setdefault(key, value)
        else:
            continue
        tagged += 1
    return tagged


def rename_logical_ids(template: Dict[str, Any], prefix: str) -> Dict[str, str]:
    """Prefix every resource id and rewrite the references to it.

    Covers ``Ref``, ``Fn::GetAtt``, ``Fn::Sub`` variables and ``DependsOn``.

    Returns:
        Old id -> new id
    """
    renames = {old: f"{prefix}{old}" for old in template["Resources"]}

    def rename_sub(text: str, local_vars: Dict[str, Any]) -> str:
        def replace(match: re.Match) -> str:
            name, attribute = match.group(1), match.group(2)
            if name in renames and name not in local_vars:
                return f"${{{renames[name]}{attribute}}}"
            return match.group(0)

        return SUB_VARIABLE.sub(replace, text)

    def rewrite(value: Any) -> Any:
        if isinstance(value, list):
            return [rewrite(item) for item in value]
        if not isinstance(value, dict):
            return value
        if len(value) == 1:
            key, arg = next(iter(value.items()))
            if key == "Ref" and isinstance(arg, str) and arg in renames:
                return {"Ref": renames[arg]}
            if key == "Fn::GetAtt":
                if isinstance(arg, str):
                    arg = arg.split(".", 1)
                if arg and isinstance(arg[0], str) and arg[0] in renames:
                    return {"Fn::GetAtt": [renames[arg[0]], *rewrite(arg[1:])]}
            if key == "Fn::Sub":
                if isinstance(arg, str):
                    return {"Fn::Sub": rename_sub(arg, {})}
                if isinstance(arg, list) and arg and isinstance(arg[0], str):
                    local_vars = arg[1] if len(arg) > 1 and isinstance(arg[1], dict) else {}
                    return {"Fn::Sub": [rename_sub(arg[0], local_vars), *rewrite(arg[1:])]}
        return {k: rewrite(v) for k, v in value.items()}

    resources = {}
    for old, resource in template["Resources"].items():
        resource = rewrite(resource)
        depends_on = resource.get("DependsOn")
        if isinstance(depends_on, str):
            resource["DependsOn"] = renames.get(depends_on, depends_on)
        elif isinstance(depends_on, list):
            resource["DependsOn"] = [renames.get(dep, dep) for dep in depends_on]
        resources[renames[old]] = resource
    template["Resources"] = resources

    for section in ("Outputs", "Conditions"):
        if section in template:
            template[section] = rewrite(template[section])
    return renames


def include_template(config: IncludeConfig) -> Dict[str, Any]:
    """Load and adapt the configured template.

    Raises:
        ConfigError: On unreadable templates or bad parameter overrides
    """
    template = copy.deepcopy(load_template(config.template_file))
    apply_parameters(template, config.parameters)
    tagged = apply_tags(template, config.tags) if config.tags else 0
    if not config.preserve_logical_ids:
        rename_logical_ids(template, cfn_logical_id(config.stack_name))

    logger.info(
        f"Included {len(template['Resources'])} resources from {config.template_file} "
        f"({len(config.parameters)} parameter override(s), {tagged} resource(s) tagged)"
    )
    return template


def merge_templates(base: Dict[str, Any], included: Dict[str, Any]) -> Dict[str, Any]:
    """Merge an included template into a rendered one.

    Raises:
        InvariantViolation: If both templates define the same entry
    """
    merged = copy.deepcopy(base)
    for section in MERGED_SECTIONS:
        entries = included.get(section)
        if not entries:
            continue
        target = merged.setdefault(section, {})
        for key, value in entries.items():
            if key in target:
                raise InvariantViolation(f"Included template redefines {section} entry '{key}'")
            target[key] = copy.deepcopy(value)
    return merged


def write_json_template(template: Dict[str, Any], path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(template, indent=2, sort_keys=True) + "\n")
    logger.info(f"Wrote CloudFormation template to {path}")
    return path


# ============================================================================
# Fluent composition
# ============================================================================

class TemplateInclude:
    """Compose an include of an existing template.

    Example:
        template = (
            TemplateInclude("stats-agent-team", "template.yaml")
            .with_parameter("Environment", "production")
            .with_tags({"Project": "stats-agent-team"})
            .build()
        )
    """

    def __init__(self, stack_name: str, template_file: Union[str, Path]):
        self._stack_name = stack_name
        self._template_file = Path(template_file)
        self._parameters: Dict[str, str] = {}
        self._tags: Dict[str, str] = {}
        self._preserve_logical_ids = True

    def with_parameter(self, name: str, value: str) -> "TemplateInclude":
        self._parameters[name] = value
        return self

    def with_parameters(self, parameters: Dict[str, str]) -> "TemplateInclude":
        self._parameters.update(parameters)
        return self

    def with_tag(self, key: str, value: str) -> "TemplateInclude":
        self._tags[key] = value
        return self

    def with_tags(self, tags: Dict[str, str]) -> "TemplateInclude":
        self._tags.update(tags)
        return self

    def with_preserve_logical_ids(self, preserve: bool) -> "TemplateInclude":
        self._preserve_logical_ids = preserve
        return self

    def config(self) -> IncludeConfig:
        try:
            return IncludeConfig(
                stack_name=self._stack_name,
                template_file=self._template_file,
                parameters=dict(self._parameters),
                preserve_logical_ids=self._preserve_logical_ids,
                tags=dict(self._tags),
            )
        except ValidationError as e:
            raise config_error_from_validation(e) from e

    def build(self) -> Dict[str, Any]:
        return include_template(self.config())

    def merge_into(self, base: Dict[str, Any]) -> Dict[str, Any]:
        return merge_templates(base, self.build())

    def write(self, path: Union[str, Path], base: Optional[Dict[str, Any]] = None) -> Path:
        template = self.merge_into(base) if base is not None else self.build()
        return write_json_template(template, path)
