"""Cross-field validation of stack definitions.

Field-level rules live on the models. The checks here span several fields and
report the exact path of the offending value.
"""

import logging

from ..core.exceptions import ConfigError
from .graph import (
    AGENT_KINDS,
    cfn_logical_id,
    make_logical_id,
    reserved_agent_names,
    reserved_logical_ids,
    runtime_name,
)
from .models import StackSpec

logger = logging.getLogger(__name__)


class StackValidator:
    """Validate invariants that span more than one field of a ``StackSpec``."""

    def validate(self, spec: StackSpec) -> None:
        """Run every cross-field check, stopping at the first violation.

        Args:
            spec: Stack definition to validate

        Raises:
            ConfigError: With the path of the first offending field
        """
        self._validate_defaults(spec)
        self._validate_network(spec)
        self._validate_identity(spec)
        self._validate_observability(spec)
        self._validate_agent_names(spec)
        self._validate_secrets(spec)

    def _validate_defaults(self, spec: StackSpec) -> None:
        defaults = [i for i, agent in enumerate(spec.agents) if agent.is_default]
        if len(defaults) > 1:
            raise ConfigError(
                f"agents[{defaults[1]}].isDefault",
                "at most one agent may be marked as default",
            )

    def _validate_network(self, spec: StackSpec) -> None:
        """Network modes are mutually exclusive.

        Raises:
            ConfigError: If reference and creation fields are both set, or a
                referenced network has no subnets
        """
        network = spec.network
        if network is None or not network.is_reference:
            return

        conflicting = network.creation_fields_set
        if conflicting:
            raise ConfigError(
                f"network.{conflicting[0]}",
                "cannot be combined with externalNetworkId (reference and creation modes are exclusive)",
            )
        if not network.subnet_ids:
            raise ConfigError(
                "network.subnetIds",
                "required when externalNetworkId references an existing network",
            )

    def _validate_identity(self, spec: StackSpec) -> None:
        identity = spec.identity
        if identity is None or not identity.is_reference:
            return

        conflicting = identity.creation_fields_set
        if conflicting:
            raise ConfigError(
                f"identity.{conflicting[0]}",
                "cannot be combined with roleArn (reference and creation modes are exclusive)",
            )

    def _validate_observability(self, spec: StackSpec) -> None:
        observability = spec.observability
        if observability is not None and observability.log_retention_days <= 0:
            raise ConfigError(
                "observability.logRetentionDays",
                f"must be a positive number of days (got {observability.log_retention_days})",
            )

    def _validate_agent_names(self, spec: StackSpec) -> None:
        """Reject agent names whose ids collide with other nodes.

        Ids are compared both as graph logical ids and in their rendered
        CloudFormation form, where case and separators are folded.

        Raises:
            ConfigError: If an agent name is reserved or yields a colliding id
                or runtime name
        """
        reserved_names = reserved_agent_names()
        reserved_ids = reserved_logical_ids(spec.stack_name)
        reserved_cfn_ids = {cfn_logical_id(logical_id): logical_id for logical_id in reserved_ids}
        agent_cfn_ids: dict[str, str] = {}
        runtime_names: dict[str, str] = {}

        for i, agent in enumerate(spec.agents):
            path = f"agents[{i}].name"
            if agent.name.lower() in reserved_names:
                raise ConfigError(path, f"'{agent.name}' is reserved for a stack-level resource")

            name = runtime_name(agent.name)
            if name in runtime_names:
                raise ConfigError(
                    path,
                    f"'{agent.name}' and '{runtime_names[name]}' both produce runtime name '{name}'",
                )
            runtime_names[name] = agent.name

            for kind in AGENT_KINDS:
                logical_id = make_logical_id(spec.stack_name, kind, agent_name=agent.name)
                if logical_id in reserved_ids:
                    raise ConfigError(
                        path,
                        f"'{agent.name}' produces logical id '{logical_id}' "
                        f"which collides with a stack-level resource",
                    )
                cfn_id = cfn_logical_id(logical_id)
                if cfn_id in reserved_cfn_ids:
                    raise ConfigError(
                        path,
                        f"'{agent.name}' produces CloudFormation id '{cfn_id}' "
                        f"which collides with stack-level resource '{reserved_cfn_ids[cfn_id]}'",
                    )
                if cfn_id in agent_cfn_ids:
                    raise ConfigError(
                        path,
                        f"'{agent.name}' produces CloudFormation id '{cfn_id}' "
                        f"which collides with agent '{agent_cfn_ids[cfn_id]}'",
                    )
                agent_cfn_ids[cfn_id] = agent.name

    def _validate_secrets(self, spec: StackSpec) -> None:
        secrets = spec.secrets
        if secrets is not None and secrets.create_secrets and not secrets.secret_values:
            logger.warning(
                "secrets.createSecrets is set but secretValues is empty; no secret store will be created"
            )
