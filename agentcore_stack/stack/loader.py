"""Config loader - Parse, default and validate stack definitions."""

import json
import logging
import types
from pathlib import Path
from typing import Any, List, Optional, Type, Union, get_args, get_origin

import yaml
from pydantic import AliasChoices, BaseModel, ValidationError

from ..config import settings
from ..core.exceptions import ConfigError
from .models import StackSpec
from .validation import StackValidator

logger = logging.getLogger(__name__)

FORMAT_BY_SUFFIX = {
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
}


def detect_format(path: Union[str, Path]) -> str:
    """Infer the document format from a file extension.

    Raises:
        ConfigError: If the extension is not recognized
    """
    suffix = Path(path).suffix.lower()
    if suffix not in FORMAT_BY_SUFFIX:
        raise ConfigError(
            "",
            f"Cannot infer format from extension '{suffix or path}' (use .json, .yaml or .yml)",
        )
    return FORMAT_BY_SUFFIX[suffix]


def format_field_path(loc: tuple) -> str:
    """Render a pydantic error location as ``agents[1].memoryMB``."""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path = f"{path}.{part}" if path else str(part)
    return path


def config_error_from_validation(error: ValidationError) -> ConfigError:
    """Convert the first pydantic error into a ConfigError with its path."""
    first = error.errors()[0]
    message = first["msg"]
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return ConfigError(format_field_path(first["loc"]), message)


def apply_defaults(spec: StackSpec) -> StackSpec:
    """Fill stack-level defaults that depend on which mode was chosen.

    Per-agent defaults (memory, timeout, protocol) are model defaults. A
    network in create mode gets its CIDR, AZ count and endpoint flag here.
    """
    network = spec.network
    if network is None or network.is_reference:
        return spec

    network = network.model_copy(
        update={
            "cidr_block": network.effective_cidr_block,
            "availability_zone_count": network.effective_az_count,
            "enable_service_endpoints": network.effective_service_endpoints,
        }
    )
    return spec.model_copy(update={"network": network})


def resolve_default_agent(spec: StackSpec) -> StackSpec:
    """Mark the first agent as default when none is marked."""
    if any(agent.is_default for agent in spec.agents):
        return spec

    first, *rest = spec.agents
    agents = [first.model_copy(update={"is_default": True}), *rest]
    logger.debug(f"No default agent marked, using '{first.name}'")
    return spec.model_copy(update={"agents": agents})


def _accepted_keys(name: str, field: Any) -> set[str]:
    keys = {name}
    if field.alias:
        keys.add(field.alias)
    if isinstance(field.validation_alias, str):
        keys.add(field.validation_alias)
    elif isinstance(field.validation_alias, AliasChoices):
        keys.update(choice for choice in field.validation_alias.choices if isinstance(choice, str))
    return keys


def _nested_model(annotation: Any) -> tuple[Optional[Type[BaseModel]], bool]:
    """Find the model type inside ``Optional[...]`` / ``List[...]`` annotations.

    Returns:
        (model class or None, whether the field holds a list of them)
    """
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation, False

    origin = get_origin(annotation)
    if origin in (list, List):
        model, _ = _nested_model(get_args(annotation)[0])
        return model, True
    if origin in (Union, types.UnionType):
        for arg in get_args(annotation):
            if arg is type(None):
                continue
            model, is_list = _nested_model(arg)
            if model is not None:
                return model, is_list
    return None, False


class ConfigLoader:
    """Load stack definitions from JSON or YAML.

    Parsing and validation are pure. The only file access happens in
    ``load_file``.
    """

    def __init__(self, strict: Optional[bool] = None, validator: Optional[StackValidator] = None):
        self.strict = settings.strict_config if strict is None else strict
        self.validator = validator or StackValidator()

    def load_file(self, path: Union[str, Path], fmt: Optional[str] = None) -> StackSpec:
        """Load a stack definition from a file.

        Args:
            path: Path to a .json, .yaml or .yml document
            fmt: Explicit format, overriding the extension

        Returns:
            Validated StackSpec

        Raises:
            ConfigError: If reading, parsing or validation fails
        """
        path = Path(path)

        if not path.exists():
            raise ConfigError("", f"Config file not found: {path}")

        fmt = fmt or detect_format(path)
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise ConfigError("", f"Cannot read {path}: {e}") from e

        logger.debug(f"Loading {fmt} config from {path}")
        return self.load_bytes(raw, fmt)

    def load_bytes(self, raw: Union[bytes, str], fmt: str = "json") -> StackSpec:
        """Parse raw bytes in the given format and validate them.

        Raises:
            ConfigError: If parsing or validation fails
        """
        return self.load_dict(self.parse(raw, fmt))

    def parse(self, raw: Union[bytes, str], fmt: str) -> Any:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ConfigError("", f"Config is not valid UTF-8: {e}") from e

        fmt = fmt.lower()
        if fmt == "json":
            try:
                return json.loads(raw)
            except json.JSONDecodeError as e:
                raise ConfigError("", f"Invalid JSON: {e}") from e
        if fmt in ("yaml", "yml"):
            try:
                return yaml.safe_load(raw)
            except yaml.YAMLError as e:
                raise ConfigError("", f"Invalid YAML: {e}") from e

        raise ConfigError("", f"Unsupported config format '{fmt}' (expected json or yaml)")

    def load_dict(self, data: Any) -> StackSpec:
        """Validate already-parsed data.

        Steps: unknown-field check, schema validation, mode-dependent
        defaults, cross-field validation, default agent resolution.

        Raises:
            ConfigError: On the first violation, with its field path
        """
        if not isinstance(data, dict):
            raise ConfigError("", "Config document must contain a mapping")

        # 1. Unknown fields
        self._check_unknown_fields(data, StackSpec, "")

        # 2. Pydantic validation (schema and per-agent defaults)
        try:
            spec = StackSpec.model_validate(data)
        except ValidationError as e:
            raise config_error_from_validation(e) from e

        # 3. Stack-level defaults
        spec = apply_defaults(spec)

        # 4. Cross-field invariants
        self.validator.validate(spec)

        # 5. Default agent
        return resolve_default_agent(spec)

    def validate_only(self, path: Union[str, Path], fmt: Optional[str] = None) -> Optional[ConfigError]:
        """Check a config file without raising.

        Returns:
            None if the file is valid, else the first ConfigError
        """
        try:
            self.load_file(path, fmt)
        except ConfigError as e:
            return e
        return None

    def _check_unknown_fields(self, data: dict, model: Type[BaseModel], path: str) -> None:
        """Walk the raw document against the model tree.

        Raises:
            ConfigError: In strict mode, for the first unknown key
        """
        lookup = {}
        for name, field in model.model_fields.items():
            for key in _accepted_keys(name, field):
                lookup[key] = name

        for key, value in data.items():
            key_path = f"{path}.{key}" if path else str(key)
            field_name = lookup.get(key)
            if field_name is None:
                if self.strict:
                    raise ConfigError(key_path, "unknown field")
                logger.debug(f"Ignoring unknown field '{key_path}'")
                continue

            nested, is_list = _nested_model(model.model_fields[field_name].annotation)
            if nested is None:
                continue
            if is_list and isinstance(value, list):
                for i, item in enumerate(value):
                    if isinstance(item, dict):
                        self._check_unknown_fields(item, nested, f"{key_path}[{i}]")
            elif not is_list and isinstance(value, dict):
                self._check_unknown_fields(value, nested, key_path)
