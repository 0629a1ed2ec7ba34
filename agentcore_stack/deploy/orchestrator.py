"""Deployment orchestrator - sequence the external deployment steps.

Pipeline: load and build (pure), push secrets, bootstrap, render and apply.
Bootstrap failures are logged and ignored since "already bootstrapped" and
"failed" look the same. Any other failure aborts the remaining steps. In
dry-run mode no external call is made.
"""

import logging
from pathlib import Path
from typing import Any, Callable, List, Literal, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field

from ..config import StackSettings
from ..core.exceptions import ExternalToolFailure
from ..stack.builder import ResourceGraphBuilder
from ..stack.cloudformation import output_key, write_template
from ..stack.graph import ResourceGraph
from ..stack.loader import ConfigLoader
from ..stack.models import StackSpec
from ..stack.outputs import OutputCollector, OutputEntry, provisioned_from_outputs
from .environment import find_env_file
from .secrets import SecretPusher, parse_env_file
from .tools import ExternalToolRunner

logger = logging.getLogger(__name__)

StepStatus = Literal["ok", "skipped", "dry-run", "ignored-failure"]


class DeployOptions(BaseModel):
    """Inputs of one deployment run."""

    config_path: Path
    region: str
    prefix: str
    project: Optional[str] = None
    env_file: Optional[Path] = None
    template_path: Path = Path("template.json")
    dry_run: bool = False
    skip_secrets: bool = False
    skip_bootstrap: bool = False
    strict: bool = True


class StepResult(BaseModel):
    """Outcome of one pipeline step."""

    step: str
    status: StepStatus
    detail: str = ""


class DeploymentResult(BaseModel):
    """Outcome of a complete run."""

    stack_name: str
    region: str
    account: Optional[str] = None
    template_path: Optional[Path] = None
    steps: List[StepResult] = Field(default_factory=list)
    outputs: List[OutputEntry] = Field(default_factory=list)


def default_session_factory(region: str) -> Any:
    return boto3.Session(region_name=region)


class DeploymentOrchestrator:
    """Run the deployment pipeline for one stack config."""

    def __init__(
        self,
        loader: Optional[ConfigLoader] = None,
        builder: Optional[ResourceGraphBuilder] = None,
        runner: Optional[ExternalToolRunner] = None,
        session_factory: Callable[[str], Any] = default_session_factory,
        stack_settings: Optional[StackSettings] = None,
    ):
        self.loader = loader
        self.builder = builder or ResourceGraphBuilder()
        self.runner = runner or ExternalToolRunner()
        self.session_factory = session_factory
        self.settings = stack_settings or StackSettings()

    def run(self, options: DeployOptions) -> DeploymentResult:
        """Run every step in order.

        Args:
            options: Deployment inputs

        Returns:
            Per-step results and collected outputs

        Raises:
            ConfigError: If the config is invalid (before any external call)
            InvariantViolation: If the graph is malformed
            ExternalToolFailure: On the first fatal step failure
        """
        loader = self.loader or ConfigLoader(strict=options.strict)
        spec = loader.load_file(options.config_path)
        graph = self.builder.build(spec)

        result = DeploymentResult(stack_name=spec.stack_name, region=options.region)
        log_extra = {"stack": spec.stack_name}
        logger.info(
            f"Deploying '{spec.stack_name}' to {options.region}"
            + (" (dry run)" if options.dry_run else ""),
            extra=log_extra,
        )

        session = None
        if not options.dry_run:
            session = self.session_factory(options.region)
            result.account = self._caller_account(session)

        # Step 1: Push secrets
        result.steps.append(self._push_secrets(options, session))

        # Step 2: Bootstrap
        result.steps.append(self._bootstrap(options, result.account))

        # Step 3: Render and apply
        result.template_path = write_template(graph, options.template_path)
        result.steps.append(self._apply(options, spec, result.template_path))

        if session is not None:
            result.outputs = self._collect_outputs(session, spec, graph)
        else:
            result.outputs = OutputCollector().collect(spec, graph)

        return result

    def _caller_account(self, session: Any) -> str:
        try:
            identity = session.client("sts").get_caller_identity()
        except (ClientError, BotoCoreError) as e:
            raise ExternalToolFailure("identity", "resolving AWS account", cause=e) from e
        account = identity["Account"]
        logger.info(f"AWS account: {account}")
        return account

    def _push_secrets(self, options: DeployOptions, session: Any) -> StepResult:
        step = "push-secrets"
        if options.skip_secrets:
            return StepResult(step=step, status="skipped", detail="--skip-secrets")

        env_path = options.env_file or find_env_file(options.project)
        if env_path is None or not Path(env_path).is_file():
            logger.warning("No .env file found, skipping secrets push", extra={"step": step})
            return StepResult(step=step, status="skipped", detail="no .env file found")

        client = session.client("secretsmanager") if session is not None else None
        pusher = SecretPusher(options.region, options.prefix, dry_run=options.dry_run, client=client)
        results = pusher.push(parse_env_file(env_path))

        pushed = [r.secret_name for r in results if r.action != "skipped"]
        status: StepStatus = "dry-run" if options.dry_run else "ok"
        detail = f"{env_path}: " + (", ".join(pushed) if pushed else "no matching keys")
        return StepResult(step=step, status=status, detail=detail)

    def _bootstrap(self, options: DeployOptions, account: Optional[str]) -> StepResult:
        step = "bootstrap"
        if options.skip_bootstrap:
            return StepResult(step=step, status="skipped", detail="--skip-bootstrap")

        command = self.settings.bootstrap_command.format(
            account=account or "<account>", region=options.region
        )
        if options.dry_run:
            return StepResult(step=step, status="dry-run", detail=command)

        try:
            self.runner.run(step, command, ignorable=True)
        except ExternalToolFailure as e:
            if not e.ignorable:
                raise
            logger.warning(f"{e.message} (continuing)", extra={"step": step})
            return StepResult(step=step, status="ignored-failure", detail=e.message)
        return StepResult(step=step, status="ok", detail=command)

    def _apply(self, options: DeployOptions, spec: StackSpec, template_path: Path) -> StepResult:
        step = "apply"
        command = self.settings.apply_command.format(
            template=template_path, stack=spec.stack_name, region=options.region
        )
        if options.dry_run:
            return StepResult(step=step, status="dry-run", detail=command)

        self.runner.run(step, command)
        return StepResult(step=step, status="ok", detail=command)

    def _collect_outputs(self, session: Any, spec: StackSpec, graph: ResourceGraph) -> List[OutputEntry]:
        """Read stack outputs back; anything unreadable stays pending."""
        collector = OutputCollector()
        try:
            response = session.client("cloudformation").describe_stacks(StackName=spec.stack_name)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not read stack outputs: {e}")
            return collector.collect(spec, graph)

        stacks = response.get("Stacks", [])
        raw = stacks[0].get("Outputs", []) if stacks else []
        outputs = {item["OutputKey"]: item["OutputValue"] for item in raw}
        provisioned = provisioned_from_outputs(graph, outputs, key_for_label=output_key)
        return collector.collect(spec, graph, provisioned)
