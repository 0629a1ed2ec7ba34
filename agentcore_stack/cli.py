"""CLI for AgentCore stack definitions and deployment."""

import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import settings
from .core.exceptions import ConfigError, StackError
from .deploy.environment import detect_project_name, find_env_file, resolve_prefix, resolve_region
from .deploy.orchestrator import DeploymentOrchestrator, DeployOptions
from .deploy.secrets import SecretPusher, classify_secrets, parse_env_file
from .observability.logging import setup_logging
from .stack.builder import ResourceGraphBuilder
from .stack.cloudformation import TemplateRenderer, write_template
from .stack.examples import write_example_config
from .stack.include import TemplateInclude, merge_templates, write_json_template
from .stack.loader import ConfigLoader
from .stack.outputs import OutputCollector, OutputEntry, entries_to_dict, load_provisioned

app = typer.Typer(
    name="agentcore-stack",
    help="AgentCore stacks - validate, plan, synthesize and deploy multi-agent runtimes",
    add_completion=False,
)
console = Console()


def _configure_logging(verbose: bool) -> None:
    setup_logging(level="DEBUG" if verbose else settings.log_level, json_format=settings.log_json)


def _loader(lenient: bool) -> ConfigLoader:
    return ConfigLoader(strict=False if lenient else None)


def _fail(title: str, error: Exception) -> None:
    console.print(f"[red]✗ {title}:[/red]\n{escape(str(error))}")
    raise typer.Exit(code=1)


def _outputs_table(entries: List[OutputEntry]) -> Table:
    table = Table(title="Outputs")
    table.add_column("Label", style="cyan")
    table.add_column("Value", style="green")
    for entry in entries:
        style = "yellow" if entry.is_pending else None
        table.add_row(entry.label, entry.value, style=style)
    return table


# ============================================================================
# Validate Command
# ============================================================================


@app.command()
def validate(
    config_file: Path = typer.Argument(..., help="Path to stack config (.json, .yaml, .yml)"),
    lenient: bool = typer.Option(False, "--lenient", help="Ignore unknown fields"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Validate a stack configuration file."""
    _configure_logging(verbose)
    console.print(f"[bold]Validating stack config:[/bold] {config_file}")

    try:
        spec = _loader(lenient).load_file(config_file)
    except StackError as e:
        _fail("Validation failed", e)

    console.print("[green]✓ Stack configuration is valid[/green]")

    if verbose:
        console.print(f"\n[bold]Stack:[/bold] {spec.stack_name}")
        if spec.description:
            console.print(f"[bold]Description:[/bold] {spec.description}")
        console.print(f"[bold]Agents:[/bold] {len(spec.agents)}")

        table = Table(title="Agents")
        table.add_column("Name", style="cyan")
        table.add_column("Image", style="green")
        table.add_column("Memory", style="yellow")
        table.add_column("Timeout", style="yellow")
        table.add_column("Protocol", style="magenta")
        table.add_column("Default")

        for agent in spec.agents:
            table.add_row(
                agent.name,
                agent.container_image,
                f"{agent.memory_mb} MB",
                f"{agent.timeout_seconds}s",
                agent.protocol,
                "✓" if agent.is_default else "",
            )

        console.print(table)


# ============================================================================
# Plan Command
# ============================================================================


@app.command()
def plan(
    config_file: Path = typer.Argument(..., help="Path to stack config"),
    output_format: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
    lenient: bool = typer.Option(False, "--lenient", help="Ignore unknown fields"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Build the resource graph without deploying anything."""
    _configure_logging(verbose)

    if output_format not in ("table", "json"):
        _fail("Invalid option", ValueError(f"Unknown format '{output_format}' (use table or json)"))

    try:
        spec = _loader(lenient).load_file(config_file)
        graph = ResourceGraphBuilder().build(spec)
    except StackError as e:
        _fail("Planning failed", e)

    if output_format == "json":
        typer.echo(graph.to_json())
        return

    console.print(f"[bold]Resource graph for {spec.stack_name}[/bold]")

    node_table = Table(title="Resources")
    node_table.add_column("Logical ID", style="cyan")
    node_table.add_column("Kind", style="green")
    node_table.add_column("Mode", style="magenta")
    node_table.add_column("Depends On", style="yellow")

    for node in graph.nodes:
        node_table.add_row(
            node.logical_id,
            node.kind.value,
            str(node.properties.get("mode", "")),
            ", ".join(node.depends_on) or "-",
        )

    console.print(node_table)

    stage_table = Table(title="Provisioning Stages")
    stage_table.add_column("Stage", style="cyan")
    stage_table.add_column("Resources", style="green")

    for idx, stage in enumerate(graph.stages()):
        stage_table.add_row(str(idx + 1), ", ".join(stage))

    console.print(stage_table)


# ============================================================================
# Synth Command
# ============================================================================


@app.command()
def synth(
    config_file: Path = typer.Argument(..., help="Path to stack config"),
    output: Path = typer.Option(
        Path(settings.template_file), "--output", "-o", help="Where to write the template"
    ),
    lenient: bool = typer.Option(False, "--lenient", help="Ignore unknown fields"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Render the stack as a CloudFormation template."""
    _configure_logging(verbose)

    try:
        spec = _loader(lenient).load_file(config_file)
        graph = ResourceGraphBuilder().build(spec)
        path = write_template(graph, output, description=spec.description or None)
    except StackError as e:
        _fail("Synthesis failed", e)

    console.print(f"[green]✓ Wrote {len(graph.nodes)} resources for {spec.stack_name} to {path}[/green]")


# ============================================================================
# Include Command
# ============================================================================


def _pairs(values: Optional[List[str]], option: str) -> dict:
    pairs = {}
    for value in values or []:
        key, sep, item = value.partition("=")
        if not sep or not key:
            raise ConfigError(option, f"expected KEY=VALUE, got '{value}'")
        pairs[key] = item
    return pairs


@app.command()
def include(
    template_file: Path = typer.Argument(..., help="Existing CloudFormation template (.json, .yaml, .yml)"),
    stack_name: Optional[str] = typer.Option(
        None, "--stack-name", "-s", help="Stack name (default: the --config stack's name)"
    ),
    parameter: Optional[List[str]] = typer.Option(
        None, "--parameter", "-p", help="Parameter override KEY=VALUE (repeatable)"
    ),
    tag: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Stack tag KEY=VALUE (repeatable)"),
    rename_ids: bool = typer.Option(
        False, "--rename-ids", help="Prefix included logical ids with the stack name"
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Stack config to render and merge the template into"
    ),
    output: Path = typer.Option(
        Path(settings.template_file), "--output", "-o", help="Where to write the template"
    ),
    lenient: bool = typer.Option(False, "--lenient", help="Ignore unknown fields"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Include an existing CloudFormation template, optionally merged with a stack."""
    _configure_logging(verbose)

    try:
        base = None
        if config_file is not None:
            spec = _loader(lenient).load_file(config_file)
            base = TemplateRenderer(spec.description or None).render(ResourceGraphBuilder().build(spec))
            stack_name = stack_name or spec.stack_name
        if not stack_name:
            raise ConfigError("stackName", "pass --stack-name or --config")

        tags = _pairs(tag, "--tag")
        template = (
            TemplateInclude(stack_name, template_file)
            .with_parameters(_pairs(parameter, "--parameter"))
            .with_tags(tags)
            .with_preserve_logical_ids(not rename_ids)
            .build()
        )
        if base is not None:
            template = merge_templates(base, template)
        path = write_json_template(template, output)
    except StackError as e:
        _fail("Include failed", e)

    console.print(
        f"[green]✓ Wrote {len(template['Resources'])} resources for {stack_name} to {path}[/green]"
    )
    if tags:
        console.print(f"[dim]Stack tags: {', '.join(f'{k}={v}' for k, v in sorted(tags.items()))}[/dim]")


# ============================================================================
# Init Command
# ============================================================================


@app.command()
def init(
    path: Path = typer.Argument(Path("agentcore.yaml"), help="Config file to create (.json, .yaml, .yml)"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
):
    """Write an example stack configuration."""
    _configure_logging(False)
    try:
        written = write_example_config(path, overwrite=force)
    except (StackError, FileExistsError) as e:
        _fail("Init failed", e)

    console.print(f"[green]✓ Wrote example config to {written}[/green]")
    console.print(f"[dim]Next: agentcore-stack validate {written}[/dim]")


# ============================================================================
# Outputs Command
# ============================================================================


@app.command()
def outputs(
    config_file: Path = typer.Argument(..., help="Path to stack config"),
    provisioned: Optional[Path] = typer.Option(
        None, "--provisioned", "-p", help="JSON file mapping logical ids to provider attributes"
    ),
    output_format: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
    lenient: bool = typer.Option(False, "--lenient", help="Ignore unknown fields"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show the stack's output summary."""
    _configure_logging(verbose)
    try:
        spec = _loader(lenient).load_file(config_file)
        graph = ResourceGraphBuilder().build(spec)
        attributes = load_provisioned(provisioned) if provisioned else {}
        entries = OutputCollector().collect(spec, graph, attributes)
    except StackError as e:
        _fail("Collecting outputs failed", e)

    if output_format == "json":
        typer.echo(json.dumps(entries_to_dict(entries), indent=2))
    else:
        console.print(_outputs_table(entries))


# ============================================================================
# Push Secrets Command
# ============================================================================


@app.command("push-secrets")
def push_secrets(
    env_file: Optional[Path] = typer.Argument(None, help="Path to .env file (default: auto-detect)"),
    region: Optional[str] = typer.Option(None, "--region", help="AWS region"),
    prefix: Optional[str] = typer.Option(None, "--prefix", help="Secret name prefix"),
    project: Optional[str] = typer.Option(None, "--project", help="Project for per-project .env lookup"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without creating secrets"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Push .env values to AWS Secrets Manager, grouped as <prefix>/llm, /search and /config."""
    _configure_logging(verbose)

    project = project or detect_project_name()
    path = env_file or find_env_file(project)
    if path is None or not path.is_file():
        console.print(f"[red]✗ No .env file found[/red] (searched .env, ../.env, ~/{settings.config_dir}/)")
        raise typer.Exit(code=1)

    region = resolve_region(region)
    prefix = resolve_prefix(prefix)

    console.print(f"[bold]Reading from:[/bold] {path}")
    console.print(f"[bold]AWS Region:[/bold] {region}")
    console.print(f"[bold]Secret prefix:[/bold] {prefix}")
    if dry_run:
        console.print("[yellow]Mode: DRY RUN (no changes will be made)[/yellow]")

    values = parse_env_file(path)
    if verbose:
        for group, keys in classify_secrets(values).items():
            for key in keys:
                console.print(f"  Found {group} key: {key}")

    try:
        results = SecretPusher(region, prefix, dry_run=dry_run).push(values)
    except StackError as e:
        _fail("Pushing secrets failed", e)

    table = Table(title="Secrets")
    table.add_column("Secret", style="cyan")
    table.add_column("Action", style="green")
    table.add_column("Keys", style="yellow")

    for result in results:
        table.add_row(result.secret_name, result.action, ", ".join(result.keys) or "-")

    console.print(table)

    if dry_run:
        for result in results:
            if result.preview:
                console.print(f"[dim]{result.secret_name}: {result.preview}[/dim]")


# ============================================================================
# Deploy Command
# ============================================================================


@app.command()
def deploy(
    config_file: Path = typer.Argument(..., help="Path to stack config"),
    region: Optional[str] = typer.Option(None, "--region", help="AWS region"),
    prefix: Optional[str] = typer.Option(None, "--prefix", help="Secret name prefix"),
    project: Optional[str] = typer.Option(None, "--project", help="Project for per-project .env lookup"),
    env_file: Optional[Path] = typer.Option(None, "--env", help="Path to .env file (default: auto-detect)"),
    template: Path = typer.Option(
        Path(settings.template_file), "--template", help="Where to write the rendered template"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build and render without applying"),
    skip_secrets: bool = typer.Option(False, "--skip-secrets", help="Skip pushing secrets"),
    skip_bootstrap: bool = typer.Option(False, "--skip-bootstrap", help="Skip bootstrap"),
    lenient: bool = typer.Option(False, "--lenient", help="Ignore unknown fields"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Push secrets, bootstrap and apply the stack."""
    _configure_logging(verbose)

    options = DeployOptions(
        config_path=config_file,
        region=resolve_region(region),
        prefix=resolve_prefix(prefix),
        project=project or detect_project_name(),
        env_file=env_file,
        template_path=template,
        dry_run=dry_run,
        skip_secrets=skip_secrets,
        skip_bootstrap=skip_bootstrap,
        strict=not lenient and settings.strict_config,
    )

    console.print(f"[bold]Deploying:[/bold] {config_file}")
    console.print(f"[bold]Region:[/bold] {options.region}")
    if dry_run:
        console.print("[yellow]Mode: DRY RUN (no changes will be made)[/yellow]")

    try:
        result = DeploymentOrchestrator().run(options)
    except StackError as e:
        _fail("Deployment failed", e)

    step_table = Table(title="Steps")
    step_table.add_column("Step", style="cyan")
    step_table.add_column("Status", style="green")
    step_table.add_column("Detail", style="dim")

    for step in result.steps:
        step_table.add_row(step.step, step.status, step.detail)

    console.print(step_table)
    console.print(_outputs_table(result.outputs))

    console.print(
        Panel(
            f"[green]✓ {result.stack_name} {'planned' if dry_run else 'deployed'}[/green]\n"
            f"Template: {result.template_path}",
            title="Deployment Complete",
        )
    )


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
