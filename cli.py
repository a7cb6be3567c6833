# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Archon CLI - Command Line Interface for workflow specs"""

import json
import sys
from pathlib import Path
from typing import Any, Dict

import click
import yaml

# Force UTF-8 encoding for Windows
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8")
    sys.stderr.reconfigure(encoding="utf-8")

from archon import __version__
from archon.core.config import get_config, load_config
from archon.core.dag import WorkflowDAG
from archon.core.exceptions import ArchonError, DAGCycleError
from archon.core.logger import get_logger
from archon.core.pipeline import build_artifacts, lint_spec
from archon.core.pipeline.models import IssueSeverity
from archon.core.spec import load_spec
from archon.core.versioning import diff_specs, merge_specs


def load_spec_file(file_path: str) -> Dict[str, Any]:
    """Read a spec from YAML or JSON. A top-level ``spec`` key is unwrapped."""
    with open(file_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if isinstance(data, dict) and isinstance(data.get("spec"), dict):
        return data["spec"]
    if data is None:
        return {}
    return data


def dump_document(data: Any, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False)
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="Config file (YAML)",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, config_file: str, verbose: bool):
    """Archon - workflow spec versioning and CI pipeline tools.

    Commands:
        archon validate   - Lint a workflow spec
        archon diff       - Compare two specs
        archon merge      - Merge one spec into another
        archon build      - Build a deployable artifact
        archon serve      - Run the HTTP handlers
    """
    try:
        config = load_config(Path(config_file)) if config_file else get_config()
    except ArchonError as e:
        raise click.ClickException(str(e))

    get_logger(
        "archon",
        level="DEBUG" if verbose else config.observability.log_level,
        log_dir=config.paths.log_dir,
        file_output=config.observability.file_logging,
    )
    ctx.obj = config


# =============================================================================
# Spec commands
# =============================================================================


@cli.command()
@click.argument("file_path", type=click.Path(exists=True))
def validate(file_path: str):
    """Lint a workflow spec file."""
    try:
        spec_data = load_spec_file(file_path)
    except yaml.YAMLError as e:
        click.echo(f"YAML parse error: {e}", err=True)
        raise click.Abort()

    issues = lint_spec(spec_data)
    errors = [i for i in issues if i.severity == IssueSeverity.ERROR]

    for issue in issues:
        where = f" [{issue.node_id}]" if issue.node_id else ""
        click.echo(f"  {issue.severity.value}: {issue.message}{where}", err=True)

    if errors:
        click.echo(f"Validation failed: {len(issues)} issues found ({len(errors)} errors)")
        raise click.Abort()

    click.echo(f"Workflow is valid: {file_path}")


@cli.command()
@click.argument("file_path", type=click.Path(exists=True))
def info(file_path: str):
    """Show information about a workflow spec."""
    try:
        spec = load_spec(load_spec_file(file_path))
    except (yaml.YAMLError, ArchonError) as e:
        click.echo(f"Error: {e}", err=True)
        raise click.Abort()

    strategy = spec.collaboration_strategy.value if spec.collaboration_strategy else "N/A"

    click.echo("\n" + "=" * 60)
    click.echo("Workflow Information")
    click.echo("=" * 60)
    click.echo(f"Collaboration: {strategy}")

    click.echo(f"\nNodes: {len(spec.nodes)}")
    for node in spec.nodes:
        click.echo(f"  - {node.id or 'unknown'} ({node.type}) {node.label}")

    click.echo(f"\nEdges: {len(spec.edges)}")
    dangling = spec.dangling_edges()
    if dangling:
        click.echo(f"Dangling edges: {len(dangling)}")

    try:
        levels = WorkflowDAG(spec).get_execution_levels()
        click.echo(f"\nExecution levels: {len(levels)}")
        for index, level in enumerate(levels, 1):
            click.echo(f"  {index}: {', '.join(level)}")
    except DAGCycleError as e:
        click.echo(f"\n{e.message}")

    click.echo("=" * 60)


@cli.command()
@click.argument("file_a", type=click.Path(exists=True))
@click.argument("file_b", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Choice(["text", "json"]), default="text")
def diff(file_a: str, file_b: str, output: str):
    """Show what changed from FILE_A to FILE_B."""
    try:
        result = diff_specs(load_spec(load_spec_file(file_a)), load_spec(load_spec_file(file_b)))
    except (yaml.YAMLError, ArchonError) as e:
        click.echo(f"Error: {e}", err=True)
        raise click.Abort()

    if output == "json":
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    summary = result.summary
    click.echo(
        f"{summary.total_changes} changes: "
        f"+{summary.nodes_added} -{summary.nodes_removed} ~{summary.nodes_modified} nodes, "
        f"+{summary.edges_added} -{summary.edges_removed} edges"
    )
    for node in result.nodes.added:
        click.echo(f"  + node {node.get('id')}")
    for node in result.nodes.removed:
        click.echo(f"  - node {node.get('id')}")
    for node in result.nodes.modified:
        fields = ", ".join(change.field for change in node.changes) or "other"
        click.echo(f"  ~ node {node.id} ({fields})")
    for edge in result.edges.added:
        click.echo(f"  + edge {edge['from']} -> {edge['to']}")
    for edge in result.edges.removed:
        click.echo(f"  - edge {edge['from']} -> {edge['to']}")


@cli.command()
@click.argument("source", type=click.Path(exists=True))
@click.argument("target", type=click.Path(exists=True))
@click.option(
    "--strategy", "-s", type=click.Choice(["auto", "ours", "theirs"]), default="auto"
)
@click.option(
    "--resolution",
    "-r",
    type=click.Path(exists=True),
    help="YAML/JSON map of node id to the node to keep",
)
@click.option("--output", "-o", type=click.Path(), help="Write merged spec to file")
@click.option("--format", "fmt", type=click.Choice(["yaml", "json"]), default="yaml")
def merge(source: str, target: str, strategy: str, resolution: str, output: str, fmt: str):
    """Merge SOURCE spec into TARGET spec."""
    try:
        conflict_resolution = None
        if resolution:
            with open(resolution, "r", encoding="utf-8") as f:
                conflict_resolution = yaml.safe_load(f) or {}

        result = merge_specs(
            load_spec(load_spec_file(source)),
            load_spec(load_spec_file(target)),
            strategy,
            conflict_resolution,
        )
    except (yaml.YAMLError, ArchonError) as e:
        click.echo(f"Error: {e}", err=True)
        raise click.Abort()

    if result.has_conflicts:
        click.echo(f"Merge conflicts: {len(result.conflicts)}", err=True)
        for conflict in result.conflicts:
            subject = conflict.node_id or conflict.property
            click.echo(f"  - {conflict.type.value}: {subject}", err=True)
        click.echo("Resolve with --strategy or --resolution", err=True)
        raise click.Abort()

    rendered = dump_document(result.merged_spec.to_dict(), fmt)
    if output:
        Path(output).write_text(rendered, encoding="utf-8")
        click.echo(f"Merged spec written: {output} ({len(result.resolved)} resolved)")
    else:
        click.echo(rendered)


@cli.command()
@click.argument("file_path", type=click.Path(exists=True))
@click.option("--version", "build_version", default="1.0.0", help="Version to stamp")
@click.option("--workflow-id", default=None, help="Workflow id (defaults to file stem)")
@click.option("--output", "-o", type=click.Path(), help="Write artifact JSON to file")
def build(file_path: str, build_version: str, workflow_id: str, output: str):
    """Build a deployable artifact with checksum."""
    try:
        spec_data = load_spec_file(file_path)
    except yaml.YAMLError as e:
        click.echo(f"YAML parse error: {e}", err=True)
        raise click.Abort()

    artifacts = build_artifacts(
        {
            "id": workflow_id or Path(file_path).stem,
            "version": build_version,
            "spec": spec_data,
        }
    )

    if output:
        Path(output).write_text(artifacts.workflow_json, encoding="utf-8")
        click.echo(f"Artifact written: {output}")
    click.echo(f"Size: {artifacts.size_bytes} bytes")
    click.echo(f"Checksum: {artifacts.checksum}")


# =============================================================================
# Server
# =============================================================================


@cli.command()
@click.option("--host", "-h", default=None, help="Bind address")
@click.option("--port", "-p", type=int, default=None, help="Bind port")
@click.pass_obj
def serve(config, host: str, port: int):
    """Run the HTTP handlers with uvicorn."""
    try:
        import uvicorn

        from archon.server import create_app
    except ImportError as e:
        click.echo("Server requires FastAPI: pip install archon-workflow[server]", err=True)
        click.echo(f"Error: {e}", err=True)
        raise click.Abort()

    host = host or config.server.host
    port = port or config.server.port

    click.echo("=" * 60)
    click.echo(f"Archon API on http://{host}:{port}")
    click.echo(f"Store: {config.store.backend}")
    click.echo("=" * 60)

    get_logger("archon").info(f"Starting API server on {host}:{port}", store=config.store.backend)
    uvicorn.run(create_app(config=config), host=host, port=port)


@cli.command("version")
def show_version():
    """Show Archon version."""
    click.echo(f"Archon Workflow Core v{__version__}")
    click.echo("License: BSL 1.1 (converts to Apache 2.0 on 2028-11-05)")


if __name__ == "__main__":
    cli()
