"""Click CLI with components, tree, graph, and serve subcommands."""

from __future__ import annotations

from pathlib import Path

import click

from omnistudio_resolver import __version__
from omnistudio_resolver.cache import SnapshotCache
from omnistudio_resolver.config import ResolverConfig
from omnistudio_resolver.errors import ResolverError
from omnistudio_resolver.graph import ReferenceGraphBuilder, render_path
from omnistudio_resolver.models import BlockKind, Component, ComponentType, ExpansionStatus, Step
from omnistudio_resolver.pipeline import load_components
from omnistudio_resolver.service import HierarchyService
from omnistudio_resolver.sources import JsonDirectorySource

LOCAL_TENANT = "local"

_TYPE_CHOICES = [ct.value for ct in ComponentType]

_KIND_COLORS = {
    BlockKind.CONDITIONAL: "yellow",
    BlockKind.LOOP: "magenta",
    BlockKind.CACHE: "blue",
    BlockKind.BLOCK: "cyan",
    BlockKind.IP_REFERENCE: "green",
}

_STATUS_COLORS = {
    ExpansionStatus.CYCLE: "red",
    ExpansionStatus.DEPTH_LIMIT: "yellow",
    ExpansionStatus.UNRESOLVED: "red",
    ExpansionStatus.FETCH_FAILED: "red",
}

_source_dir_arg = click.argument(
    "source_dir", type=click.Path(exists=True, file_okay=False, path_type=Path),
)


def _local_service(source_dir: Path, max_depth: int | None = None) -> HierarchyService:
    config = ResolverConfig(source_dir=source_dir)
    if max_depth is not None:
        config.expansion_depth_limit = max_depth
    return HierarchyService(
        config=config,
        cache=SnapshotCache(),
        source_factory=lambda tenant: JsonDirectorySource(source_dir),
    )


def _progress_printer():
    """Progress callback printing each stage once, on stderr."""
    seen: set[str] = set()

    def progress(stage: str, current: int, total: int):
        if stage not in seen:
            seen.add(stage)
            click.echo(f"  {stage}...", err=True)

    return progress


@click.group()
@click.version_option(version=__version__)
def cli():
    """omnistudio-resolver: Resolve Omnistudio component hierarchies."""


@cli.command()
@_source_dir_arg
@click.option("--type", "-t", "component_type", type=click.Choice(_TYPE_CHOICES), help="Filter by component type")
@click.option("--search", "-s", "term", default="", help="Substring to match in names")
def components(source_dir: Path, component_type: str | None, term: str):
    """Load an org export and list its components."""
    service = _local_service(source_dir)
    try:
        summary = service.load_all(LOCAL_TENANT, force=True, progress=_progress_printer())
    except ResolverError as e:
        raise click.ClickException(str(e))

    types = [ComponentType(component_type)] if component_type else list(ComponentType)
    for ct in types:
        results = service.search_components(LOCAL_TENANT, ct, term) or []
        click.echo(click.style(f"\n{ct.label}s ({len(results)})", fg="cyan"))
        for entry in results:
            click.echo(f"  {entry['name']}  {click.style(entry['unique_id'], dim=True)}")

    click.echo(
        f"\nTotal: {summary.total_components} components, "
        f"{summary.hierarchical_references} references, "
        f"{summary.content_errors} content errors "
        f"({summary.timing.duration_seconds}s)"
    )


def _echo_steps(steps: list[Step], indent: int) -> None:
    pad = "  " * indent
    for step in steps:
        kind = step.block_kind
        label = click.style(kind.value, fg=_KIND_COLORS.get(kind, "white"))
        line = f"{pad}{step.name}  [{label}]"
        if step.referenced_ip:
            line += f" -> {step.referenced_ip}"
        status = step.expansion_status
        if status is not None and status is not ExpansionStatus.EXPANDED:
            line += " " + click.style(f"({status.value})", fg=_STATUS_COLORS.get(status, "white"))
        if step.empty_body:
            line += click.style(" (empty)", dim=True)
        click.echo(line)

        _echo_steps(step.sub_steps, indent + 1)
        _echo_steps(step.block_steps, indent + 1)
        if step.child_structure is not None:
            _echo_component(step.child_structure, indent + 2)


def _echo_component(component: Component, indent: int) -> None:
    pad = "  " * indent
    title = component.component_type.prefix + component.name
    click.echo(f"{pad}{click.style(title, bold=True)}")
    if component.content_error:
        click.echo(f"{pad}  " + click.style(f"content error: {component.content_error}", fg="red"))
    _echo_steps(component.steps, indent + 1)


@cli.command()
@_source_dir_arg
@click.argument("name")
@click.option("--type", "-t", "component_type", type=click.Choice(_TYPE_CHOICES),
              default=ComponentType.INTEGRATION_PROCEDURE.value, help="Component type")
@click.option("--max-depth", type=int, default=None, help="Expansion depth limit")
def tree(source_dir: Path, name: str, component_type: str, max_depth: int | None):
    """Print the fully expanded step tree of one component."""
    service = _local_service(source_dir, max_depth)
    try:
        service.load_all(LOCAL_TENANT, force=True)
    except ResolverError as e:
        raise click.ClickException(str(e))

    lookup = service.get_cached(LOCAL_TENANT, ComponentType(component_type), name)
    if not lookup.found:
        raise click.ClickException(f"Component not found: {name}")

    _echo_component(lookup.component, 0)
    click.echo(f"\n{lookup.expanded_children} expanded child structure(s)")


@cli.command()
@_source_dir_arg
def graph(source_dir: Path):
    """Print the reference graph: edges, cycles, and unresolved references."""
    source = JsonDirectorySource(source_dir)
    try:
        all_components = [c for ct in ComponentType for c in load_components(source, ct)]
    except ResolverError as e:
        raise click.ClickException(str(e))

    builder = ReferenceGraphBuilder()
    ref_graph = builder.build(all_components)

    click.echo(click.style(f"Edges ({len(ref_graph.edges)})", fg="cyan"))
    for edge in ref_graph.edges:
        path = render_path(ref_graph, [edge.source_id, edge.target_id])
        click.echo(f"  {path}  {click.style(edge.step_name, dim=True)}")

    if ref_graph.cycles:
        click.echo(click.style(f"\nSkipped circular references ({len(ref_graph.cycles)})", fg="red"))
        for cycle in ref_graph.cycles:
            click.echo(f"  {render_path(ref_graph, cycle)}")

    if ref_graph.unresolved:
        click.echo(click.style(f"\nUnresolved references ({len(ref_graph.unresolved)})", fg="yellow"))
        for owner, step_name, reference in ref_graph.unresolved:
            click.echo(f"  {owner} / {step_name} -> {reference}")


@cli.command()
@click.option("--port", "-p", default=8420, help="Port number")
@click.option("--host", default="127.0.0.1", help="Host address")
@click.option("--source-dir", type=click.Path(exists=True, file_okay=False, path_type=Path),
              default=None, help="Directory holding one export directory per tenant")
def serve(port: int, host: str, source_dir: Path | None):
    """Start the JSON API."""
    try:
        import uvicorn
    except ImportError:
        raise click.ClickException(
            "uvicorn is required for the API server. "
            "Install with: pip install 'omnistudio-resolver[web]'"
        )

    from omnistudio_resolver.web import create_app

    service = HierarchyService(config=ResolverConfig(source_dir=source_dir))
    click.echo(f"Starting omnistudio-resolver API at http://{host}:{port}")
    uvicorn.run(create_app(service), host=host, port=port, log_level="info")


if __name__ == "__main__":
    cli()
