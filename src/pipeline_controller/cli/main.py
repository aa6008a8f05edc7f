"""Main CLI entry point using Typer."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console

from pipeline_controller import __version__
from pipeline_controller.core.config import ControllerConfig, load_config
from pipeline_controller.integrations.github import default_client_factory
from pipeline_controller.integrations.kubernetes import KubernetesClient, KubernetesError
from pipeline_controller.logging.config import configure_logging
from pipeline_controller.services.clusters import ClusterResolver, kubernetes_control_plane_factory
from pipeline_controller.services.controlplane import KubernetesControlPlane
from pipeline_controller.services.pipeline.controller import PipelineController
from pipeline_controller.services.pipeline.reconciler import PipelineReconciler
from pipeline_controller.services.strategy import GitHubPR, StrategyRegistry

app = typer.Typer(
    name="pipeline-controller",
    help="Progressive-delivery controller promoting revisions through Pipeline environments.",
    add_completion=False,
)

console = Console()


@dataclass
class Runtime:
    """Everything ``run`` starts and has to shut down."""

    controller: PipelineController
    clusters: ClusterResolver
    client: KubernetesClient

    def close(self) -> None:
        self.controller.stop()
        self.clusters.close()
        self.client.close()


def build_runtime(config: ControllerConfig) -> Runtime:
    """Wire the controller from configuration.

    Raises:
        KubernetesError: If the management cluster client cannot be created.
    """
    client = KubernetesClient(config.kubernetes, name="management")
    control_plane = KubernetesControlPlane(client)
    clusters = ClusterResolver(control_plane, kubernetes_control_plane_factory(config.kubernetes))

    registry = StrategyRegistry()
    registry.register(
        GitHubPR(
            control_plane,
            default_client_factory(config.github),
            api_url=config.github.api_url,
            workdir=Path(config.workdir) if config.workdir else None,
        )
    )

    reconciler = PipelineReconciler(control_plane, registry, clusters)
    controller = PipelineController(
        reconciler,
        workers=config.workers,
        resync_period=config.resync_period,
        reconcile_timeout=config.reconcile_timeout,
        app_kinds=config.app_resource_kinds,
        namespace=config.namespace,
        client=client,
    )
    return Runtime(controller=controller, clusters=clusters, client=client)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"pipeline-controller version {__version__}")
        raise typer.Exit()


def _load(config_file: Path | None) -> ControllerConfig:
    try:
        return load_config(config_file)
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1) from e


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Pipeline controller - promote revisions from one environment to the next."""


@app.command()
def run(
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        dir_okay=False,
        help="Configuration file (YAML).",
    ),
    namespace: str | None = typer.Option(
        None,
        "--namespace",
        "-n",
        help="Only reconcile pipelines in this namespace.",
    ),
    workers: int | None = typer.Option(
        None,
        "--workers",
        min=1,
        help="Number of reconcile workers.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit logs as JSON.",
    ),
) -> None:
    """Run the controller until interrupted."""
    config = _load(config_file)
    overrides: dict[str, object] = {}
    if namespace is not None:
        overrides["namespace"] = namespace
    if workers is not None:
        overrides["workers"] = workers
    if overrides:
        config = config.model_copy(update=overrides)

    level = config.logging.level
    configure_logging(
        verbose=verbose or level == "INFO",
        debug=debug or level == "DEBUG",
        json_output=json_logs or config.logging.json_output,
        log_file=Path(config.logging.log_file) if config.logging.log_file else None,
    )

    try:
        runtime = build_runtime(config)
    except KubernetesError as e:
        console.print(f"[red]Cannot connect to Kubernetes:[/red] {e}")
        raise typer.Exit(1) from e

    try:
        runtime.controller.run()
    except KeyboardInterrupt:
        pass
    finally:
        runtime.close()


@app.command("show-config")
def show_config(
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        dir_okay=False,
        help="Configuration file (YAML).",
    ),
) -> None:
    """Print the effective configuration after environment overrides."""
    console.print(_load(config_file).to_yaml(), markup=False, highlight=False)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"pipeline-controller version {__version__}")


if __name__ == "__main__":
    app()
