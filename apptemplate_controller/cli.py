"""Command line entry point for the AppTemplate controller."""

import asyncio
from pathlib import Path
from typing import Any, Dict

import click
import yaml
from rich.console import Console

from apptemplate_controller import __version__
from apptemplate_controller.cluster import ClusterClient
from apptemplate_controller.config import ControllerConfig
from apptemplate_controller.controller import AppTemplateController
from apptemplate_controller.error_handlers import handle_cli_errors, print_success
from apptemplate_controller.exceptions import ConfigurationError
from apptemplate_controller.formatters import Formatters
from apptemplate_controller.logs import setup_logging
from apptemplate_controller.models import AppTemplateSpec
from apptemplate_controller.reconciler import Reconciler

console = Console()

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.version_option(version=__version__, prog_name="apptemplate-controller")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to config file (defaults to ~/.apptemplate-controller/config.yaml)"
)
@click.option(
    "--kubeconfig",
    help="Path to kubeconfig file (defaults to $KUBECONFIG or ~/.kube/config)",
    type=click.Path(exists=True, dir_okay=False)
)
@click.option(
    "--context",
    help="Kubernetes context to use (defaults to current context)"
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Log level (defaults to $LOG_LEVEL or INFO)"
)
@click.pass_context
def cli(ctx, config_path, kubeconfig, context, log_level):
    """AppTemplate controller - render manifest bundles and keep the cluster in sync.

    Each AppTemplate custom resource names a service, the configuration
    bundles to use and the variables to substitute into them. The controller
    renders the selected templates and creates or patches the resulting
    resources, namespaces first.

    Examples:

      # Run the controller
      apptemplate-controller run --configs-dir ./configs

      # Preview what an AppTemplate would render, without a cluster
      apptemplate-controller render my-app.yaml --show-content

      # Apply an AppTemplate once
      apptemplate-controller apply my-app.yaml
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["kubeconfig"] = kubeconfig
    ctx.obj["context"] = context
    ctx.obj["log_level"] = log_level


def _load_config(ctx, **overrides: Any) -> ControllerConfig:
    config = ControllerConfig.load(
        ctx.obj.get("config_path"),
        kubeconfig=ctx.obj.get("kubeconfig"),
        cluster_context=ctx.obj.get("context"),
        log_level=ctx.obj.get("log_level"),
        **overrides,
    )
    setup_logging(config.log_level)
    return config


def _build_reconciler(config: ControllerConfig, cluster) -> Reconciler:
    return Reconciler(
        cluster,
        config.configs_dir,
        policy=config.variable_policy,
        include_environment=config.include_environment,
    )


def _read_app_template(path: str) -> Dict[str, Any]:
    """Read an AppTemplate manifest, or a bare spec, from a YAML file."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read AppTemplate from {path}: {e}", path)

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a YAML mapping", path)

    if "spec" not in data:
        data = {"metadata": {"name": Path(path).stem, "namespace": "default"}, "spec": data}
    return data


@cli.command()
@click.option(
    "--configs-dir",
    type=click.Path(file_okay=False),
    help="Root directory of the template bundles (defaults to $CONFIGS_DIR or ./configs)"
)
@click.option(
    "--retry-delay",
    type=float,
    help="Seconds to wait before re-establishing a failed watch (default: 5)"
)
@click.option(
    "--no-status",
    is_flag=True,
    help="Do not write reconciliation status back to AppTemplate objects"
)
@click.pass_context
@handle_cli_errors
def run(ctx, configs_dir, retry_delay, no_status):
    """Watch AppTemplates in all namespaces and reconcile them.

    Runs until interrupted. Watch failures are retried after a fixed delay.
    """
    config = _load_config(
        ctx,
        configs_dir=configs_dir,
        retry_delay=retry_delay,
        report_status=False if no_status else None,
    )

    cluster = ClusterClient(config.kubeconfig, config.cluster_context)
    controller = AppTemplateController(
        cluster,
        _build_reconciler(config, cluster),
        group=config.group,
        version=config.version,
        plural=config.plural,
        retry_delay=config.retry_delay,
        watch_timeout=config.watch_timeout,
        report_status=config.report_status,
    )

    console.print(f"\n[bold cyan]Watching {controller.resource}[/bold cyan] "
                  f"[dim](bundles: {config.configs_dir})[/dim]\n")
    asyncio.run(controller.run())


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--configs-dir",
    type=click.Path(file_okay=False),
    help="Root directory of the template bundles (defaults to $CONFIGS_DIR or ./configs)"
)
@click.option(
    "--show-content",
    is_flag=True,
    help="Print the rendered YAML of every template"
)
@click.pass_context
@handle_cli_errors
def render(ctx, file, configs_dir, show_content):
    """Render the templates selected by an AppTemplate FILE without touching the cluster."""
    config = _load_config(ctx, configs_dir=configs_dir)
    spec = AppTemplateSpec.from_dict(_read_app_template(file)["spec"])

    reconciler = _build_reconciler(config, cluster=None)
    documents, errors = asyncio.run(reconciler.render(spec))

    console.print(Formatters.format_documents(documents, show_content=show_content))
    for error in errors:
        console.print(f"[red]✗ {error.message}[/red]")
    if errors:
        raise click.ClickException(f"{len(errors)} template(s) failed to render")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--configs-dir",
    type=click.Path(file_okay=False),
    help="Root directory of the template bundles (defaults to $CONFIGS_DIR or ./configs)"
)
@click.pass_context
@handle_cli_errors
def apply(ctx, file, configs_dir):
    """Reconcile an AppTemplate FILE against the cluster once."""
    config = _load_config(ctx, configs_dir=configs_dir)
    app_template = _read_app_template(file)

    cluster = ClusterClient(config.kubeconfig, config.cluster_context)
    reconciler = _build_reconciler(config, cluster)

    with console.status("[bold yellow]Applying templates...[/bold yellow]"):
        result = asyncio.run(reconciler.reconcile_object(app_template))

    console.print(Formatters.format_result(result))
    if not result.succeeded:
        raise click.ClickException("Some resources failed to converge")
    print_success("All resources applied")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
