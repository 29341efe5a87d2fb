# src/clusterseed/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from clusterseed.bootstrap.manager import BootstrapManager
from clusterseed.config.loader import load_settings
from clusterseed.config.models import BootstrapSettings, ClusterSpec
from clusterseed.errors import ArgumentError, BootstrapError
from clusterseed.logging.log import init_logging
from clusterseed.observers.dispatcher import EventBus
from clusterseed.observers.jsonfile import JsonFileObserver
from clusterseed.observers.logger import LoggerObserver
from clusterseed.utils.execution import ExecutionContext


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Bootstrap a Consul agent on a fresh OCI instance")


def parse_ports(raw: Optional[str]) -> Optional[List[int]]:
    """
    "8300,8301, 8500" -> [8300, 8301, 8500]. None/empty -> None (use settings).
    """
    if not raw:
        return None
    ports: List[int] = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        if not item.isdigit() or not 0 < int(item) < 65536:
            raise ArgumentError(f"invalid port {item!r} in --ports")
        ports.append(int(item))
    return ports


def _overrides(**flags: Any) -> Dict[str, Any]:
    """
    CLI flags -> settings overrides. Unset flags (None / False) are dropped so
    they never mask values from the settings file.
    """
    out: Dict[str, Any] = {}
    creds = flags.pop("oci_credentials", {}) or {}
    for k, v in flags.items():
        if v is None or v is False:
            continue
        out[k] = str(v) if isinstance(v, Path) else v
    creds = {k: str(v) if isinstance(v, Path) else v for k, v in creds.items() if v}
    if creds:
        out["oci_credentials"] = creds
    return out


def _usage_error(ctx: typer.Context, exc: Exception) -> None:
    typer.secho(f"error: {exc}", fg=typer.colors.RED, err=True)
    typer.echo(ctx.get_help(), err=True)
    raise typer.Exit(code=1)


def _prepare(
    ctx: typer.Context,
    *,
    role: Optional[str],
    cluster_name: Optional[str],
    server_tag: Optional[str],
    settings_file: Optional[Path],
    overrides: Dict[str, Any],
) -> tuple[ClusterSpec, BootstrapSettings]:
    try:
        cluster = ClusterSpec.from_args(role=role, cluster_name=cluster_name, server_tag=server_tag)
        settings = load_settings(settings_file, overrides=overrides)
    except (ValueError, FileNotFoundError) as exc:
        _usage_error(ctx, exc)
    return cluster, settings


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def bootstrap(
    ctx: typer.Context,
    role: Optional[str] = typer.Option(None, "--role", help="server or client"),
    cluster_name: Optional[str] = typer.Option(None, "--cluster-name", help="Substring shared by all cluster instance names"),
    server_tag: Optional[str] = typer.Option(None, "--server-tag", help="Substring marking server instances (required for --role=server)"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help="Agent config directory"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Agent data directory"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Agent log directory"),
    user: Optional[str] = typer.Option(None, "--user", help="User the agent runs as (owns the config)"),
    ports: Optional[str] = typer.Option(None, "--ports", help="Comma separated ports to open, e.g. 8300,8301,8500"),
    oci_user: Optional[str] = typer.Option(None, "--oci-user", help="OCI user OCID"),
    oci_fingerprint: Optional[str] = typer.Option(None, "--oci-fingerprint", help="API key fingerprint"),
    oci_tenancy: Optional[str] = typer.Option(None, "--oci-tenancy", help="OCI tenancy OCID"),
    oci_region: Optional[str] = typer.Option(None, "--oci-region", help="OCI region for the CLI"),
    oci_key_file: Optional[Path] = typer.Option(None, "--oci-key-file", help="API private key (PEM)"),
    oci_config_file: Optional[Path] = typer.Option(None, "--oci-config-file", help="Existing OCI CLI config to use"),
    skip_cloud_config: bool = typer.Option(False, "--skip-cloud-config", help="Do not generate an OCI CLI config"),
    skip_agent_config: bool = typer.Option(False, "--skip-agent-config", help="Do not write the agent config"),
    settings_file: Optional[Path] = typer.Option(None, "--settings", help="YAML settings file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Plan only; do not modify the host"),
    debug: bool = typer.Option(False, "--debug"),
):
    """
    Discover peers, write the agent config and open the firewall.
    """
    try:
        port_list = parse_ports(ports)
    except ArgumentError as exc:
        _usage_error(ctx, exc)

    cluster, settings = _prepare(
        ctx,
        role=role,
        cluster_name=cluster_name,
        server_tag=server_tag,
        settings_file=settings_file,
        overrides=_overrides(
            config_dir=config_dir,
            data_dir=data_dir,
            log_dir=log_dir,
            user=user,
            ports=port_list,
            oci_config_file=oci_config_file,
            skip_cloud_config=skip_cloud_config,
            skip_agent_config=skip_agent_config,
            oci_credentials={
                "user": oci_user,
                "fingerprint": oci_fingerprint,
                "tenancy": oci_tenancy,
                "region": oci_region,
                "key_file": oci_key_file,
            },
        ),
    )

    logger, run_id, log_path = init_logging(base_dir=settings.tool_log_dir, verbose=debug)

    typer.echo("")
    typer.secho("clusterseed bootstrap", bold=True)
    typer.echo(f"  Cluster  : {cluster.cluster_name} ({cluster.role.value})")
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")

    bus = EventBus(
        observers=[
            LoggerObserver(logger),
            JsonFileObserver(log_path.parent / f"{run_id}.jsonl"),
        ]
    )
    mgr = BootstrapManager(
        settings,
        bus=bus,
        ctx=ExecutionContext(dry_run=dry_run, command_timeout=settings.command_timeout),
        run_id=run_id,
    )

    try:
        result = mgr.run(cluster)
    except ArgumentError as exc:
        logger.error("%s", exc)
        _usage_error(ctx, exc)
    except (BootstrapError, OSError) as exc:
        logger.error("Bootstrap failed: %s", exc)
        raise typer.Exit(code=1)

    typer.echo("")
    typer.secho("Bootstrap complete", fg=typer.colors.GREEN, bold=True)
    typer.echo(f"  Node name        : {result.node_name}")
    typer.echo(f"  Address          : {result.private_ip}")
    typer.echo(f"  bootstrap_expect : {result.plan.bootstrap_expect if result.plan.bootstrap_expect else '-'}")
    typer.echo(f"  retry_join       : {', '.join(sorted(result.plan.retry_join)) or '-'}")
    typer.echo(f"  Config           : {result.config_path or 'not written'}")
    ports_label = "Ports to open    " if dry_run else "Ports opened     "
    typer.echo(f"  {ports_label}: {', '.join(map(str, sorted(result.opened_ports))) or 'none'}")
    if result.warnings:
        typer.secho(f"  Warnings         : {result.warnings} (see {log_path})", fg=typer.colors.YELLOW)


@app.command("render-config")
def render_config(
    ctx: typer.Context,
    role: Optional[str] = typer.Option(None, "--role", help="server or client"),
    cluster_name: Optional[str] = typer.Option(None, "--cluster-name"),
    server_tag: Optional[str] = typer.Option(None, "--server-tag"),
    oci_config_file: Optional[Path] = typer.Option(None, "--oci-config-file"),
    settings_file: Optional[Path] = typer.Option(None, "--settings", help="YAML settings file"),
    debug: bool = typer.Option(False, "--debug"),
):
    """
    Print the agent config this instance would get. Nothing is written.
    """
    cluster, settings = _prepare(
        ctx,
        role=role,
        cluster_name=cluster_name,
        server_tag=server_tag,
        settings_file=settings_file,
        overrides=_overrides(oci_config_file=oci_config_file, skip_cloud_config=True),
    )
    logger, run_id, _ = init_logging(base_dir=settings.tool_log_dir, verbose=debug)

    try:
        config = BootstrapManager(
            settings,
            ctx=ExecutionContext(dry_run=True, command_timeout=settings.command_timeout),
            run_id=run_id,
        ).render(cluster)
    except BootstrapError as exc:
        logger.error("Render failed: %s", exc)
        raise typer.Exit(code=1)

    typer.echo(config.to_json(), nl=False)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
