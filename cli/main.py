"""CLI for the secret sync controller."""

from pathlib import Path

import click
import yaml
from dotenv import load_dotenv

project_root = Path(__file__).parent.parent

load_dotenv(project_root / ".env")


def _load_settings(environment):
    from core.config.loader import ConfigLoader

    return ConfigLoader().load(environment=environment)


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    raise SystemExit(1)


@click.group()
@click.version_option(version="0.1.0", prog_name="secret-sync")
def cli():
    """Secret Sync - keeps cluster Secrets in sync with external secret stores."""
    pass


@cli.command()
@click.option("--environment", "-e", default=None, help="Environment (dev/prod)")
def config(environment: str):
    """Show loaded operator settings."""
    from core.schema.duration import format_duration

    settings = _load_settings(environment)

    click.echo(f"\n{'='*60}")
    click.echo(f"Operator settings ({environment or 'base'})")
    click.echo(f"{'='*60}\n")

    click.echo(f"Log level:            {settings.log_level} ({settings.log_format})")
    click.echo(f"Metrics port:         {settings.metrics_port or 'disabled'}")
    click.echo(f"Namespace:            {settings.namespace or 'all'}")
    click.echo(f"Min refresh interval: {format_duration(settings.min_refresh_interval)}")
    click.echo(f"Requeue after:        {format_duration(settings.requeue_after)}")
    click.echo(f"Scheduler workers:    {settings.scheduler_workers}")
    click.echo(f"STS session name:     {settings.session_name}")


@cli.command()
@click.option("--environment", "-e", default=None, help="Environment (dev/prod)")
@click.option("--namespace", "-n", default=None, help="Only watch this namespace")
@click.option("--metrics-port", type=int, default=None, help="Prometheus port (0 disables)")
def run(environment: str, namespace: str, metrics_port: int):
    """Run the controller against the current cluster."""
    from controller.kubernetes_store import KubernetesObjectStore, load_kube_config
    from controller.reconciler import Reconciler
    from controller.watch import ExternalSecretWatcher
    from core.scheduler.scheduler import Scheduler
    from core.secrets.resolver import StoreResolver
    from core.utils.logging import setup_logging
    from monitoring import start_metrics_server

    settings = _load_settings(environment)
    setup_logging(settings.log_level, settings.log_format, settings.log_file)

    if metrics_port is not None:
        settings.metrics_port = metrics_port
    if namespace is not None:
        settings.namespace = namespace

    start_metrics_server(port=settings.metrics_port)
    load_kube_config()

    store = KubernetesObjectStore()
    scheduler = Scheduler(max_workers=settings.scheduler_workers)
    reconciler = Reconciler(
        store,
        scheduler=scheduler,
        resolver=StoreResolver(credentials=store, session_name=settings.session_name),
        min_refresh_interval=settings.min_refresh_interval,
        requeue_after=settings.requeue_after,
    )
    watcher = ExternalSecretWatcher(
        store.custom, reconciler, scheduler, namespace=settings.namespace
    )

    scheduler.start()
    click.echo("Controller started. Press Ctrl+C to stop.\n")
    try:
        watcher.run()
    except KeyboardInterrupt:
        click.echo("\n\nStopping...")
    finally:
        watcher.stop()
        scheduler.shutdown(wait=True)
        click.echo("✓ Stopped")


@cli.command()
@click.option(
    "--manifests", "-m", required=True, type=click.Path(exists=True),
    help="YAML file or directory with ExternalSecrets, stores and credential Secrets",
)
@click.option("--show-values", is_flag=True, help="Print decoded values instead of base64")
def sync(manifests: str, show_values: bool):
    """Run one sync cycle for every ExternalSecret in a manifest set."""
    import base64

    from controller.objectstore import SECRET_KIND, InMemoryObjectStore
    from controller.reconciler import Reconciler
    from core.schema.sync_request import CONDITION_READY, EXTERNAL_SECRET_KIND

    store = InMemoryObjectStore(load_manifests_or_fail(manifests))
    requests = store.list(EXTERNAL_SECRET_KIND)
    if not requests:
        _fail(f"No {EXTERNAL_SECRET_KIND} found in {manifests}")

    reconciler = Reconciler(store)
    failed = 0

    for manifest in requests:
        metadata = manifest["metadata"]
        namespace, name = metadata["namespace"], metadata["name"]
        result = reconciler.reconcile(namespace, name)

        status = (store.get(EXTERNAL_SECRET_KIND, namespace, name) or {}).get("status") or {}
        ready = next(
            (c for c in status.get("conditions") or [] if c.get("type") == CONDITION_READY),
            {},
        )

        click.echo(f"\n{'='*60}")
        click.echo(f"{EXTERNAL_SECRET_KIND} {namespace}/{name}: {result.state.value}")
        click.echo(f"{'='*60}")

        if result.skipped:
            click.echo("Skipped (already synced once)")
            continue
        if ready.get("status") != "True":
            failed += 1
            click.echo(f"✗ {ready.get('reason', 'Unknown')}: {ready.get('message', '')}")
            continue

        secret = store.get(SECRET_KIND, namespace, name)
        if show_values:
            secret["stringData"] = {
                k: base64.b64decode(v).decode(errors="replace")
                for k, v in (secret.pop("data", None) or {}).items()
            }
        click.echo(yaml.safe_dump(secret, sort_keys=False))
        if status.get("nextSync"):
            click.echo(f"Next sync: {status['nextSync']}")

    click.echo(f"\n✓ Synced: {len(requests) - failed}, Failed: {failed}")
    if failed:
        raise SystemExit(1)


@cli.command(name="check-store")
@click.option(
    "--manifests", "-m", required=True, type=click.Path(exists=True),
    help="YAML file or directory with the store and its credential Secrets",
)
@click.option("--name", required=True, help="Store name")
@click.option(
    "--kind", default="SecretStore",
    type=click.Choice(["SecretStore", "ClusterSecretStore"]), help="Store kind",
)
@click.option("--namespace", "-n", default="default", help="Store namespace")
def check_store(manifests: str, name: str, kind: str, namespace: str):
    """Authenticate against a store and check that it is reachable."""
    from controller.objectstore import InMemoryObjectStore
    from core.config.exceptions import ConfigError
    from core.schema.store import StoreConfig
    from core.secrets.exceptions import SecretSyncError
    from core.secrets.resolver import StoreResolver

    click.echo(f"\n{'='*60}")
    click.echo(f"Health Check: {kind} {name}")
    click.echo(f"{'='*60}\n")

    try:
        objects = InMemoryObjectStore(load_manifests_or_fail(manifests))
        manifest = objects.get(kind, namespace, name)
        if manifest is None:
            _fail(f"{kind} {name!r} not found in {manifests}")
        store = StoreConfig.from_manifest(manifest)
        click.echo(f"✓ Store parsed ({type(store.provider).__name__})")

        client = StoreResolver(credentials=objects).resolve(store, namespace=namespace)
        click.echo(f"✓ {client.name} client created")
    except (ConfigError, SecretSyncError) as e:
        click.echo(f"✗ Store setup failed: {e}")
        raise SystemExit(1)

    if client.health_check():
        click.echo(f"✓ {client.name} reachable")
    else:
        click.echo(f"✗ {client.name} not reachable")
        raise SystemExit(1)


def load_manifests_or_fail(path: str) -> list:
    from core.config.exceptions import ConfigError
    from core.config.loader import load_manifests

    try:
        return load_manifests(path)
    except ConfigError as e:
        _fail(str(e))


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
