"""
CLI interface for stagehand.

Provides commands to stage artifacts and run staged payloads on a cluster.

Defaults (staging location, image, secret, namespace) come from
$STAGEHAND_HOME/config.yaml; command-line options override them.
"""

import signal
import sys
import threading
from pathlib import Path

import click

from stagehand import __version__
from stagehand.errors import RunCancelled, StagehandError


def _get_config(ctx):
    return ctx.obj.get("config")


def _require_staging_location(ctx, staging_location):
    config = _get_config(ctx)
    location = staging_location or (config.staging_location if config else None)
    if not location:
        click.echo(
            f"✗ No staging location: pass --staging-location or run 'stagehand init' "
            f"({ctx.obj.get('config_error', 'no config loaded')})",
            err=True,
        )
        raise SystemExit(1)
    return location


def _build_stager(location: str, max_workers: int):
    from stagehand.staging import Stager, object_store_for

    return Stager(object_store_for(location), max_workers=max_workers)


@click.group()
@click.version_option(version=__version__, prog_name="stagehand")
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def main(ctx, log_level):
    """
    stagehand - Stage artifacts and run them on a cluster.
    """
    from stagehand.config import load_config
    from stagehand.utils import setup_logging

    ctx.ensure_object(dict)
    config = None
    try:
        config = load_config()
        ctx.obj["config"] = config
    except Exception as e:
        # init works without a config; other commands check ctx.obj["config"]
        ctx.obj["config_error"] = str(e)

    setup_logging(
        log_level=log_level or (config.log_level if config else "INFO"),
        log_format=config.log_format if config else "pretty",
        log_file=Path(config.log_file).expanduser() if config and config.log_file else None,
    )


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
@click.option("--staging-location", default="gs://my-bucket/stagehand", show_default=True)
def init(force: bool, staging_location: str):
    """Initialize stagehand configuration."""
    from stagehand.config import get_stagehand_home
    import yaml

    home = get_stagehand_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = {
        "staging_location": staging_location,
        "image": None,
        "secret_name": None,
        "secret_mount_path": None,
        "namespace": "default",
        "kube_context": None,
        "poll_interval_seconds": 60,
        "max_workers": 1,
        "log_level": "INFO",
        "log_format": "pretty",
        "env_file": str(home / ".env"),
    }
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# GOOGLE_APPLICATION_CREDENTIALS=...\n# KUBECONFIG=...\n")

    click.echo(f"Initialized stagehand config at {cfg_path}")


@main.command("stage")
@click.argument("files", nargs=-1, required=True)
@click.option("--staging-location", default=None, help="Base URI to stage into")
@click.option("--max-workers", type=int, default=None, help="Parallel uploads")
@click.pass_context
def stage(ctx, files, staging_location, max_workers):
    """
    Stage FILES (paths, or NAME=PATH) to the staging location.

    Examples:

        stagehand stage build/lib.jar conf/

        stagehand stage app=dist/app.whl --staging-location gs://bucket/stage
    """
    location = _require_staging_location(ctx, staging_location)
    config = _get_config(ctx)
    workers = max_workers or (config.max_workers if config else 1)

    try:
        result = _build_stager(location, workers).stage_all(files, location)
    except StagehandError as e:
        click.echo(f"✗ Staging failed: {e}", err=True)
        raise SystemExit(1)

    for package in result.packages:
        click.echo(f"{package.name} -> {package.location}")
    click.echo(
        f"✓ {result.report.uploaded} uploaded, {result.report.cached} cached, "
        f"{result.report.skipped} skipped"
    )


@main.command("run")
@click.argument("payload", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("files", nargs=-1)
@click.option("--image", default=None, help="Container image (tag defaults to latest)")
@click.option("--secret", "secret_spec", default=None, help="Secret as NAME:MOUNT_PATH")
@click.option("--staging-location", default=None, help="Base URI to stage into")
@click.option("--namespace", default=None, help="Kubernetes namespace")
@click.pass_context
def run(ctx, payload, files, image, secret_spec, staging_location, namespace):
    """
    Stage PAYLOAD and FILES, run PAYLOAD in a pod, print the result URI.

    Examples:

        stagehand run fn.bin deps/ --image gcr.io/proj/worker --secret gcp-key:/etc/gcloud
    """
    from stagehand.runner import JobRunner, KubernetesScheduler, Secret
    from stagehand.submitter import Submitter

    config = _get_config(ctx)
    location = _require_staging_location(ctx, staging_location)

    image = image or (config.image if config else None)
    if not image:
        raise click.UsageError("--image is required (or set 'image' in config.yaml)")

    if secret_spec:
        try:
            secret = Secret.parse(secret_spec)
        except ValueError as e:
            raise click.UsageError(str(e))
    elif config and config.secret_name:
        secret = Secret(config.secret_name, config.secret_mount_path)
    else:
        raise click.UsageError("--secret is required (or set secret_name/secret_mount_path)")

    scheduler = KubernetesScheduler(
        namespace=namespace or (config.namespace if config else "default"),
        context=config.kube_context if config else None,
    )
    poll_interval = config.poll_interval_seconds if config else 60.0
    workers = config.max_workers if config else 1

    cancel = threading.Event()

    def _on_interrupt(signum, frame):
        # A second Ctrl-C aborts immediately
        if cancel.is_set():
            raise KeyboardInterrupt
        click.echo("Cancelling run...", err=True)
        cancel.set()

    previous_handler = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        with JobRunner(scheduler, poll_interval=poll_interval) as runner:
            submitter = Submitter(_build_stager(location, workers), location, runner)
            result = submitter.run(payload, image=image, secret=secret, files=files, cancel=cancel)
    except RunCancelled as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(130)
    except StagehandError as e:
        click.echo(f"✗ Run failed: {e}", err=True)
        raise SystemExit(1)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if result is None:
        click.echo("✓ Run finished without a result")
    else:
        click.echo(result)


if __name__ == "__main__":
    sys.exit(main())
