import logging

import click
from rich.logging import RichHandler

from .core import RdsConnect
from .errors import ConnectError
from .models import Settings
from .services.config_loader import ConfigLoader


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help="Path to a YAML configuration file. Defaults to $RDSCONNECT_CONFIG or ~/.rdsconnect.yml.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, verbose, log_file):
    """Connect to Aurora/RDS MySQL clusters with short-lived IAM auth tokens."""
    logger = logging.getLogger("rdsconnect")

    try:
        config_loader = ConfigLoader()
        resolved_config = config_loader.resolve_path(config)
        config_values = config_loader.load(resolved_config)
        settings = Settings.from_mapping(config_values)
    except ConnectError as exc:
        raise click.ClickException(str(exc)) from exc
    except TypeError as exc:
        raise click.ClickException(f"Invalid configuration value: {exc}") from exc

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    ctx.obj = RdsConnect(settings=settings, config_path=resolved_config)


@main.command()
@click.pass_obj
def discover(app: RdsConnect):
    """Rebuild the cluster topology cache for the current AWS profile."""
    raise SystemExit(app.discover())


@main.command()
@click.argument("cluster", required=False)
@click.argument("endpoint", required=False)
@click.option(
    "-n",
    "--non-interactive",
    is_flag=True,
    default=False,
    help="Resolve CLUSTER/ENDPOINT without prompting (CLUSTER is required).",
)
@click.option(
    "--no-daemon",
    is_flag=True,
    default=False,
    help="Do not start the token renewal daemon.",
)
@click.pass_obj
def connect(app: RdsConnect, cluster, endpoint, non_interactive, no_daemon):
    """Write a credential file for CLUSTER and ENDPOINT (Reader, Writer or an instance)."""
    raise SystemExit(
        app.connect(
            cluster=cluster,
            endpoint=endpoint,
            non_interactive=non_interactive,
            start_daemon=not no_daemon,
        )
    )


@main.command()
@click.pass_obj
def clusters(app: RdsConnect):
    """List cached clusters with their endpoints and instances."""
    raise SystemExit(app.list_clusters())


@main.command()
@click.pass_obj
def refresh(app: RdsConnect):
    """Rotate the token in the current credential file once."""
    raise SystemExit(app.refresh())


@main.command()
@click.pass_obj
def daemon(app: RdsConnect):
    """Run the token renewal loop in the foreground."""
    raise SystemExit(app.run_daemon())


@main.command()
@click.pass_obj
def status(app: RdsConnect):
    """Show the credential file and renewal daemon status."""
    raise SystemExit(app.status())


@main.command()
@click.pass_obj
def stop(app: RdsConnect):
    """Stop the running renewal daemon."""
    raise SystemExit(app.stop_daemon())


if __name__ == "__main__":
    main()
