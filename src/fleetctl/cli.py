"""fleetctl command line entry point."""

import sys

import click
from rich.console import Console

from fleetctl import __version__
from fleetctl.commands.deploy import deploy
from fleetctl.commands.rollback import rollback
from fleetctl.commands.servers import servers
from fleetctl.config import load_config
from fleetctl.core.context import FleetCtlContext, pass_context
from fleetctl.core.exceptions import ConfigError, FleetCtlError
from fleetctl.core.output import OutputFormat

CONTEXT_SETTINGS = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 120,
}

stderr = Console(stderr=True)


def _output_format(ctx: click.Context, param: click.Parameter, value: str | None) -> OutputFormat | None:
    if value is None:
        return None
    try:
        return OutputFormat(value.lower())
    except ValueError:
        choices = ", ".join(f.value for f in OutputFormat)
        raise click.BadParameter(f"Invalid format '{value}'. Choose from: {choices}", ctx, param)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("-p", "--profile", metavar="NAME", envvar="FLEETCTL_PROFILE", help="Configuration profile to use")
@click.option(
    "-o",
    "--output",
    "output_format",
    metavar="FORMAT",
    callback=_output_format,
    help="Output format: table, json, yaml, raw",
)
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v for info, -vv for debug)")
@click.option("-q", "--quiet", is_flag=True, help="Suppress non-essential output")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    metavar="FILE",
    envvar="FLEETCTL_CONFIG",
    help="Path to config file",
)
@click.version_option(__version__, "--version", prog_name="fleetctl", message="%(prog)s version %(version)s")
@click.pass_context
def cli(
    ctx: click.Context,
    profile: str | None,
    output_format: OutputFormat | None,
    verbose: int,
    quiet: bool,
    no_color: bool,
    config_file: str | None,
) -> None:
    """FleetCtl - deploy an agent to many servers over SSH.

    Register servers, test their connectivity, deploy to them in
    concurrent batches and roll them back.

    \b
    Examples:
        fleetctl servers add --name web-1 --host 10.0.0.5 -u deploy -k ~/.ssh/id_ed25519
        fleetctl servers test --all
        fleetctl deploy run --all-connected
        fleetctl rollback srv-18c2f9a1b3e-5f1d2c

    \b
    Configuration:
        ~/.fleetctl/config.yaml    User configuration
        ./fleetctl.yaml            Project configuration
        FLEETCTL_*                 Environment variables
    """
    try:
        ctx.obj = FleetCtlContext(
            config=load_config(config_file, profile),
            profile=profile,
            output_format=output_format,
            verbose=verbose,
            quiet=quiet,
            color=not no_color,
        )
    except ConfigError as e:
        stderr.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)


@cli.command("config")
@pass_context
def show_config(ctx: FleetCtlContext) -> None:
    """Show the effective configuration, after files and environment."""
    ssh = ctx.profile.ssh
    pipeline = ctx.profile.deploy
    ctx.output.print_data(
        {
            "profile": ctx.profile_name,
            "output_format": ctx.output_format.value,
            "verbose": ctx.verbose,
            "state_dir": str(ctx.config.global_settings.get_state_dir()),
            "ssh": {
                "port": ssh.port,
                "connect_timeout": ssh.get_connect_timeout(),
                "command_timeout": ssh.command_timeout,
                "strict_host_key_checking": ssh.strict_host_key_checking,
            },
            "deploy": {
                "max_concurrent": pipeline.get_max_concurrent(),
                "node_major": pipeline.node_major,
                "agent_package": pipeline.agent_package,
                "remote_config_path": pipeline.remote_config_path,
            },
        },
        title="Current Configuration",
    )


cli.add_command(servers)
cli.add_command(deploy)
cli.add_command(rollback)


def main() -> None:
    """Console script entry point."""
    try:
        cli()
    except FleetCtlError as e:
        stderr.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        stderr.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
