"""Rampart CLI - Main Entry Point.

Commands:
    serve    - Run a handler behind the CSRF pipeline under uvicorn
    token    - Mint a token and show the cookie it would be issued in
    version  - Show version information
"""

import logging
import sys
from typing import Optional

import click

from . import __version__, __cli_name__


@click.group()
@click.version_option(version=__version__, prog_name=__cli_name__)
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.option(
    '--log-level',
    type=click.Choice(['debug', 'info', 'warning', 'error']),
    default='info',
    help='Log level for rampart.* loggers',
)
@click.pass_context
def cli(ctx, verbose: bool, log_level: str):
    """CSRF-guarded request pipeline.

    \b
    Quick start:
      rampart serve myapp:handler
      rampart serve myapp:handler --config rampart.yaml --workers 4
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command('serve')
@click.argument('target')
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False), help='JSON or YAML config file')
@click.option('--env-file', type=click.Path(dir_okay=False), help='.env file with RAMPART_* settings')
@click.option('--host', type=str, default=None, help='Bind host')
@click.option('--port', type=int, default=None, help='Bind port')
@click.option('--workers', type=int, default=None, help='Number of worker processes')
@click.option('--debug/--no-debug', default=None, help='Include exception details in 500 bodies')
@click.pass_context
def serve(
    ctx,
    target: str,
    config_path: Optional[str],
    env_file: Optional[str],
    host: Optional[str],
    port: Optional[int],
    workers: Optional[int],
    debug: Optional[bool],
):
    """
    Serve TARGET (module:handler) behind the standard pipeline.

    Examples:
      rampart serve app:handler
      rampart serve app:handler --port=8080 --workers=4
    """
    from .commands.serve import serve as serve_command
    from ..faults import ConfigError

    try:
        serve_command(
            target,
            config_path=config_path,
            env_file=env_file,
            overrides={"host": host, "port": port, "workers": workers, "debug": debug},
            verbose=ctx.obj['verbose'],
        )
    except KeyboardInterrupt:
        click.echo("Server stopped")
    except (ValueError, ImportError, ConfigError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command('token')
@click.option('--secure', is_flag=True, help='Render the cookie with the Secure flag')
def token(secure: bool):
    """Mint a CSRF token and print its Set-Cookie value."""
    from ..tokens import TokenCodec

    codec = TokenCodec(secure=secure)
    value = codec.mint()
    click.echo(value)
    click.echo(f"Set-Cookie: {codec.render(value)}")


@cli.command('version')
def version():
    """Show version information."""
    click.echo(f"{__cli_name__} {__version__}")


def main():
    """Entry point for `rampart` command."""
    cli(obj={})


if __name__ == '__main__':
    main()
