"""CLI interface for sutlink"""

import errno
import logging
import signal
import sys
from typing import Optional

import click
import yaml

from sutlink.core.command import Command, FileTransfer
from sutlink.core.config import Config
from sutlink.core.errors import SutlinkError, perror
from sutlink.core.iostream import FdStream
from sutlink.core.registry import PluginRegistry
from sutlink.core.sink import OutputMode, OutputSink
from sutlink.core.target import extract_file, inject_file, interrupt_command, run_test, target_free, target_new

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

target_option = click.option(
    "-t",
    "--target",
    "target_spec",
    help="Target spec, e.g. ssh:sut.example.com:22 (default: from configuration)",
)
config_option = click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to configuration YAML file",
)
user_option = click.option(
    "-u",
    "--user",
    help="Remote user (default: root)",
)
verbose_option = click.option(
    "-v",
    "--verbose",
    is_flag=True,
    help="Enable verbose logging",
)


def _setup_logging(verbose: bool) -> None:
    ctx = click.get_current_context()
    if ctx.obj and ctx.obj.get("debug"):
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose:
        logging.getLogger().setLevel(logging.INFO)


def _open_target(config: Optional[str], target_spec: Optional[str], sink: Optional[OutputSink] = None):
    """Create the target named on the command line or in the configuration"""
    try:
        cfg = Config(config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)

    target_spec = target_spec or cfg.target
    if not target_spec:
        raise click.UsageError("No target given; use -t or set target in the configuration")

    registry = PluginRegistry(cfg.plugin_modules)
    try:
        target = target_new(target_spec, registry)
    except SutlinkError as e:
        perror(f"Cannot create target {target_spec}", e.code)
        sys.exit(1)

    target.sink = sink or OutputSink(cfg.output_mode, cfg.buffer_size)
    target.configure(cfg.plugin_options(target.plugin.name))
    return cfg, target


def _echo_status(status) -> None:
    if status.major != 0 or status.minor != 0:
        click.echo(f"Remote status: major={status.major}, minor={status.minor}", err=True)


def _parse_mode(ctx, param, value: str) -> int:
    try:
        mode = int(value, 8)
    except ValueError:
        raise click.BadParameter(f"{value!r} is not an octal permission mode")
    if mode < 0 or mode > 0o7777:
        raise click.BadParameter(f"{value!r} is out of range")
    return mode


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode with protocol tracing",
)
@click.version_option()
@click.pass_context
def cli(ctx, debug):
    """sutlink - Remote test execution client

    Run commands on a system under test and copy files to and from it.
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug

    if debug:
        logging.getLogger().setLevel(logging.DEBUG)


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@target_option
@config_option
@user_option
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    help="Seconds after which the command is failed (default: 60)",
)
@click.option(
    "--tty/--no-tty",
    default=None,
    help="Run the command in a pseudo terminal",
)
@click.option(
    "--stdin-file",
    type=click.Path(exists=True, dir_okay=False),
    help="Forward this file instead of the local standard input",
)
@verbose_option
@click.argument("command", nargs=-1, required=True)
def run(target_spec: Optional[str], config: Optional[str], user: Optional[str], timeout: Optional[float],
        tty: Optional[bool], stdin_file: Optional[str], verbose: bool, command: tuple):
    """Run a command on the system under test

    Exits with the remote exit code, or 128 plus the signal number if the
    remote command was killed.

    Examples:
        sutlink run -t ssh:sut.example.com uname -a
        sutlink run -t ssh:[::1]:2222 --tty -- top -b -n 1
    """
    _setup_logging(verbose)
    cfg, target = _open_target(config, target_spec)

    stdin = FdStream(0)
    if stdin_file:
        try:
            stdin = FdStream.open(stdin_file)
        except OSError as e:
            click.echo(f"✗ Cannot open {stdin_file}: {e}", err=True)
            target_free(target)
            sys.exit(1)

    cmd = Command(
        " ".join(command),
        user=user or cfg.user,
        timeout=timeout or cfg.timeout,
        request_tty=cfg.tty if tty is None else tty,
        stdin=stdin,
        stdout=FdStream(1),
        stderr=FdStream(2),
    )

    def on_sigint(signum, frame):
        rc = interrupt_command(target)
        if rc < 0:
            perror("Unable to interrupt command", rc)
            # A second Ctrl-C aborts the client
            signal.signal(signal.SIGINT, signal.default_int_handler)

    previous_handler = signal.signal(signal.SIGINT, on_sigint)
    try:
        rc, status = run_test(target, cmd)
    except KeyboardInterrupt:
        click.echo("\n✗ Aborted", err=True)
        sys.exit(130)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        stdin.close()
        target_free(target)

    if rc < 0:
        perror("Unable to execute the command", rc)
        sys.exit(1)

    if status.major == errno.EFAULT:
        if status.minor > 0:
            click.echo(f"Remote command killed by signal {status.minor}", err=True)
            sys.exit(128 + status.minor)
        click.echo("Remote command killed by an unknown signal", err=True)
        sys.exit(1)

    sys.exit(status.minor)


@cli.command()
@target_option
@config_option
@user_option
@click.option(
    "--mode",
    default="0644",
    show_default=True,
    callback=_parse_mode,
    help="Permission bits of the remote file (octal)",
)
@verbose_option
@click.argument("local_path")
@click.argument("remote_path")
def inject(target_spec: Optional[str], config: Optional[str], user: Optional[str], mode: int,
           verbose: bool, local_path: str, remote_path: str):
    """Copy a local file to the system under test

    LOCAL_PATH may be "-" to read standard input.

    Examples:
        sutlink inject -t ssh:sut.example.com ./test.sh /tmp/test.sh --mode 0755
    """
    _setup_logging(verbose)
    cfg, target = _open_target(config, target_spec)

    try:
        stream = FdStream(0) if local_path == "-" else FdStream.open(local_path)
    except OSError as e:
        click.echo(f"✗ Cannot open {local_path}: {e}", err=True)
        target_free(target)
        sys.exit(1)

    try:
        rc, status = inject_file(target, FileTransfer(stream, remote_path, user=user or cfg.user, remote_mode=mode))
    finally:
        stream.close()
        target_free(target)

    if rc < 0:
        perror("Unable to inject file", rc)
        _echo_status(status)
        sys.exit(1)

    sys.exit(0)


@cli.command()
@target_option
@config_option
@user_option
@verbose_option
@click.argument("remote_path")
@click.argument("local_path")
def extract(target_spec: Optional[str], config: Optional[str], user: Optional[str], verbose: bool,
            remote_path: str, local_path: str):
    """Copy a file from the system under test

    LOCAL_PATH may be "-" to write to standard output.

    Examples:
        sutlink extract -t ssh:sut.example.com /var/log/messages ./messages
    """
    _setup_logging(verbose)

    # Progress dots would end up in the file content
    sink = OutputSink(OutputMode.NONE) if local_path == "-" else None
    cfg, target = _open_target(config, target_spec, sink=sink)

    try:
        stream = FdStream(1) if local_path == "-" else FdStream.open(local_path, write=True)
    except OSError as e:
        click.echo(f"✗ Cannot open {local_path}: {e}", err=True)
        target_free(target)
        sys.exit(1)

    try:
        rc, status = extract_file(target, FileTransfer(stream, remote_path, user=user or cfg.user))
    finally:
        stream.close()
        target_free(target)

    if rc < 0:
        perror("Unable to extract file", rc)
        _echo_status(status)
        sys.exit(1)

    sys.exit(0)


@cli.command()
@click.option(
    "-c",
    "--config",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Path to configuration YAML file",
)
def validate(config: str):
    """Validate configuration file

    Examples:
        sutlink validate -c sutlink.yaml
    """
    try:
        cfg = Config(config)

        if not cfg.validate():
            click.echo("✗ Configuration validation failed")
            sys.exit(1)

        click.echo("✓ Configuration is valid")
        click.echo(f"  Target: {cfg.target or '(none)'}")
        click.echo(f"  Output: {cfg.output_mode.value}")

        sys.exit(0)

    except Exception as e:
        click.echo(f"✗ Error: {e}")
        sys.exit(1)


def main():
    """Entry point for CLI"""
    cli()


if __name__ == "__main__":
    main()
