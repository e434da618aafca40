"""
Command Line Interface for layerscope.
"""
import functools

import click

from ..ISOLATION.mount_engine import MountEngine
from ..MANAGERS.explorer import Explorer
from ..MODELS.explorer_settings import ExplorerSettings
from ..PARSERS.settings_parser import SettingsParser
from ..UTILS.logging_config import configure_logging
from ..errors import ExplorerError


def _explorer(ctx) -> Explorer:
    """
    Opens the explorer on first use; it is closed with the CLI context.
    """
    explorer = ctx.obj.get('explorer')
    if explorer is None:
        explorer = Explorer.from_settings(ctx.obj['settings'])
        ctx.obj['explorer'] = explorer
        ctx.call_on_close(explorer.close)
    return explorer


def _reports_errors(f):
    """Prints explorer errors and exits with status 1."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ExplorerError as e:
            click.echo(f"Error: {e}", err=True)
            raise SystemExit(1)
    return wrapper


def _timestamp(value) -> str:
    return value.isoformat() if value else "-"


@click.group()
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True, dir_okay=False),
              help='Settings YAML file')
@click.option('--docker-root', help='Docker state directory (default /var/lib/docker)')
@click.option('--containerd-root', help='containerd state directory (default /var/lib/containerd)')
@click.option('--metadata-file', help='containerd metadata database (meta.db)')
@click.option('--layer-store', help='Layered filesystem driver (default overlay2)')
@click.option('--debug', is_flag=True, help='Show debug output, including layer paths')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Also write a debug log to this file')
@click.pass_context
def cli(ctx, config_path, docker_root, containerd_root, metadata_file, layer_store, debug, log_file):
    """
    layerscope - offline explorer for Docker containers.

    Lists containers, images and namespaces from an acquired Docker host
    and mounts container filesystems read-only.
    """
    ctx.ensure_object(dict)
    configure_logging(debug=debug, log_file=log_file)

    parser = SettingsParser()
    try:
        settings = parser.parse(config_path) if config_path else ExplorerSettings()
    except ExplorerError as e:
        raise click.UsageError(str(e))

    ctx.obj['settings'] = parser.merge(settings, {
        'docker_root': docker_root,
        'containerd_root': containerd_root,
        'metadata_file': metadata_file,
        'layer_store': layer_store,
    })


@cli.command()
@click.pass_context
@_reports_errors
def namespaces(ctx):
    """List containerd namespaces."""
    for namespace in _explorer(ctx).list_namespaces():
        click.echo(namespace.name)


@cli.command()
@click.pass_context
@_reports_errors
def containers(ctx):
    """List containers."""
    records = _explorer(ctx).list_containers()
    click.echo(f"{'CONTAINER ID':15} {'NAME':20} {'IMAGE':20} {'CREATED':27} {'RUNNING':8} PORTS")
    for record in records:
        ports = ",".join(sorted(record.exposed_ports))
        click.echo(f"{record.id[:12]:15} {record.runtime_name:20} {record.image[:19]:20} "
                   f"{_timestamp(record.created_at):27} {str(record.running):8} {ports}")


@cli.command()
@click.pass_context
@_reports_errors
def images(ctx):
    """List images."""
    records = _explorer(ctx).list_images()
    click.echo(f"{'NAME':40} {'CREATED':27} DIGEST")
    for record in records:
        click.echo(f"{record.name:40} {_timestamp(record.created_at):27} {record.digest}")


@cli.command()
@click.argument('container_id')
@click.pass_context
@_reports_errors
def layers(ctx, container_id):
    """Show the overlay directories of a container."""
    chain = _explorer(ctx).resolve_layers(container_id)
    click.echo(f"mount id: {chain.mount_id}")
    for lower in chain.lower_dirs:
        click.echo(f"lower: {lower}")
    click.echo(f"upper: {chain.upper_dir}")
    click.echo(f"work:  {chain.work_dir}")


@cli.command()
@click.argument('container_id')
@click.argument('mountpoint', type=click.Path(file_okay=False))
@click.pass_context
@_reports_errors
def mount(ctx, container_id, mountpoint):
    """Mount a container filesystem read-only."""
    _explorer(ctx).mount_container(container_id, mountpoint)
    click.echo(f"Mounted {container_id} at {mountpoint}")


@cli.command()
@click.argument('mountpoint', type=click.Path(file_okay=False))
@click.pass_context
@_reports_errors
def umount(ctx, mountpoint):
    """Unmount a previously mounted container."""
    settings = ctx.obj['settings']
    engine = MountEngine(mount_binary=settings.mount_binary, umount_binary=settings.umount_binary)
    engine.unmount(mountpoint)
    click.echo(f"Unmounted {mountpoint}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
