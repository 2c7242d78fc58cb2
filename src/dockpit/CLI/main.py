# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command Line Interface for Dockpit.
"""
import logging
import threading
import time

import click

from ..ENGINE.errors import DockpitError, EngineError
from ..ENGINE.gateway import EngineGateway
from ..MANAGERS.action_gate import ContainerAction, is_permitted
from ..MANAGERS.log_session import LogSessionState
from ..MANAGERS.monitor import Monitor
from ..MANAGERS.refresh_scheduler import RefreshOutcome
from ..MODELS.entities import EntityClass
from ..PARSERS.config_parser import ConfigLoader
from ..UTILS.formatting import format_bytes, format_table, format_timestamp

VIEWS = {
    'containers': EntityClass.CONTAINER,
    'images': EntityClass.IMAGE,
    'networks': EntityClass.NETWORK,
}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.option('--config', '-c', default=None, help='Config file path (default: dockpit.yml if present)')
@click.option('--host', '-H', default=None, help='Engine URL, e.g. unix:///var/run/docker.sock')
@click.option('--verbose', '-v', count=True, help='More logging (-vv for debug)')
@click.pass_context
def cli(ctx, config, host, verbose):
    """
    Dockpit - live monitor for a container engine.

    Lists containers, images and networks, starts and stops containers,
    and follows container logs and resource usage.
    """
    ctx.ensure_object(dict)
    overrides = {'docker_host': host}
    if verbose:
        overrides['log_level'] = 'DEBUG' if verbose > 1 else 'INFO'
    try:
        settings = ConfigLoader().load(config, overrides=overrides)
    except DockpitError as e:
        raise click.ClickException(str(e))
    ctx.obj['settings'] = settings
    _configure_logging(settings.log_level)


def _open_monitor(ctx) -> Monitor:
    """
    Connects to the engine and builds a monitor that is shut down when the
    command finishes.
    """
    settings = ctx.obj['settings']
    gateway_factory = ctx.obj.get('gateway_factory', EngineGateway.connect)
    try:
        gateway = gateway_factory(settings)
    except EngineError as e:
        raise click.ClickException(str(e))

    def report_refresh_error(entity_class, error):
        click.echo(f"Refresh of {entity_class.value}s failed, showing last known data: {error}", err=True)

    monitor = Monitor(gateway, settings, on_refresh_error=report_refresh_error)
    ctx.call_on_close(gateway.close)
    ctx.call_on_close(monitor.shutdown)
    return monitor


def _check_refresh(monitor: Monitor, entity_class: EntityClass, outcome: RefreshOutcome) -> None:
    if outcome == RefreshOutcome.FAILED:
        failure = monitor.store.last_failure(entity_class)
        raise click.ClickException(str(failure.error) if failure else "Refresh failed")


def _refresh(monitor: Monitor, entity_class: EntityClass) -> None:
    _check_refresh(monitor, entity_class, monitor.scheduler.refresh(entity_class))


def _render(monitor: Monitor, entity_class: EntityClass) -> str:
    records = monitor.store.records(entity_class)
    if not records:
        return f"No {entity_class.value}s found."

    if entity_class == EntityClass.CONTAINER:
        return format_table(
            ['CONTAINER ID', 'NAME', 'IMAGE', 'STATE', 'STATUS'],
            [[c.id, c.name, c.image, c.state, c.status] for c in records],
        )
    if entity_class == EntityClass.IMAGE:
        return format_table(
            ['IMAGE ID', 'TAG', 'SIZE', 'CREATED', 'OTHER TAGS'],
            [
                [i.id, i.display_tag, format_bytes(i.size), format_timestamp(i.created), ', '.join(i.extra_tags)]
                for i in records
            ],
        )
    return format_table(
        ['NETWORK ID', 'NAME', 'DRIVER', 'SCOPE'],
        [[n.id, n.name, n.driver, n.scope] for n in records],
    )


@cli.command()
@click.pass_context
def ps(ctx):
    """List containers."""
    monitor = _open_monitor(ctx)
    _refresh(monitor, EntityClass.CONTAINER)
    click.echo(_render(monitor, EntityClass.CONTAINER))


@cli.command()
@click.pass_context
def images(ctx):
    """List images."""
    monitor = _open_monitor(ctx)
    _refresh(monitor, EntityClass.IMAGE)
    click.echo(_render(monitor, EntityClass.IMAGE))


@cli.command()
@click.pass_context
def networks(ctx):
    """List networks."""
    monitor = _open_monitor(ctx)
    _refresh(monitor, EntityClass.NETWORK)
    click.echo(_render(monitor, EntityClass.NETWORK))


@cli.command()
@click.argument('view', type=click.Choice(list(VIEWS)), default='containers')
@click.option('--count', '-n', type=int, default=None, help='Exit after this many updates')
@click.pass_context
def watch(ctx, view, count):
    """Keep a list on screen, refreshed periodically."""
    monitor = _open_monitor(ctx)
    entity_class = VIEWS[view]
    done = threading.Event()
    updates = [0]

    def show(snapshot):
        if snapshot.entity_class != entity_class:
            return
        click.echo(f"\n[{snapshot.fetched_at:%H:%M:%S}] {view}")
        click.echo(_render(monitor, entity_class))
        updates[0] += 1
        if count is not None and updates[0] >= count:
            done.set()

    unsubscribe = monitor.store.subscribe(show)
    try:
        monitor.activate(entity_class)
        while not done.wait(0.5):
            pass
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        unsubscribe()
        monitor.shutdown()


def _run_action(ctx, container_id: str, action: ContainerAction) -> None:
    monitor = _open_monitor(ctx)
    _refresh(monitor, EntityClass.CONTAINER)
    try:
        outcome = monitor.dispatch(container_id, action)
    except EngineError as e:
        raise click.ClickException(str(e))
    if not outcome.ok:
        raise click.ClickException(outcome.message)

    click.echo(outcome.message)
    record = monitor.store.find_container(outcome.entity_id)
    if record is not None:
        click.echo(f"{record.name} is now {record.state}")


@cli.command()
@click.argument('container')
@click.pass_context
def start(ctx, container):
    """Start a container."""
    _run_action(ctx, container, ContainerAction.START)


@cli.command()
@click.argument('container')
@click.pass_context
def stop(ctx, container):
    """Stop a running container."""
    _run_action(ctx, container, ContainerAction.STOP)


@cli.command()
@click.argument('container')
@click.pass_context
def restart(ctx, container):
    """Restart a container."""
    _run_action(ctx, container, ContainerAction.RESTART)


@cli.command()
@click.argument('container')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def rm(ctx, container, yes):
    """Remove an exited container."""
    monitor = _open_monitor(ctx)
    _refresh(monitor, EntityClass.CONTAINER)
    record = monitor.find_container(container)
    if record is None:
        raise click.ClickException(f"No such container: {container}")
    if not is_permitted(ContainerAction.REMOVE, record.state):
        raise click.ClickException(
            f"Cannot remove container {record.name}: it has not exited (state: {record.state})"
        )
    if not yes:
        click.confirm(f"Remove container {record.name}? This cannot be undone.", abort=True)

    outcome = monitor.gate.dispatch(record.id, ContainerAction.REMOVE, record.state)
    if not outcome.ok:
        raise click.ClickException(outcome.message)
    click.echo(f"Removed {record.name}")


@cli.command()
@click.argument('container')
@click.pass_context
def inspect(ctx, container):
    """Show environment, ports, mounts and networks of a container."""
    monitor = _open_monitor(ctx)
    _refresh(monitor, EntityClass.CONTAINER)
    try:
        record = monitor.require_container(container)
        detail = monitor.gateway.get_container_detail(record.id)
    except EngineError as e:
        raise click.ClickException(str(e))

    click.echo(f"Name:           {record.name}")
    click.echo(f"ID:             {record.id}")
    click.echo(f"Image:          {detail.image_id}")
    click.echo(f"Hostname:       {detail.hostname}")
    click.echo(f"Created:        {detail.created}")
    click.echo(f"Restart policy: {detail.restart_policy}")
    click.echo("Environment:")
    for var in detail.env or ["(none)"]:
        click.echo(f"  {var}")
    click.echo("Ports:")
    for port in detail.ports:
        click.echo(f"  {port.host_ip}:{port.host_port} -> {port.container_port}/{port.protocol}")
    if not detail.ports:
        click.echo("  (none)")
    click.echo("Volumes:")
    for mount in detail.volumes:
        mode = "rw" if mount.rw else "ro"
        click.echo(f"  {mount.source} -> {mount.destination} ({mode})")
    if not detail.volumes:
        click.echo("  (none)")
    click.echo("Networks:")
    for network in detail.networks or ["(none)"]:
        click.echo(f"  {network}")


@cli.command()
@click.argument('container')
@click.pass_context
def logs(ctx, container):
    """Follow the log output of a container."""
    monitor = _open_monitor(ctx)
    _refresh(monitor, EntityClass.CONTAINER)
    try:
        session = monitor.observe(container, follow_logs=True, sample_stats=False, on_line=click.echo)
    except EngineError as e:
        raise click.ClickException(str(e))

    try:
        while session.logs.state == LogSessionState.STREAMING:
            time.sleep(0.2)
    except KeyboardInterrupt:
        pass
    finally:
        monitor.close_observation()

    if session.logs.state == LogSessionState.FAILED:
        raise click.ClickException(f"Log stream for {container} failed: {session.logs.error}")


def _format_stats(stats) -> str:
    return (
        f"CPU {stats.cpu_percentage:6.2f}%  "
        f"MEM {format_bytes(stats.memory_usage)} / {format_bytes(stats.memory_limit)} "
        f"({stats.memory_percentage:.2f}%)  "
        f"NET rx {format_bytes(stats.network_rx)} tx {format_bytes(stats.network_tx)}  "
        f"BLOCK read {format_bytes(stats.block_read)} write {format_bytes(stats.block_write)}"
    )


@cli.command()
@click.argument('container')
@click.option('--count', '-n', type=int, default=None, help='Exit after this many samples')
@click.pass_context
def stats(ctx, container, count):
    """Show live resource usage of a running container."""
    monitor = _open_monitor(ctx)
    # Keep containers polled so the sampler learns when the container stops
    _check_refresh(monitor, EntityClass.CONTAINER, monitor.activate(EntityClass.CONTAINER))
    done = threading.Event()
    samples = [0]

    def show(sample):
        click.echo(_format_stats(sample))
        samples[0] += 1
        if count is not None and samples[0] >= count:
            done.set()

    def show_error(error):
        click.echo(f"Sample failed: {error}", err=True)

    try:
        session = monitor.observe(
            container, follow_logs=False, sample_stats=True, on_sample=show, on_error=show_error
        )
    except EngineError as e:
        raise click.ClickException(str(e))

    try:
        if not session.sampler.available:
            click.echo(f"Container {session.container.name} is not running. Stats unavailable.")
            return
        while not done.wait(0.5):
            if not session.sampler.available:
                click.echo(f"Container {session.container.name} stopped. Stats unavailable.")
                break
    except KeyboardInterrupt:
        pass
    finally:
        monitor.close_observation()


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
