"""
bwh command line interface.

Manages BandwagonHost VPS instances configured in ~/.bwh/config.yaml:

    bwh node add prod --api-key ... --veid 123456
    bwh info
    bwh snapshot create -d "before upgrade"
    bwh migrate start USCA_FMT --wait
"""

import json
import logging
import os
import shutil
import subprocess
import sys
from typing import Callable, List, Optional, Tuple

import click
import yaml

from . import display, usage
from .client import BWHClient
from .config import (
    ConfigError, ConfigManager, Instance, client_for, mask_api_key,
)
from .display import console, err_console
from .errors import BWHError, TransportError, ValidationError, get_bwh_error
from .migration import (
    MigrationTimeout, MigrationWaiter, start_migration_nowait,
)
from .ssh_bridge import SSHExecBridge, build_ssh_args, resolve_ssh_port, select_target_ip
from .types import Snapshot
from .validation import (
    normalize_ipv6_subnet, read_ssh_keys_file, split_ips_by_family,
    validate_backup_token, validate_ip, validate_ipv4, validate_ssh_keys,
)
from .version import get_user_agent, get_version

logger = logging.getLogger(__name__)


class AppContext:
    """Global options plus lazily built config manager and client."""

    def __init__(self, config_path: Optional[str], instance: Optional[str]):
        self.config_path = config_path
        self.instance = instance
        self._manager: Optional[ConfigManager] = None

    @property
    def manager(self) -> ConfigManager:
        if self._manager is None:
            self._manager = ConfigManager(self.config_path)
        return self._manager

    def resolve(self) -> Tuple[BWHClient, str, Instance]:
        manager = self.manager
        try:
            inst, name = manager.resolve_instance(self.instance)
        except ConfigError as e:
            available = ", ".join(n for n, _ in manager.list_instances())
            hint = f" (available: {available})" if available else ""
            raise click.ClickException(f"failed to resolve instance: {e}{hint}") from e
        return client_for(inst), name, inst

    def client(self) -> Tuple[BWHClient, str]:
        client, name, _ = self.resolve()
        return client, name


pass_app = click.make_pass_decorator(AppContext)


def run(action: str, fn: Callable, *args, **kwargs):
    """Call ``fn`` and turn API/transport failures into a CLI error with context."""
    try:
        return fn(*args, **kwargs)
    except (BWHError, TransportError, ValidationError) as e:
        message = f"failed to {action}: {e}"
        err = get_bwh_error(e)
        if err is not None and err.is_locked:
            message += "\nThe VPS is busy with another operation. Please retry shortly."
        elif err is not None and err.is_authentication_error:
            message += "\nCheck the API key and VEID configured for this instance."
        raise click.ClickException(message) from e


def confirm(prompt: str, yes: bool) -> None:
    if not yes:
        click.confirm(prompt, abort=True)


class BWHGroup(click.Group):
    """Root group: reports library errors raised outside ``run`` as CLI errors."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except (ConfigError, ValidationError, MigrationTimeout) as e:
            raise click.ClickException(str(e)) from e


@click.group(cls=BWHGroup)
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.option("--instance", "-i", default=None, help="Instance to use (default: $BWH_INSTANCE or config default)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(get_version(), prog_name="bwh")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], instance: Optional[str], verbose: bool) -> None:
    """Manage your BandwagonHost (KiwiVM) VPS instances."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    ctx.obj = AppContext(config_path, instance)


# ── Nodes ────────────────────────────────────────────────────────

@cli.group()
def node() -> None:
    """Manage configured VPS instances."""


@node.command("add")
@click.argument("name")
@click.option("--api-key", required=True, help="KiwiVM API key")
@click.option("--veid", required=True, help="KiwiVM VEID")
@click.option("--description", default="", help="Instance description")
@click.option("--endpoint", default="", help="Custom API endpoint URL")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--default", "set_default", is_flag=True, help="Make this the default instance")
@click.option("--validate", is_flag=True, help="Check the credentials against the API before saving")
@pass_app
def node_add(app: AppContext, name, api_key, veid, description, endpoint, tags, set_default, validate) -> None:
    """Add a new instance."""
    instance = Instance(
        api_key=api_key.strip(),
        veid=veid.strip(),
        description=description,
        endpoint=endpoint,
        tags=tuple(tags),
    )
    manager = app.manager
    manager.add_instance(name, instance, set_default=set_default)
    if validate:
        info = run("validate instance", client_for(instance).get_service_info)
        console.print(f"Connected: {info.hostname} ({info.node_location})")
    manager.save()
    console.print(f"[green]Added instance '{name}'[/green]")
    if manager.default_instance == name:
        console.print(f"'{name}' is the default instance")


@node.command("remove")
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def node_remove(app: AppContext, name: str, yes: bool) -> None:
    """Remove an instance."""
    manager = app.manager
    manager.get_instance(name)
    confirm(f"Remove instance '{name}'?", yes)
    manager.remove_instance(name)
    manager.save()
    console.print(f"Removed instance '{name}'")
    if manager.default_instance:
        console.print(f"Default instance: {manager.default_instance}")


@node.command("list")
@click.option("--format", "fmt", type=click.Choice(["table", "json", "yaml"]), default="table")
@pass_app
def node_list(app: AppContext, fmt: str) -> None:
    """List configured instances."""
    manager = app.manager
    rows = manager.list_instances()
    if fmt == "table":
        if not rows:
            console.print("No instances configured. Add one with: bwh node add <name>")
            return
        display.render_instances(rows, manager.default_instance)
        return
    payload = {
        "default_instance": manager.default_instance,
        "instances": {
            name: dict(inst.to_dict(), api_key=mask_api_key(inst.api_key)) for name, inst in rows
        },
    }
    if fmt == "json":
        click.echo(json.dumps(payload, indent=2))
    else:
        click.echo(yaml.safe_dump(payload, default_flow_style=False, sort_keys=False))


@node.command("set-default")
@click.argument("name")
@pass_app
def node_set_default(app: AppContext, name: str) -> None:
    """Set the default instance."""
    app.manager.set_default(name)
    app.manager.save()
    console.print(f"Default instance set to '{name}'")


@node.command("show")
@click.argument("name", required=False)
@pass_app
def node_show(app: AppContext, name: Optional[str]) -> None:
    """Show one instance's configuration (API key masked)."""
    manager = app.manager
    if name:
        inst = manager.get_instance(name)
    else:
        inst, name = manager.resolve_instance(app.instance)
    console.print(f"[bold]{name}[/bold]{' (default)' if name == manager.default_instance else ''}")
    console.print(f"  API key    : {mask_api_key(inst.api_key)}")
    console.print(f"  VEID       : {inst.veid}")
    console.print(f"  Description: {inst.description or '-'}")
    console.print(f"  Endpoint   : {inst.endpoint or '-'}")
    console.print(f"  Tags       : {', '.join(inst.tags) or '-'}")


# ── Info ─────────────────────────────────────────────────────────

@cli.command()
@click.option("--compact", is_flag=True, help="One-screen summary")
@pass_app
def info(app: AppContext, compact: bool) -> None:
    """Show live information about the instance."""
    client, name = app.client()
    err_console.print(f"Getting info for instance: {name} (this may take up to 15 seconds)")
    live = run("get service info", client.get_live_service_info)
    display.render_service_info(live, name, compact=compact)


@cli.command("rate-limit")
@pass_app
def rate_limit(app: AppContext) -> None:
    """Show remaining API rate limit points."""
    client, name = app.client()
    status = run("get rate limit status", client.get_rate_limit_status)
    console.print(f"Rate limit for {name}:")
    console.print(f"  Remaining (15 min): {status.remaining_points_15min}")
    console.print(f"  Remaining (24 h)  : {status.remaining_points_24h}")


# ── Power ────────────────────────────────────────────────────────

def _power(app: AppContext, action: str, yes: bool, needs_confirm: bool, warning: str = "") -> None:
    client, name = app.client()
    if needs_confirm:
        if warning:
            console.print(f"[yellow]{warning}[/yellow]")
        confirm(f"Really {action} '{name}'?", yes)
    run(f"{action} VPS", getattr(client, action))
    console.print(f"[green]{action.capitalize()} command sent to '{name}'[/green]")


@cli.command()
@pass_app
def start(app: AppContext) -> None:
    """Start the VPS."""
    _power(app, "start", True, False)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def stop(app: AppContext, yes: bool) -> None:
    """Stop the VPS."""
    _power(app, "stop", yes, True)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def restart(app: AppContext, yes: bool) -> None:
    """Restart the VPS."""
    _power(app, "restart", yes, True)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def kill(app: AppContext, yes: bool) -> None:
    """Force-stop a stuck VPS (unsaved data is lost)."""
    _power(app, "kill", yes, True, "Kill forcefully stops the VPS; unsaved data will be lost.")


# ── Access ───────────────────────────────────────────────────────

@cli.command()
@click.option("--user", "-u", default="root", show_default=True, help="SSH username")
@click.option("--port", "-p", type=int, default=0, help="SSH port (overrides detected port)")
@click.option("--identity", default="", help="Identity file passed to ssh -i")
@click.option("--ipv6", is_flag=True, help="Prefer an IPv6 address")
@click.option("--cmd", "remote_command", default="", help="Remote command instead of a shell")
@click.option("--no-host-check", is_flag=True, help="Disable host key checking")
@click.option("--ssh-arg", "ssh_args", multiple=True, help="Extra raw ssh argument (repeatable)")
@click.option("--print", "print_only", is_flag=True, help="Print the ssh command instead of running it")
@pass_app
def connect(app: AppContext, user, port, identity, ipv6, remote_command, no_host_check, ssh_args, print_only) -> None:
    """SSH into the instance using local keys."""
    ssh_binary = shutil.which("ssh")
    if ssh_binary is None and not print_only:
        raise click.ClickException("ssh binary not found in PATH")

    client, name = app.client()
    err_console.print(f"Resolving connection target for instance: {name}")
    live = run("get live service info", client.get_live_service_info)
    host = select_target_ip(live.ip_addresses, prefer_ipv6=ipv6)
    args = build_ssh_args(
        host,
        port=resolve_ssh_port(live.ssh_port, port),
        user=user,
        identity=identity,
        no_host_check=no_host_check,
        extra_args=ssh_args,
        remote_command=remote_command,
    )
    if print_only:
        click.echo("ssh " + " ".join(args))
        return
    sys.exit(subprocess.call([ssh_binary] + args))


@cli.command("exec")
@click.argument("command")
@click.option("--user", "-u", default="root", show_default=True)
@click.option("--key", "key_path", default=None, help="Private key file (default: agent/~/.ssh)")
@click.option("--ipv6", is_flag=True, help="Prefer an IPv6 address")
@click.option("--timeout", type=int, default=60, show_default=True, help="Command timeout in seconds")
@pass_app
def exec_command(app: AppContext, command: str, user: str, key_path: Optional[str], ipv6: bool, timeout: int) -> None:
    """Run one command on the VPS over SSH and print its output."""
    client, name = app.client()
    live = run("get live service info", client.get_live_service_info)
    host = select_target_ip(live.ip_addresses, prefer_ipv6=ipv6)
    with SSHExecBridge(host, username=user, port=resolve_ssh_port(live.ssh_port),
                       key_path=key_path, timeout=timeout) as bridge:
        result = bridge.exec(command, timeout=timeout)
    if result.stdout:
        click.echo(result.stdout)
    if result.stderr:
        click.echo(result.stderr, err=True)
    if not result.success:
        sys.exit(result.exit_code if result.exit_code > 0 else 1)


@cli.group()
def ssh() -> None:
    """Manage SSH keys installed by reinstall."""


@ssh.command("list")
@click.option("--full", is_flag=True, help="Show full keys instead of shortened ones")
@pass_app
def ssh_list(app: AppContext, full: bool) -> None:
    """List VM, account and effective keys."""
    client, _ = app.client()
    display.render_ssh_keys(run("get SSH keys", client.get_ssh_keys), show_full=full)


@ssh.command("set")
@click.argument("keys", nargs=-1)
@click.option("--file", "key_file", type=click.Path(exists=True, dir_okay=False), help="Read keys from file")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def ssh_set(app: AppContext, keys: Tuple[str, ...], key_file: Optional[str], yes: bool) -> None:
    """Replace all VM-level SSH keys."""
    all_keys: List[str] = list(keys)
    if key_file:
        all_keys.extend(read_ssh_keys_file(key_file))
    if not all_keys:
        raise click.UsageError("no SSH keys given; pass keys as arguments or use --file")
    validate_ssh_keys(all_keys)
    client, name = app.client()
    confirm(f"Replace all VM-level SSH keys of '{name}' with {len(all_keys)} key(s)?", yes)
    run("update SSH keys", client.update_ssh_keys, all_keys)
    console.print(f"[green]Updated SSH keys ({len(all_keys)})[/green]")


@ssh.command("clear")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def ssh_clear(app: AppContext, yes: bool) -> None:
    """Remove all VM-level SSH keys (account keys apply again)."""
    client, name = app.client()
    confirm(f"Clear all VM-level SSH keys of '{name}'?", yes)
    run("clear SSH keys", client.update_ssh_keys, [])
    console.print("[green]VM-level SSH keys cleared[/green]")


@cli.command()
@click.argument("new_hostname")
@pass_app
def hostname(app: AppContext, new_hostname: str) -> None:
    """Set the VPS hostname."""
    if not new_hostname.strip():
        raise click.UsageError("hostname cannot be empty")
    client, _ = app.client()
    run("set hostname", client.set_hostname, new_hostname)
    console.print(f"[green]Hostname set to {new_hostname.strip()}[/green]")


@cli.command("reset-password")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def reset_password(app: AppContext, yes: bool) -> None:
    """Generate a new root password."""
    client, name = app.client()
    confirm(f"Reset the root password of '{name}'?", yes)
    password = run("reset root password", client.reset_root_password)
    console.print(f"New root password: [bold]{password}[/bold]")


# ── Network ──────────────────────────────────────────────────────

@cli.command("set-ptr")
@click.argument("ip")
@click.argument("ptr")
@pass_app
def set_ptr(app: AppContext, ip: str, ptr: str) -> None:
    """Set the reverse DNS record of one of the VPS addresses."""
    validate_ip(ip)
    client, _ = app.client()
    run("set PTR record", client.set_ptr, ip, ptr)
    console.print(f"[green]PTR for {ip} set to {ptr}[/green]")


@cli.group()
def ipv6() -> None:
    """Manage IPv6 /64 subnets."""


@ipv6.command("list")
@pass_app
def ipv6_list(app: AppContext) -> None:
    """List assigned IPv6 subnets."""
    client, _ = app.client()
    info = run("get service info", client.get_service_info)
    _, subnets = split_ips_by_family(info.ip_addresses)
    if not subnets:
        console.print("No IPv6 subnets assigned.")
        return
    for subnet in subnets:
        console.print(f"  {subnet}")
    console.print(f"{len(subnets)} of {info.plan_max_ipv6s} allowed")


@ipv6.command("add")
@pass_app
def ipv6_add(app: AppContext) -> None:
    """Assign a new IPv6 /64 subnet."""
    client, _ = app.client()
    subnet = run("add IPv6 subnet", client.add_ipv6)
    console.print(f"[green]Assigned IPv6 subnet: {subnet}/64[/green]")


@ipv6.command("delete")
@click.argument("subnet")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def ipv6_delete(app: AppContext, subnet: str, yes: bool) -> None:
    """Release an IPv6 /64 subnet."""
    normalized = normalize_ipv6_subnet(subnet)
    client, name = app.client()
    confirm(f"Release IPv6 subnet {normalized}/64 from '{name}'?", yes)
    run("delete IPv6 subnet", client.delete_ipv6, normalized)
    console.print(f"[green]Released IPv6 subnet {normalized}/64[/green]")


@cli.group("private-ip")
def private_ip() -> None:
    """Manage private network addresses."""


@private_ip.command("info")
@pass_app
def private_ip_info(app: AppContext) -> None:
    """Show assigned and available private IPs."""
    client, _ = app.client()
    info = run("get service info", client.get_service_info)
    if not (info.plan_private_network_available and info.location_private_network_available):
        console.print("[yellow]Private networking is not available for this plan or location.[/yellow]")
        return
    available = run("get available private IPs", client.get_available_private_ips)
    display.render_private_ips(info.private_ip_addresses, available)


@private_ip.command("available")
@pass_app
def private_ip_available(app: AppContext) -> None:
    """List private IPs that can be assigned."""
    client, _ = app.client()
    available = run("get available private IPs", client.get_available_private_ips)
    display.render_private_ips([], available)


@private_ip.command("assign")
@click.argument("ip", required=False, default="")
@pass_app
def private_ip_assign(app: AppContext, ip: str) -> None:
    """Assign a private IP (a random one when none is given)."""
    if ip:
        validate_ipv4(ip)
    client, _ = app.client()
    assigned = run("assign private IP", client.assign_private_ip, ip)
    console.print(f"[green]Assigned private IPs: {', '.join(assigned)}[/green]")


@private_ip.command("delete")
@click.argument("ip")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def private_ip_delete(app: AppContext, ip: str, yes: bool) -> None:
    """Release a private IP."""
    validate_ipv4(ip)
    client, name = app.client()
    confirm(f"Release private IP {ip} from '{name}'?", yes)
    run("delete private IP", client.delete_private_ip, ip)
    console.print(f"[green]Released private IP {ip}[/green]")


# ── ISO & reinstall ──────────────────────────────────────────────

@cli.group()
def iso() -> None:
    """Mount or unmount ISO images."""


@iso.command("images")
@pass_app
def iso_images(app: AppContext) -> None:
    """List ISO images that can be mounted."""
    client, _ = app.client()
    info = run("get service info", client.get_service_info)
    console.print(f"Mounted: {info.iso1 or 'none'}")
    for image in info.available_isos:
        console.print(f"  {image}")


@iso.command("mount")
@click.argument("image")
@pass_app
def iso_mount(app: AppContext, image: str) -> None:
    """Mount an ISO (fully stop and start the VPS afterwards)."""
    client, _ = app.client()
    run("mount ISO", client.mount_iso, image)
    console.print(f"[green]Mounted {image}. Stop and start the VPS to boot from it.[/green]")


@iso.command("unmount")
@pass_app
def iso_unmount(app: AppContext) -> None:
    """Unmount the current ISO."""
    client, _ = app.client()
    run("unmount ISO", client.unmount_iso)
    console.print("[green]ISO unmounted. Stop and start the VPS to boot normally.[/green]")


@cli.command()
@click.option("--os", "template", default="", help="OS template to install")
@click.option("--list", "list_only", is_flag=True, help="List available templates")
@click.option("--yes", "-y", "--force", is_flag=True, help="Skip confirmation prompt")
@pass_app
def reinstall(app: AppContext, template: str, list_only: bool, yes: bool) -> None:
    """Reinstall the operating system (destroys all data)."""
    client, name = app.client()
    available = run("get available OS templates", client.get_available_os)
    if list_only or not template:
        console.print(f"Installed: {available.installed}")
        for t in available.templates:
            marker = " (current)" if t == available.installed else ""
            console.print(f"  {t}{marker}")
        if not list_only:
            console.print("Pass --os <template> to reinstall.")
        return
    if template not in available.templates:
        raise click.ClickException(f"invalid OS template: {template} (see: bwh reinstall --list)")
    console.print(f"[red]Reinstalling '{name}' with {template} will DESTROY ALL DATA.[/red]")
    confirm("Continue?", yes)
    run("reinstall OS", client.reinstall_os, template, available)
    console.print("[green]Reinstall started. Credentials will be emailed to the account owner.[/green]")


# ── Usage & audit ────────────────────────────────────────────────

@cli.command("usage")
@click.option("--period", type=click.Choice(["1d", "7d", "1m", "all"]), default="1d", show_default=True)
@click.option("--group-by", type=click.Choice(sorted(usage.BUCKETS)), default=None, help="Show per-bucket table")
@pass_app
def usage_cmd(app: AppContext, period: str, group_by: Optional[str]) -> None:
    """Show resource usage statistics."""
    client, name = app.client()
    stats = run("get usage statistics", client.get_raw_usage_stats)
    if not stats.data:
        console.print(f"No usage data available for instance: {name}")
        return
    info = run("get service info", client.get_service_info)
    points = usage.filter_by_period(stats.data, period)
    display.render_usage(points, name, stats.vm_type, period, info)
    if group_by and points:
        # points are already cut to the period
        days = usage.PERIOD_DAYS.get(period, 3650)
        display.render_usage_buckets(usage.aggregate(points, days, group_by)["buckets"])


@cli.command()
@click.option("--limit", type=int, default=0, help="Show at most N entries")
@click.option("--ip", "ip_contains", default="", help="Filter by requestor IP substring")
@click.option("--type", "event_type", type=int, default=-1, help="Filter by event type")
@pass_app
def audit(app: AppContext, limit: int, ip_contains: str, event_type: int) -> None:
    """Show the audit log, newest first."""
    from .mcp_server import filter_audit

    client, name = app.client()
    entries = run("get audit log", client.get_audit_log)
    display.render_audit(filter_audit(entries, limit=limit, ip_contains=ip_contains, event_type=event_type), name)


# ── Snapshots ────────────────────────────────────────────────────

def resolve_snapshot(snapshots: List[Snapshot], ref: str) -> Snapshot:
    """Match by file name, or by 1-based position in the listing."""
    for snap in snapshots:
        if snap.file_name == ref:
            return snap
    if ref.isdigit() and 1 <= int(ref) <= len(snapshots):
        return snapshots[int(ref) - 1]
    raise click.ClickException(f"snapshot not found: {ref}")


@cli.group()
def snapshot() -> None:
    """Manage snapshots."""


@snapshot.command("create")
@click.option("--description", "-d", default="", help="Snapshot description")
@pass_app
def snapshot_create(app: AppContext, description: str) -> None:
    """Create a snapshot."""
    client, name = app.client()
    email = run("create snapshot", client.create_snapshot, description)
    console.print(f"[green]Snapshot of '{name}' started.[/green]")
    if email:
        console.print(f"A notification will be sent to {email} when it completes.")


@snapshot.command("list")
@pass_app
def snapshot_list(app: AppContext) -> None:
    """List snapshots."""
    client, _ = app.client()
    display.render_snapshots(run("list snapshots", client.list_snapshots))


def _snapshot_action(app: AppContext, ref: str) -> Tuple[BWHClient, str, Snapshot]:
    client, name = app.client()
    snap = resolve_snapshot(run("list snapshots", client.list_snapshots), ref)
    return client, name, snap


@snapshot.command("delete")
@click.argument("ref")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def snapshot_delete(app: AppContext, ref: str, yes: bool) -> None:
    """Delete a snapshot (by file name or list position)."""
    client, _, snap = _snapshot_action(app, ref)
    confirm(f"Delete snapshot {snap.file_name}?", yes)
    run("delete snapshot", client.delete_snapshot, snap.file_name)
    console.print(f"[green]Deleted {snap.file_name}[/green]")


@snapshot.command("restore")
@click.argument("ref")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def snapshot_restore(app: AppContext, ref: str, yes: bool) -> None:
    """Restore a snapshot (overwrites all data)."""
    client, name, snap = _snapshot_action(app, ref)
    console.print(f"[red]Restoring {snap.file_name} will OVERWRITE ALL DATA on '{name}'.[/red]")
    confirm("Continue?", yes)
    run("restore snapshot", client.restore_snapshot, snap.file_name)
    console.print("[green]Restore started.[/green]")


def _set_sticky(app: AppContext, ref: str, sticky: bool) -> None:
    client, _, snap = _snapshot_action(app, ref)
    run("update snapshot", client.toggle_snapshot_sticky, snap.file_name, sticky)
    state = "pinned (never purged)" if sticky else "unpinned"
    console.print(f"[green]{snap.file_name} {state}[/green]")


@snapshot.command("pin")
@click.argument("ref")
@pass_app
def snapshot_pin(app: AppContext, ref: str) -> None:
    """Make a snapshot sticky."""
    _set_sticky(app, ref, True)


@snapshot.command("unpin")
@click.argument("ref")
@pass_app
def snapshot_unpin(app: AppContext, ref: str) -> None:
    """Remove the sticky flag from a snapshot."""
    _set_sticky(app, ref, False)


@snapshot.command("export")
@click.argument("ref")
@pass_app
def snapshot_export(app: AppContext, ref: str) -> None:
    """Export a snapshot for import by another VPS."""
    client, _, snap = _snapshot_action(app, ref)
    token = run("export snapshot", client.export_snapshot, snap.file_name)
    console.print(f"Source VEID : {client.veid}")
    console.print(f"Token       : [bold]{token}[/bold]")
    console.print(f"Import with : bwh snapshot import {client.veid} {token}")


@snapshot.command("import")
@click.argument("source_veid")
@click.argument("source_token")
@pass_app
def snapshot_import(app: AppContext, source_veid: str, source_token: str) -> None:
    """Import a snapshot exported by another VPS."""
    client, _ = app.client()
    run("import snapshot", client.import_snapshot, source_veid, source_token)
    console.print("[green]Snapshot import started.[/green]")


@snapshot.command("download")
@click.argument("ref")
@click.option("--output", "-o", default="", help="Output directory or file name")
@pass_app
def snapshot_download(app: AppContext, ref: str, output: str) -> None:
    """Download a snapshot file."""
    client, _, snap = _snapshot_action(app, ref)
    path = output or snap.file_name
    if os.path.isdir(path):
        path = os.path.join(path, snap.file_name)
    with display.download_progress(snap.file_name) as on_progress:
        run("download snapshot", client.download_snapshot, snap, path, on_progress)
    console.print(f"[green]Saved to {path}[/green]")


# ── Backups ──────────────────────────────────────────────────────

@cli.group()
def backup() -> None:
    """Manage automatic backups."""


@backup.command("list")
@pass_app
def backup_list(app: AppContext) -> None:
    """List backups."""
    client, _ = app.client()
    display.render_backups(run("list backups", client.list_backups))


@backup.command("copy-to-snapshot")
@click.argument("token")
@pass_app
def backup_copy(app: AppContext, token: str) -> None:
    """Copy a backup into a restorable snapshot."""
    validate_backup_token(token)
    client, _ = app.client()
    run("copy backup to snapshot", client.copy_backup_to_snapshot, token)
    console.print("[green]Backup is being copied to a snapshot.[/green]")


# ── Migration ────────────────────────────────────────────────────

@cli.group()
def migrate() -> None:
    """Migrate the VPS to another location (IPv4 addresses change)."""


@migrate.command("locations")
@pass_app
def migrate_locations(app: AppContext) -> None:
    """List locations the VPS can migrate to."""
    client, _ = app.client()
    display.render_migrate_locations(run("get migration locations", client.get_migrate_locations))


@migrate.command("start")
@click.argument("location")
@click.option("--wait", is_flag=True, help="Wait until the VPS unlocks and show progress")
@click.option("--timeout", type=int, default=15 * 60, show_default=True, help="Overall timeout in seconds")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_app
def migrate_start(app: AppContext, location: str, wait: bool, timeout: int, yes: bool) -> None:
    """Start a migration to LOCATION."""
    if not location.strip():
        raise click.UsageError("location_id cannot be empty")
    if timeout <= 0:
        raise click.UsageError(f"invalid timeout: {timeout}")
    client, name = app.client()
    console.print(f"[yellow]Migrating '{name}' will REPLACE all of its IPv4 addresses. Downtime is expected.[/yellow]")
    confirm("Continue?", yes)

    if not wait:
        result = run("start migration", start_migration_nowait, client, location, timeout)
        console.print(f"[green]Migration to {location} accepted.[/green]")
        _print_new_ips(result.new_ips, result.notification_email)
        return

    waiter = MigrationWaiter(client, location, timeout=timeout, on_event=display.render_migration_event)
    outcome = run("migrate VPS", waiter.run)
    console.print(f"[green]Migration complete. Current location: {outcome.current_location}[/green]")
    if outcome.accepted:
        _print_new_ips(outcome.new_ipv4 + outcome.new_ipv6, outcome.notification_email)


def _print_new_ips(ips: List[str], email: str) -> None:
    ipv4, ipv6_ips = split_ips_by_family(ips)
    if ipv4:
        console.print(f"New IPv4: {', '.join(ipv4)}")
    if ipv6_ips:
        console.print(f"New IPv6: {', '.join(ipv6_ips)}")
    if email:
        console.print(f"Notification email: {email}")


# ── Misc ─────────────────────────────────────────────────────────

@cli.command("mcp")
@pass_app
def mcp_command(app: AppContext) -> None:
    """Run the read-only MCP server over stdio."""
    from .mcp_server import run_stdio

    try:
        run_stdio(app.config_path, app.instance or "")
    except (BWHError, TransportError) as e:
        raise click.ClickException(f"failed API connectivity: {e}") from e


@cli.command()
def version() -> None:
    """Show version information."""
    click.echo(f"bwh {get_version()} ({get_user_agent()})")


def main() -> None:
    cli(prog_name="bwh")


if __name__ == "__main__":
    main()
