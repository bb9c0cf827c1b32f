"""Console rendering for the CLI (rich tables and panels)."""

import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn, DownloadColumn, Progress, TextColumn, TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from . import usage
from .migration import MigrationEvent
from .types import (
    AuditLogEntry, Backup, LiveServiceInfo, MigrateLocations, ServiceInfo,
    Snapshot, SSHKeys, UsageDataPoint,
)
from .validation import aggregate_ipv4_ranges, split_ips_by_family

console = Console()
err_console = Console(stderr=True)


def format_bytes(size: int) -> str:
    """Binary units: 512 B, 1.5 KB, 2.0 GB."""
    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {'KMGTPE'[exp]}B"


def format_duration(seconds: float) -> str:
    """Coarse human duration: 45m, 3h20m, 2 days 4h, 3 weeks 1 days, 2 months."""
    seconds = int(seconds)
    if seconds < 3600:
        minutes = seconds // 60
        return f"{minutes}m" if minutes else f"{seconds}s"

    hours = seconds // 3600
    if hours < 24:
        minutes = (seconds // 60) % 60
        return f"{hours}h{minutes}m" if minutes else f"{hours}h"

    days, rem_hours = divmod(hours, 24)
    if days < 7:
        return f"{days} days {rem_hours}h" if rem_hours else f"{days} days"

    weeks, rem_days = divmod(days, 7)
    if weeks < 4:
        return f"{weeks} weeks {rem_days} days" if rem_days else f"{weeks} weeks"

    months, rem_weeks = divmod(weeks, 4)
    return f"{months} months {rem_weeks} weeks" if rem_weeks else f"{months} months"


def format_timestamp(ts: int, fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    if not ts:
        return "-"
    return time.strftime(fmt, time.localtime(ts))


def status_style(status: str) -> str:
    lowered = status.lower()
    if lowered in ("running", "started"):
        return "green"
    if lowered in ("stopped", "suspended"):
        return "red"
    return "yellow"


# ── Instances ────────────────────────────────────────────────────

def render_instances(rows: Sequence, default_name: str) -> None:
    table = Table(title="Configured instances")
    table.add_column("Name", style="cyan")
    table.add_column("VEID")
    table.add_column("Description")
    table.add_column("Endpoint")
    table.add_column("Tags")
    for name, inst in rows:
        marker = " [bold green](default)[/bold green]" if name == default_name else ""
        table.add_row(f"{name}{marker}", inst.veid, inst.description, inst.endpoint or "-",
                      ", ".join(inst.tags))
    console.print(table)


# ── Service info ─────────────────────────────────────────────────

def render_service_info(info: ServiceInfo, instance_name: str, compact: bool = False) -> None:
    live = info if isinstance(info, LiveServiceInfo) else None
    status = live.power_state if live else ""

    if compact:
        line = f"[bold]{instance_name}[/bold] {info.hostname} ({info.vm_type})"
        if status:
            line += f" [{status_style(status)}]{status}[/]"
        console.print(line)
        console.print(f"├─ {info.plan} | {info.os} | {info.node_location}")
        console.print(f"├─ IPs: {', '.join(info.ip_addresses) or '-'}")
        bw = usage.monthly_bandwidth(info.plan_monthly_data, info.data_counter, info.monthly_data_multiplier)
        console.print(
            f"└─ Bandwidth: {format_bytes(bw['used'])} / {format_bytes(bw['limit'])} ({bw['percent']:.1f}%)"
        )
        return

    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")

    hostname = info.hostname
    if live and live.live_hostname and live.live_hostname != info.hostname:
        hostname += f" (live: {live.live_hostname})"
    table.add_row("Hostname", hostname)
    vm_type = info.vm_type
    if status:
        vm_type += f" | Status: [{status_style(status)}]{status}[/]"
    table.add_row("VM Type", vm_type)
    table.add_row("Plan", info.plan)
    table.add_row("Operating System", info.os)
    table.add_row("Email", info.email)
    if live and live.ssh_port:
        table.add_row("SSH Port", str(live.ssh_port))
    table.add_row("Location", f"{info.node_location} (ID: {info.node_location_id})")
    table.add_row("Datacenter", info.node_datacenter)
    table.add_row("Node", info.node_alias)

    ram = format_bytes(info.plan_ram)
    if live and live.mem_available_kb > 0:
        available = live.mem_available_kb * 1024
        used = info.plan_ram - available
        ram += f" | {format_bytes(used)} used | {format_bytes(available)} available"
    table.add_row("Memory", ram)
    disk = format_bytes(info.plan_disk)
    if live and live.ve_used_disk_space_b > 0:
        disk += f" | {format_bytes(live.ve_used_disk_space_b)} used"
        if info.plan_disk > 0:
            disk += f" ({live.ve_used_disk_space_b / info.plan_disk * 100:.1f}%)"
    table.add_row("Disk", disk)
    table.add_row("Swap", format_bytes(info.plan_swap))
    if live and live.load_average:
        table.add_row("Load Average", live.load_average)

    bw = usage.monthly_bandwidth(info.plan_monthly_data, info.data_counter, info.monthly_data_multiplier)
    bandwidth = f"{format_bytes(bw['used'])} / {format_bytes(bw['limit'])} ({bw['percent']:.1f}%)"
    if bw["multiplier"] > 1:
        bandwidth += f" [{bw['multiplier']}x multiplier]"
    table.add_row("Monthly Bandwidth", bandwidth)
    table.add_row("Next Reset", format_timestamp(info.data_next_reset, "%Y-%m-%d %H:%M"))

    ipv4, ipv6 = split_ips_by_family(info.ip_addresses)
    table.add_row("IPv4", ", ".join(ipv4) or "-")
    if ipv6:
        table.add_row("IPv6", ", ".join(ipv6))
    if info.private_ip_addresses:
        table.add_row("Private IPs", ", ".join(info.private_ip_addresses))
    if info.iso1:
        table.add_row("Mounted ISO", info.iso1)
    if info.suspended:
        table.add_row("Suspended", "[red]yes[/red]")

    console.print(Panel(table, title=f"BWH Instance: {instance_name}"))


# ── Snapshots & backups ──────────────────────────────────────────

def render_snapshots(snapshots: Sequence[Snapshot]) -> None:
    if not snapshots:
        console.print("No snapshots found.")
        return
    table = Table(title=f"Snapshots ({len(snapshots)})")
    table.add_column("File Name", style="cyan", overflow="fold")
    table.add_column("Description")
    table.add_column("OS")
    table.add_column("Size", justify="right")
    table.add_column("Sticky")
    table.add_column("Purges In", justify="right")
    for s in snapshots:
        table.add_row(
            s.file_name,
            s.description,
            s.os,
            format_bytes(s.size),
            "[green]yes[/green]" if s.sticky else "no",
            "never" if s.sticky else format_duration(s.purges_in),
        )
    console.print(table)


def render_backups(backups: Dict[str, Backup]) -> None:
    if not backups:
        console.print("No backups found.")
        return
    ordered = sorted(backups.values(), key=lambda b: b.timestamp, reverse=True)
    table = Table(title=f"Backups ({len(ordered)})")
    table.add_column("Token", style="cyan")
    table.add_column("Created")
    table.add_column("OS")
    table.add_column("Size", justify="right")
    table.add_column("MD5")
    for b in ordered:
        table.add_row(b.token, format_timestamp(b.timestamp), b.os, format_bytes(b.size), b.md5)
    console.print(table)


@contextmanager
def download_progress(description: str) -> Iterator[Callable[[int, int], None]]:
    """Yields an ``on_progress(written, total)`` callback bound to a progress bar."""
    progress = Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=console,
    )
    with progress:
        task = progress.add_task(description, total=None)

        def update(written: int, total: int) -> None:
            progress.update(task, completed=written, total=total or None)

        yield update


# ── Audit & usage ────────────────────────────────────────────────

def render_audit(entries: Sequence[AuditLogEntry], instance_name: str) -> None:
    if not entries:
        console.print(f"No audit log entries found for instance: {instance_name}")
        return
    table = Table(title=f"Audit Log: {instance_name} ({len(entries)} entries, newest first)")
    table.add_column("Time")
    table.add_column("IP", style="cyan")
    table.add_column("Type", justify="right")
    table.add_column("Summary", overflow="fold")
    for e in entries:
        table.add_row(format_timestamp(e.timestamp), e.requestor_ip, str(e.type), e.summary)
    console.print(table)


def render_usage(points: List[UsageDataPoint], instance_name: str, vm_type: str,
                 period: str, info: Optional[ServiceInfo] = None) -> None:
    summary = usage.summarize(points)
    if not summary:
        console.print(f"No usage data in period {period} for instance: {instance_name}")
        return
    cpu = summary["cpu"]
    hours = summary["duration_sec"] / 3600

    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    table.add_row("Data Points", f"{summary['points']} (period: {period})")
    table.add_row("Time Span", format_duration(summary["duration_sec"]))
    table.add_row("CPU Usage", f"{cpu['avg']:.1f}% avg | {cpu['min']}% - {cpu['max']}% range")
    table.add_row(
        "Disk Activity",
        f"{format_bytes(summary['disk_bytes']['read_total'])} read, "
        f"{format_bytes(summary['disk_bytes']['write_total'])} write",
    )
    net = summary["network_bytes"]
    table.add_row("Network Traffic", f"{format_bytes(net['in_total'])} in, {format_bytes(net['out_total'])} out")
    if hours > 0:
        table.add_row(
            "Network Rate",
            f"{format_bytes(int(net['in_total'] / hours))}/h in, "
            f"{format_bytes(int(net['out_total'] / hours))}/h out",
        )
    if info is not None:
        bw = usage.monthly_bandwidth(info.plan_monthly_data, info.data_counter, info.monthly_data_multiplier)
        table.add_row(
            "Monthly Bandwidth",
            f"{format_bytes(bw['used'])} / {format_bytes(bw['limit'])} ({bw['percent']:.1f}% used)",
        )
    console.print(Panel(table, title=f"Usage Summary: {instance_name} ({vm_type})"))


def render_usage_buckets(buckets: List[Dict]) -> None:
    table = Table()
    table.add_column("Start (UTC)")
    table.add_column("Points", justify="right")
    table.add_column("CPU avg", justify="right")
    table.add_column("Net in", justify="right")
    table.add_column("Net out", justify="right")
    table.add_column("Disk read", justify="right")
    table.add_column("Disk write", justify="right")
    for b in buckets:
        table.add_row(
            b["start_rfc3339"],
            str(b["points"]),
            f"{b['cpu_avg']:.1f}%",
            format_bytes(b["net_in_total_bytes"]),
            format_bytes(b["net_out_total_bytes"]),
            format_bytes(b["disk_read_total_bytes"]),
            format_bytes(b["disk_write_total_bytes"]),
        )
    console.print(table)


# ── Network ──────────────────────────────────────────────────────

def render_private_ips(assigned: Sequence[str], available: Sequence[str]) -> None:
    console.print(f"[bold]Assigned private IPs[/bold]: {', '.join(assigned) or 'none'}")
    ranges, total = aggregate_ipv4_ranges(available)
    if not total:
        console.print("[bold]Available private IPs[/bold]: none")
        return
    console.print(f"[bold]Available private IPs[/bold] ({total}):")
    for r in ranges:
        console.print(f"  {r}")


def render_ssh_keys(keys: SSHKeys, show_full: bool = False) -> None:
    sections = (
        ("VM-level keys", keys.veid if show_full else keys.shortened_veid or keys.veid),
        ("Account keys", keys.user if show_full else keys.shortened_user or keys.user),
        ("Effective keys (used by reinstall)",
         keys.preferred if show_full else keys.shortened_preferred or keys.preferred),
    )
    for title, lines in sections:
        console.print(f"[bold]{title}[/bold] ({len(lines)})")
        for line in lines:
            console.print(f"  {line}", soft_wrap=True)


def render_migrate_locations(locations: MigrateLocations) -> None:
    table = Table(title=f"Migration targets (current: {locations.current_location})")
    table.add_column("ID", style="cyan")
    table.add_column("Description")
    table.add_column("Transfer multiplier", justify="right")
    for loc in locations.locations:
        multiplier = locations.data_transfer_multipliers.get(loc, 1)
        table.add_row(loc, locations.descriptions.get(loc, ""), f"{multiplier}x")
    console.print(table)


def render_migration_event(event: MigrationEvent) -> None:
    if event.kind == "accepted":
        console.print("[green]Migration request accepted; waiting for the VPS to unlock...[/green]")
    elif event.kind == "operation":
        console.print(f"Operation: {event.operation}")
    elif event.kind == "progress":
        if event.locking is not None:
            console.print(f"  {event.locking.describe()}")
        else:
            console.print(f"  Progress: {event.percent}% complete - {event.message}")
