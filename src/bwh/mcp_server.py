"""BWH MCP Server: read-only VPS tools over stdio.

Exposes VPS info, usage, snapshots, backups and the audit log of the
configured instances to MCP clients. Nothing here mutates the VPS.

Config (in .mcp.json or settings):
{
  "mcpServers": {
    "bwh": {
      "command": "bwh",
      "args": ["--instance", "my-vps", "mcp"]
    }
  }
}
"""

import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from . import usage
from .config import ConfigError, ConfigManager, client_for, mask_api_key
from .errors import BWHError, TransportError
from .types import AuditLogEntry, Backup, ServiceInfo, Snapshot

logger = logging.getLogger(__name__)

SERVER_NAME = "BWH / BandwagonHost MCP"
SESSION_URI = "bwh://session/default"


# ── Filtering (pure, never mutates its input) ────────────────────

def parse_rfc3339(value: str) -> int:
    """Unix seconds for an RFC3339 timestamp; 0 when empty or unparsable."""
    value = (value or "").strip()
    if not value:
        return 0
    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())
    except ValueError:
        logger.debug(f"Ignoring unparsable timestamp filter: {value!r}")
        return 0


def filter_snapshots(
    snapshots: Sequence[Snapshot],
    sticky_only: bool = False,
    name_contains: str = "",
    sort_by: str = "name",
    order: str = "asc",
    limit: int = 0,
) -> List[Snapshot]:
    needle = name_contains.strip().lower()
    items = [
        s for s in snapshots
        if (not sticky_only or s.sticky)
        and (not needle or needle in s.file_name.lower() or needle in s.description.lower())
    ]
    keys = {
        "size": lambda s: s.size,
        "sticky": lambda s: s.sticky,
    }
    items = sorted(items, key=keys.get(sort_by, lambda s: s.file_name), reverse=order == "desc")
    if limit > 0:
        items = items[:limit]
    return items


def filter_backups(
    backups: Sequence[Backup],
    os_contains: str = "",
    since: str = "",
    until: str = "",
    sort_by: str = "time",
    order: str = "desc",
    limit: int = 0,
) -> List[Backup]:
    needle = os_contains.strip().lower()
    since_ts = parse_rfc3339(since)
    until_ts = parse_rfc3339(until)
    items = [
        b for b in backups
        if (not needle or needle in b.os.lower())
        and (not since_ts or b.timestamp >= since_ts)
        and (not until_ts or b.timestamp <= until_ts)
    ]
    key = (lambda b: b.size) if sort_by == "size" else (lambda b: b.timestamp)
    items = sorted(items, key=key, reverse=order != "asc")
    if limit > 0:
        items = items[:limit]
    return items


def filter_audit(
    entries: Sequence[AuditLogEntry],
    since: str = "",
    until: str = "",
    limit: int = 0,
    ip_contains: str = "",
    event_type: int = -1,
) -> List[AuditLogEntry]:
    """Newest first."""
    since_ts = parse_rfc3339(since)
    until_ts = parse_rfc3339(until)
    needle = ip_contains.strip()
    out = []
    for entry in sorted(entries, key=lambda e: e.timestamp, reverse=True):
        if since_ts and entry.timestamp < since_ts:
            continue
        if until_ts and entry.timestamp > until_ts:
            continue
        if event_type >= 0 and entry.type != event_type:
            continue
        if needle and needle not in entry.requestor_ip:
            continue
        out.append(entry)
        if limit > 0 and len(out) >= limit:
            break
    return out


def compact_info(info: ServiceInfo) -> Dict[str, Any]:
    summary = {
        "hostname": info.hostname,
        "vm_type": info.vm_type,
        "plan": info.plan,
        "os": info.os,
        "location": info.node_location,
        "ips": len(info.ip_addresses),
    }
    power_state = getattr(info, "power_state", None)
    if power_state is not None:
        summary["status"] = power_state
    return summary


def session_view(manager: ConfigManager) -> Dict[str, Any]:
    """Instances without exposing API keys."""
    return {
        "default_instance": manager.default_instance,
        "instances": {
            name: {
                "api_key": mask_api_key(inst.api_key),
                "veid": inst.veid,
                "endpoint": inst.endpoint,
                "description": inst.description,
                "tags": list(inst.tags),
            }
            for name, inst in manager.list_instances()
        },
    }


# ── Server ───────────────────────────────────────────────────────

def build_server(manager: ConfigManager) -> FastMCP:
    mcp = FastMCP(SERVER_NAME)

    def resolve(instance: str):
        try:
            inst, resolved = manager.resolve_instance(instance or None)
        except ConfigError as e:
            raise ToolError(f"resolve instance failed: {e}") from e
        return client_for(inst), resolved

    def fail(action: str, exc: Exception) -> ToolError:
        logger.warning(f"{action} failed: {exc}")
        return ToolError(f"{action} failed: {exc}")

    @mcp.tool
    def vps_info_get(instance: str = "", compact: bool = False, live: bool = True) -> dict:
        """Get VPS information for a BWH/BandwagonHost instance.

        Args:
            instance: Target instance name; defaults to config default
            compact: Return concise summary instead of full payload
            live: Use live info (true) or cached service info (false)
        """
        client, resolved = resolve(instance)
        try:
            info = client.get_live_service_info() if live else client.get_service_info()
        except (BWHError, TransportError) as e:
            raise fail("get live info" if live else "get service info", e) from e
        if compact:
            return {"instance": resolved, "summary": compact_info(info)}
        return {"instance": resolved, "data": info.to_dict()}

    @mcp.tool
    def vps_usage_get(instance: str = "", period: str = "", days: int = 0, group_by: str = "day") -> dict:
        """Get usage summary for a BWH/BandwagonHost instance.

        Args:
            instance: Target instance name; defaults to config default
            period: Lookback window, e.g. 1d, 7d, 30d
            days: Lookback days if period not provided
            group_by: Aggregation bucket: 5m, hour or day (default: day)
        """
        client, resolved = resolve(instance)
        try:
            stats = client.get_raw_usage_stats()
        except (BWHError, TransportError) as e:
            raise fail("get usage", e) from e
        result = usage.aggregate(stats.data, usage.parse_days(period, days), group_by)
        result["instance"] = resolved
        result["vm_type"] = stats.vm_type
        if "summary" in result:
            result["summary"]["vm_type"] = stats.vm_type
        return result

    @mcp.tool
    def snapshot_list(
        instance: str = "",
        sticky_only: bool = False,
        name_contains: str = "",
        sort_by: str = "name",
        order: str = "asc",
        limit: int = 0,
    ) -> dict:
        """List snapshots for a BWH/BandwagonHost instance.

        Args:
            instance: Target instance name; defaults to config default
            sticky_only: Filter to sticky snapshots only
            name_contains: Filter by substring in file name or description
            sort_by: Sort key: name, size or sticky (default: name)
            order: Sort order asc or desc (default: asc)
            limit: Maximum items to return
        """
        client, resolved = resolve(instance)
        try:
            snapshots = client.list_snapshots()
        except (BWHError, TransportError) as e:
            raise fail("list snapshots", e) from e
        items = filter_snapshots(snapshots, sticky_only, name_contains, sort_by, order, limit)
        return {"instance": resolved, "items": [s.to_dict() for s in items]}

    @mcp.tool
    def backup_list(
        instance: str = "",
        os_contains: str = "",
        since: str = "",
        until: str = "",
        sort_by: str = "time",
        order: str = "desc",
        limit: int = 0,
    ) -> dict:
        """List backups for a BWH/BandwagonHost instance.

        Args:
            instance: Target instance name; defaults to config default
            os_contains: Filter backups by OS substring
            since: RFC3339 timestamp inclusive start filter
            until: RFC3339 timestamp inclusive end filter
            sort_by: Sort key: time or size (default: time)
            order: Sort order asc or desc (default: desc)
            limit: Maximum items to return
        """
        client, resolved = resolve(instance)
        try:
            backups = client.list_backups()
        except (BWHError, TransportError) as e:
            raise fail("list backups", e) from e
        items = filter_backups(list(backups.values()), os_contains, since, until, sort_by, order, limit)
        return {"instance": resolved, "items": [b.to_dict() for b in items]}

    @mcp.tool
    def vps_audit_get(
        instance: str = "",
        since: str = "",
        until: str = "",
        limit: int = 0,
        ip_contains: str = "",
        type: int = -1,
    ) -> dict:
        """Get audit log entries for a BWH/BandwagonHost instance.

        Args:
            instance: Target instance name; defaults to config default
            since: RFC3339 timestamp inclusive start filter
            until: RFC3339 timestamp inclusive end filter
            limit: Maximum items to return (newest first)
            ip_contains: Filter by requestor IPv4 substring
            type: Filter by event type integer
        """
        client, resolved = resolve(instance)
        try:
            entries = client.get_audit_log()
        except (BWHError, TransportError) as e:
            raise fail("get audit log", e) from e
        items = filter_audit(entries, since, until, limit, ip_contains, type)
        return {"instance": resolved, "items": [e.to_dict() for e in items]}

    @mcp.resource(SESSION_URI, name="Session Config", mime_type="application/json")
    def session_config() -> str:
        """Default instance and configured nodes for this session."""
        return json.dumps(session_view(manager))

    return mcp


def run_stdio(config_path: Optional[str] = None, instance: str = "") -> None:
    """Check connectivity for the resolved instance, then serve over stdio."""
    # stdout carries the protocol
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stderr,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    manager = ConfigManager(config_path)
    inst, resolved = manager.resolve_instance(instance or None)
    client_for(inst).get_rate_limit_status()
    logger.info(f"MCP server starting (instance={resolved})")
    build_server(manager).run()
