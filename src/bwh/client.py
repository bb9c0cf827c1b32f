#!/usr/bin/env python3
"""
BandwagonHost (KiwiVM) API Client
Wraps the KiwiVM control API (api.64clouds.com/v1) for one VPS.

Implements:
- get_service_info() / get_live_service_info()
- start() / stop() / restart() / kill()
- create_snapshot() / list_snapshots() / delete_snapshot() / restore_snapshot()
- toggle_snapshot_sticky() / export_snapshot() / import_snapshot()
- list_backups() / copy_backup_to_snapshot()
- set_ptr() / add_ipv6() / delete_ipv6()
- get_available_private_ips() / assign_private_ip() / delete_private_ip()
- get_ssh_keys() / update_ssh_keys()
- get_available_os() / reinstall_os()
- get_migrate_locations() / start_migration()
- get_raw_usage_stats() / get_audit_log() / get_rate_limit_status()
- reset_root_password() / set_hostname() / mount_iso() / unmount_iso()
- download_snapshot()
"""

import ipaddress
import logging
import os
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import requests

from .errors import BWHError, ResponseDecodeError, TransportError, ValidationError
from .types import (
    AuditLogEntry, AvailableOS, Backup, Envelope, LiveServiceInfo,
    MigrateLocations, MigrateStartResult, RateLimitStatus, ServiceInfo,
    Snapshot, SSHKeys, UsageStats,
)
from .validation import (
    normalize_ipv6_subnet, validate_backup_token, validate_ip,
    validate_ipv4, validate_os_template, validate_ssh_keys,
)
from .version import get_user_agent

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.64clouds.com/v1"


class BWHClient:
    """
    KiwiVM API client bound to one VPS (veid + API key).

    Every call is a GET to ``<base_url>/<operation>`` with ``veid`` and
    ``api_key`` in the query string. The provider answers HTTP 200 with a
    JSON envelope; a nonzero ``error`` field is raised as BWHError,
    everything that prevents reading the envelope as TransportError.

    The client keeps no per-call state and can be shared between threads.
    """

    DEFAULT_TIMEOUT = 30
    # getLiveServiceInfo queries the hypervisor and can take ~15s
    LIVE_INFO_TIMEOUT = 60
    MIGRATION_TIMEOUT = 15 * 60
    DOWNLOAD_TIMEOUT = 30 * 60
    DOWNLOAD_CHUNK = 1024 * 1024

    def __init__(
        self,
        api_key: str,
        veid,
        base_url: str = None,
        timeout: int = None,
    ):
        if not api_key:
            raise ValueError("api_key is required")
        if veid in (None, ""):
            raise ValueError("veid is required")
        self._api_key = api_key
        self._veid = str(veid)
        self._base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout or self.DEFAULT_TIMEOUT

        logger.debug(f"BWHClient initialized (veid={self._veid}, base_url={self._base_url})")

    @property
    def veid(self) -> str:
        return self._veid

    @property
    def base_url(self) -> str:
        return self._base_url

    def set_base_url(self, base_url: str) -> None:
        """Point the client at a custom endpoint. Call before first use."""
        self._base_url = base_url.rstrip("/")

    def __repr__(self) -> str:
        return f"BWHClient(veid={self._veid}, base_url={self._base_url})"

    # ── Request executor ─────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": get_user_agent(),
        }

    def _request(
        self,
        operation: str,
        params: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> Dict[str, Any]:
        """
        Call one API operation and return the decoded body of a successful
        envelope.

        ``session`` routes the call through a caller-owned session, e.g. a
        CancellableSession the caller may abort from another thread.

        Raises:
            BWHError: the envelope carried a nonzero error code.
            TransportError: network failure, timeout, non-200 status.
            ResponseDecodeError: the body was not a JSON object.
        """
        url = f"{self._base_url}/{operation}"
        query = dict(params or {})
        # identity always wins over caller parameters
        query["veid"] = self._veid
        query["api_key"] = self._api_key
        request_timeout = timeout or self.timeout

        logger.debug(f"KiwiVM request: {operation} (timeout={request_timeout}s)")
        try:
            resp = (session or requests).get(
                url,
                params=query,
                headers=self._headers(),
                timeout=request_timeout,
            )
        except requests.Timeout as e:
            logger.warning(f"KiwiVM API timeout: {operation} (>{request_timeout}s)")
            raise TransportError(f"{operation}: request timed out after {request_timeout}s") from e
        except requests.ConnectionError as e:
            logger.warning(f"KiwiVM API connection error: {operation}")
            raise TransportError(f"{operation}: connection failed: {e}") from e
        except requests.RequestException as e:
            logger.warning(f"KiwiVM API request error: {operation}: {e}")
            raise TransportError(f"{operation}: request failed: {e}") from e

        if resp.status_code != 200:
            logger.warning(f"KiwiVM API HTTP error: {operation} -> {resp.status_code}")
            raise TransportError(
                f"{operation}: API request failed with status {resp.status_code} {resp.reason or ''}".rstrip()
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise ResponseDecodeError(f"{operation}: failed to decode response: {e}") from e
        if not isinstance(body, dict):
            raise ResponseDecodeError(
                f"{operation}: failed to decode response: expected object, got {type(body).__name__}"
            )

        try:
            envelope = Envelope.from_dict(body)
        except (TypeError, ValueError) as e:
            raise ResponseDecodeError(f"{operation}: failed to decode response: {e}") from e

        if not envelope.ok:
            err = BWHError.from_envelope(envelope)
            logger.debug(f"KiwiVM API error: {operation} -> {err.code} {err.message}")
            raise err
        return body

    def _call(self, operation: str, decoder: Callable[[Dict[str, Any]], Any],
              params: Optional[Dict[str, str]] = None, timeout: Optional[float] = None,
              session: Optional[requests.Session] = None):
        """Run ``_request`` and decode the payload, mapping shape errors."""
        body = self._request(operation, params, timeout, session)
        try:
            return decoder(body)
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise ResponseDecodeError(f"{operation}: failed to decode response: {e}") from e

    # ── Service information ──────────────────────────────────────

    def get_service_info(self) -> ServiceInfo:
        """Static VPS information (plan, addresses, quotas, flags)."""
        return self._call("getServiceInfo", ServiceInfo.from_dict)

    def get_live_service_info(self, timeout: float = None) -> LiveServiceInfo:
        """
        Service information plus live hypervisor state.

        The provider may take up to ~15 seconds to answer, so this uses a
        longer timeout than ordinary calls.
        """
        return self._call(
            "getLiveServiceInfo", LiveServiceInfo.from_dict,
            timeout=timeout or self.LIVE_INFO_TIMEOUT,
        )

    def get_rate_limit_status(self) -> RateLimitStatus:
        return self._call("getRateLimitStatus", RateLimitStatus.from_dict)

    def get_raw_usage_stats(self) -> UsageStats:
        return self._call("getRawUsageStats", UsageStats.from_dict)

    def get_audit_log(self) -> List[AuditLogEntry]:
        return self._call(
            "getAuditLog",
            lambda body: [AuditLogEntry.from_dict(e) for e in (body.get("log_entries") or [])],
        )

    # ── Power ────────────────────────────────────────────────────

    def start(self) -> None:
        self._request("start")

    def stop(self) -> None:
        self._request("stop")

    def restart(self) -> None:
        self._request("restart")

    def kill(self) -> None:
        """Force-stop a stuck VPS. Unsaved data is lost."""
        self._request("kill")

    # ── Access ───────────────────────────────────────────────────

    def reset_root_password(self) -> str:
        """Generate a new root password and return it."""
        return self._call("resetRootPassword", lambda body: str(body.get("password") or ""))

    def set_hostname(self, hostname: str) -> None:
        if not hostname.strip():
            raise ValidationError("hostname cannot be empty")
        self._request("setHostname", {"newHostname": hostname.strip()})

    def get_ssh_keys(self) -> SSHKeys:
        return self._call("getSshKeys", SSHKeys.from_dict)

    def update_ssh_keys(self, keys: List[str]) -> None:
        """
        Replace all VM-level SSH keys. An empty list clears them.

        Each key must start with a known key type; nothing is sent
        otherwise.
        """
        cleaned = validate_ssh_keys(keys)
        blob = "\n".join(cleaned) + "\n" if cleaned else ""
        self._request("updateSshKeys", {"ssh_keys": blob})

    # ── Snapshots ────────────────────────────────────────────────

    def create_snapshot(self, description: str = "") -> str:
        """Start a snapshot; returns the address that will be notified."""
        params = {}
        if description:
            params["description"] = description
        return self._call(
            "snapshot/create",
            lambda body: str(body.get("notificationEmail") or ""),
            params,
        )

    def list_snapshots(self) -> List[Snapshot]:
        return self._call(
            "snapshot/list",
            lambda body: [Snapshot.from_dict(s) for s in (body.get("snapshots") or [])],
        )

    def delete_snapshot(self, file_name: str) -> None:
        self._request("snapshot/delete", {"snapshot": file_name})

    def restore_snapshot(self, file_name: str) -> None:
        """Restore a snapshot. Overwrites everything on the VPS."""
        self._request("snapshot/restore", {"snapshot": file_name})

    def toggle_snapshot_sticky(self, file_name: str, sticky: bool) -> None:
        """Sticky snapshots are never purged automatically."""
        self._request("snapshot/toggleSticky", {
            "snapshot": file_name,
            "sticky": "1" if sticky else "0",
        })

    def export_snapshot(self, file_name: str) -> str:
        """Returns a token another VPS can use with import_snapshot."""
        return self._call(
            "snapshot/export",
            lambda body: str(body.get("token") or ""),
            {"snapshot": file_name},
        )

    def import_snapshot(self, source_veid, source_token: str) -> None:
        source = str(source_veid).strip()
        if not source.isdigit():
            raise ValidationError(f"invalid source VEID: {source_veid}")
        if not source_token.strip():
            raise ValidationError("source token cannot be empty")
        self._request("snapshot/import", {
            "sourceVeid": source,
            "sourceToken": source_token.strip(),
        })

    def download_snapshot(
        self,
        snapshot: Snapshot,
        output_path: str,
        on_progress: Callable[[int, int], None] = None,
    ) -> str:
        """
        Stream a snapshot's download link to ``output_path``.

        Prefers the HTTPS link and falls back to HTTP. TLS verification is
        skipped only for HTTPS links whose host is a bare IP address.
        Returns the URL that succeeded.
        """
        links = [link for link in (snapshot.download_link_ssl, snapshot.download_link) if link]
        if not links:
            raise ValidationError(f"snapshot {snapshot.file_name} has no download link")

        last_error = None
        for url in links:
            try:
                self._download(url, output_path, snapshot.size, on_progress)
                return url
            except TransportError as e:
                logger.warning(f"Snapshot download failed from {urlparse(url).hostname}: {e}")
                last_error = e
        raise last_error

    def _download(self, url: str, output_path: str, expected_size: int,
                  on_progress: Callable[[int, int], None] = None) -> None:
        try:
            resp = requests.get(
                url,
                stream=True,
                timeout=self.DOWNLOAD_TIMEOUT,
                verify=not _is_ip_https(url),
                headers={"User-Agent": get_user_agent()},
            )
        except requests.RequestException as e:
            raise TransportError(f"failed to start download: {e}") from e

        with resp:
            if resp.status_code != 200:
                raise TransportError(f"download failed with status {resp.status_code}")
            total = int(resp.headers.get("Content-Length") or 0) or expected_size
            written = 0
            try:
                with open(output_path, "wb") as out:
                    for chunk in resp.iter_content(chunk_size=self.DOWNLOAD_CHUNK):
                        if not chunk:
                            continue
                        out.write(chunk)
                        written += len(chunk)
                        if on_progress:
                            on_progress(written, total)
            except requests.RequestException as e:
                _remove_partial(output_path)
                raise TransportError(f"failed to download file: {e}") from e
            except BaseException:
                # never leave a truncated file behind
                _remove_partial(output_path)
                raise
        logger.info(f"Downloaded {written} bytes to {output_path}")

    # ── Backups ──────────────────────────────────────────────────

    def list_backups(self) -> Dict[str, Backup]:
        """Backups keyed by token; each record also carries its token."""
        def decode(body: Dict[str, Any]) -> Dict[str, Backup]:
            raw = body.get("backups") or {}
            if not isinstance(raw, dict):
                raise TypeError("backups: expected object")
            return {token: Backup.from_dict(token, info) for token, info in raw.items()}

        return self._call("backup/list", decode)

    def copy_backup_to_snapshot(self, backup_token: str) -> None:
        validate_backup_token(backup_token)
        self._request("backup/copyToSnapshot", {"backupToken": backup_token})

    # ── Network ──────────────────────────────────────────────────

    def set_ptr(self, ip: str, ptr: str) -> None:
        """Set the rDNS record for one of the VPS addresses."""
        address = validate_ip(ip)
        if not ptr.strip():
            raise ValidationError("PTR record cannot be empty")
        self._request("setPTR", {"ip": address, "ptr": ptr.strip()})

    def add_ipv6(self) -> str:
        """Assign a new IPv6 /64; returns the subnet (without /64)."""
        return self._call("ipv6/add", lambda body: str(body.get("assigned_subnet") or ""))

    def delete_ipv6(self, subnet: str) -> str:
        """Release an IPv6 /64. Returns the normalized subnet that was sent."""
        normalized = normalize_ipv6_subnet(subnet)
        self._request("ipv6/delete", {"ip": normalized})
        return normalized

    def get_available_private_ips(self) -> List[str]:
        return self._call(
            "privateIp/getAvailableIps",
            lambda body: [str(ip) for ip in (body.get("available_ips") or [])],
        )

    def assign_private_ip(self, ip: str = "") -> List[str]:
        """Assign a private IPv4; the provider picks one when ``ip`` is empty."""
        params = {}
        if ip:
            params["ip"] = validate_ipv4(ip)
        return self._call(
            "privateIp/assign",
            lambda body: [str(a) for a in (body.get("assigned_ips") or [])],
            params,
        )

    def delete_private_ip(self, ip: str) -> None:
        self._request("privateIp/delete", {"ip": validate_ipv4(ip)})

    # ── ISO ──────────────────────────────────────────────────────

    def mount_iso(self, iso: str) -> None:
        """The VPS must be fully stopped and started again afterwards."""
        if not iso.strip():
            raise ValidationError("ISO name cannot be empty")
        self._request("iso/mount", {"iso": iso.strip()})

    def unmount_iso(self) -> None:
        self._request("iso/unmount")

    # ── Reinstall ────────────────────────────────────────────────

    def get_available_os(self) -> AvailableOS:
        return self._call("getAvailableOS", AvailableOS.from_dict)

    def reinstall_os(self, template: str, available: AvailableOS = None) -> None:
        """
        Reinstall the operating system. Destroys all data on the VPS.

        The template is checked against the advertised list first; pass
        ``available`` to reuse a list the caller already fetched.
        """
        if available is None:
            available = self.get_available_os()
        validate_os_template(template, available.templates)
        self._request("reinstallOS", {"os": template})

    # ── Migration ────────────────────────────────────────────────

    def get_migrate_locations(self, timeout: float = None,
                              session: Optional[requests.Session] = None) -> MigrateLocations:
        return self._call("migrate/getLocations", MigrateLocations.from_dict,
                          timeout=timeout, session=session)

    def start_migration(self, location_id: str, timeout: float = None,
                        session: Optional[requests.Session] = None) -> MigrateStartResult:
        """
        Ask the provider to migrate the VPS. All IPv4 addresses change.

        Returns once the request is accepted, which is not completion: the
        VPS stays locked until the move finishes. The provider may hold the
        connection open for the whole migration, hence the long timeout.
        """
        if not location_id.strip():
            raise ValidationError("location_id cannot be empty")
        return self._call(
            "migrate/start",
            MigrateStartResult.from_dict,
            {"location": location_id.strip()},
            timeout=timeout or self.MIGRATION_TIMEOUT,
            session=session,
        )


def _remove_partial(path: str) -> None:
    if os.path.exists(path):
        os.remove(path)
        logger.debug(f"Removed partial download {path}")


def _is_ip_https(url: str) -> bool:
    parsed = urlparse(url)
    if parsed.scheme != "https" or not parsed.hostname:
        return False
    try:
        ipaddress.ip_address(parsed.hostname)
        return True
    except ValueError:
        return False
