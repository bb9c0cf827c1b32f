"""
Wire types for the KiwiVM API.

Every response is a JSON object with an ``error`` field; the remaining
fields depend on the call. Each dataclass here decodes one response shape
through ``from_dict`` and is never mutated afterwards.

Type mismatches raise TypeError/ValueError; the client turns those into
ResponseDecodeError.
"""

import ipaddress
import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_INT_STRING = re.compile(r"^[+-]?[0-9]+$")
_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1


def flexible_int(raw: Any) -> int:
    """
    Decode a field the API sends either as a number or a numeric string.

    Empty strings (used for "not applicable"), null, booleans and anything
    unparsable decode to 0 without raising.
    """
    if isinstance(raw, bool):
        logger.debug(f"flexible_int: boolean {raw!r} decoded as 0")
        return 0
    if isinstance(raw, int):
        if _INT64_MIN <= raw <= _INT64_MAX:
            return raw
    elif isinstance(raw, float):
        if raw.is_integer() and _INT64_MIN <= raw <= _INT64_MAX:
            return int(raw)
    elif isinstance(raw, str):
        if _INT_STRING.match(raw):
            value = int(raw, 10)
            if _INT64_MIN <= value <= _INT64_MAX:
                return value
        elif raw == "":
            return 0
    if raw is not None:
        logger.debug(f"flexible_int: unparsable value {raw!r} decoded as 0")
    return 0


# ── Strict field readers ─────────────────────────────────────────

def _int(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool):
        raise TypeError(f"{key}: expected integer, got boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise TypeError(f"{key}: expected integer, got {type(value).__name__}")


def _str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"{key}: expected string, got {type(value).__name__}")
    return value


def _bool(data: Dict[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise TypeError(f"{key}: expected boolean, got {value!r}")


def _str_list(data: Dict[str, Any], key: str) -> List[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"{key}: expected list, got {type(value).__name__}")
    return [str(item) for item in value]


def _dict(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    # PHP encodes an empty map as []
    if value == []:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"{key}: expected object, got {type(value).__name__}")
    return value


def _split_keys(blob: str) -> List[str]:
    """Split a newline-separated SSH key blob, dropping blank lines."""
    return [line.strip() for line in blob.strip().splitlines() if line.strip()]


# ── Envelope ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class LockingInfo:
    """Progress of the operation currently holding the VPS lock."""
    completed_percent: int = 0
    friendly_progress_message: str = ""
    last_status_update_s_ago: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockingInfo":
        return cls(
            completed_percent=flexible_int(data.get("completed_percent")),
            friendly_progress_message=str(data.get("friendly_progress_message") or ""),
            last_status_update_s_ago=flexible_int(data.get("last_status_update_s_ago")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def describe(self) -> str:
        text = f"Progress: {self.completed_percent}% complete - {self.friendly_progress_message}"
        if self.last_status_update_s_ago > 0:
            text += f" (updated {self.last_status_update_s_ago}s ago)"
        return text


@dataclass(frozen=True)
class Envelope:
    """The status part shared by every API response."""
    error: int = 0
    message: str = ""
    additional_error_info: str = ""
    additional_locking_info: Optional[LockingInfo] = None

    @property
    def ok(self) -> bool:
        return self.error == 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Envelope":
        code = _int(data, "error")
        if code == 0:
            return cls()
        locking = data.get("additionalLockingInfo")
        return cls(
            error=code,
            message=str(data.get("message") or ""),
            additional_error_info=str(data.get("additionalErrorInfo") or ""),
            additional_locking_info=(
                LockingInfo.from_dict(locking) if isinstance(locking, dict) else None
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error}
        if self.message:
            payload["message"] = self.message
        if self.additional_error_info:
            payload["additionalErrorInfo"] = self.additional_error_info
        if self.additional_locking_info is not None:
            payload["additionalLockingInfo"] = self.additional_locking_info.to_dict()
        return payload


# ── Service information ──────────────────────────────────────────

@dataclass(frozen=True)
class ServiceInfo:
    """Static VPS descriptor returned by getServiceInfo."""
    vm_type: str = ""
    hostname: str = ""
    plan: str = ""
    os: str = ""
    email: str = ""
    node_alias: str = ""
    node_location_id: str = ""
    node_location: str = ""
    node_datacenter: str = ""
    location_ipv6_ready: bool = False
    plan_disk: int = 0
    plan_ram: int = 0
    plan_swap: int = 0
    plan_monthly_data: int = 0
    data_counter: int = 0
    monthly_data_multiplier: int = 0
    data_next_reset: int = 0
    ip_addresses: List[str] = field(default_factory=list)
    ipv6_sit_tunnel_endpoint: str = ""
    private_ip_addresses: List[str] = field(default_factory=list)
    ip_nullroutes: List[str] = field(default_factory=list)
    plan_max_ipv6s: int = 0
    iso1: str = ""
    iso2: str = ""
    available_isos: List[str] = field(default_factory=list)
    plan_private_network_available: bool = False
    location_private_network_available: bool = False
    rdns_api_available: bool = False
    ptr: Dict[str, str] = field(default_factory=dict)
    free_ip_replacement_interval: int = 0
    suspended: bool = False
    policy_violation: bool = False
    suspension_count: int = 0
    total_abuse_points: int = 0
    max_abuse_points: int = 0

    @classmethod
    def _fields_from(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        return dict(
            vm_type=_str(data, "vm_type"),
            hostname=_str(data, "hostname"),
            plan=_str(data, "plan"),
            os=_str(data, "os"),
            email=_str(data, "email"),
            node_alias=_str(data, "node_alias"),
            node_location_id=_str(data, "node_location_id"),
            node_location=_str(data, "node_location"),
            node_datacenter=_str(data, "node_datacenter"),
            location_ipv6_ready=_bool(data, "location_ipv6_ready"),
            plan_disk=_int(data, "plan_disk"),
            plan_ram=_int(data, "plan_ram"),
            plan_swap=_int(data, "plan_swap"),
            plan_monthly_data=_int(data, "plan_monthly_data"),
            data_counter=_int(data, "data_counter"),
            monthly_data_multiplier=_int(data, "monthly_data_multiplier"),
            data_next_reset=_int(data, "data_next_reset"),
            ip_addresses=_str_list(data, "ip_addresses"),
            ipv6_sit_tunnel_endpoint=_str(data, "ipv6_sit_tunnel_endpoint"),
            private_ip_addresses=_str_list(data, "private_ip_addresses"),
            ip_nullroutes=_str_list(data, "ip_nullroutes"),
            plan_max_ipv6s=_int(data, "plan_max_ipv6s"),
            iso1=_str(data, "iso1"),
            iso2=_str(data, "iso2"),
            available_isos=_str_list(data, "available_isos"),
            plan_private_network_available=_bool(data, "plan_private_network_available"),
            location_private_network_available=_bool(data, "location_private_network_available"),
            rdns_api_available=_bool(data, "rdns_api_available"),
            ptr={str(k): str(v) for k, v in _dict(data, "ptr").items()},
            free_ip_replacement_interval=_int(data, "free_ip_replacement_interval"),
            suspended=_bool(data, "suspended"),
            policy_violation=_bool(data, "policy_violation"),
            suspension_count=_int(data, "suspension_count"),
            total_abuse_points=_int(data, "total_abuse_points"),
            max_abuse_points=_int(data, "max_abuse_points"),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceInfo":
        return cls(**cls._fields_from(data))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LiveServiceInfo(ServiceInfo):
    """getLiveServiceInfo: ServiceInfo plus hypervisor-reported live state."""
    is_cpu_throttled: int = 0
    ssh_port: int = 0
    # OpenVZ only
    vz_status: Dict[str, Any] = field(default_factory=dict)
    vz_quota: Dict[str, Any] = field(default_factory=dict)
    # KVM only
    ve_status: str = ""
    ve_mac1: str = ""
    ve_used_disk_space_b: int = 0
    ve_disk_quota_gb: int = 0
    is_disk_throttled: int = 0
    live_hostname: str = ""
    load_average: str = ""
    mem_available_kb: int = 0
    swap_total_kb: int = 0
    swap_available_kb: int = 0
    screendump_png_base64: str = field(default="", repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LiveServiceInfo":
        fields = cls._fields_from(data)
        fields.update(
            is_cpu_throttled=flexible_int(data.get("is_cpu_throttled")),
            ssh_port=flexible_int(data.get("ssh_port")),
            vz_status=_dict(data, "vz_status"),
            vz_quota=_dict(data, "vz_quota"),
            ve_status=_str(data, "ve_status"),
            ve_mac1=_str(data, "ve_mac1"),
            ve_used_disk_space_b=flexible_int(data.get("ve_used_disk_space_b")),
            ve_disk_quota_gb=flexible_int(data.get("ve_disk_quota_gb")),
            is_disk_throttled=flexible_int(data.get("is_disk_throttled")),
            live_hostname=_str(data, "live_hostname"),
            load_average=_str(data, "load_average"),
            mem_available_kb=flexible_int(data.get("mem_available_kb")),
            swap_total_kb=flexible_int(data.get("swap_total_kb")),
            swap_available_kb=flexible_int(data.get("swap_available_kb")),
            screendump_png_base64=_str(data, "screendump_png_base64"),
        )
        return cls(**fields)

    @property
    def power_state(self) -> str:
        """Running/Stopped/Starting on KVM; OpenVZ reports it in vz_status."""
        if self.ve_status:
            return self.ve_status
        return str(self.vz_status.get("status", ""))


# ── Snapshots & backups ──────────────────────────────────────────

@dataclass(frozen=True)
class Snapshot:
    """A snapshot, keyed by its provider-assigned file name."""
    file_name: str
    os: str = ""
    description: str = ""
    size: int = 0
    md5: str = ""
    sticky: bool = False
    uncompressed: int = 0
    purges_in: int = 0
    download_link: str = ""
    download_link_ssl: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        return cls(
            file_name=_str(data, "fileName"),
            os=_str(data, "os"),
            description=_str(data, "description"),
            size=flexible_int(data.get("size")),
            md5=_str(data, "md5"),
            sticky=_bool(data, "sticky"),
            uncompressed=flexible_int(data.get("uncompressed")),
            purges_in=flexible_int(data.get("purgesIn")),
            download_link=_str(data, "downloadLink"),
            download_link_ssl=_str(data, "downloadLinkSSL"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Backup:
    """An automatic backup; the token comes from the map key on the wire."""
    token: str
    size: int = 0
    os: str = ""
    md5: str = ""
    timestamp: int = 0

    @classmethod
    def from_dict(cls, token: str, data: Dict[str, Any]) -> "Backup":
        return cls(
            token=token,
            size=flexible_int(data.get("size")),
            os=_str(data, "os"),
            md5=_str(data, "md5"),
            timestamp=flexible_int(data.get("timestamp")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ── Usage, audit, misc ───────────────────────────────────────────

@dataclass(frozen=True)
class UsageDataPoint:
    """One 5-minute window of resource usage."""
    timestamp: int
    cpu_usage: int = 0
    network_in_bytes: int = 0
    network_out_bytes: int = 0
    disk_read_bytes: int = 0
    disk_write_bytes: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageDataPoint":
        return cls(
            timestamp=flexible_int(data.get("timestamp")),
            cpu_usage=flexible_int(data.get("cpu_usage")),
            network_in_bytes=flexible_int(data.get("network_in_bytes")),
            network_out_bytes=flexible_int(data.get("network_out_bytes")),
            disk_read_bytes=flexible_int(data.get("disk_read_bytes")),
            disk_write_bytes=flexible_int(data.get("disk_write_bytes")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UsageStats:
    data: List[UsageDataPoint] = field(default_factory=list)
    vm_type: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageStats":
        points = data.get("data") or []
        if not isinstance(points, list):
            raise TypeError("data: expected list")
        return cls(
            data=[UsageDataPoint.from_dict(p) for p in points],
            vm_type=_str(data, "vm_type"),
        )


@dataclass(frozen=True)
class AuditLogEntry:
    timestamp: int
    requestor_ipv4: int = 0
    type: int = 0
    summary: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditLogEntry":
        return cls(
            timestamp=flexible_int(data.get("timestamp")),
            requestor_ipv4=flexible_int(data.get("requestor_ipv4")) & 0xFFFFFFFF,
            type=flexible_int(data.get("type")),
            summary=_str(data, "summary"),
        )

    @property
    def requestor_ip(self) -> str:
        return str(ipaddress.IPv4Address(self.requestor_ipv4))

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["requestor_ip"] = self.requestor_ip
        return d


@dataclass(frozen=True)
class AvailableOS:
    installed: str = ""
    templates: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AvailableOS":
        return cls(installed=_str(data, "installed"), templates=_str_list(data, "templates"))


@dataclass(frozen=True)
class RateLimitStatus:
    remaining_points_15min: int = 0
    remaining_points_24h: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateLimitStatus":
        return cls(
            remaining_points_15min=flexible_int(data.get("remaining_points_15min")),
            remaining_points_24h=flexible_int(data.get("remaining_points_24h")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SSHKeys:
    """
    The three key sets known to the provider.

    ``preferred`` is what reinstallOS will actually install: VM-level keys
    when any exist, account-level keys otherwise.
    """
    veid: List[str] = field(default_factory=list)
    user: List[str] = field(default_factory=list)
    preferred: List[str] = field(default_factory=list)
    shortened_veid: List[str] = field(default_factory=list)
    shortened_user: List[str] = field(default_factory=list)
    shortened_preferred: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SSHKeys":
        return cls(
            veid=_split_keys(_str(data, "ssh_keys_veid")),
            user=_split_keys(_str(data, "ssh_keys_user")),
            preferred=_split_keys(_str(data, "ssh_keys_preferred")),
            shortened_veid=_split_keys(_str(data, "shortened_ssh_keys_veid")),
            shortened_user=_split_keys(_str(data, "shortened_ssh_keys_user")),
            shortened_preferred=_split_keys(_str(data, "shortened_ssh_keys_preferred")),
        )


@dataclass(frozen=True)
class MigrateLocations:
    current_location: str = ""
    locations: List[str] = field(default_factory=list)
    descriptions: Dict[str, str] = field(default_factory=dict)
    data_transfer_multipliers: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrateLocations":
        return cls(
            current_location=_str(data, "currentLocation"),
            locations=_str_list(data, "locations"),
            descriptions={str(k): str(v) for k, v in _dict(data, "descriptions").items()},
            data_transfer_multipliers={
                str(k): flexible_int(v)
                for k, v in _dict(data, "dataTransferMultipliers").items()
            },
        )


@dataclass(frozen=True)
class MigrateStartResult:
    """migrate/start accepted; completion is signalled by the VPS unlocking."""
    notification_email: str = ""
    new_ips: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrateStartResult":
        return cls(
            notification_email=_str(data, "notificationEmail"),
            new_ips=_str_list(data, "newIps"),
        )
