"""
Client-side checks run before a request is sent.

API calls are rate limited, so anything certain to be rejected by the
provider is rejected here instead. Also holds the small IP helpers shared
by the CLI and the MCP tools.
"""

import ipaddress
import re
from typing import Iterable, List, Sequence, Tuple

from .errors import ValidationError

_BACKUP_TOKEN = re.compile(r"^[a-f0-9]{40}$")

SSH_KEY_TYPES = (
    "ssh-rsa",
    "ssh-dss",
    "ssh-ed25519",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "sk-ecdsa-sha2-nistp256@openssh.com",
    "sk-ssh-ed25519@openssh.com",
)


def validate_backup_token(token: str) -> str:
    """Backup tokens are exactly 40 lowercase hex characters."""
    if len(token) != 40:
        raise ValidationError(
            f"invalid backup token format: expected 40 characters, got {len(token)}"
        )
    if not _BACKUP_TOKEN.match(token):
        raise ValidationError("invalid backup token format: must be 40 hexadecimal characters")
    return token


def is_valid_ssh_key(key: str) -> bool:
    parts = key.split()
    return len(parts) >= 2 and parts[0] in SSH_KEY_TYPES


def validate_ssh_keys(keys: Sequence[str]) -> List[str]:
    cleaned = []
    for position, key in enumerate(keys, start=1):
        key = key.strip()
        if not is_valid_ssh_key(key):
            raise ValidationError(f"invalid SSH key format at position {position}")
        cleaned.append(key)
    return cleaned


def read_ssh_keys_file(path: str) -> List[str]:
    """One key per line; blank lines and # comments are skipped."""
    keys = []
    with open(path, "r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if line and not line.startswith("#"):
                keys.append(line)
    return keys


def validate_os_template(template: str, available: Iterable[str]) -> str:
    if template not in set(available):
        raise ValidationError(f"invalid OS template: {template}")
    return template


def normalize_ipv6_subnet(subnet: str) -> str:
    """
    Canonical form of an IPv6 /64 subnet as the API expects it.

    ``2001:db8:1:2::`` and ``2001:db8:1:2::/64`` normalize to the same value;
    IPv4 literals and garbage are rejected.
    """
    value = subnet.strip()
    if value.endswith("/64"):
        value = value[: -len("/64")]
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        raise ValidationError(
            f"invalid IPv6 subnet format: {subnet} (expected format: 2001:db8:1234:5678::)"
        ) from None
    if address.version != 6:
        raise ValidationError(f"invalid IPv6 subnet format: {subnet} (IPv4 address given)")
    return value


def validate_ipv4(ip: str) -> str:
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        raise ValidationError(f"invalid IPv4 address: {ip}") from None
    if address.version != 4:
        raise ValidationError(f"invalid IPv4 address: {ip}")
    return str(address)


def validate_ip(ip: str) -> str:
    try:
        return str(ipaddress.ip_address(ip.strip()))
    except ValueError:
        raise ValidationError(f"invalid IP address: {ip}") from None


def split_ips_by_family(ips: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Partition addresses (or subnets) into (ipv4, ipv6), keeping order."""
    ipv4, ipv6 = [], []
    for ip in ips:
        if ":" in ip:
            ipv6.append(ip)
        else:
            ipv4.append(ip)
    return ipv4, ipv6


def ipv4_from_int(value: int) -> str:
    return str(ipaddress.IPv4Address(value & 0xFFFFFFFF))


def aggregate_ipv4_ranges(ips: Iterable[str]) -> Tuple[List[str], int]:
    """
    Group contiguous IPv4 addresses into ranges.

    Returns the range strings and the number of distinct valid addresses.
    A run inside one /24 prints as ``10.0.0.1-2``, a run crossing octets as
    ``10.0.0.254-10.0.1.3``, and a singleton as the bare address. Invalid
    entries and duplicates are ignored.
    """
    numbers = set()
    for ip in ips:
        try:
            address = ipaddress.ip_address(ip.strip())
        except ValueError:
            continue
        if address.version == 4:
            numbers.add(int(address))
    if not numbers:
        return [], 0

    ordered = sorted(numbers)
    ranges = []
    start = prev = ordered[0]
    for n in ordered[1:]:
        if n == prev + 1:
            prev = n
            continue
        ranges.append(_format_range(start, prev))
        start = prev = n
    ranges.append(_format_range(start, prev))
    return ranges, len(ordered)


def _format_range(start: int, end: int) -> str:
    first = ipaddress.IPv4Address(start)
    if start == end:
        return str(first)
    last = ipaddress.IPv4Address(end)
    if start >> 8 == end >> 8:
        return f"{first}-{end & 0xFF}"
    return f"{first}-{last}"
