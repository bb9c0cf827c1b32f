#!/usr/bin/env python3
"""
SSH access to a managed VPS.

Two ways in:
- build_ssh_args() assembles arguments for the local ``ssh`` binary, used
  for interactive sessions (``bwh connect``)
- SSHExecBridge runs a single command over paramiko and captures its
  output (``bwh exec``)

The target address and port come from getLiveServiceInfo: IPv4 is preferred
unless the caller asks for IPv6, and the port falls back to 22 when the
provider does not report one.

Usage:
    host = select_target_ip(live.ip_addresses)
    with SSHExecBridge(host=host, port=resolve_ssh_port(live.ssh_port)) as bridge:
        result = bridge.exec("uptime")
"""

import io
import ipaddress
import logging
import os
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

import paramiko

from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22


def _parse_ip(address: str) -> str:
    """Bare IP from an address that may carry a /prefix; "" if unusable."""
    value = address.strip().split("/", 1)[0]
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return ""
    return value


def select_target_ip(addresses: Iterable[str], prefer_ipv6: bool = False) -> str:
    """First usable address of the preferred family, else of the other one."""
    addresses = list(addresses)
    if not addresses:
        raise ValidationError("no IP addresses found for the instance")

    ipv4, ipv6 = [], []
    for address in addresses:
        ip = _parse_ip(address)
        if not ip:
            continue
        (ipv6 if ":" in ip else ipv4).append(ip)

    ordered = ipv6 + ipv4 if prefer_ipv6 else ipv4 + ipv6
    if not ordered:
        raise ValidationError("no usable IP address found")
    return ordered[0]


def resolve_ssh_port(reported: int = 0, override: int = 0) -> int:
    if override:
        return override
    return reported if reported > 0 else DEFAULT_SSH_PORT


def build_ssh_args(
    host: str,
    port: int = DEFAULT_SSH_PORT,
    user: str = "root",
    identity: str = "",
    no_host_check: bool = False,
    extra_args: Sequence[str] = (),
    remote_command: str = "",
) -> List[str]:
    """Arguments for the ``ssh`` binary (without the program name)."""
    args = ["-p", str(port)]
    if identity:
        args += ["-i", identity]
    if no_host_check:
        args += ["-o", "StrictHostKeyChecking=no", "-o", "UserKnownHostsFile=/dev/null"]
    # key-based access only
    args += ["-o", "PasswordAuthentication=no"]
    args += list(extra_args)
    # ssh splits user@host on the last '@', so IPv6 needs no brackets here
    args.append(f"{user}@{host}")
    if remote_command:
        args.append(remote_command)
    return args


@dataclass
class ExecResult:
    """Result of a remote command execution."""
    command: str
    exit_code: int
    stdout: str
    stderr: str
    success: bool
    duration_ms: float
    host: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SSHExecBridge:
    """
    Runs commands on the VPS over SSH with paramiko.

    Auth order: explicit key file, $BWH_SSH_KEY_PATH, then the local
    agent and ~/.ssh default keys (paramiko's own lookup).
    """

    DEFAULT_TIMEOUT = 30
    KEY_CLASSES = (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey)

    def __init__(
        self,
        host: str,
        username: str = "root",
        port: int = None,
        key_path: str = None,
        key_content: str = None,
        timeout: int = None,
        strict_host_keys: bool = False,
    ):
        if not host:
            raise ValidationError("SSH host is required")
        self.host = host
        self.username = username
        self.port = port or DEFAULT_SSH_PORT
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.strict_host_keys = strict_host_keys
        self._client: Optional[paramiko.SSHClient] = None
        self._key = self._load_key(key_path or os.environ.get("BWH_SSH_KEY_PATH", ""), key_content)

        logger.debug(
            f"SSHExecBridge initialized (host={self.host}, user={self.username}, "
            f"port={self.port}, key={'explicit' if self._key else 'agent/default'})"
        )

    def _load_key(self, key_path: str = "", key_content: str = None):
        if key_path:
            path = os.path.expanduser(key_path)
            if not os.path.isfile(path):
                raise ValidationError(f"SSH key file not found: {key_path}")
            return self._parse_key(lambda cls: cls.from_private_key_file(path), path)
        if key_content:
            buffer = io.StringIO(key_content)

            def read(cls):
                buffer.seek(0)
                return cls.from_private_key(buffer)

            return self._parse_key(read, "<string>")
        return None

    def _parse_key(self, reader, label: str):
        for key_class in self.KEY_CLASSES:
            try:
                return reader(key_class)
            except (paramiko.SSHException, ValueError):
                continue
        raise ValidationError(f"could not parse SSH key: {label}")

    # ── Connection Management ────────────────────────────────────

    def connect(self) -> bool:
        """Open the SSH connection; False (and a log line) on failure."""
        client = paramiko.SSHClient()
        if self.strict_host_keys:
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                pkey=self._key,
                timeout=self.timeout,
                allow_agent=self._key is None,
                look_for_keys=self._key is None,
            )
        except paramiko.AuthenticationException:
            logger.error(f"SSH auth failed for {self.username}@{self.host}")
            client.close()
            return False
        except (paramiko.SSHException, OSError) as e:
            logger.error(f"SSH connection failed to {self.host}:{self.port}: {e}")
            client.close()
            return False
        self._client = client
        logger.info(f"SSH connected to {self.username}@{self.host}:{self.port}")
        return True

    def close(self):
        if self._client:
            self._client.close()
            self._client = None
            logger.debug("SSH connection closed")

    @property
    def connected(self) -> bool:
        if self._client is None:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    # ── Command Execution ────────────────────────────────────────

    def exec(self, command: str, timeout: int = None) -> ExecResult:
        """
        Execute a command on the VPS.

        Connection and channel failures are reported in the result
        (exit_code -1) rather than raised.
        """
        cmd_timeout = timeout or self.timeout
        start = time.time()

        if not self.connected and not self.connect():
            return ExecResult(
                command=command, exit_code=-1,
                stdout="", stderr="SSH connection failed",
                success=False, duration_ms=0, host=self.host,
            )

        try:
            _, stdout_ch, stderr_ch = self._client.exec_command(command, timeout=cmd_timeout)
            exit_code = stdout_ch.channel.recv_exit_status()
            stdout = stdout_ch.read().decode("utf-8", errors="replace").strip()
            stderr = stderr_ch.read().decode("utf-8", errors="replace").strip()
            result = ExecResult(
                command=command,
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
                success=exit_code == 0,
                duration_ms=round((time.time() - start) * 1000, 1),
                host=self.host,
            )
        except (paramiko.SSHException, OSError) as e:
            result = ExecResult(
                command=command, exit_code=-1,
                stdout="", stderr=str(e),
                success=False, duration_ms=round((time.time() - start) * 1000, 1),
                host=self.host,
            )

        level = logging.INFO if result.success else logging.WARNING
        logger.log(level, f"[SSH] {command[:80]} -> exit={result.exit_code} ({result.duration_ms:.0f}ms)")
        return result

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        status = "connected" if self.connected else "disconnected"
        return f"SSHExecBridge({self.username}@{self.host}:{self.port}, {status})"
