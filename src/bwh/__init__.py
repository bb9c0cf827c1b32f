"""
bwh: BandwagonHost (KiwiVM) VPS management

Provides:
- API client (BWHClient): api.64clouds.com/v1, one VPS per client
- Error model (BWHError, TransportError, ValidationError)
- Migration wait protocol (MigrationWaiter): start, then poll until unlocked
- Instance config (ConfigManager): ~/.bwh/config.yaml
- SSH Exec Bridge (SSHExecBridge): remote command execution
"""

from .client import BWHClient, DEFAULT_BASE_URL
from .config import (
    ConfigManager, Instance, ConfigError, NoInstancesError,
    NoDefaultInstanceError, InstanceNotFoundError, InstanceExistsError,
    client_for,
)
from .errors import (
    BWHError, TransportError, ResponseDecodeError, ValidationError,
    AUTHENTICATION_FAILURE, VE_LOCKED,
    is_authentication_error, is_locked_error,
)
from .migration import (
    MigrationWaiter, MigrationOutcome, MigrationEvent, MigrationState,
    MigrationTimeout, start_migration_nowait,
)
from .ssh_bridge import SSHExecBridge, ExecResult
from .types import (
    Envelope, LockingInfo, ServiceInfo, LiveServiceInfo, Snapshot, Backup,
    UsageDataPoint, UsageStats, AuditLogEntry, AvailableOS, RateLimitStatus,
    SSHKeys, MigrateLocations, MigrateStartResult, flexible_int,
)
from .version import __version__

__all__ = [
    'BWHClient', 'DEFAULT_BASE_URL',
    'ConfigManager', 'Instance', 'ConfigError', 'NoInstancesError',
    'NoDefaultInstanceError', 'InstanceNotFoundError', 'InstanceExistsError',
    'client_for',
    'BWHError', 'TransportError', 'ResponseDecodeError', 'ValidationError',
    'AUTHENTICATION_FAILURE', 'VE_LOCKED',
    'is_authentication_error', 'is_locked_error',
    'MigrationWaiter', 'MigrationOutcome', 'MigrationEvent', 'MigrationState',
    'MigrationTimeout', 'start_migration_nowait',
    'SSHExecBridge', 'ExecResult',
    'Envelope', 'LockingInfo', 'ServiceInfo', 'LiveServiceInfo', 'Snapshot',
    'Backup', 'UsageDataPoint', 'UsageStats', 'AuditLogEntry', 'AvailableOS',
    'RateLimitStatus', 'SSHKeys', 'MigrateLocations', 'MigrateStartResult',
    'flexible_int',
    '__version__',
]
