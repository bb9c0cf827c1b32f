"""Instance configuration: named VPS credentials stored as YAML."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from jsonschema import Draft7Validator

from .client import BWHClient

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "BWH_CONFIG_PATH"
INSTANCE_ENV = "BWH_INSTANCE"
DEFAULT_CONFIG_PATH = Path("~/.bwh/config.yaml")

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "default_instance": {"type": ["string", "null"]},
        "instances": {
            "type": ["object", "null"],
            "additionalProperties": {
                "type": "object",
                "required": ["api_key", "veid"],
                "properties": {
                    "api_key": {"type": "string"},
                    "veid": {"type": ["string", "integer"]},
                    "description": {"type": ["string", "null"]},
                    "endpoint": {"type": ["string", "null"]},
                    "tags": {"type": ["array", "null"], "items": {"type": "string"}},
                },
            },
        },
    },
}

_validator = Draft7Validator(CONFIG_SCHEMA)


class ConfigError(Exception):
    """Invalid, missing or inconsistent instance configuration."""


class NoInstancesError(ConfigError):
    def __init__(self):
        super().__init__("no instances configured; add one with: bwh node add <name>")


class NoDefaultInstanceError(ConfigError):
    def __init__(self):
        super().__init__(
            "no default instance set; pass --instance or run: bwh node set-default <name>"
        )


class InstanceNotFoundError(ConfigError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"instance '{name}' not found")


class InstanceExistsError(ConfigError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"instance '{name}' already exists")


@dataclass(frozen=True)
class Instance:
    api_key: str
    veid: str
    description: str = ""
    endpoint: str = ""
    tags: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Instance":
        return cls(
            api_key=str(data["api_key"]),
            veid=str(data["veid"]),
            description=data.get("description") or "",
            endpoint=data.get("endpoint") or "",
            tags=tuple(data.get("tags") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"api_key": self.api_key, "veid": self.veid}
        if self.description:
            data["description"] = self.description
        if self.endpoint:
            data["endpoint"] = self.endpoint
        if self.tags:
            data["tags"] = list(self.tags)
        return data


def mask_api_key(api_key: str) -> str:
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:4]}****{api_key[-4:]}"


def validate_instance_name(name: str) -> None:
    if not name or not name.strip():
        raise ConfigError("instance name cannot be empty")
    if any(ch.isspace() for ch in name):
        raise ConfigError("instance name cannot contain whitespace")


def validate_instance(instance: Instance) -> None:
    key = instance.api_key
    if not key:
        raise ConfigError("API key cannot be empty")
    if len(key) < 10 or len(key) > 256:
        raise ConfigError("API key must be between 10 and 256 characters")
    if any(ch.isspace() for ch in key):
        raise ConfigError("API key cannot contain whitespace")
    if not instance.veid:
        raise ConfigError("VEID cannot be empty")
    if len(instance.veid) > 32:
        raise ConfigError("VEID cannot exceed 32 characters")


def resolve_config_path(path: Optional[str | Path] = None) -> Path:
    """Explicit path, then $BWH_CONFIG_PATH, then ~/.bwh/config.yaml."""
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def validate_config(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        messages = ", ".join(
            f"{'.'.join(str(p) for p in error.path) or '<root>'}: {error.message}"
            for error in errors
        )
        raise ConfigError(f"invalid config file: {messages}")


class ConfigManager:
    """
    Loads, edits and saves the instance file.

    A missing file is treated as an empty configuration; it is created on
    the first ``save()``.
    """

    def __init__(self, path: Optional[str | Path] = None):
        self.path = resolve_config_path(path)
        self.default_instance = ""
        self.instances: Dict[str, Instance] = {}
        if self.path.exists():
            self.load()

    def load(self) -> None:
        try:
            data = load_yaml(self.path)
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse config file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"invalid config file {self.path}: expected a mapping")
        validate_config(data)

        self.default_instance = data.get("default_instance") or ""
        self.instances = {
            str(name): Instance.from_dict(raw)
            for name, raw in (data.get("instances") or {}).items()
        }
        logger.debug(f"Loaded {len(self.instances)} instance(s) from {self.path}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "default_instance": self.default_instance,
            "instances": {name: inst.to_dict() for name, inst in self.instances.items()},
        }

    def save(self) -> None:
        """Write the file with owner-only permissions (dir 0700, file 0600)."""
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            yaml.safe_dump(self.to_dict(), handle, default_flow_style=False, sort_keys=False)
        # O_CREAT mode is ignored for existing files
        os.chmod(self.path, 0o600)
        logger.debug(f"Saved config to {self.path}")

    # ── Instances ────────────────────────────────────────────────

    def add_instance(self, name: str, instance: Instance, set_default: bool = False) -> None:
        validate_instance_name(name)
        validate_instance(instance)
        if name in self.instances:
            raise InstanceExistsError(name)
        self.instances[name] = instance
        if set_default or len(self.instances) == 1:
            self.default_instance = name

    def remove_instance(self, name: str) -> None:
        if name not in self.instances:
            raise InstanceNotFoundError(name)
        del self.instances[name]
        if self.default_instance == name:
            self.default_instance = ""
            if len(self.instances) == 1:
                self.default_instance = next(iter(self.instances))

    def set_default(self, name: str) -> None:
        if name not in self.instances:
            raise InstanceNotFoundError(name)
        self.default_instance = name

    def get_instance(self, name: str) -> Instance:
        try:
            return self.instances[name]
        except KeyError:
            raise InstanceNotFoundError(name) from None

    def list_instances(self) -> List[Tuple[str, Instance]]:
        return sorted(self.instances.items())

    def resolve_instance(self, name: Optional[str] = None) -> Tuple[Instance, str]:
        """
        Pick the instance to act on.

        Precedence: explicit name, $BWH_INSTANCE, configured default, and
        finally the only instance when exactly one exists.
        """
        if not self.instances:
            raise NoInstancesError()
        for candidate in (name, os.environ.get(INSTANCE_ENV), self.default_instance):
            if candidate:
                return self.get_instance(candidate), candidate
        if len(self.instances) == 1:
            only = next(iter(self.instances))
            return self.instances[only], only
        raise NoDefaultInstanceError()


def client_for(instance: Instance, timeout: int = None) -> BWHClient:
    return BWHClient(
        instance.api_key,
        instance.veid,
        base_url=instance.endpoint or None,
        timeout=timeout,
    )
