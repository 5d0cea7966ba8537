"""Settings loading and validation for YAML-based sensorreset config."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from sensorreset.core.errors import ConfigLoadError, ConfigValidationError
from sensorreset.core.model import DeviceRole
from sensorreset.core.recovery import RecoveryTimings, SweepPolicy

_MAC_RE = re.compile(r"^[0-9a-f]{2}(?::[0-9a-f]{2}){5}$", re.IGNORECASE)
_SECTIONS = ("timings", "sweep", "devices")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class DeviceSettings:
    enabled: bool = True
    name: str | None = None
    address: str | None = None


@dataclass(frozen=True)
class Settings:
    timings: RecoveryTimings = field(default_factory=RecoveryTimings)
    policy: SweepPolicy = field(default_factory=SweepPolicy)
    reconnect_delay_s: float = 2.0
    pairing_scope: str = "managed"
    state_dir: Path | None = None
    cache_dir: Path | None = None
    devices: dict[DeviceRole, DeviceSettings] = field(
        default_factory=lambda: {role: DeviceSettings() for role in DeviceRole}
    )

    @property
    def managed_addresses(self) -> tuple[str, ...]:
        return tuple(
            d.address for d in self.devices.values() if d.enabled and d.address is not None
        )


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    warnings: tuple[str, ...]
    source: Path | None = None


def _load_schema_validator() -> Any:
    schema_text = resources.files("sensorreset.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "sensorreset/config.yaml"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _validate(doc: dict[str, Any], source: Path | Traversable) -> None:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def _normalize_address(value: str) -> str:
    value = value.strip()
    return value.upper() if _MAC_RE.match(value) else value


def _merge(base: dict[str, Any], override: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    merged: dict[str, Any] = {section: dict(base.get(section) or {}) for section in _SECTIONS}
    warnings: list[str] = []

    for key, value in (override.get("timings") or {}).items():
        if key in merged["timings"] and merged["timings"][key] != value:
            warning = f"User config overrides timing '{key}' ({merged['timings'][key]} -> {value})"
            LOGGER.warning(warning)
            warnings.append(warning)
        merged["timings"][key] = value

    merged["sweep"].update(override.get("sweep") or {})

    for role_key, device in (override.get("devices") or {}).items():
        current = dict(merged["devices"].get(role_key) or {})
        current.update(device or {})
        merged["devices"][role_key] = current

    return merged, warnings


def _build_settings(doc: dict[str, Any]) -> Settings:
    timings_doc = doc["timings"]
    sweep_doc = doc["sweep"]
    defaults = SweepPolicy()

    devices: dict[DeviceRole, DeviceSettings] = {}
    for role_key, device_doc in doc["devices"].items():
        device_doc = device_doc or {}
        address = device_doc.get("address")
        devices[DeviceRole(role_key)] = DeviceSettings(
            enabled=device_doc.get("enabled", True),
            name=device_doc.get("name"),
            address=_normalize_address(address) if address else None,
        )

    return Settings(
        timings=RecoveryTimings(
            disconnect_settle_s=float(timings_doc.get("disconnect_settle_s", RecoveryTimings.disconnect_settle_s)),
            completion_settle_s=float(timings_doc.get("completion_settle_s", RecoveryTimings.completion_settle_s)),
        ),
        policy=SweepPolicy(
            enabled=sweep_doc.get("enabled", True),
            persisted_key_patterns=tuple(sweep_doc.get("persisted_key_patterns", defaults.persisted_key_patterns)),
            database_patterns=tuple(sweep_doc.get("database_patterns", defaults.database_patterns)),
            scheduler_handle_limit=int(sweep_doc.get("scheduler_handle_limit", defaults.scheduler_handle_limit)),
        ),
        reconnect_delay_s=float(timings_doc.get("reconnect_delay_s", 2.0)),
        pairing_scope=sweep_doc.get("pairing_scope", "managed"),
        state_dir=Path(sweep_doc["state_dir"]).expanduser() if "state_dir" in sweep_doc else None,
        cache_dir=Path(sweep_doc["cache_dir"]).expanduser() if "cache_dir" in sweep_doc else None,
        devices=devices,
    )


def load_settings(path: Path | None = None) -> LoadedSettings:
    packaged = resources.files("sensorreset.defaults").joinpath("config.yaml")
    base = _read_yaml(packaged)
    _validate(base, packaged)

    source = path or user_config_path()
    if path is None and not source.is_file():
        return LoadedSettings(settings=_build_settings(_merge(base, {})[0]), warnings=())

    override = _read_yaml(source)
    _validate(override, source)
    merged, warnings = _merge(base, override)
    return LoadedSettings(settings=_build_settings(merged), warnings=tuple(warnings), source=source)
