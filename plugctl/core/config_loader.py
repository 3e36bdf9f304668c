"""Settings file loading and validation."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from plugctl.core.errors import ConfigLoadError, ConfigValidationError
from plugctl.core.model import Settings

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
class LoadedSettings:
    settings: Settings
    source: Path | None


def _load_schema_validator() -> Any:
    schema_text = resources.files("plugctl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "plugctl/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read settings file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Settings file {path} must contain a mapping at root")
    return loaded


def _build_settings(doc: dict[str, Any], source: Path) -> Settings:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    settings = Settings().with_overrides(
        broadcast_port=doc.get("broadcast_port"),
        listen_port=doc.get("listen_port"),
        timeout_s=float(doc["timeout_s"]) if "timeout_s" in doc else None,
        library=doc.get("library"),
        datagram_size=doc.get("datagram_size"),
        teardown_delay_s=float(doc["teardown_delay_s"]) if "teardown_delay_s" in doc else None,
    )
    check_settings(settings, source)
    return settings


def check_settings(settings: Settings, source: Path | str = "settings") -> None:
    """Reject combinations that are valid per key but unusable together."""
    if settings.listen_port is not None and settings.listen_port == settings.broadcast_port:
        raise ConfigValidationError(
            f"Invalid {source}: relay port {settings.broadcast_port} equals listen port; "
            "relayed output would be read back as commands"
        )


def load_settings(path: Path | None = None) -> LoadedSettings:
    """Load settings from ``path`` or the default location.

    A missing default file yields default settings; a missing explicit file
    is an error.
    """
    explicit = path is not None
    source = path if path is not None else default_config_path()
    if not source.exists():
        if explicit:
            raise ConfigLoadError(f"Settings file {source} does not exist")
        LOGGER.debug("No settings file at %s, using defaults", source)
        return LoadedSettings(settings=Settings(), source=None)

    return LoadedSettings(settings=_build_settings(_read_yaml(source), source), source=source)
