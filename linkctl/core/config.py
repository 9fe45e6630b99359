"""Config loading and validation for linkctl YAML config files."""

from __future__ import annotations

import codecs
import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from linkctl.core.errors import ConfigLoadError, ConfigValidationError
from linkctl.core.model import ClassicConnectOptions, LEConfig, LinkConfig, ScanConfig

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


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
class LoadedConfig:
    config: LinkConfig
    sources: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("linkctl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "linkctl/config.yaml"


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


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ConfigValidationError(f"{context} must be boolean true/false")


def _normalize_uuid(value: str) -> str:
    return value.strip().lower()


def _normalize_charset(value: str, *, context: str) -> str:
    try:
        return codecs.lookup(value).name
    except LookupError as exc:
        raise ConfigValidationError(f"{context} is not a known text encoding: {value!r}") from exc


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for section, values in override.items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section] = {**merged[section], **values}
        else:
            merged[section] = values
    return merged


def _build_config(doc: dict[str, Any], source: str) -> LinkConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    scan = doc.get("scan", {})
    le = doc.get("le", {})
    classic = doc.get("classic", {})
    defaults = LinkConfig()

    return LinkConfig(
        scan=ScanConfig(
            window_seconds=int(scan.get("window_seconds", defaults.scan.window_seconds)),
            allow_duplicates=_normalize_bool(
                scan.get("allow_duplicates", defaults.scan.allow_duplicates),
                context="scan.allow_duplicates",
            ),
            service_filters=tuple(_normalize_uuid(u) for u in scan.get("service_filters", [])),
        ),
        le=LEConfig(
            single_link=_normalize_bool(
                le.get("single_link", defaults.le.single_link),
                context="le.single_link",
            ),
            connect_timeout_s=float(le.get("connect_timeout_s", defaults.le.connect_timeout_s)),
        ),
        classic=ClassicConnectOptions(
            connector_type=classic.get("connector_type", defaults.classic.connector_type),
            channel=int(classic.get("channel", defaults.classic.channel)),
            delimiter=classic.get("delimiter", defaults.classic.delimiter),
            charset=_normalize_charset(
                classic.get("charset", defaults.classic.charset),
                context="classic.charset",
            ),
            timeout_s=float(classic.get("timeout_s", defaults.classic.timeout_s)),
        ),
    )


def load_config(path: Path | None = None) -> LoadedConfig:
    """Load packaged defaults, then overlay the user (or explicitly given) config file."""
    packaged = resources.files("linkctl.defaults").joinpath("linkctl.yaml")
    doc = _read_yaml(packaged)
    sources = [packaged.name]

    override_path = path or user_config_path()
    if path is not None and not path.exists():
        raise ConfigLoadError(f"Config file {path} does not exist")
    if override_path.exists():
        override = _read_yaml(override_path)
        doc = _merge(doc, override)
        sources.append(str(override_path))
        LOGGER.debug("Loaded config overrides from %s", override_path)

    return LoadedConfig(config=_build_config(doc, " + ".join(sources)), sources=tuple(sources))
