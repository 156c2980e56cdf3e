"""Utilities for validating coverpattern payloads and configuration files."""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any

import json

import yaml
from jsonschema import Draft202012Validator, ValidationError

from ..errors import SchemaValidationError, UnsupportedVersionError

MESH_SCHEMA_NAME = "mesh.yaml"
PANEL_SCHEMA_NAME = "panel.yaml"
FLATTENED_PANEL_SCHEMA_NAME = "flattened_panel.yaml"
CALIBRATION_SCHEMA_NAME = "calibration.yaml"
PIPELINE_CONFIG_SCHEMA_NAME = "pipeline_config.yaml"

PAYLOAD_VERSION = "1.0.0"

__all__ = [
    "CALIBRATION_SCHEMA_NAME",
    "FLATTENED_PANEL_SCHEMA_NAME",
    "MESH_SCHEMA_NAME",
    "PANEL_SCHEMA_NAME",
    "PAYLOAD_VERSION",
    "PIPELINE_CONFIG_SCHEMA_NAME",
    "check_payload_version",
    "dump_payload",
    "load_payload",
    "load_schema",
    "validate_file",
    "validate_payload",
]


def _schema_dir() -> Path:
    return Path(__file__).resolve().parent


@lru_cache(maxsize=8)
def load_schema(name: str) -> Mapping[str, Any]:
    """Load and cache a schema definition by name."""

    schema_path = _schema_dir() / name
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema '{name}' not found at {schema_path}")

    with schema_path.open("r", encoding="utf-8") as handle:
        schema = yaml.safe_load(handle.read())

    if not isinstance(schema, Mapping):
        raise TypeError(f"Schema '{name}' must decode to a mapping, received {type(schema)!r}")

    return schema


def validate_payload(instance: Any, schema_name: str) -> None:
    """Validate *instance* against the named schema."""

    validator = Draft202012Validator(load_schema(schema_name))
    errors = sorted(validator.iter_errors(instance), key=lambda exc: list(exc.path))
    if errors:
        raise _schema_error(errors, schema_name)


def check_payload_version(instance: Mapping[str, Any], *, expected: str = PAYLOAD_VERSION) -> str:
    """Return the payload version, rejecting a different major version.

    Payloads without a ``version`` key are treated as the current version so
    older producers that predate the field keep decoding.
    """

    version = str(instance.get("version", expected))
    if _major(version) != _major(expected):
        raise UnsupportedVersionError(
            f"Payload version {version!r} is not compatible with {expected!r}"
        )
    return version


def load_payload(path: Path) -> Any:
    """Load a JSON or YAML payload from disk."""

    suffix = path.suffix.lower()
    with path.open("r", encoding="utf-8") as handle:
        if suffix in {".yaml", ".yml"}:
            return yaml.safe_load(handle.read())
        if suffix == ".json":
            return json.load(handle)
    raise ValueError(f"Unsupported payload extension '{suffix}' for {path}")


def dump_payload(payload: Mapping[str, Any], path: Path) -> Path:
    """Write *payload* as JSON or YAML depending on the file suffix."""

    suffix = path.suffix.lower()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        if suffix in {".yaml", ".yml"}:
            yaml.safe_dump(dict(payload), handle, sort_keys=False)
        elif suffix == ".json":
            json.dump(payload, handle, indent=2)
        else:
            raise ValueError(f"Unsupported payload extension '{suffix}' for {path}")
    return path


def validate_file(path: Path, schema_name: str) -> Any:
    """Load a payload from *path*, validate it, and return the parsed instance."""

    instance = load_payload(path)
    validate_payload(instance, schema_name)
    return instance


def _major(version: str) -> str:
    return version.split(".", 1)[0]


def _schema_error(errors: Iterable[ValidationError], schema_name: str) -> SchemaValidationError:
    formatted = tuple(_format_error(error) for error in errors)
    message = f"Schema validation failed against {schema_name}:\n" + "\n".join(formatted)
    return SchemaValidationError(message, errors=formatted)


def _format_error(error: ValidationError) -> str:
    location = " / ".join(str(component) for component in error.absolute_path)
    prefix = f"[{location}] " if location else ""
    return f"{prefix}{error.message}"
