"""JSON-Schema definitions for payloads crossing the library boundary."""

from .validators import (
    CALIBRATION_SCHEMA_NAME,
    FLATTENED_PANEL_SCHEMA_NAME,
    MESH_SCHEMA_NAME,
    PANEL_SCHEMA_NAME,
    PAYLOAD_VERSION,
    PIPELINE_CONFIG_SCHEMA_NAME,
    check_payload_version,
    dump_payload,
    load_payload,
    load_schema,
    validate_file,
    validate_payload,
)

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
