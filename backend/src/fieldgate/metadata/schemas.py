"""JSON Schemas (Draft 2020-12) for collection and action definition units."""

from typing import Any

DEFS_ID = "https://fieldgate.dev/schemas/_defs.schema.json"
COLLECTION_ID = "https://fieldgate.dev/schemas/collection.schema.json"
ACTION_ID = "https://fieldgate.dev/schemas/action.schema.json"

DEFS_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": DEFS_ID,
    "$defs": {
        "name": {"type": "string", "pattern": "^[a-z][a-z0-9_]*$"},
        "roles": {
            "type": "array",
            "items": {"type": "string", "minLength": 1},
            "uniqueItems": True,
        },
        "permissions": {
            "type": "object",
            "properties": {
                "read": {"$ref": "#/$defs/roles"},
                "write": {"$ref": "#/$defs/roles"},
            },
            "additionalProperties": False,
        },
        "ui": {
            "type": "object",
            "properties": {
                "section": {"type": "string"},
                "span": {"type": "integer", "minimum": 1},
            },
        },
        "validation": {
            "type": "object",
            "properties": {
                "required": {"type": "boolean"},
                "unique": {"type": "boolean"},
                "min": {"type": "integer"},
                "max": {"type": "integer"},
                "maxLength": {"type": "integer", "minimum": 1},
            },
            "additionalProperties": False,
        },
        "field": {
            "type": "object",
            "required": ["name", "type"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "type": {"type": "string", "minLength": 1},
                "label": {"type": "string"},
                "values": {"type": "array", "items": {"type": "string"}},
                "relation": {
                    "type": "object",
                    "required": ["collection"],
                    "properties": {"collection": {"type": "string"}},
                    "additionalProperties": False,
                },
                "searchable": {"type": "boolean"},
                "validation": {"$ref": "#/$defs/validation"},
                "ui": {"$ref": "#/$defs/ui"},
                "permissions": {"$ref": "#/$defs/permissions"},
            },
            "additionalProperties": False,
        },
        "fields": {"type": "array", "items": {"$ref": "#/$defs/field"}},
    },
}

COLLECTION_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": COLLECTION_ID,
    "type": "object",
    "required": ["collection", "roles", "fields"],
    "properties": {
        "collection": {"$ref": "_defs.schema.json#/$defs/name"},
        "title": {"type": "string"},
        "singleton": {"type": "boolean"},
        "snapshots": {"type": "boolean"},
        "template": {"type": "string"},
        "labelField": {"type": "string"},
        "roles": {"$ref": "_defs.schema.json#/$defs/roles", "minItems": 1},
        "access": {
            "type": "object",
            "properties": {
                "read": {"$ref": "_defs.schema.json#/$defs/roles"},
                "write": {"$ref": "_defs.schema.json#/$defs/roles"},
                "delete": {"$ref": "_defs.schema.json#/$defs/roles"},
            },
            "additionalProperties": False,
        },
        "fields": {"$ref": "_defs.schema.json#/$defs/fields"},
    },
    "additionalProperties": False,
}

ACTION_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": ACTION_ID,
    "type": "object",
    "required": ["action", "roles"],
    "properties": {
        "action": {"$ref": "_defs.schema.json#/$defs/name"},
        "title": {"type": "string"},
        "handler": {"type": "string", "minLength": 1},
        "roles": {"$ref": "_defs.schema.json#/$defs/roles", "minItems": 1},
        "fields": {"$ref": "_defs.schema.json#/$defs/fields"},
    },
    "additionalProperties": False,
}

SCHEMAS: dict[str, dict[str, Any]] = {
    "collection": COLLECTION_SCHEMA,
    "action": ACTION_SCHEMA,
}
