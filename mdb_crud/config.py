"""
Configuration management for MDB_CRUD.

A data service is configured with a small settings mapping (the keys the
service recognizes are ``db``, ``searchFields``, ``propertyFilter``,
``populates`` and ``maxLimit``). Values missing from the mapping fall back
to environment variables where that makes sense.

Example:
    settings = ServiceSettings.from_dict({
        "db": {"uri": "mongodb://localhost:27017/blog", "opts": {"maxPoolSize": 20}},
        "propertyFilter": "_id title author",
    })
    settings.validate()
    target = settings.connection_target()
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from jsonschema import ValidationError, validate

from .constants import MAX_LIMIT_ENV_VAR, MONGO_URI_ENV_VAR
from .exceptions import ConfigurationError

SETTINGS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "db": {
            "oneOf": [
                {"type": "null"},
                {"type": "string", "minLength": 1},
                {
                    "type": "object",
                    "properties": {
                        "uri": {"type": "string", "minLength": 1},
                        "opts": {"type": ["object", "null"]},
                    },
                    "required": ["uri"],
                },
            ]
        },
        "searchFields": {
            "oneOf": [
                {"type": "null"},
                {"type": "string"},
                {"type": "array", "items": {"type": "string"}},
            ]
        },
        "propertyFilter": {
            "oneOf": [
                {"type": "null"},
                {"type": "string"},
                {"type": "array", "items": {"type": "string"}},
            ]
        },
        "populates": {"type": ["object", "null"]},
        "maxLimit": {"type": ["integer", "null"], "minimum": 1},
    },
}
"""JSON schema for the settings mapping accepted by a data service."""


@dataclass(frozen=True)
class ConnectionTarget:
    """Where to connect: a MongoDB URI plus keyword options for the client."""

    uri: str
    opts: Mapping[str, Any] = field(default_factory=dict)


def parse_connection_target(db: Any) -> ConnectionTarget:
    """
    Normalize the ``db`` setting into a ConnectionTarget.

    Accepts a bare URI string or a ``{"uri": ..., "opts": {...}}`` mapping.

    Raises:
        ConfigurationError: If no usable URI can be found
    """
    if isinstance(db, Mapping) and db.get("uri") is not None:
        return ConnectionTarget(uri=db["uri"], opts=dict(db.get("opts") or {}))
    if isinstance(db, str) and db:
        return ConnectionTarget(uri=db)
    raise ConfigurationError(
        "A MongoDB connection target is required "
        f"(set the `db` setting or the {MONGO_URI_ENV_VAR} environment variable)",
        config_key="db",
        config_value=db,
    )


class ServiceSettings:
    """
    Settings for one data service.

    Constructor arguments take precedence; ``db`` falls back to the
    MONGO_URI environment variable and ``max_limit`` to MDB_CRUD_MAX_LIMIT.
    """

    def __init__(
        self,
        db: str | Mapping[str, Any] | None = None,
        search_fields: str | list[str] | None = None,
        property_filter: str | list[str] | None = None,
        populates: Mapping[str, Any] | None = None,
        max_limit: int | None = None,
    ):
        """
        Initialize settings.

        Args:
            db: Connection target (URI or {"uri", "opts"}), defaults to MONGO_URI env var
            search_fields: Fields for text search (reserved, not applied yet)
            property_filter: Default projection allow-list
            populates: Related-entity population rules (reserved)
            max_limit: Optional cap on `list` result size, defaults to MDB_CRUD_MAX_LIMIT
        """
        self.db = db if db is not None else (os.getenv(MONGO_URI_ENV_VAR) or None)
        self.search_fields = search_fields
        self.property_filter = property_filter
        self.populates = populates
        raw_limit = os.getenv(MAX_LIMIT_ENV_VAR)
        if max_limit is None and raw_limit:
            try:
                max_limit = int(raw_limit)
            except ValueError as e:
                raise ConfigurationError(
                    f"{MAX_LIMIT_ENV_VAR} must be an integer",
                    config_key="maxLimit",
                    config_value=raw_limit,
                ) from e
        self.max_limit = max_limit

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ServiceSettings":
        """Build settings from the camelCase mapping used in collection schemas."""
        data = data or {}
        return cls(
            db=data.get("db"),
            search_fields=data.get("searchFields"),
            property_filter=data.get("propertyFilter"),
            populates=data.get("populates"),
            max_limit=data.get("maxLimit"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the settings in their camelCase mapping form."""
        return {
            "db": self.db,
            "searchFields": self.search_fields,
            "propertyFilter": self.property_filter,
            "populates": self.populates,
            "maxLimit": self.max_limit,
        }

    def validate(self) -> None:
        """
        Validate settings values against SETTINGS_SCHEMA.

        Raises:
            ConfigurationError: If a value has the wrong shape
        """
        try:
            validate(instance=self.to_dict(), schema=SETTINGS_SCHEMA)
        except ValidationError as e:
            path = ".".join(str(p) for p in e.absolute_path) or None
            raise ConfigurationError(
                f"Invalid service settings: {e.message}",
                config_key=path,
                context={"schema_path": list(e.absolute_schema_path)},
            ) from e

    def connection_target(self) -> ConnectionTarget:
        """Return the parsed connection target for the `db` setting."""
        return parse_connection_target(self.db)
