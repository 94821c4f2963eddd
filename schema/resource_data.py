"""
schema/resource_data.py

Responsibility: The per-operation view a resource implementation works
against: prior state, desired config, values written during the operation,
the handle, timeouts and the cancellation token.
Does NOT: call the API or persist anything; the host owns the state file.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from schema.attributes import Schema, is_zero, plain
from schema.diff import attribute_changed, planned_value


class ResourceData:
    """
    Attribute access for a single resource operation.

    Reads resolve in this order: values set during the operation, then the
    desired config (when the operation has one), then prior state. Writes
    only ever land in the operation's own layer.
    """

    def __init__(
        self,
        schema: Schema,
        *,
        state: Mapping[str, Any] | None = None,
        config: Mapping[str, Any] | None = None,
        handle: str = "",
        timeouts: Mapping[str, float] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> None:
        self._schema = schema
        self._prior: dict[str, Any] = {
            k: (schema[k].normalize(v) if k in schema else v) for k, v in (state or {}).items()
        }
        self._config: dict[str, Any] | None = dict(config) if config is not None else None
        self._written: dict[str, Any] = {}
        self._id = handle or str(self._prior.get("id") or "")
        self._timeouts = dict(timeouts or {})
        self.cancel = cancel

    # ---------------------------------------------------------------------------
    # Handle
    # ---------------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    def set_id(self, value: Any) -> None:
        self._id = "" if value is None else str(value)

    # ---------------------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------------------

    def get(self, key: str) -> Any:
        if key in self._written:
            return self._written[key]
        attr = self._schema.get(key)
        if attr is None:
            raise KeyError(f"{key} is not declared in the schema")
        if self._config is not None:
            value = planned_value(attr, key, self._prior, self._config)
            return attr.zero() if value is None else value
        value = self._prior.get(key)
        return attr.zero() if value is None else value

    def get_ok(self, key: str) -> tuple[Any, bool]:
        value = self.get(key)
        return value, not is_zero(value)

    def get_raw(self, key: str) -> Any:
        """The configured value before any state_func (e.g. key material before hashing)."""
        if self._config is None:
            return None
        return self._config.get(key)

    def get_prior(self, key: str) -> Any:
        attr = self._schema[key]
        value = self._prior.get(key)
        return attr.zero() if value is None else value

    def has_change(self, key: str) -> bool:
        if self._config is None:
            return False
        return attribute_changed(self._schema[key], key, self._prior, self._config, self)

    def has_changes(self, *keys: str) -> bool:
        return any(self.has_change(k) for k in keys)

    def get_change(self, key: str) -> tuple[Any, Any]:
        old = self.get_prior(key)
        if self._config is None:
            return old, old
        new = planned_value(self._schema[key], key, self._prior, self._config)
        return old, self._schema[key].zero() if new is None else new

    def is_new_resource(self) -> bool:
        return not self._prior

    # ---------------------------------------------------------------------------
    # Writes
    # ---------------------------------------------------------------------------

    def set(self, key: str, value: Any) -> None:
        attr = self._schema.get(key)
        if attr is None:
            raise KeyError(f"{key} is not declared in the schema")
        self._written[key] = attr.normalize(value)

    def timeout(self, operation: str, default: float | None = None) -> float | None:
        return self._timeouts.get(operation, default)

    def state(self) -> dict[str, Any] | None:
        """
        The observed state to hand back to the host.

        Returns:
            None when the handle is empty (the resource is gone), otherwise
            prior values overlaid with config and this operation's writes,
            with sets rendered as lists.
        """
        if not self._id:
            return None
        merged: dict[str, Any] = {}
        for name, attr in self._schema.items():
            value = self.get(name)
            merged[name] = plain(value)
        merged["id"] = self._id
        return merged
