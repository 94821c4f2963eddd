"""
schema/validation.py

Responsibility: Per-attribute validator factories and whole-config validation
against a Schema (unknown keys, required keys, types, nested blocks).
Does NOT: normalise values or compute diffs.
"""

from __future__ import annotations

import ipaddress
import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

from exceptions import ValidationError
from schema.attributes import Attribute, AttrType, HashedSet, Schema, Validator

# ---------------------------------------------------------------------------
# Validator factories
# ---------------------------------------------------------------------------


def string_in(choices: Iterable[str], *, ignore_case: bool = False) -> Validator:
    allowed = list(choices)
    folded = {c.lower() for c in allowed}

    def check(value: Any, key: str) -> list[str]:
        ok = value.lower() in folded if ignore_case else value in allowed
        if ok:
            return []
        return [f"expected {key} to be one of {allowed}, got {value}"]

    return check


def int_between(low: int, high: int) -> Validator:
    def check(value: Any, key: str) -> list[str]:
        if low <= value <= high:
            return []
        return [f"expected {key} to be in the range ({low} - {high}), got {value}"]

    return check


def int_at_least(low: int) -> Validator:
    def check(value: Any, key: str) -> list[str]:
        if value >= low:
            return []
        return [f"expected {key} to be at least ({low}), got {value}"]

    return check


def no_zero_values(value: Any, key: str) -> list[str]:
    if value in ("", 0, None):
        return [f"{key} must not be empty"]
    return []


def is_ip_address(value: Any, key: str) -> list[str]:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return [f"expected {key} to contain a valid IP, got: {value}"]
    return []


def is_json(value: Any, key: str) -> list[str]:
    try:
        json.loads(value)
    except ValueError as exc:
        return [f"{key} contains an invalid JSON: {exc}"]
    return []


def matches(pattern: str, message: str) -> Validator:
    compiled = re.compile(pattern)

    def check(value: Any, key: str) -> list[str]:
        if compiled.search(value):
            return []
        return [f"invalid value for {key} ({message})"]

    return check


def all_of(*validators: Validator) -> Validator:
    def check(value: Any, key: str) -> list[str]:
        errors: list[str] = []
        for validator in validators:
            errors.extend(validator(value, key))
        return errors

    return check


# ---------------------------------------------------------------------------
# Config validation
# ---------------------------------------------------------------------------

_SCALAR_TYPES: dict[AttrType, tuple[type, ...]] = {
    AttrType.STRING: (str,),
    AttrType.INT: (int,),
    AttrType.FLOAT: (int, float),
    AttrType.BOOL: (bool,),
}


def validate_config(schema: Schema, config: Mapping[str, Any]) -> None:
    """
    Validates a user configuration against a schema.

    Args:
        schema: Attribute declarations.
        config: User-supplied values.

    Raises:
        ValidationError: With every problem found.
    """
    errors = _validate_block(schema, config, "")
    if errors:
        raise ValidationError(errors)


def _validate_block(schema: Schema, config: Mapping[str, Any], prefix: str) -> list[str]:
    errors: list[str] = []
    for key in config:
        if key not in schema:
            errors.append(f"{prefix}{key}: unsupported argument")
    for name, attr in schema.items():
        key = f"{prefix}{name}"
        value = config.get(name)
        if value is None:
            if attr.required:
                errors.append(f"{key}: required field is not set")
            continue
        if attr.computed_only:
            errors.append(f"{key}: value is computed and cannot be set")
            continue
        errors.extend(_validate_value(attr, value, key))
    return errors


def _validate_value(attr: Attribute, value: Any, key: str) -> list[str]:
    if attr.type in _SCALAR_TYPES:
        expected = _SCALAR_TYPES[attr.type]
        if isinstance(value, bool) and attr.type is not AttrType.BOOL:
            return [f"{key}: expected {attr.type.value}, got bool"]
        if not isinstance(value, expected):
            return [f"{key}: expected {attr.type.value}, got {type(value).__name__}"]
        return attr.validate(value, key) if attr.validate else []

    if attr.type is AttrType.MAP:
        if not isinstance(value, Mapping):
            return [f"{key}: expected map, got {type(value).__name__}"]
        return []

    if not isinstance(value, (list, tuple, set, frozenset, HashedSet)):
        return [f"{key}: expected {attr.type.value}, got {type(value).__name__}"]
    items = list(value)
    errors: list[str] = []
    if attr.max_items and len(items) > attr.max_items:
        errors.append(f"{key}: attribute supports {attr.max_items} item maximum, config has {len(items)}")
    for index, item in enumerate(items):
        item_key = f"{key}.{index}"
        if isinstance(attr.elem, dict):
            if not isinstance(item, Mapping):
                errors.append(f"{item_key}: expected block, got {type(item).__name__}")
                continue
            errors.extend(_validate_block(attr.elem, item, f"{item_key}."))
        elif isinstance(attr.elem, AttrType):
            errors.extend(_validate_value(Attribute(attr.elem, validate=attr.validate), item, item_key))
    return errors
