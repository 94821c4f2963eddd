"""
schema/attributes.py

Responsibility: The typed attribute tree every resource and data source is
declared with: attribute types, per-attribute flags (required, computed,
force_new, ...), value normalisation, and the deterministic HashedSet used for
set-typed attributes.
Does NOT: compute diffs (see schema/diff.py) or talk to the API.
"""

from __future__ import annotations

import json
import zlib
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

Schema = dict[str, "Attribute"]
Validator = Callable[[Any, str], list[str]]


class AttrType(Enum):
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    LIST = "list"
    SET = "set"
    MAP = "map"


_SCALAR_ZERO: dict[AttrType, Any] = {
    AttrType.STRING: "",
    AttrType.INT: 0,
    AttrType.FLOAT: 0.0,
    AttrType.BOOL: False,
}


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def hash_string(value: str) -> int:
    """Non-negative CRC32 of a string; the hash every set element uses."""
    return zlib.crc32(value.encode("utf-8")) & 0x7FFFFFFF


def hash_value(value: Any) -> int:
    """
    Default set-element hash: strings and numbers hash by their text form,
    mappings and lists by their canonical JSON encoding.
    """
    if isinstance(value, str):
        return hash_string(value)
    if isinstance(value, (bool, int, float)):
        return hash_string(str(value))
    return hash_string(json.dumps(value, sort_keys=True, default=_json_default))


def _json_default(value: Any) -> Any:
    if isinstance(value, HashedSet):
        return sorted(value.codes())
    raise TypeError(f"Cannot hash value of type {type(value).__name__}")


class HashedSet:
    """
    A set whose elements are identified by a hash function.

    Iteration order is the ascending order of element hashes, so re-reading
    the same elements in a different upstream order yields an identical
    value. Two sets are equal when they hold the same hash codes.
    """

    def __init__(self, items: Iterable[Any] = (), hash_fn: Callable[[Any], int] | None = None) -> None:
        self._hash = hash_fn or hash_value
        self._items: dict[int, Any] = {}
        for item in items:
            self.add(item)

    def add(self, item: Any) -> None:
        self._items[self._hash(item)] = item

    def codes(self) -> set[int]:
        return set(self._items)

    def to_list(self) -> list[Any]:
        return [self._items[code] for code in sorted(self._items)]

    def difference(self, other: HashedSet) -> HashedSet:
        return HashedSet(
            (self._items[c] for c in sorted(self._items) if c not in other._items),
            self._hash,
        )

    def __iter__(self) -> Iterator[Any]:
        return iter(self.to_list())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item: Any) -> bool:
        return self._hash(item) in self._items

    def __eq__(self, other: object) -> bool:
        if isinstance(other, HashedSet):
            return self.codes() == other.codes()
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"HashedSet({self.to_list()!r})"


# ---------------------------------------------------------------------------
# Comparators
# ---------------------------------------------------------------------------


@runtime_checkable
class Comparator(Protocol):
    """
    Decides whether a stored value and a desired value are semantically equal.

    ``ctx`` exposes the other attributes of the same resource through
    ``ctx.get(name)`` (e.g. the DNS record comparator needs the domain).
    """

    def equal(self, old: Any, new: Any, ctx: Any) -> bool:
        ...


# ---------------------------------------------------------------------------
# Attribute
# ---------------------------------------------------------------------------


@dataclass
class Attribute:
    """
    Declaration of one attribute in a resource or data-source schema.

    ``elem`` is either the element AttrType of a LIST/SET/MAP of scalars or a
    nested Schema for a repeatable block.
    """

    type: AttrType
    required: bool = False
    optional: bool = False
    computed: bool = False
    force_new: bool = False
    sensitive: bool = False
    default: Any = None
    elem: AttrType | Schema | None = None
    max_items: int = 0
    validate: Validator | None = None
    state_func: Callable[[Any], Any] | None = None
    comparator: Comparator | None = None
    set_hash: Callable[[Any], int] | None = None
    description: str = ""

    @property
    def computed_only(self) -> bool:
        return self.computed and not (self.optional or self.required)

    @property
    def is_block(self) -> bool:
        return isinstance(self.elem, dict)

    def zero(self) -> Any:
        if self.type in _SCALAR_ZERO:
            return _SCALAR_ZERO[self.type]
        if self.type is AttrType.SET:
            return HashedSet(hash_fn=self.set_hash)
        if self.type is AttrType.MAP:
            return {}
        return []

    def empty_value(self) -> Any:
        """Value used when the attribute is absent from config."""
        if self.default is not None:
            return self.normalize(self.default, from_config=True)
        return self.zero()

    def normalize(self, value: Any, *, from_config: bool = False) -> Any:
        """
        Brings a raw value into canonical in-memory form.

        Fills nested block defaults, wraps SET values into a HashedSet and,
        for values coming from config, applies the attribute's state_func.

        Args:
            value: Raw value.
            from_config: True when the value originates from user config.
        """
        if value is None:
            return None
        if self.type in (AttrType.LIST, AttrType.SET):
            items = value.to_list() if isinstance(value, HashedSet) else list(value)
            if isinstance(self.elem, dict):
                items = [normalize_block(self.elem, item, from_config=from_config) for item in items]
            elif from_config and self.state_func is not None:
                items = [self.state_func(item) for item in items]
            if self.type is AttrType.SET:
                return HashedSet(items, self.set_hash)
            return items
        if self.type is AttrType.MAP:
            return dict(value)
        if from_config and self.state_func is not None:
            return self.state_func(value)
        return value

    def equal(self, old: Any, new: Any, ctx: Any = None) -> bool:
        if is_zero(old) and is_zero(new):
            return True
        if self.comparator is not None:
            return self.comparator.equal(old, new, ctx)
        if self.type is AttrType.LIST and isinstance(self.elem, dict):
            old_items, new_items = list(old or ()), list(new or ())
            return len(old_items) == len(new_items) and all(
                block_equal(self.elem, o, n, ctx) for o, n in zip(old_items, new_items)
            )
        return old == new


def block_equal(schema: Schema, old: Mapping[str, Any], new: Mapping[str, Any], ctx: Any = None) -> bool:
    """
    Compares two elements of a nested block the way top-level attributes
    are compared: computed-only fields are ignored, as are computed fields
    the desired element leaves unset.
    """
    for name, attr in schema.items():
        if attr.computed_only:
            continue
        new_value = new.get(name)
        if attr.computed and is_zero(new_value):
            continue
        if not attr.equal(attr.normalize(old.get(name)), new_value, ctx):
            return False
    return True


def normalize_block(schema: Schema, value: Mapping[str, Any], *, from_config: bool = False) -> dict[str, Any]:
    """Normalises one element of a nested block, filling declared defaults."""
    out: dict[str, Any] = {}
    for name, attr in schema.items():
        raw = value.get(name)
        if raw is None:
            out[name] = attr.empty_value()
        else:
            out[name] = attr.normalize(raw, from_config=from_config)
    return out


def is_zero(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return value is False
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, (str, list, dict, tuple, HashedSet)):
        return len(value) == 0
    return False


def plain(value: Any) -> Any:
    """Converts HashedSets (recursively) into lists for output to the host."""
    if isinstance(value, HashedSet):
        return [plain(v) for v in value.to_list()]
    if isinstance(value, list):
        return [plain(v) for v in value]
    if isinstance(value, dict):
        return {k: plain(v) for k, v in value.items()}
    return value
