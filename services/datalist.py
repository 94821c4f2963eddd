"""
services/datalist.py

Responsibility: Generic list data source. Given a record schema, a record
fetcher and a flatten function, it builds a data source with repeatable
``filter`` and ``sort`` blocks, fetches every record, flattens, filters and
sorts them, and exposes the result under a configurable attribute name.
Does NOT: know about any specific resource kind or endpoint.
"""

from __future__ import annotations

import functools
import inspect
import logging
import math
import re
import uuid
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from exceptions import DataListError
from schema.attributes import Attribute, AttrType, HashedSet, Schema, plain
from schema.validation import string_in, validate_config

logger = logging.getLogger(__name__)

MATCH_EXACT = "exact"
MATCH_SUBSTRING = "substring"
MATCH_RE = "re"
# "regex" is accepted as a spelling of "re"
_MATCH_CHOICES = (MATCH_EXACT, MATCH_SUBSTRING, MATCH_RE, "regex")

SORT_ASC = "asc"
SORT_DESC = "desc"

_FLOAT_TOLERANCE = 1e-6
_SCALAR_TYPES = (AttrType.STRING, AttrType.INT, AttrType.FLOAT, AttrType.BOOL)
_TRUE_STRINGS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_STRINGS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

GetRecords = Callable[[Any, dict[str, Any]], Awaitable[list[Any]]]
FlattenRecord = Callable[[Any, Any, dict[str, Any]], "dict[str, Any] | Awaitable[dict[str, Any]]"]


@dataclass
class ResourceConfig:
    """
    Everything the engine needs to build one list data source.

    ``filter_keys`` and ``sort_keys`` default to every scalar (and, for
    filters, scalar-collection) field of the record schema.
    """

    record_schema: Schema
    result_attribute_name: str
    get_records: GetRecords
    flatten_record: FlattenRecord
    filter_keys: list[str] | None = None
    sort_keys: list[str] | None = None
    extra_query_schema: Schema = field(default_factory=dict)


@dataclass
class FilterSpec:
    key: str
    values: list[Any]
    match_by: str = MATCH_EXACT
    all: bool = False
    patterns: list[re.Pattern[str]] = field(default_factory=list)


@dataclass
class SortSpec:
    key: str
    direction: str = SORT_ASC


# ---------------------------------------------------------------------------
# Value parsing and matching
# ---------------------------------------------------------------------------


def _element_type(attr: Attribute) -> AttrType | None:
    if attr.type in _SCALAR_TYPES:
        return attr.type
    if attr.type in (AttrType.LIST, AttrType.SET) and isinstance(attr.elem, AttrType):
        return attr.elem
    return None


def _parse_value(kind: AttrType, raw: str, key: str) -> Any:
    try:
        if kind is AttrType.INT:
            return int(raw)
        if kind is AttrType.FLOAT:
            return float(raw)
    except ValueError as exc:
        raise DataListError(f"Unable to parse value {raw!r} for field {key!r} as {kind.value}") from exc
    if kind is AttrType.BOOL:
        if raw in _TRUE_STRINGS:
            return True
        if raw in _FALSE_STRINGS:
            return False
        raise DataListError(f"Unable to parse value {raw!r} for field {key!r} as bool")
    return raw


def _scalar_matches(kind: AttrType, record_value: Any, spec: FilterSpec, index: int) -> bool:
    wanted = spec.values[index]
    if record_value is None:
        return False
    if kind is AttrType.STRING:
        text = str(record_value)
        if spec.match_by == MATCH_SUBSTRING:
            return wanted in text
        if spec.match_by == MATCH_RE:
            return spec.patterns[index].search(text) is not None
        return text.lower() == wanted.lower()
    if kind is AttrType.FLOAT:
        return math.isclose(float(record_value), wanted, rel_tol=0.0, abs_tol=_FLOAT_TOLERANCE)
    return record_value == wanted


def _record_matches(kind: AttrType, value: Any, spec: FilterSpec) -> bool:
    if isinstance(value, (list, tuple, set, HashedSet)):
        elements = list(value)
    else:
        elements = [value]

    def found(index: int) -> bool:
        return any(_scalar_matches(kind, element, spec, index) for element in elements)

    indexes = range(len(spec.values))
    if spec.all:
        return all(found(i) for i in indexes)
    return any(found(i) for i in indexes)


def apply_filters(record_schema: Schema, filters: Sequence[FilterSpec], records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Keeps records that pass every filter group, preserving order.

    Args:
        record_schema: Schema of the flattened records.
        filters: Parsed filter groups, applied in declaration order.
        records: Flattened records.
    """
    for spec in filters:
        kind = _element_type(record_schema[spec.key])
        records = [r for r in records if spec.key in r and _record_matches(kind, r[spec.key], spec)]
        logger.debug("Filter %s (%s) kept %d records", spec.key, spec.match_by, len(records))
    return records


def _compare(kind: AttrType, a: Any, b: Any) -> int:
    if kind is AttrType.STRING:
        a, b = str(a), str(b)
    return (a > b) - (a < b)


def apply_sorts(record_schema: Schema, sorts: Sequence[SortSpec], records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Stable multi-key sort. Missing values sort last whatever the direction;
    any direction other than "desc" (in any case) sorts ascending.
    """
    if not sorts:
        return list(records)

    def cmp(left: dict[str, Any], right: dict[str, Any]) -> int:
        for spec in sorts:
            kind = _element_type(record_schema[spec.key]) or AttrType.STRING
            a, b = left.get(spec.key), right.get(spec.key)
            if a is None and b is None:
                continue
            if a is None:
                return 1
            if b is None:
                return -1
            result = _compare(kind, a, b)
            if spec.direction.lower() == SORT_DESC:
                result = -result
            if result:
                return result
        return 0

    return sorted(records, key=functools.cmp_to_key(cmp))


# ---------------------------------------------------------------------------
# Data source
# ---------------------------------------------------------------------------


class DataListSource:
    """
    A list data source built from a ResourceConfig.

    Collaborators:
        - get_records: fetches raw records (usually via services.pagination)
        - flatten_record: projects one raw record into the record schema
    """

    def __init__(self, config: ResourceConfig) -> None:
        """
        Validates the configuration and derives the query schema.

        Raises:
            DataListError: If the result attribute name is empty, or filter
                or sort keys are not part of the record schema.
        """
        if not config.result_attribute_name:
            raise DataListError("result_attribute_name must be set")
        self._config = config
        record_schema = config.record_schema

        if config.filter_keys is None:
            self.filter_keys = sorted(k for k, a in record_schema.items() if _element_type(a) is not None)
        else:
            self.filter_keys = list(config.filter_keys)
        if config.sort_keys is None:
            self.sort_keys = sorted(k for k, a in record_schema.items() if a.type in _SCALAR_TYPES)
        else:
            self.sort_keys = list(config.sort_keys)

        for key in self.filter_keys:
            if key not in record_schema:
                raise DataListError(f"field '{key}' does not exist in record schema")
            if _element_type(record_schema[key]) is None:
                raise DataListError(f"field '{key}' cannot be used as a filter key")
        for key in self.sort_keys:
            if key not in record_schema:
                raise DataListError(f"field '{key}' does not exist in record schema")
            if record_schema[key].type not in _SCALAR_TYPES:
                raise DataListError(f"field '{key}' cannot be used as a sort key")

        self.schema: Schema = {
            "filter": Attribute(
                AttrType.SET,
                optional=True,
                elem={
                    "key": Attribute(AttrType.STRING, required=True, validate=string_in(self.filter_keys)),
                    "values": Attribute(AttrType.LIST, required=True, elem=AttrType.STRING),
                    "match_by": Attribute(AttrType.STRING, optional=True, default=MATCH_EXACT, validate=string_in(_MATCH_CHOICES)),
                    "all": Attribute(AttrType.BOOL, optional=True, default=False),
                },
            ),
            "sort": Attribute(
                AttrType.LIST,
                optional=True,
                elem={
                    "key": Attribute(AttrType.STRING, required=True, validate=string_in(self.sort_keys)),
                    "direction": Attribute(AttrType.STRING, optional=True),
                },
            ),
            config.result_attribute_name: Attribute(AttrType.LIST, computed=True, elem=record_schema),
            **config.extra_query_schema,
        }

    @property
    def result_attribute_name(self) -> str:
        return self._config.result_attribute_name

    def validate(self, query: Mapping[str, Any]) -> None:
        """
        Validates a query: unknown filter or sort keys, bad match_by values and
        unparseable filter values are all rejected here.

        Raises:
            ValidationError: Schema violations.
            DataListError: A filter value that cannot be parsed for its field type.
        """
        validate_config(self.schema, query)
        self.expand_filters(query.get("filter") or [])

    def expand_filters(self, raw_filters: Sequence[Mapping[str, Any]]) -> list[FilterSpec]:
        specs: list[FilterSpec] = []
        for raw in raw_filters:
            key = raw["key"]
            attr = self._config.record_schema.get(key)
            if attr is None:
                raise DataListError(f"field '{key}' does not exist in record schema")
            kind = _element_type(attr)
            match_by = raw.get("match_by") or MATCH_EXACT
            if match_by == "regex":
                match_by = MATCH_RE
            values = [_parse_value(kind, str(v), key) for v in raw.get("values") or []]
            patterns: list[re.Pattern[str]] = []
            if kind is AttrType.STRING and match_by == MATCH_RE:
                try:
                    patterns = [re.compile(v) for v in values]
                except re.error as exc:
                    raise DataListError(f"Invalid regular expression for field {key!r}: {exc}") from exc
            specs.append(FilterSpec(key, values, match_by, bool(raw.get("all", False)), patterns))
        return specs

    @staticmethod
    def expand_sorts(raw_sorts: Sequence[Mapping[str, Any]]) -> list[SortSpec]:
        return [SortSpec(raw["key"], raw.get("direction") or SORT_ASC) for raw in raw_sorts]

    async def read(self, query: Mapping[str, Any], meta: Any) -> dict[str, Any]:
        """
        Fetches, flattens, filters and sorts the records.

        Args:
            query: Data-source configuration (filter, sort, extra query fields).
            meta: CombinedClient passed through to get_records/flatten_record.

        Returns:
            A state mapping with a fresh ``id``, the result attribute, the
            echoed filter/sort blocks and the extra query fields.
        """
        self.validate(query)
        filters = self.expand_filters(query.get("filter") or [])
        sorts = self.expand_sorts(query.get("sort") or [])
        extra = {k: query.get(k) for k in self._config.extra_query_schema}

        records = await self._config.get_records(meta, extra)
        flattened: list[dict[str, Any]] = []
        for record in records:
            flat = self._config.flatten_record(record, meta, extra)
            if inspect.isawaitable(flat):
                flat = await flat
            flattened.append(flat)

        result = apply_filters(self._config.record_schema, filters, flattened)
        result = apply_sorts(self._config.record_schema, sorts, result)
        logger.debug("%s: %d of %d records after filter/sort", self.result_attribute_name, len(result), len(records))

        state: dict[str, Any] = {
            "id": uuid.uuid4().hex,
            self.result_attribute_name: plain(result),
            "filter": list(query.get("filter") or []),
            "sort": list(query.get("sort") or []),
        }
        state.update(extra)
        return state
