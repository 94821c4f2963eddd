"""
datasources/base.py

Responsibility: Base class for single-object lookups and the helpers they
share for picking exactly one match out of a listing.
Does NOT: filter or sort lists (see services/datalist.py).
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from exceptions import ProviderError, ValidationError
from schema.attributes import Schema, plain
from schema.validation import validate_config

logger = logging.getLogger(__name__)


class DataSource:
    """
    A read-only lookup.

    Subclasses declare ``kind`` and ``schema`` and implement ``lookup``,
    which returns the attribute mapping for the matched object. The mapping
    is merged over the query so lookup arguments are echoed back.
    """

    kind: str = ""
    schema: Schema = {}

    # Groups of query fields of which exactly one must be set
    exactly_one_of: tuple[str, ...] = ()

    def validate(self, query: Mapping[str, Any]) -> None:
        validate_config(self.schema, query)
        if self.exactly_one_of:
            given = [k for k in self.exactly_one_of if query.get(k) not in (None, "", 0)]
            if len(given) != 1:
                raise ValidationError([f"{self.kind}: exactly one of {', '.join(self.exactly_one_of)} must be set"])

    async def read(self, query: Mapping[str, Any], meta: Any) -> dict[str, Any]:
        self.validate(query)
        found = await self.lookup(query, meta)
        state: dict[str, Any] = {k: query.get(k) for k in self.schema if k in query}
        state.update(plain(found))
        state.setdefault("id", uuid.uuid4().hex)
        state["id"] = str(state["id"])
        return state

    async def lookup(self, query: Mapping[str, Any], meta: Any) -> dict[str, Any]:
        raise NotImplementedError


def find_one(
    records: Iterable[Mapping[str, Any]],
    match: Callable[[Mapping[str, Any]], bool],
    description: str,
) -> Mapping[str, Any]:
    """
    Returns the single record satisfying ``match``.

    Raises:
        ProviderError: If no record, or more than one, matches.
    """
    matches = [r for r in records if match(r)]
    if not matches:
        raise ProviderError(f"no {description} found")
    if len(matches) > 1:
        raise ProviderError(f"too many {description}s found ({len(matches)}); try a more specific search")
    return matches[0]
