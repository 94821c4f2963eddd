"""
schema/diff.py

Responsibility: Computes the attribute-level difference between a resource's
stored state and its desired configuration, applying each attribute's
state_func and comparator so that semantically equal values never show up
as changes.
Does NOT: decide how a change is applied upstream.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from schema.attributes import Attribute, Schema


@dataclass
class AttributeChange:
    old: Any
    new: Any
    force_new: bool = False


@dataclass
class Plan:
    """
    Outcome of diffing prior state against config.

    ``changes`` maps attribute names to their old/new values; an empty plan
    means the resource is converged.
    """

    changes: dict[str, AttributeChange] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.changes

    @property
    def requires_replace(self) -> bool:
        return any(c.force_new for c in self.changes.values())

    def replace_reasons(self) -> list[str]:
        return sorted(name for name, c in self.changes.items() if c.force_new)


class _Context:
    """Read-only view over the desired values of a resource, for comparators."""

    def __init__(self, schema: Schema, prior: Mapping[str, Any], config: Mapping[str, Any]) -> None:
        self._schema = schema
        self._prior = prior
        self._config = config

    def get(self, name: str) -> Any:
        attr = self._schema.get(name)
        if attr is None:
            return None
        return planned_value(attr, name, self._prior, self._config)


def planned_value(attr: Attribute, name: str, prior: Mapping[str, Any], config: Mapping[str, Any]) -> Any:
    """
    The value an attribute will have after apply.

    Config wins; computed attributes absent from config keep their prior
    value; everything else falls back to its default or zero value.
    """
    raw = config.get(name)
    if raw is not None:
        return attr.normalize(raw, from_config=True)
    if attr.computed:
        return prior.get(name)
    return attr.empty_value()


def attribute_changed(attr: Attribute, name: str, prior: Mapping[str, Any], config: Mapping[str, Any], ctx: Any) -> bool:
    if attr.computed_only:
        return False
    if config.get(name) is None and attr.computed:
        return False
    old = prior.get(name)
    new = planned_value(attr, name, prior, config)
    return not attr.equal(attr.normalize(old), new, ctx)


def diff(schema: Schema, prior: Mapping[str, Any] | None, config: Mapping[str, Any]) -> Plan:
    """
    Diffs stored state against desired config.

    Args:
        schema: Resource schema.
        prior: Stored state; None or {} for a resource that does not exist yet.
        config: Desired configuration.

    Returns:
        A Plan listing every changed attribute.
    """
    prior = prior or {}
    ctx = _Context(schema, prior, config)
    plan = Plan()
    for name, attr in schema.items():
        if not attribute_changed(attr, name, prior, config, ctx):
            continue
        plan.changes[name] = AttributeChange(
            old=prior.get(name),
            new=planned_value(attr, name, prior, config),
            force_new=attr.force_new,
        )
    return plan
