"""
resources/engine.py

Responsibility: Runs resource operations on behalf of the host runtime: plan,
create, read, update, delete and import. Validates configuration, gates
updates on a non-empty diff, applies not-found semantics and wraps failures
with the operation, resource kind and handle.
Does NOT: order operations across resources or persist state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from config import CombinedClient
from exceptions import OperationCanceledError, ProviderError, ResourceOperationError
from resources.base import Resource
from schema.diff import Plan, diff
from schema.resource_data import ResourceData
from services.error_classifier import is_not_found

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """
    What an operation hands back to the host.

    ``state`` is None (and ``handle`` empty) when the resource no longer
    exists upstream.
    """

    handle: str
    state: dict[str, Any] | None

    @property
    def gone(self) -> bool:
        return not self.handle


def _data(
    resource: Resource,
    *,
    state: Mapping[str, Any] | None = None,
    config: Mapping[str, Any] | None = None,
    handle: str = "",
    timeouts: Mapping[str, float] | None = None,
    cancel: asyncio.Event | None = None,
) -> ResourceData:
    merged = dict(resource.timeouts)
    merged.update(timeouts or {})
    return ResourceData(resource.schema, state=state, config=config, handle=handle, timeouts=merged, cancel=cancel)


async def _run(
    operation: str,
    resource: Resource,
    d: ResourceData,
    step: Callable[[ResourceData, CombinedClient], Awaitable[None]],
    meta: CombinedClient,
) -> None:
    try:
        await step(d, meta)
    except (asyncio.CancelledError, OperationCanceledError):
        raise
    except ResourceOperationError:
        raise
    except Exception as exc:
        raise ResourceOperationError(operation, resource.kind, d.id, exc, state=d.state()) from exc


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def plan(resource: Resource, prior: Mapping[str, Any] | None, config: Mapping[str, Any]) -> Plan:
    """
    Validates config and diffs it against the stored state.

    Raises:
        ValidationError: If config violates the schema or a cross-field rule.
    """
    resource.validate(config)
    result = diff(resource.schema, prior, config)
    resource.customize_diff(result, config)
    return result


async def create(
    resource: Resource,
    config: Mapping[str, Any],
    meta: CombinedClient,
    *,
    timeouts: Mapping[str, float] | None = None,
    cancel: asyncio.Event | None = None,
) -> OperationResult:
    """
    Creates a resource.

    Raises:
        ValidationError: Invalid config; nothing was sent upstream.
        ResourceOperationError: The create failed. When the handle was
            already assigned, ``handle`` and ``state`` on the error are set so
            the host can persist the partially created resource.
    """
    plan(resource, None, config)
    d = _data(resource, config=config, timeouts=timeouts, cancel=cancel)
    await _run("creating", resource, d, resource.create, meta)
    logger.info("Created %s (%s)", resource.kind, d.id)
    return OperationResult(d.id, d.state())


async def read(
    resource: Resource,
    handle: str,
    prior: Mapping[str, Any] | None,
    meta: CombinedClient,
) -> OperationResult:
    """
    Refreshes a resource. A not-found answer yields an empty result.
    """
    d = _data(resource, state=prior, handle=handle)

    async def step(data: ResourceData, client: CombinedClient) -> None:
        try:
            await resource.read(data, client)
        except Exception as exc:
            if not is_not_found(exc):
                raise
            data.set_id("")

    await _run("reading", resource, d, step, meta)
    return OperationResult(d.id, d.state())


async def update(
    resource: Resource,
    handle: str,
    prior: Mapping[str, Any],
    config: Mapping[str, Any],
    meta: CombinedClient,
    *,
    timeouts: Mapping[str, float] | None = None,
    cancel: asyncio.Event | None = None,
) -> OperationResult:
    """
    Applies the changed attributes of ``config`` to an existing resource.

    An empty diff returns the prior state without any upstream call.

    Raises:
        ProviderError: If the diff requires replacement; the host must
            delete and re-create instead.
        ResourceOperationError: The update failed.
    """
    changes = plan(resource, prior, config)
    if changes.empty:
        state = dict(prior)
        state["id"] = handle
        return OperationResult(handle, state)
    if changes.requires_replace:
        raise ProviderError(
            f"{resource.kind} ({handle}) must be replaced: {', '.join(changes.replace_reasons())} changed"
        )

    d = _data(resource, state=prior, config=config, handle=handle, timeouts=timeouts, cancel=cancel)

    async def step(data: ResourceData, client: CombinedClient) -> None:
        try:
            await resource.update(data, client)
        except Exception as exc:
            if not is_not_found(exc):
                raise
            logger.warning("%s (%s) disappeared during update", resource.kind, handle)
            data.set_id("")

    await _run("updating", resource, d, step, meta)
    return OperationResult(d.id, d.state())


async def delete(
    resource: Resource,
    handle: str,
    prior: Mapping[str, Any],
    meta: CombinedClient,
    *,
    timeouts: Mapping[str, float] | None = None,
    cancel: asyncio.Event | None = None,
) -> OperationResult:
    """
    Deletes a resource. Not-found counts as success.
    """
    d = _data(resource, state=prior, handle=handle, timeouts=timeouts, cancel=cancel)

    async def step(data: ResourceData, client: CombinedClient) -> None:
        try:
            await resource.delete(data, client)
        except Exception as exc:
            if not is_not_found(exc):
                raise
            logger.debug("%s (%s) already gone", resource.kind, handle)

    await _run("deleting", resource, d, step, meta)
    logger.info("Deleted %s (%s)", resource.kind, handle)
    return OperationResult("", None)


async def import_resource(resource: Resource, import_id: str, meta: CombinedClient) -> OperationResult:
    """
    Imports an existing remote object and reads it.

    Raises:
        ImportFormatError: The ID does not match the kind's composite format.
        ResourceOperationError: The object does not exist or the read failed.
    """
    d = _data(resource)
    await resource.import_state(import_id, d, meta)
    await _run("importing", resource, d, resource.read, meta)
    if not d.id:
        raise ResourceOperationError(
            "importing", resource.kind, import_id, ProviderError("cannot import non-existent remote object")
        )
    logger.info("Imported %s (%s)", resource.kind, d.id)
    return OperationResult(d.id, d.state())
