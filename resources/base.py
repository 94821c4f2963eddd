"""
resources/base.py

Responsibility: Base class every managed resource kind derives from, plus the
small helpers resource implementations share (composite IDs, not-found
handling, action waiting, tolerant detach, retries under the operation deadline).
Does NOT: wrap errors or compute plans (see resources/engine.py).
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from config import CombinedClient
from doapi.types import Action
from exceptions import ApiError, ImportFormatError
from schema.attributes import Schema
from schema.diff import Plan
from schema.resource_data import ResourceData
from schema.validation import validate_config
from services.action_waiter import retry_while, wait_for_action, wait_for_resource
from services.error_classifier import is_api_error, is_not_found

logger = logging.getLogger(__name__)

T = TypeVar("T")

# One pending event per droplet: actions touching a busy droplet retry for this long
PENDING_EVENT_TIMEOUT = 5 * 60.0
PENDING_EVENT_MESSAGE = "Droplet already has a pending event"


class Resource:
    """
    A managed resource kind.

    Subclasses declare ``kind`` and ``schema`` and implement create, read and
    delete; update defaults to a re-read for kinds whose every mutable
    attribute forces replacement. Operations receive a ResourceData and the
    CombinedClient and communicate only through them.
    """

    kind: str = ""
    schema: Schema = {}

    # Per-operation timeouts in seconds; unset operations use PollSettings.timeout
    timeouts: Mapping[str, float] = {}

    # Composite import: field names in order and the separator between them
    import_fields: tuple[str, ...] = ()
    import_separator: str = ","
    import_hint: str = ""

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        raise NotImplementedError

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        raise NotImplementedError

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        raise NotImplementedError

    async def import_state(self, import_id: str, d: ResourceData, meta: CombinedClient) -> None:
        """
        Decomposes an import ID into schema fields and sets the handle.

        The default handles single IDs and, when ``import_fields`` is set,
        composite IDs split on ``import_separator``.
        """
        if not self.import_fields:
            d.set_id(import_id)
            return
        parts = split_import_id(import_id, self.import_fields, self.import_separator, hint=self.import_hint)
        for name, value in zip(self.import_fields, parts):
            d.set(name, value)
        d.set_id(import_id)

    def validate(self, config: Mapping[str, Any]) -> None:
        validate_config(self.schema, config)

    def customize_diff(self, plan: Plan, config: Mapping[str, Any]) -> None:
        """Hook for cross-attribute checks at plan time; raise ValidationError."""


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def split_import_id(import_id: str, fields: tuple[str, ...], separator: str = ",", *, hint: str = "") -> list[str]:
    """
    Splits a composite import ID.

    Raises:
        ImportFormatError: ``expected "<a>,<b>"`` when the part count is
            wrong or a part is empty.
    """
    parts = import_id.split(separator)
    if len(parts) != len(fields) or not all(parts):
        expected = separator.join(fields)
        prefix = f"{hint}: " if hint else ""
        raise ImportFormatError(f'{prefix}expected "{expected}", got {import_id!r}')
    return parts


def unique_id(prefix: str) -> str:
    """Engine-generated handle: a readable prefix plus a random suffix."""
    return f"{prefix}{uuid.uuid4().hex[:26]}"


def gone(d: ResourceData, kind: str) -> None:
    logger.warning("%s (%s) not found upstream, removing from state", kind, d.id)
    d.set_id("")


def clear_if_not_found(d: ResourceData, kind: str, exc: BaseException) -> bool:
    """Clears the handle and returns True if exc is an authoritative not-found."""
    if is_not_found(exc):
        gone(d, kind)
        return True
    return False


async def wait_action(meta: CombinedClient, action: Mapping[str, Any] | Action, d: ResourceData, operation: str) -> Action:
    action_id = action.id if isinstance(action, Action) else int(action["id"])
    return await wait_for_action(
        meta.api_client(),
        action_id,
        settings=meta.poll,
        timeout=d.timeout(operation),
        cancel=d.cancel,
    )


async def wait_status(
    meta: CombinedClient,
    d: ResourceData,
    operation: str,
    path: str,
    key: str,
    target: tuple[str, ...],
    pending: tuple[str, ...],
    *,
    status_of: Any = None,
) -> dict[str, Any]:
    """
    Polls GET ``path`` until ``payload[key]``'s status is in ``target``.

    Args:
        status_of: Optional callable extracting the status from the payload;
            defaults to ``payload["status"]``.
    """
    api = meta.api_client()

    async def poll(_: str) -> tuple[Any, str]:
        body, _resp = await api.get(path)
        payload = body[key]
        status = status_of(payload) if status_of else payload.get("status", "")
        return payload, status

    return await wait_for_resource(
        d.id,
        poll,
        target,
        pending,
        settings=meta.poll,
        timeout=d.timeout(operation),
        cancel=d.cancel,
        description=f"{key} {d.id}",
    )


def is_pending_event(exc: BaseException) -> bool:
    """True for the 422 the upstream returns while a droplet is busy with another event."""
    return is_api_error(exc, 422, PENDING_EVENT_MESSAGE)


async def post_action(
    meta: CombinedClient,
    path: str,
    body: Mapping[str, Any],
    d: ResourceData,
    operation: str,
) -> Action:
    """Posts an action, retrying while the droplet has another event pending, and waits for it."""
    api = meta.api_client()
    result, _ = await retry_operation(
        meta,
        d,
        operation,
        lambda: api.post(path, body),
        is_pending_event,
        timeout=PENDING_EVENT_TIMEOUT,
        description=f"{body.get('type')} action on {path}",
    )
    return await wait_action(meta, result["action"], d, operation)


async def post_action_tolerating(
    meta: CombinedClient,
    path: str,
    body: Mapping[str, Any],
    d: ResourceData,
    operation: str,
) -> Action | None:
    """
    Like post_action, but treats 422 (already in the target state) and 404
    (subordinate gone) as success. A pending event is never "nothing to do":
    once its retries run out the timeout surfaces as a failure.

    Returns:
        The completed Action, or None when the upstream reported nothing to do.
    """
    try:
        return await post_action(meta, path, body, d, operation)
    except ApiError as exc:
        if is_pending_event(exc) or not (is_api_error(exc, 422) or is_not_found(exc)):
            raise
        logger.debug("%s %s: nothing to do (%s)", path, body.get("type"), exc)
        return None


async def retry_operation(
    meta: CombinedClient,
    d: ResourceData,
    operation: str,
    call: Callable[[], Awaitable[T]],
    retryable: Callable[[Exception], bool],
    *,
    timeout: float | None = None,
    description: str = "",
) -> T:
    """
    Retries ``call`` under the operation's timeout and cancellation token.

    Args:
        timeout: Used when the operation has no timeout of its own.
    """
    return await retry_while(
        call,
        retryable,
        settings=meta.poll,
        timeout=d.timeout(operation, timeout),
        cancel=d.cancel,
        description=description or f"{operation} of {d.id}",
    )
