"""
services/action_waiter.py

Responsibility: Polls long-running remote operations until they reach a
terminal state: DigitalOcean actions (new -> in-progress -> completed |
errored) and arbitrary resource status fields (certificate "verified",
database "online", load balancer "active"). Also retries calls the upstream
rejects while a precondition settles, under the same deadline and
cancellation rules.
Does NOT: issue the operation being waited on, or decide what to do with the
resulting object.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

from doapi.api_client import DigitalOceanClient
from doapi.types import ACTION_COMPLETED, ACTION_ERRORED, ACTION_IN_PROGRESS, ACTION_NEW, Action
from exceptions import ActionErroredError, OperationCanceledError, UnexpectedStateError, WaitTimeoutError
from services.error_classifier import is_not_found

logger = logging.getLogger(__name__)

# Refresh functions return (object, status); object is None when not found.
RefreshFunc = Callable[[], Awaitable[tuple[Any, str]]]

_INITIAL_BACKOFF = 0.1

T = TypeVar("T")


@dataclass(frozen=True)
class PollSettings:
    """
    Polling tunables shared by every waiter.

    Defaults match the upstream's eventual-consistency characteristics: an
    action may stay invisible (404) for a while right after it is created.
    """

    # Wait before the first poll, and the ceiling of the back-off between polls
    delay: float = 10.0

    # Floor of the wait between two polls
    min_timeout: float = 3.0

    # Total time allowed before giving up
    timeout: float = 60 * 60.0

    # Consecutive not-found polls tolerated before declaring absence
    not_found_checks: int = 60


class StateChangeWaiter:
    """
    Small polling state machine advanced by the running event loop.

    Each iteration: check cancellation, refresh, classify the reported
    status (target, pending, errored, not found), then sleep with a
    back-off that starts at ``min_timeout`` and grows up to ``delay``.
    The total time spent never exceeds ``timeout + delay``.

    Collaborators:
        - RefreshFunc: async callable returning (object | None, status)
        - asyncio.Event: optional cooperative cancellation token
    """

    def __init__(
        self,
        refresh: RefreshFunc,
        *,
        target: Iterable[str],
        pending: Iterable[str] = (),
        errored: Iterable[str] = (),
        settings: PollSettings = PollSettings(),
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
        description: str = "resource",
    ) -> None:
        self._refresh = refresh
        self._target = frozenset(target)
        self._pending = frozenset(pending)
        self._errored = frozenset(errored)
        self._settings = settings
        self._timeout = settings.timeout if timeout is None else timeout
        self._cancel = cancel
        self._description = description

    async def wait(self) -> Any:
        """
        Runs the polling loop.

        Returns:
            The object returned by the refresh that reported a target status.

        Raises:
            ActionErroredError: The status became one of ``errored``.
            UnexpectedStateError: The status is neither pending nor target.
            WaitTimeoutError: The timeout elapsed or the object stayed invisible
                for more than ``not_found_checks`` polls.
            OperationCanceledError: The cancellation token was set.
        """
        deadline = time.monotonic() + self._timeout
        not_found = 0
        backoff = _INITIAL_BACKOFF
        last_status = ""

        await self._sleep(min(self._settings.delay, self._timeout))

        while True:
            self._check_canceled()
            obj, status = await self._poll()

            if obj is None:
                not_found += 1
                logger.debug("Waiting for %s: not found (%d/%d)", self._description, not_found, self._settings.not_found_checks)
                if not_found > self._settings.not_found_checks:
                    raise WaitTimeoutError(
                        f"{self._description} not found after {not_found - 1} checks"
                    )
            else:
                not_found = 0
                last_status = status
                logger.debug("Waiting for %s: status %r", self._description, status)
                if status in self._target:
                    return obj
                if status in self._errored:
                    raise ActionErroredError(f"{self._description} reached status {status!r}")
                if self._pending and status not in self._pending:
                    raise UnexpectedStateError(
                        f"unexpected state {status!r} for {self._description}, wanted target "
                        f"{sorted(self._target)}"
                    )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise WaitTimeoutError(
                    f"timeout while waiting for {self._description} to become "
                    f"{sorted(self._target)} (last state: {last_status!r}, timeout: {self._timeout:g}s)"
                )
            wait = max(self._settings.min_timeout, min(backoff, self._settings.delay))
            backoff *= 2
            await self._sleep(min(wait, remaining))

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _poll(self) -> tuple[Any, str]:
        try:
            return await self._refresh()
        except Exception as exc:
            # NOTE: a 404 right after creation means "not visible yet"
            if is_not_found(exc):
                return None, ""
            raise

    def _check_canceled(self) -> None:
        check_canceled(self._cancel, self._description)

    async def _sleep(self, seconds: float) -> None:
        await cancelable_sleep(seconds, self._cancel, self._description)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


def check_canceled(cancel: asyncio.Event | None, description: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCanceledError(f"canceled while waiting for {description}")


async def cancelable_sleep(seconds: float, cancel: asyncio.Event | None, description: str) -> None:
    """Sleeps for ``seconds``, returning early with OperationCanceledError once cancel is set."""
    if seconds <= 0:
        check_canceled(cancel, description)
        return
    if cancel is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return
    check_canceled(cancel, description)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def wait_for_action(
    api: DigitalOceanClient,
    action_id: int,
    *,
    settings: PollSettings = PollSettings(),
    timeout: float | None = None,
    cancel: asyncio.Event | None = None,
) -> Action:
    """
    Polls /v2/actions/{id} until the action is completed.

    Args:
        api: REST client.
        action_id: ID of the action returned by the triggering call.
        settings: Polling tunables.
        timeout: Overrides settings.timeout.
        cancel: Optional cancellation token.

    Returns:
        The completed Action.

    Raises:
        ActionErroredError: The action reached "errored".
        WaitTimeoutError: The action did not complete in time.
    """

    async def refresh() -> tuple[Any, str]:
        action = await api.get_action(action_id)
        return action, action.status

    waiter = StateChangeWaiter(
        refresh,
        pending=(ACTION_NEW, ACTION_IN_PROGRESS),
        target=(ACTION_COMPLETED,),
        errored=(ACTION_ERRORED,),
        settings=settings,
        timeout=timeout,
        cancel=cancel,
        description=f"action {action_id}",
    )
    return await waiter.wait()


async def wait_for_resource(
    resource_id: str,
    poll_fn: Callable[[str], Awaitable[tuple[Any, str]]],
    target: Iterable[str],
    pending: Iterable[str],
    *,
    settings: PollSettings = PollSettings(),
    timeout: float | None = None,
    errored: Iterable[str] = ("errored",),
    cancel: asyncio.Event | None = None,
    description: str = "",
) -> Any:
    """
    Polls a resource's status field until it reaches one of ``target``.

    Args:
        resource_id: Handle passed to poll_fn.
        poll_fn: Async callable returning (object | None, status).
        target: Terminal success statuses, e.g. ("online",).
        pending: Statuses that keep the loop going; empty accepts any.
        settings: Polling tunables.
        timeout: Overrides settings.timeout.
        errored: Terminal failure statuses.
        cancel: Optional cancellation token.
        description: Human-readable subject used in errors.

    Returns:
        The object returned by the final poll.
    """

    async def refresh() -> tuple[Any, str]:
        return await poll_fn(resource_id)

    waiter = StateChangeWaiter(
        refresh,
        target=target,
        pending=pending,
        errored=errored,
        settings=settings,
        timeout=timeout,
        cancel=cancel,
        description=description or f"resource {resource_id}",
    )
    return await waiter.wait()


async def retry_while(
    call: Callable[[], Awaitable[T]],
    retryable: Callable[[Exception], bool],
    *,
    settings: PollSettings = PollSettings(),
    timeout: float | None = None,
    cancel: asyncio.Event | None = None,
    description: str = "operation",
) -> T:
    """
    Runs ``call`` until it succeeds or fails with an error ``retryable``
    rejects, backing off between attempts like StateChangeWaiter.

    Args:
        call: Async callable attempted once per iteration.
        retryable: Returns True for errors worth another attempt.
        settings: Polling tunables; min_timeout and delay bound the back-off.
        timeout: Overrides settings.timeout.
        cancel: Optional cancellation token, checked before every attempt.
        description: Human-readable subject used in errors.

    Raises:
        WaitTimeoutError: The error was still retryable when the timeout
            elapsed; the last error is chained as its cause.
        OperationCanceledError: The cancellation token was set.
    """
    limit = settings.timeout if timeout is None else timeout
    deadline = time.monotonic() + limit
    backoff = _INITIAL_BACKOFF
    attempts = 0
    while True:
        check_canceled(cancel, description)
        attempts += 1
        try:
            return await call()
        except Exception as exc:
            if not retryable(exc):
                raise
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise WaitTimeoutError(
                    f"timeout while retrying {description} after {attempts} attempt(s) "
                    f"(timeout: {limit:g}s): {exc}"
                ) from exc
            logger.debug("Retrying %s (attempt %d): %s", description, attempts, exc)
        wait = max(settings.min_timeout, min(backoff, settings.delay))
        backoff *= 2
        await cancelable_sleep(min(wait, remaining), cancel, description)
