"""
doapi/types.py

Responsibility: Value objects shared by the REST transport and its callers:
actions, pagination links, list options and the response envelope.
Does NOT: make HTTP calls or interpret resource payloads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlparse

# Action statuses reported by /v2/actions
ACTION_NEW = "new"
ACTION_IN_PROGRESS = "in-progress"
ACTION_COMPLETED = "completed"
ACTION_ERRORED = "errored"


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass
class Action:
    """
    A remote asynchronous operation as returned by the actions API.

    Only the fields the provider relies on are kept; the raw payload is
    available for debugging.
    """

    # Upstream action ID
    id: int

    # One of new, in-progress, completed, errored
    status: str

    # Action type, e.g. "assign_ip", "resize", "attach"
    type: str = ""

    # ISO-8601 timestamps; completed_at is empty until the action is terminal
    started_at: str = ""
    completed_at: str = ""

    # ID and type of the resource the action applies to
    resource_id: int | None = None
    resource_type: str = ""

    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Action:
        return cls(
            id=int(raw["id"]),
            status=raw.get("status", ""),
            type=raw.get("type", ""),
            started_at=raw.get("started_at") or "",
            completed_at=raw.get("completed_at") or "",
            resource_id=raw.get("resource_id"),
            resource_type=raw.get("resource_type", ""),
            raw=raw,
        )


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


def _page_for_url(url: str) -> int:
    values = parse_qs(urlparse(url).query).get("page")
    if not values:
        return 1
    return int(values[0])


@dataclass
class PageLinks:
    """
    The ``links.pages`` object of a paginated listing response.

    An absent ``next`` link marks the last page.
    """

    first: str = ""
    prev: str = ""
    next: str = ""
    last: str = ""

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> PageLinks | None:
        if not raw:
            return None
        pages = raw.get("pages")
        if pages is None:
            return None
        return cls(
            first=pages.get("first", ""),
            prev=pages.get("prev", ""),
            next=pages.get("next", ""),
            last=pages.get("last", ""),
        )

    def is_last_page(self) -> bool:
        return self.next == ""

    def current_page(self) -> int:
        """
        Derives the current page number from the ``prev`` link.

        Returns:
            1 when there is no previous page, otherwise prev + 1.
        """
        if self.prev == "":
            return 1
        return _page_for_url(self.prev) + 1


@dataclass
class ListOptions:
    """Query parameters for a paginated listing call."""

    page: int = 1
    per_page: int = 200

    def as_params(self) -> dict[str, int]:
        return {"page": self.page, "per_page": self.per_page}


@dataclass
class ApiResponse:
    """
    Metadata of a REST response: status, headers, pagination links and meta.
    """

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    links: PageLinks | None = None
    meta: dict[str, Any] = field(default_factory=dict)
