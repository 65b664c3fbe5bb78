"""Shared listing and filtering for trustees (users and groups)."""
from __future__ import annotations
import fnmatch
from typing import Any, Callable, Iterable, Optional

from .exceptions import CoreServiceAPIError

TrusteePredicate = Callable[[dict], bool]


def as_list(result: Any) -> list[dict]:
    """Unwrap a CoreService array result (ArrayOfX wrapper, list or None) into a list."""
    if result is None:
        return []
    if isinstance(result, list):
        return result
    if isinstance(result, dict):
        values = [v for v in result.values() if isinstance(v, list)]
        if len(values) == 1:
            return values[0]
        if not values and all(v is None for v in result.values()):
            return []
    return [result]


def wildcard_match(value: Optional[str], pattern: str) -> bool:
    """Case-insensitive match supporting * and ? wildcards."""
    return fnmatch.fnmatchcase((value or "").lower(), pattern.lower())


def filter_trustees(
    items: Iterable[dict],
    name: Optional[str] = None,
    description: Optional[str] = None,
    predicate: Optional[TrusteePredicate] = None,
) -> list[dict]:
    """Apply client-side filters; every given filter must match."""
    matched = []
    for item in items:
        if name is not None and not wildcard_match(item.get("Title"), name):
            continue
        if description is not None and not wildcard_match(item.get("Description"), description):
            continue
        if predicate is not None and not predicate(item):
            continue
        matched.append(item)
    return matched


def find_by_title(items: Iterable[dict], title: str) -> Optional[dict]:
    """Return the trustee whose title equals title (case-insensitive)."""
    wanted = title.strip().lower()
    for item in items:
        if (item.get("Title") or "").lower() == wanted:
            return item
    return None


def link(item_id: str) -> dict:
    """Reference to another item, as used in memberships and scopes."""
    return {"IdRef": item_id}


class TrusteeService:
    """Base service: lists one trustee type system-wide and filters client-side."""

    filter_type = ""

    def __init__(self, client):
        """Initialize trustee service.

        Args:
            client: Connected CoreServiceClient
        """
        self.client = client

    def _filter_values(self, **kwargs) -> dict:
        return {"BaseColumns": "Extended"}

    def _read(self, item_id: str) -> Optional[dict]:
        """Read an item by URI; a missing item yields None."""
        try:
            return self.client.call("Read", item_id, self.client.read_options())
        except CoreServiceAPIError as e:
            if e.is_not_found:
                return None
            raise

    def _list_all(self, **kwargs) -> list[dict]:
        list_filter = self.client.build(self.filter_type, self._filter_values(**kwargs))
        return as_list(self.client.call("GetSystemWideList", list_filter))
