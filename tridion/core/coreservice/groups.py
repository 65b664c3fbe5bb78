"""CoreService group management operations."""
from __future__ import annotations
import logging
from typing import Iterable, Optional

from ...config.settings import CoreServiceSettings
from ..validators import is_tcm_uri, normalize_group_id, normalize_publication_id, validate_trustee_name
from .client import get_client
from .exceptions import GroupAlreadyExistsError, GroupNotFoundError
from .trustees import TrusteePredicate, TrusteeService, filter_trustees, find_by_title, link

logger = logging.getLogger(__name__)


class GroupService(TrusteeService):
    """Service for managing CoreService groups."""

    filter_type = "GroupsFilterData"

    def list_groups(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
        predicate: Optional[TrusteePredicate] = None,
    ) -> list[dict]:
        """List all groups, filtered client-side.

        Args:
            name: Title pattern (* and ? wildcards, case-insensitive)
            description: Description pattern
            predicate: Callable receiving each group dict

        Returns:
            Matching group representations
        """
        return filter_trustees(self._list_all(), name=name, description=description, predicate=predicate)

    def get_group(self, id: Optional[str] = None, name: Optional[str] = None) -> Optional[dict]:
        """Return a group by TCM URI or exact title, or None if not found.

        Raises:
            ValueError: If neither id nor name is given
            InvalidTcmUriError: If id is not a group URI
        """
        if id is not None:
            return self._read(normalize_group_id(id))
        if name is not None:
            return find_by_title(self._list_all(), name)
        raise ValueError("Either id or name is required")

    def resolve_group_id(self, id_or_name: str) -> str:
        """Turn a group URI, numeric id or title into a group URI.

        Raises:
            GroupNotFoundError: If no group has that title
        """
        text = str(id_or_name).strip()
        if is_tcm_uri(text) or text.isdigit():
            return normalize_group_id(text)
        group = find_by_title(self._list_all(), text)
        if not group:
            raise GroupNotFoundError(f"Group '{text}' not found")
        return group["Id"]

    def membership_links(self, groups: Iterable[str]) -> list[dict]:
        """GroupMembershipData entries for the given groups (URIs or titles)."""
        return [{"Group": link(self.resolve_group_id(group))} for group in groups]

    def create_group(
        self,
        name: str,
        description: Optional[str] = None,
        scope: Iterable[str] = (),
        member_of: Iterable[str] = (),
    ) -> dict:
        """Create a new group and return the saved representation.

        Args:
            name: Group title
            description: Description (defaults to the title)
            scope: Publication URIs the group is limited to
            member_of: Parent groups, as URIs or titles

        Raises:
            GroupAlreadyExistsError: If a group with that title exists
            GroupNotFoundError: If a parent group cannot be resolved
            InvalidTcmUriError: If a scope entry is not a publication URI
        """
        name = validate_trustee_name(name, "Group name")
        scope_ids = [normalize_publication_id(item) for item in scope]

        if find_by_title(self._list_all(), name):
            raise GroupAlreadyExistsError(f"Group '{name}' already exists")

        parents = self.membership_links(member_of)

        group = self.client.call("GetDefaultData", "Group", None, self.client.read_options())
        group["Title"] = name
        group["Description"] = description or name
        if scope_ids:
            group["Scope"] = {"LinkToRepositoryData": [link(item) for item in scope_ids]}
        if parents:
            group["GroupMemberships"] = {"GroupMembershipData": parents}

        saved = self.client.call("Save", self.client.build("GroupData", group), self.client.read_options())
        logger.info("Group '%s' created (id=%s)", name, saved.get("Id"))
        return saved


# ─────────────────────────────────────────────────────────────────────────────
# Standalone functions: open a client, run one operation, close it
# ─────────────────────────────────────────────────────────────────────────────

def list_groups(settings: Optional[CoreServiceSettings] = None, **filters) -> list[dict]:
    """List groups using a short-lived client."""
    with get_client(settings) as client:
        return GroupService(client).list_groups(**filters)


def get_group(settings: Optional[CoreServiceSettings] = None, id: Optional[str] = None,
              name: Optional[str] = None) -> Optional[dict]:
    """Return one group by id or name using a short-lived client."""
    with get_client(settings) as client:
        return GroupService(client).get_group(id=id, name=name)


def create_group(settings: Optional[CoreServiceSettings] = None, **kwargs) -> dict:
    """Create a group using a short-lived client."""
    with get_client(settings) as client:
        return GroupService(client).create_group(**kwargs)
