"""CoreService user management operations."""
from __future__ import annotations
import logging
from typing import Iterable, Optional

from ...config.settings import CoreServiceSettings
from ..validators import normalize_user_id, validate_trustee_name
from .client import get_client
from .exceptions import UserAlreadyExistsError, UserNotFoundError
from .trustees import TrusteePredicate, TrusteeService, filter_trustees, find_by_title

logger = logging.getLogger(__name__)

PRIVILEGE_NONE = 0
PRIVILEGE_SYSTEM_ADMINISTRATOR = 1


class UserService(TrusteeService):
    """Service for managing CoreService users."""

    filter_type = "UsersFilterData"

    def _filter_values(self, include_predefined: bool = False, **kwargs) -> dict:
        values = super()._filter_values()
        if not include_predefined:
            values["IsPredefined"] = False
        return values

    def list_users(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
        predicate: Optional[TrusteePredicate] = None,
        include_predefined: bool = False,
    ) -> list[dict]:
        """List all users, filtered client-side.

        Args:
            name: Title pattern (* and ? wildcards, case-insensitive)
            description: Description pattern
            predicate: Callable receiving each user dict
            include_predefined: Also return built-in system users

        Returns:
            Matching user representations
        """
        users = self._list_all(include_predefined=include_predefined)
        return filter_trustees(users, name=name, description=description, predicate=predicate)

    def get_user(self, id: Optional[str] = None, name: Optional[str] = None) -> Optional[dict]:
        """Return the user matching the TCM URI or exact user name, or None.

        Raises:
            ValueError: If neither id nor name is given
            InvalidTcmUriError: If id is not a user URI
        """
        if id is not None:
            return self._read(normalize_user_id(id))
        if name is not None:
            return find_by_title(self._list_all(include_predefined=True), name)
        raise ValueError("Either id or name is required")

    def get_current_user(self) -> dict:
        """Return the user the connection is authenticated (or impersonating) as."""
        return self.client.get_current_user()

    def create_user(
        self,
        user_name: str,
        description: Optional[str] = None,
        member_of: Iterable[str] = (),
        is_admin: bool = False,
    ) -> dict:
        """Create a new user and return the saved representation.

        Args:
            user_name: Login name (e.g. DOMAIN\\alice)
            description: Display name (defaults to the user name)
            member_of: Groups to join, as URIs or titles
            is_admin: Grant system administrator privileges

        Raises:
            UserAlreadyExistsError: If a user with that name exists
            GroupNotFoundError: If a group cannot be resolved
        """
        from .groups import GroupService

        user_name = validate_trustee_name(user_name, "User name")
        if find_by_title(self._list_all(include_predefined=True), user_name):
            raise UserAlreadyExistsError(f"User '{user_name}' already exists")

        memberships = GroupService(self.client).membership_links(member_of)

        user = self.client.call("GetDefaultData", "User", None, self.client.read_options())
        user["Title"] = user_name
        user["Description"] = description or user_name
        user["Privileges"] = PRIVILEGE_SYSTEM_ADMINISTRATOR if is_admin else PRIVILEGE_NONE
        if memberships:
            user["GroupMemberships"] = {"GroupMembershipData": memberships}

        saved = self.client.call("Save", self.client.build("UserData", user), self.client.read_options())
        logger.info("User '%s' created (id=%s)", user_name, saved.get("Id"))
        return saved

    def _require_user(self, id: Optional[str], name: Optional[str]) -> dict:
        user = self.get_user(id=id, name=name)
        if not user:
            raise UserNotFoundError(f"User '{id or name}' not found")
        return user

    def set_user_enabled(self, enabled: bool, id: Optional[str] = None, name: Optional[str] = None) -> dict:
        """Enable or disable a user; a user already in that state is returned unchanged.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        user = self._require_user(id, name)
        if id is None:
            # List results carry extended columns only; work on the full item
            user = self._read(user["Id"]) or user

        if bool(user.get("IsEnabled")) == enabled:
            state = "enabled" if enabled else "disabled"
            logger.warning("User '%s' is already %s", user.get("Title"), state)
            return user

        user["IsEnabled"] = enabled
        saved = self.client.call("Save", self.client.build("UserData", user), self.client.read_options())
        logger.info("User '%s' %s", saved.get("Title"), "enabled" if enabled else "disabled")
        return saved

    def enable_user(self, id: Optional[str] = None, name: Optional[str] = None) -> dict:
        return self.set_user_enabled(True, id=id, name=name)

    def disable_user(self, id: Optional[str] = None, name: Optional[str] = None) -> dict:
        return self.set_user_enabled(False, id=id, name=name)


# ─────────────────────────────────────────────────────────────────────────────
# Standalone functions: open a client, run one operation, close it
# ─────────────────────────────────────────────────────────────────────────────

def list_users(settings: Optional[CoreServiceSettings] = None, **filters) -> list[dict]:
    """List users using a short-lived client."""
    with get_client(settings) as client:
        return UserService(client).list_users(**filters)


def get_user(settings: Optional[CoreServiceSettings] = None, id: Optional[str] = None,
             name: Optional[str] = None) -> Optional[dict]:
    """Return one user by id or name using a short-lived client."""
    with get_client(settings) as client:
        return UserService(client).get_user(id=id, name=name)


def get_current_user(settings: Optional[CoreServiceSettings] = None) -> dict:
    with get_client(settings) as client:
        return UserService(client).get_current_user()


def create_user(settings: Optional[CoreServiceSettings] = None, **kwargs) -> dict:
    """Create a user using a short-lived client."""
    with get_client(settings) as client:
        return UserService(client).create_user(**kwargs)


def enable_user(settings: Optional[CoreServiceSettings] = None, id: Optional[str] = None,
                name: Optional[str] = None) -> dict:
    with get_client(settings) as client:
        return UserService(client).enable_user(id=id, name=name)


def disable_user(settings: Optional[CoreServiceSettings] = None, id: Optional[str] = None,
                 name: Optional[str] = None) -> dict:
    with get_client(settings) as client:
        return UserService(client).disable_user(id=id, name=name)
