"""Input validation helpers for trustee data and TCM URIs."""
from __future__ import annotations
import re
from typing import NamedTuple

USER_ITEM_TYPE = 65552
GROUP_ITEM_TYPE = 65568
PUBLICATION_ITEM_TYPE = 1

_TCM_URI = re.compile(r"^tcm:(\d+)-(\d+)(?:-(\d+))?(?:-v(\d+))?$", re.IGNORECASE)


def _invalid(message: str):
    # Imported here: the coreservice package imports this module
    from .coreservice.exceptions import InvalidTcmUriError
    return InvalidTcmUriError(message)


class TcmUri(NamedTuple):
    publication_id: int
    item_id: int
    item_type: int

    def __str__(self) -> str:
        return f"tcm:{self.publication_id}-{self.item_id}-{self.item_type}"


def parse_tcm_uri(raw: str) -> TcmUri:
    """Parse a TCM URI. A missing item type means 16 (component).

    Raises:
        InvalidTcmUriError: If the string is not a TCM URI
    """
    match = _TCM_URI.match(str(raw).strip())
    if not match:
        raise _invalid(f"'{raw}' is not a valid TCM URI")
    publication_id, item_id, item_type, _version = match.groups()
    return TcmUri(int(publication_id), int(item_id), int(item_type) if item_type else 16)


def _trustee_uri(raw: str | int, item_type: int, label: str, expand_digits: bool = True) -> str:
    text = str(raw).strip()
    if text.isdigit():
        if not expand_digits:
            raise _invalid(f"'{raw}' is not a {label} URI (expected tcm:0-<id>-{item_type})")
        return str(TcmUri(0, int(text), item_type))
    uri = parse_tcm_uri(text)
    if uri.publication_id != 0 or uri.item_type != item_type:
        raise _invalid(f"'{raw}' is not a {label} URI (expected tcm:0-<id>-{item_type})")
    return str(uri)


def normalize_user_id(raw: str | int) -> str:
    """Return the canonical user URI; bare numeric ids are expanded."""
    return _trustee_uri(raw, USER_ITEM_TYPE, "user")


def normalize_group_id(raw: str | int) -> str:
    """Return the canonical group URI; bare numeric ids are expanded."""
    return _trustee_uri(raw, GROUP_ITEM_TYPE, "group")


def normalize_publication_id(raw: str | int) -> str:
    """Return the canonical publication URI (tcm:0-<id>-1); bare numbers are rejected."""
    return _trustee_uri(raw, PUBLICATION_ITEM_TYPE, "publication", expand_digits=False)


def is_tcm_uri(raw: str) -> bool:
    return bool(_TCM_URI.match(str(raw).strip()))


def validate_trustee_name(name: str, field: str = "Name") -> str:
    """Validate a user or group title.

    Args:
        name: Title to validate
        field: Field name for error messages

    Returns:
        Trimmed name

    Raises:
        ValueError: If name is invalid
    """
    name = (name or "").strip()
    if not name:
        raise ValueError(f"{field} is required")
    if len(name) > 255:
        raise ValueError(f"{field} exceeds maximum length")
    if any(char in name for char in "<>\"|*?"):
        raise ValueError(f"{field} contains invalid characters")
    return name
