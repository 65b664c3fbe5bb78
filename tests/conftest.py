"""Pytest shared fixtures: in-memory CoreService and network guard rails."""
import copy
import itertools
import pathlib
import sys

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from tridion.config.settings import CoreServiceSettings
from tridion.core.coreservice.exceptions import CoreServiceAPIError
from tridion.core.validators import GROUP_ITEM_TYPE, USER_ITEM_TYPE


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from reaching a real CoreService or ADFS.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _blocked(*args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP call in unit test: {args[:2]}")

    monkeypatch.setattr(requests, "post", _blocked)
    monkeypatch.setattr(requests, "get", _blocked)
    monkeypatch.setattr(requests.Session, "request", _blocked)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    """Point settings at a temp file and clear TRIDION_CS_* overrides."""
    for var in [
        "TRIDION_CS_HOST", "TRIDION_CS_USER", "TRIDION_CS_PASSWORD", "TRIDION_CS_VERSION",
        "TRIDION_CS_CONNECTION_TYPE", "TRIDION_CS_TIMEOUT", "TRIDION_CS_ADFS_URL",
        "TRIDION_CS_ADFS_RELYING_PARTY", "TRIDION_CS_VERIFY_TLS", "TRIDION_CS_IMPERSONATE",
    ]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("TRIDION_SETTINGS_FILE", str(tmp_path / "settings.json"))


@pytest.fixture
def settings():
    return CoreServiceSettings(
        host_name="cms.example.com",
        user_name="EXAMPLE\\svc-tridion",
        password="s3cret",
        version="Sites-9.0",
        connection_type="Default",
    )


# ─────────────────────────────────────────────────────────────────────────────
# In-memory CoreService
# ─────────────────────────────────────────────────────────────────────────────
class FakeCoreService:
    """Minimal CoreService emulation for trustee operations."""

    def __init__(self):
        self._ids = itertools.count(100)
        self.items: dict[str, dict] = {}
        self.saved: list[dict] = []
        self.calls: list[str] = []
        self.current_user = "EXAMPLE\\svc-tridion"

    def add_user(self, title, description=None, enabled=True, predefined=False, memberships=()):
        item_id = f"tcm:0-{next(self._ids)}-{USER_ITEM_TYPE}"
        self.items[item_id] = {
            "Id": item_id,
            "Title": title,
            "Description": description or title,
            "IsEnabled": enabled,
            "IsPredefined": predefined,
            "Privileges": 0,
            "GroupMemberships": {"GroupMembershipData": [{"Group": {"IdRef": g}} for g in memberships]},
        }
        return item_id

    def add_group(self, title, description=None):
        item_id = f"tcm:0-{next(self._ids)}-{GROUP_ITEM_TYPE}"
        self.items[item_id] = {
            "Id": item_id,
            "Title": title,
            "Description": description or title,
            "Scope": None,
            "GroupMemberships": None,
        }
        return item_id

    def _of_type(self, item_type):
        return [item for item in self.items.values() if item["Id"].endswith(f"-{item_type}")]

    def GetSystemWideList(self, list_filter):
        if list_filter["__type__"] == "UsersFilterData":
            users = self._of_type(USER_ITEM_TYPE)
            if list_filter.get("IsPredefined") is False:
                users = [u for u in users if not u["IsPredefined"]]
            rows = [
                {k: u[k] for k in ("Id", "Title", "Description", "IsEnabled", "IsPredefined")}
                for u in users
            ]
            return {"IdentifiableObjectData": rows}
        if list_filter["__type__"] == "GroupsFilterData":
            rows = [{k: g[k] for k in ("Id", "Title", "Description")} for g in self._of_type(GROUP_ITEM_TYPE)]
            return {"IdentifiableObjectData": rows}
        raise CoreServiceAPIError("GetSystemWideList", "Unsupported filter")

    def Read(self, item_id, read_options):
        if item_id not in self.items:
            raise CoreServiceAPIError("Read", f"The item {item_id} does not exist.")
        return copy.deepcopy(self.items[item_id])

    def GetDefaultData(self, item_type, container_id, read_options):
        base = {"Id": "tcm:0-0-0", "Title": None, "Description": None, "GroupMemberships": None}
        if item_type == "User":
            base.update({"IsEnabled": True, "IsPredefined": False, "Privileges": 0})
        else:
            base.update({"Scope": None})
        return base

    def Save(self, data, read_options):
        data = dict(data)
        data_type = data.pop("__type__")
        self.saved.append(copy.deepcopy(data))
        if data["Id"] == "tcm:0-0-0":
            item_type = USER_ITEM_TYPE if data_type == "UserData" else GROUP_ITEM_TYPE
            data["Id"] = f"tcm:0-{next(self._ids)}-{item_type}"
        self.items[data["Id"]] = data
        return copy.deepcopy(data)

    def GetCurrentUser(self):
        return {"Id": "tcm:0-1-65552", "Title": self.current_user, "IsEnabled": True}

    def GetApiVersion(self):
        return "9.0.0.0"

    def Impersonate(self, user_name):
        self.current_user = user_name


class FakeClient:
    """Stands in for CoreServiceClient: same call/build surface, no SOAP."""

    def __init__(self, service: FakeCoreService):
        self.service = service
        self.impersonated_user = None
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def connect(self):
        return self

    def call(self, operation, *args):
        self.service.calls.append(operation)
        return getattr(self.service, operation)(*args)

    def build(self, type_name, data=None, **values):
        merged = copy.deepcopy(dict(data or {}))
        merged.update(values)
        merged["__type__"] = type_name
        return merged

    def read_options(self):
        return self.build("ReadOptions")

    def get_current_user(self):
        return self.call("GetCurrentUser")

    def get_api_version(self):
        return self.call("GetApiVersion")

    def impersonate(self, user_name):
        self.call("Impersonate", user_name)
        self.impersonated_user = user_name

    def close(self):
        self.closed = True


@pytest.fixture
def core_service():
    return FakeCoreService()


@pytest.fixture
def fake_client(core_service):
    return FakeClient(core_service)
