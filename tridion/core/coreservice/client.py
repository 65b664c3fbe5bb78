"""Low-level SOAP client for the CoreService.

Handles binding selection, federation tokens, and fault translation.
"""
from __future__ import annotations
import logging
from typing import Any, Optional

import requests
from lxml import etree
from zeep import Client
from zeep.exceptions import Error as ZeepError
from zeep.exceptions import Fault, TransportError
from zeep.helpers import serialize_object

from ...config.settings import ConnectionType, CoreServiceSettings, load_settings
from .adfs import AdfsTokenProvider, IssuedTokenHeader
from .bindings import ZEEP_SETTINGS, build_session, build_transport, endpoint_url, get_binding, wsdl_url
from .exceptions import CoreServiceAPIError, CoreServiceConnectionError, CoreServiceError, NotConnectedError

logger = logging.getLogger(__name__)

# Namespace of the CoreService data contracts (UserData, GroupData, filters...)
DATA_NS = "http://www.sdltridion.com/ContentManager/R6"


class CoreServiceClient:
    """SOAP client for the CoreService with binding negotiation.

    Features:
    - Binding chosen from the configured connection type
    - Federation token issued and refreshed transparently
    - SOAP faults translated to CoreServiceAPIError
    - Results returned as plain dicts/lists

    Usage:
        with CoreServiceClient(load_settings()) as client:
            me = client.get_current_user()
    """

    def __init__(self, settings: CoreServiceSettings):
        """Initialize CoreService client.

        Args:
            settings: Connection settings; nothing is contacted until connect()
        """
        self.settings = settings
        self.binding = get_binding(settings)
        self.endpoint = endpoint_url(settings)
        self.impersonated_user: Optional[str] = None
        self._session: Optional[requests.Session] = None
        self._zeep: Optional[Client] = None
        self._service = None
        self._closed = False

    def __enter__(self) -> "CoreServiceClient":
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @property
    def connected(self) -> bool:
        return self._service is not None and not self._closed

    def connect(self) -> "CoreServiceClient":
        """Load the WSDL and bind the service proxy to the configured endpoint."""
        if self._closed:
            raise NotConnectedError("Client has been closed; create a new one")
        if self._service is not None:
            return self

        wsse = None
        if self.settings.connection == ConnectionType.FEDERATION:
            wsse = IssuedTokenHeader(AdfsTokenProvider(self.settings, relying_party=self.endpoint))

        self._session = build_session(self.settings)
        transport = build_transport(self.settings, self._session)
        location = wsdl_url(self.settings)
        logger.debug("Loading CoreService WSDL from %s", location)
        try:
            self._zeep = Client(location, transport=transport, settings=ZEEP_SETTINGS, wsse=wsse)
        except (requests.RequestException, ZeepError) as e:
            # Includes XMLSyntaxError when a login page is served in place of the WSDL
            self._session.close()
            self._session = None
            raise CoreServiceConnectionError(f"Could not load CoreService WSDL from {location}: {e}") from e

        binding_name = self._find_binding(self.binding.endpoint)
        if binding_name:
            self._service = self._zeep.create_service(binding_name, self.endpoint)
        else:
            logger.warning("No '%s' binding in WSDL; using default port", self.binding.endpoint)
            self._service = self._zeep.service
        logger.info(
            "Connected to %s (connection type %s)", self.endpoint, self.settings.connection_type
        )
        return self

    def _find_binding(self, prefix: str) -> Optional[str]:
        """Return the qualified name of the first WSDL binding whose local name starts with prefix."""
        for name in self._zeep.wsdl.bindings:
            qname = etree.QName(name)
            if qname.localname.lower().startswith(prefix.lower()):
                return str(qname)
        return None

    def _require_service(self):
        if self._closed:
            raise NotConnectedError("Client has been closed")
        if self._service is None:
            raise NotConnectedError("Not connected - call connect() first")
        return self._service

    def call(self, operation: str, *args, **kwargs) -> Any:
        """Invoke a CoreService operation and return its result as plain Python data.

        Raises:
            CoreServiceAPIError: On SOAP fault
            CoreServiceConnectionError: On transport failure
        """
        service = self._require_service()
        method = getattr(service, operation)
        logger.debug("CoreService call %s", operation)
        try:
            result = method(*args, **kwargs)
        except Fault as e:
            raise CoreServiceAPIError(operation, e.message or "SOAP fault", e.code or "") from e
        except TransportError as e:
            raise CoreServiceConnectionError(
                f"{operation} failed with HTTP {e.status_code} from {self.endpoint}"
            ) from e
        except requests.RequestException as e:
            raise CoreServiceConnectionError(f"{operation} failed: {e}") from e
        return serialize_object(result, dict)

    def build(self, type_name: str, data: Optional[dict] = None, **values) -> Any:
        """Build a CoreService data-contract object (e.g. 'UserData', 'ReadOptions')."""
        self._require_service()
        try:
            factory = self._zeep.get_type(f"{{{DATA_NS}}}{type_name}")
        except LookupError as e:
            raise CoreServiceError(f"Unknown CoreService type '{type_name}'") from e
        merged = dict(data or {})
        merged.update(values)
        return factory(**merged)

    def read_options(self) -> Any:
        return self.build("ReadOptions")

    def get_current_user(self) -> dict:
        return self.call("GetCurrentUser")

    def get_api_version(self) -> str:
        return self.call("GetApiVersion")

    def impersonate(self, user_name: str) -> None:
        """Act on behalf of another user for subsequent calls (session-aware endpoints)."""
        self.call("Impersonate", user_name)
        self.impersonated_user = user_name
        logger.info("Impersonating %s", user_name)

    def close(self) -> None:
        """Close the underlying HTTP session; the client cannot be reused."""
        if self._session is not None:
            self._session.close()
        self._service = None
        self._zeep = None
        self._session = None
        self._closed = True


def get_client(settings: Optional[CoreServiceSettings] = None, impersonate: Optional[str] = None) -> CoreServiceClient:
    """Create a connected client from the given (or persisted) settings.

    Args:
        settings: Connection settings (defaults to load_settings())
        impersonate: User to impersonate; defaults to settings.impersonate_user_name

    Returns:
        Connected CoreServiceClient; close it when done
    """
    settings = settings or load_settings()
    client = CoreServiceClient(settings).connect()
    target = impersonate or settings.impersonate_user_name
    if target:
        try:
            client.impersonate(target)
        except CoreServiceError:
            client.close()
            raise
    return client
