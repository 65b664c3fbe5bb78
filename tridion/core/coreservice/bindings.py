"""Binding selection: maps a connection type to transport and security settings.

The SOAP stack (zeep over requests) does the actual protocol work; this module
only decides which scheme, endpoint, HTTP authentication and message security
a given connection type gets.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass

import requests
from requests.auth import HTTPBasicAuth
from requests_ntlm import HttpNtlmAuth
from zeep import Settings
from zeep.transports import Transport

from ...config.settings import ConnectionType, CoreServiceSettings, resolve_password
from .exceptions import ConfigurationError, UnsupportedConnectionTypeError

logger = logging.getLogger(__name__)

AUTH_NONE = "none"
AUTH_NTLM = "ntlm"
AUTH_BASIC = "basic"

SECURITY_NONE = "none"
SECURITY_ISSUED_TOKEN = "issued-token"

# Large trustee lists exceed lxml's default tree limits
ZEEP_SETTINGS = Settings(strict=False, xml_huge_tree=True)


@dataclass(frozen=True)
class BindingProfile:
    """Transport/security configuration for one connection type."""
    scheme: str
    endpoint: str
    transport_auth: str
    message_security: str = SECURITY_NONE

    @property
    def is_secure(self) -> bool:
        return self.scheme == "https"


BINDINGS: dict[ConnectionType, BindingProfile] = {
    ConnectionType.DEFAULT: BindingProfile("http", "basicHttp", AUTH_NTLM),
    ConnectionType.WINDOWS: BindingProfile("http", "basicHttp", AUTH_NTLM),
    ConnectionType.SSL: BindingProfile("https", "basicHttp", AUTH_NTLM),
    ConnectionType.LDAP: BindingProfile("http", "basicHttp", AUTH_BASIC),
    ConnectionType.LDAP_SSL: BindingProfile("https", "basicHttp", AUTH_BASIC),
    ConnectionType.BASIC: BindingProfile("http", "basicHttp", AUTH_BASIC),
    ConnectionType.BASIC_SSL: BindingProfile("https", "basicHttp", AUTH_BASIC),
    ConnectionType.FEDERATION: BindingProfile("https", "basicHttp", AUTH_NONE, SECURITY_ISSUED_TOKEN),
}


def get_binding(settings: CoreServiceSettings) -> BindingProfile:
    """Return the binding profile for the configured connection type.

    Raises:
        UnsupportedConnectionTypeError: For netTcp, which needs WCF binary framing
    """
    connection = settings.connection
    profile = BINDINGS.get(connection)
    if profile is None:
        raise UnsupportedConnectionTypeError(
            f"Connection type '{connection.value}' is not supported; use an HTTP-based connection type"
        )
    return profile


def service_url(settings: CoreServiceSettings) -> str:
    """Base URL of the CoreService .svc for the configured host and version."""
    profile = get_binding(settings)
    return f"{profile.scheme}://{settings.host_name}/webservices/CoreService{settings.endpoint_version}.svc"


def endpoint_url(settings: CoreServiceSettings) -> str:
    """Address of the SOAP endpoint the service proxy is bound to."""
    return f"{service_url(settings)}/{get_binding(settings).endpoint}"


def wsdl_url(settings: CoreServiceSettings) -> str:
    return f"{service_url(settings)}?wsdl"


def build_auth(settings: CoreServiceSettings):
    """Build the requests auth handler for the binding's transport authentication.

    Returns:
        An auth object, or None when the binding authenticates at message level

    Raises:
        ConfigurationError: If credentials required by the binding are missing
    """
    profile = get_binding(settings)
    if profile.transport_auth == AUTH_NONE:
        return None

    if not settings.user_name:
        raise ConfigurationError(f"A user name is required for connection type '{settings.connection_type}'")
    password = resolve_password(settings)

    if profile.transport_auth == AUTH_NTLM:
        if not password:
            raise ConfigurationError(
                "Windows (NTLM) authentication requires a password; set TRIDION_CS_PASSWORD "
                "or the tridion_cs_password secret"
            )
        return HttpNtlmAuth(settings.user_name, password)

    if not password:
        raise ConfigurationError(f"A password is required for connection type '{settings.connection_type}'")
    return HTTPBasicAuth(settings.user_name, password)


def build_session(settings: CoreServiceSettings) -> requests.Session:
    """Create the HTTP session carrying transport security for the binding."""
    session = requests.Session()
    session.auth = build_auth(settings)
    session.verify = settings.verify_tls
    if not settings.verify_tls and get_binding(settings).is_secure:
        logger.warning("TLS certificate verification disabled for %s", settings.host_name)
    return session


def build_transport(settings: CoreServiceSettings, session: requests.Session | None = None) -> Transport:
    """Create the zeep transport; the send timeout applies to every operation."""
    session = session or build_session(settings)
    timeout = settings.connection_send_timeout
    return Transport(session=session, timeout=timeout, operation_timeout=timeout)
