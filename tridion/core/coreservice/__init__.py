"""CoreService SOAP client library.

This package provides a modular, testable interface to CoreService trustee operations.

Architecture:
- bindings.py: connection type -> scheme, endpoint, HTTP auth, message security
- adfs.py: WS-Trust token issuance for federation connections
- client.py: SOAP client handle (connect, call, build, impersonate, close)
- users.py: User operations (list, get, create, enable, disable)
- groups.py: Group operations (list, get, create)
- exceptions.py: Typed exceptions for error handling

Usage:
    # Using service classes
    from tridion.core.coreservice import CoreServiceClient, UserService
    from tridion.config import load_settings

    with CoreServiceClient(load_settings()) as client:
        users = UserService(client).list_users(name="DOMAIN\\\\a*")

    # Using standalone functions (one client per call)
    from tridion.core.coreservice import disable_user
    disable_user(id="tcm:0-12-65552")
"""
from .bindings import (
    BindingProfile,
    BINDINGS,
    get_binding,
    service_url,
    endpoint_url,
    wsdl_url,
    build_auth,
    build_session,
    build_transport,
)
from .adfs import AdfsTokenProvider, IssuedTokenHeader
from .client import CoreServiceClient, get_client, DATA_NS
from .exceptions import (
    CoreServiceError,
    CoreServiceAPIError,
    CoreServiceConnectionError,
    NotConnectedError,
    ConfigurationError,
    UnsupportedConnectionTypeError,
    AdfsAuthenticationError,
    UserNotFoundError,
    UserAlreadyExistsError,
    GroupNotFoundError,
    GroupAlreadyExistsError,
    InvalidTcmUriError,
)
from .users import (
    UserService,
    list_users,
    get_user,
    get_current_user,
    create_user,
    enable_user,
    disable_user,
)
from .groups import (
    GroupService,
    list_groups,
    get_group,
    create_group,
)

__all__ = [
    # Bindings
    "BindingProfile",
    "BINDINGS",
    "get_binding",
    "service_url",
    "endpoint_url",
    "wsdl_url",
    "build_auth",
    "build_session",
    "build_transport",

    # Federation
    "AdfsTokenProvider",
    "IssuedTokenHeader",

    # Client
    "CoreServiceClient",
    "get_client",
    "DATA_NS",

    # Exceptions
    "CoreServiceError",
    "CoreServiceAPIError",
    "CoreServiceConnectionError",
    "NotConnectedError",
    "ConfigurationError",
    "UnsupportedConnectionTypeError",
    "AdfsAuthenticationError",
    "UserNotFoundError",
    "UserAlreadyExistsError",
    "GroupNotFoundError",
    "GroupAlreadyExistsError",
    "InvalidTcmUriError",

    # Services
    "UserService",
    "GroupService",

    # User functions
    "list_users",
    "get_user",
    "get_current_user",
    "create_user",
    "enable_user",
    "disable_user",

    # Group functions
    "list_groups",
    "get_group",
    "create_group",
]
