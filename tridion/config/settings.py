"""Settings loader with settings file, environment variable and Docker secrets integration."""
from __future__ import annotations
import getpass
import json
import os
import sys
from dataclasses import dataclass, asdict, fields
from enum import Enum
from pathlib import Path
from typing import Optional


class ConnectionType(str, Enum):
    """How the channel to the CoreService is secured."""
    DEFAULT = "Default"
    WINDOWS = "Windows"
    SSL = "SSL"
    LDAP = "LDAP"
    LDAP_SSL = "LDAP-SSL"
    BASIC = "Basic"
    BASIC_SSL = "Basic-SSL"
    FEDERATION = "Federation"
    NET_TCP = "netTcp"

    @classmethod
    def parse(cls, raw: str) -> "ConnectionType":
        """Case-insensitive lookup by value (e.g. 'ldap-ssl')."""
        for member in cls:
            if member.value.lower() == str(raw).strip().lower():
                return member
        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown connection type '{raw}' (expected one of: {valid})")


# Product release -> version segment of the endpoint path (CoreService<segment>.svc)
SUPPORTED_VERSIONS: dict[str, str] = {
    "2011-SP1": "2011",
    "2013": "2012",
    "2013-SP1": "2013",
    "Web-8.1": "201501",
    "Web-8.5": "201603",
    "Sites-9.0": "201701",
    "Sites-9.1": "201701",
    "Sites-9.5": "201701",
}

DEFAULT_VERSION = "Web-8.5"
DEFAULT_TIMEOUT_SECONDS = 60.0
SETTINGS_FILE_ENV = "TRIDION_SETTINGS_FILE"
PASSWORD_SECRET = "tridion_cs_password"
PASSWORD_ENV = "TRIDION_CS_PASSWORD"

# Never written to the settings file
_TRANSIENT_FIELDS = {"password"}


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}", file=sys.stderr)

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _default_user_name() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""


def parse_timeout(raw: float | int | str) -> float:
    """Parse a send timeout given as seconds or as a 'hh:mm:ss' timespan.

    Raises:
        ValueError: If the value cannot be parsed or is not positive
    """
    if isinstance(raw, (int, float)):
        seconds = float(raw)
    else:
        text = str(raw).strip()
        if ":" in text:
            parts = text.split(":")
            if len(parts) != 3:
                raise ValueError(f"Invalid timespan '{raw}' (expected hh:mm:ss)")
            hours, minutes, secs = parts
            try:
                seconds = int(hours) * 3600 + int(minutes) * 60 + float(secs)
            except ValueError:
                raise ValueError(f"Invalid timespan '{raw}' (expected hh:mm:ss)") from None
        else:
            try:
                seconds = float(text)
            except ValueError:
                raise ValueError(f"Invalid timeout '{raw}'") from None
    if seconds <= 0:
        raise ValueError("Connection send timeout must be positive")
    return seconds


@dataclass
class CoreServiceSettings:
    """Connection settings for a CoreService endpoint."""
    host_name: str = "localhost"
    user_name: str = ""
    password: str = ""
    version: str = DEFAULT_VERSION
    connection_type: str = ConnectionType.DEFAULT.value
    connection_send_timeout: float = DEFAULT_TIMEOUT_SECONDS
    adfs_url: str = ""
    adfs_relying_party: str = ""
    verify_tls: bool = True
    impersonate_user_name: str = ""

    def __post_init__(self):
        if not self.user_name:
            self.user_name = _default_user_name()
        self.validate()

    def validate(self) -> None:
        """Normalise and check field values.

        Raises:
            ValueError: On unknown version, connection type or bad timeout
        """
        if self.version not in SUPPORTED_VERSIONS:
            valid = ", ".join(SUPPORTED_VERSIONS)
            raise ValueError(f"Unsupported version '{self.version}' (expected one of: {valid})")
        self.connection_type = ConnectionType.parse(self.connection_type).value
        self.connection_send_timeout = parse_timeout(self.connection_send_timeout)
        if not self.host_name or not self.host_name.strip():
            raise ValueError("Host name is required")
        self.host_name = self.host_name.strip().rstrip("/")

    @property
    def connection(self) -> ConnectionType:
        return ConnectionType(self.connection_type)

    @property
    def endpoint_version(self) -> str:
        """Version segment used in the CoreService endpoint path."""
        return SUPPORTED_VERSIONS[self.version]

    def to_dict(self, include_secrets: bool = False) -> dict:
        data = asdict(self)
        if not include_secrets:
            for name in _TRANSIENT_FIELDS:
                data.pop(name, None)
        return data


def settings_file_path(path: str | Path | None = None) -> Path:
    """Resolve the settings file location (argument > env var > user config dir)."""
    if path:
        return Path(path)
    env_path = os.environ.get(SETTINGS_FILE_ENV)
    if env_path:
        return Path(env_path)
    return Path.home() / ".config" / "tridion-coreservice" / "settings.json"


def _read_settings_file(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Settings file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a JSON object")
    known = {f.name for f in fields(CoreServiceSettings)} - _TRANSIENT_FIELDS
    return {key: value for key, value in data.items() if key in known}


def _env_overrides() -> dict:
    """Collect TRIDION_CS_* environment overrides."""
    mapping = {
        "TRIDION_CS_HOST": "host_name",
        "TRIDION_CS_USER": "user_name",
        "TRIDION_CS_VERSION": "version",
        "TRIDION_CS_CONNECTION_TYPE": "connection_type",
        "TRIDION_CS_TIMEOUT": "connection_send_timeout",
        "TRIDION_CS_ADFS_URL": "adfs_url",
        "TRIDION_CS_ADFS_RELYING_PARTY": "adfs_relying_party",
        "TRIDION_CS_IMPERSONATE": "impersonate_user_name",
    }
    overrides = {}
    for env_var, field_name in mapping.items():
        value = os.environ.get(env_var)
        if value:
            overrides[field_name] = value
    verify = os.environ.get("TRIDION_CS_VERIFY_TLS")
    if verify:
        overrides["verify_tls"] = verify.strip().lower() not in {"0", "false", "no"}
    return overrides


def load_settings(path: str | Path | None = None) -> CoreServiceSettings:
    """Load settings: defaults < settings file < environment < secrets."""
    data = _read_settings_file(settings_file_path(path))
    data.update(_env_overrides())
    password = _load_secret_from_file(PASSWORD_SECRET, PASSWORD_ENV)
    if password:
        data["password"] = password
    return CoreServiceSettings(**data)


def save_settings(settings: CoreServiceSettings, path: str | Path | None = None) -> Path:
    """Persist settings (without the password) and return the file path."""
    settings.validate()
    target = settings_file_path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(settings.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    target.chmod(0o600)
    return target


def reset_settings(path: str | Path | None = None) -> CoreServiceSettings:
    """Remove the persisted settings file and return the defaults."""
    target = settings_file_path(path)
    if target.exists():
        target.unlink()
        print(f"[settings] Removed {target}", file=sys.stderr)
    return CoreServiceSettings()


def update_settings(path: str | Path | None = None, **changes) -> CoreServiceSettings:
    """Apply changes on top of the persisted settings and save them.

    Keys with a None value are ignored. The password is applied to the
    returned object but never written.

    Raises:
        ValueError: If a key is unknown or a value fails validation
    """
    current = CoreServiceSettings(**_read_settings_file(settings_file_path(path)))
    known = {f.name for f in fields(CoreServiceSettings)}
    for key, value in changes.items():
        if value is None:
            continue
        if key not in known:
            raise ValueError(f"Unknown setting '{key}'")
        setattr(current, key, value)
    current.validate()
    save_settings(current, path)
    return current


def resolve_password(settings: CoreServiceSettings) -> Optional[str]:
    """Return the configured password, falling back to secrets/environment."""
    return settings.password or _load_secret_from_file(PASSWORD_SECRET, PASSWORD_ENV)
