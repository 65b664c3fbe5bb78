"""Federation (ADFS) token issuance for the CoreService.

Requests a bearer SAML token from ADFS via WS-Trust 1.3 (username/password
endpoint) and attaches it to outgoing CoreService envelopes.
"""
from __future__ import annotations
import copy
import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import requests
from lxml import etree
from zeep.wsse.utils import get_security_header

from ...config.settings import CoreServiceSettings, resolve_password
from .exceptions import AdfsAuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
USERNAME_MIXED_PATH = "/adfs/services/trust/13/usernamemixed"

# Re-issue this long before the token expires
EXPIRY_MARGIN = timedelta(seconds=60)
# Assumed lifetime when the response carries none
DEFAULT_LIFETIME = timedelta(hours=1)

NS = {
    "s": "http://www.w3.org/2003/05/soap-envelope",
    "a": "http://www.w3.org/2005/08/addressing",
    "u": "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-utility-1.0.xsd",
    "o": "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd",
    "trust": "http://docs.oasis-open.org/ws-sx/ws-trust/200512",
    "wsp": "http://schemas.xmlsoap.org/ws/2004/09/policy",
}

ISSUE_ACTION = "http://docs.oasis-open.org/ws-sx/ws-trust/200512/RST/Issue"
ISSUE_REQUEST = "http://docs.oasis-open.org/ws-sx/ws-trust/200512/Issue"
BEARER_KEY = "http://docs.oasis-open.org/ws-sx/ws-trust/200512/Bearer"
SAML2_TOKEN = "urn:oasis:names:tc:SAML:2.0:assertion"
PASSWORD_TEXT = (
    "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-username-token-profile-1.0#PasswordText"
)
ANONYMOUS = "http://www.w3.org/2005/08/addressing/anonymous"


def _q(prefix: str, tag: str) -> str:
    return f"{{{NS[prefix]}}}{tag}"


def _iso(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


_FRACTION = re.compile(r"\.(\d+)")


def _parse_time(text: str) -> datetime:
    """Parse an xs:dateTime; fractions of any precision are cut to microseconds."""
    normalized = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text.strip(), count=1)
    try:
        value = datetime.fromisoformat(normalized.replace("Z", "+00:00"))
    except ValueError as e:
        raise AdfsAuthenticationError(f"Unparseable token lifetime '{text}'") from e
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def build_issue_request(endpoint: str, user_name: str, password: str, applies_to: str,
                        now: Optional[datetime] = None) -> bytes:
    """Build the WS-Trust 1.3 RST/Issue envelope (SOAP 1.2)."""
    now = now or datetime.now(timezone.utc)
    envelope = etree.Element(_q("s", "Envelope"), nsmap={k: NS[k] for k in ("s", "a", "u")})
    header = etree.SubElement(envelope, _q("s", "Header"))

    action = etree.SubElement(header, _q("a", "Action"))
    action.set(_q("s", "mustUnderstand"), "1")
    action.text = ISSUE_ACTION
    etree.SubElement(header, _q("a", "MessageID")).text = f"urn:uuid:{uuid.uuid4()}"
    reply_to = etree.SubElement(header, _q("a", "ReplyTo"))
    etree.SubElement(reply_to, _q("a", "Address")).text = ANONYMOUS
    to = etree.SubElement(header, _q("a", "To"))
    to.set(_q("s", "mustUnderstand"), "1")
    to.text = endpoint

    security = etree.SubElement(header, _q("o", "Security"), nsmap={"o": NS["o"]})
    security.set(_q("s", "mustUnderstand"), "1")
    timestamp = etree.SubElement(security, _q("u", "Timestamp"))
    timestamp.set(_q("u", "Id"), "_0")
    etree.SubElement(timestamp, _q("u", "Created")).text = _iso(now)
    etree.SubElement(timestamp, _q("u", "Expires")).text = _iso(now + timedelta(minutes=5))
    token = etree.SubElement(security, _q("o", "UsernameToken"))
    token.set(_q("u", "Id"), f"uuid-{uuid.uuid4()}")
    etree.SubElement(token, _q("o", "Username")).text = user_name
    password_el = etree.SubElement(token, _q("o", "Password"))
    password_el.set("Type", PASSWORD_TEXT)
    password_el.text = password

    body = etree.SubElement(envelope, _q("s", "Body"))
    rst = etree.SubElement(body, _q("trust", "RequestSecurityToken"), nsmap={"trust": NS["trust"]})
    applies = etree.SubElement(rst, _q("wsp", "AppliesTo"), nsmap={"wsp": NS["wsp"]})
    reference = etree.SubElement(applies, _q("a", "EndpointReference"))
    etree.SubElement(reference, _q("a", "Address")).text = applies_to
    etree.SubElement(rst, _q("trust", "KeyType")).text = BEARER_KEY
    etree.SubElement(rst, _q("trust", "RequestType")).text = ISSUE_REQUEST
    etree.SubElement(rst, _q("trust", "TokenType")).text = SAML2_TOKEN

    return etree.tostring(envelope, xml_declaration=True, encoding="utf-8")


def parse_issue_response(content: bytes) -> tuple[etree._Element, Optional[datetime]]:
    """Extract the issued token and its expiry from an RSTR.

    Raises:
        AdfsAuthenticationError: On SOAP fault, malformed XML or missing token
    """
    try:
        root = etree.fromstring(content)
    except etree.XMLSyntaxError as e:
        raise AdfsAuthenticationError(f"Malformed token response: {e}") from e

    fault = root.find(f".//{_q('s', 'Fault')}")
    if fault is not None:
        reason = fault.findtext(f".//{_q('s', 'Text')}") or "unknown fault"
        raise AdfsAuthenticationError(f"Token request rejected: {reason.strip()}")

    requested = root.find(f".//{_q('trust', 'RequestedSecurityToken')}")
    if requested is None or len(requested) == 0:
        raise AdfsAuthenticationError("Token response did not contain a RequestedSecurityToken")
    assertion = requested[0]

    expires_text = root.findtext(f".//{_q('trust', 'Lifetime')}/{_q('u', 'Expires')}")
    expires = _parse_time(expires_text) if expires_text else None
    return assertion, expires


class AdfsTokenProvider:
    """Issues and caches federation tokens for the CoreService relying party.

    Usage:
        provider = AdfsTokenProvider(settings)
        assertion = provider.get_token()
    """

    def __init__(self, settings: CoreServiceSettings, relying_party: Optional[str] = None):
        if not settings.adfs_url:
            raise ConfigurationError("Federation connections require an ADFS URL (TRIDION_CS_ADFS_URL)")
        self.settings = settings
        self.endpoint = settings.adfs_url.rstrip("/") + USERNAME_MIXED_PATH
        self.relying_party = settings.adfs_relying_party or relying_party or ""
        if not self.relying_party:
            raise ConfigurationError("Federation connections require a relying party identifier")
        self._token: Optional[etree._Element] = None
        self._expires_at: Optional[datetime] = None

    def get_token(self) -> etree._Element:
        """Return a valid assertion, requesting a new one when expired or expiring soon."""
        now = datetime.now(timezone.utc)
        if self._token is None or self._expires_at is None or now >= self._expires_at - EXPIRY_MARGIN:
            self._token, expires = self._request_token()
            self._expires_at = expires or (now + DEFAULT_LIFETIME)
        return self._token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = None

    def _request_token(self) -> tuple[etree._Element, Optional[datetime]]:
        password = resolve_password(self.settings)
        if not self.settings.user_name or not password:
            raise ConfigurationError("Federation connections require a user name and password")

        payload = build_issue_request(self.endpoint, self.settings.user_name, password, self.relying_party)
        logger.debug("Requesting federation token from %s for %s", self.endpoint, self.relying_party)
        try:
            resp = requests.post(
                self.endpoint,
                data=payload,
                headers={"Content-Type": "application/soap+xml; charset=utf-8"},
                timeout=REQUEST_TIMEOUT,
                verify=self.settings.verify_tls,
            )
        except requests.RequestException as e:
            raise AdfsAuthenticationError(f"Could not reach {self.endpoint}: {e}") from e

        # ADFS reports authentication failures as SOAP faults with HTTP 500
        if resp.status_code >= 400 and b"Fault" not in (resp.content or b""):
            raise AdfsAuthenticationError(
                f"Token request to {self.endpoint} failed with HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            token, expires = parse_issue_response(resp.content)
        except AdfsAuthenticationError as e:
            e.status_code = resp.status_code if resp.status_code >= 400 else None
            raise
        logger.info("Federation token issued for %s", self.settings.user_name)
        return token, expires


class IssuedTokenHeader:
    """zeep wsse plugin that places the federation token in the Security header."""

    def __init__(self, provider: AdfsTokenProvider):
        self.provider = provider

    def apply(self, envelope, headers):
        security = get_security_header(envelope)
        security.append(copy.deepcopy(self.provider.get_token()))
        return envelope, headers

    def verify(self, envelope):
        return envelope
