"""Unit tests for federation token issuance."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import requests
from lxml import etree

from tridion.config.settings import CoreServiceSettings
from tridion.core.coreservice import adfs
from tridion.core.coreservice.exceptions import AdfsAuthenticationError, ConfigurationError

RELYING_PARTY = "https://cms.example.com/webservices/CoreService201701.svc/basicHttp"


def make_settings(**overrides):
    base = dict(
        host_name="cms.example.com",
        user_name="alice@example.com",
        password="pw",
        version="Sites-9.0",
        connection_type="Federation",
        adfs_url="https://adfs.example.com/",
    )
    base.update(overrides)
    return CoreServiceSettings(**base)


def rstr(expires: datetime | None = None, assertion_id: str = "_abc") -> bytes:
    lifetime = ""
    if expires is not None:
        lifetime = (
            "<trust:Lifetime><u:Expires>"
            + expires.strftime("%Y-%m-%dT%H:%M:%S.000Z")
            + "</u:Expires></trust:Lifetime>"
        )
    return f"""<s:Envelope xmlns:s="{adfs.NS['s']}" xmlns:u="{adfs.NS['u']}">
  <s:Body>
    <trust:RequestSecurityTokenResponseCollection xmlns:trust="{adfs.NS['trust']}">
      <trust:RequestSecurityTokenResponse>
        {lifetime}
        <trust:RequestedSecurityToken>
          <Assertion xmlns="urn:oasis:names:tc:SAML:2.0:assertion" ID="{assertion_id}"/>
        </trust:RequestedSecurityToken>
      </trust:RequestSecurityTokenResponse>
    </trust:RequestSecurityTokenResponseCollection>
  </s:Body>
</s:Envelope>""".encode("utf-8")


FAULT = f"""<s:Envelope xmlns:s="{adfs.NS['s']}">
  <s:Body><s:Fault>
    <s:Code><s:Value>s:Sender</s:Value></s:Code>
    <s:Reason><s:Text xml:lang="en-US">ID3242: The security token could not be authenticated.</s:Text></s:Reason>
  </s:Fault></s:Body>
</s:Envelope>""".encode("utf-8")


class TestIssueRequest:
    def test_envelope_carries_credentials_and_applies_to(self):
        payload = adfs.build_issue_request(
            "https://adfs.example.com/adfs/services/trust/13/usernamemixed",
            "alice@example.com",
            "pw",
            RELYING_PARTY,
        )
        root = etree.fromstring(payload)
        ns = adfs.NS
        assert root.findtext(".//{%s}Username" % ns["o"]) == "alice@example.com"
        assert root.findtext(".//{%s}Password" % ns["o"]) == "pw"
        assert root.findtext(".//{%s}AppliesTo//{%s}Address" % (ns["wsp"], ns["a"])) == RELYING_PARTY
        assert root.findtext(".//{%s}KeyType" % ns["trust"]) == adfs.BEARER_KEY
        assert root.findtext(".//{%s}Action" % ns["a"]) == adfs.ISSUE_ACTION

    def test_timestamp_window(self):
        now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        root = etree.fromstring(adfs.build_issue_request("https://x", "u", "p", "rp", now=now))
        assert root.findtext(".//{%s}Created" % adfs.NS["u"]) == "2026-01-01T12:00:00.000Z"
        assert root.findtext(".//{%s}Expires" % adfs.NS["u"]) == "2026-01-01T12:05:00.000Z"


class TestIssueResponse:
    def test_extracts_assertion_and_expiry(self):
        expires = datetime(2030, 5, 1, 8, 30, tzinfo=timezone.utc)
        token, parsed = adfs.parse_issue_response(rstr(expires))
        assert etree.QName(token).localname == "Assertion"
        assert parsed == expires

    def test_missing_lifetime(self):
        _, parsed = adfs.parse_issue_response(rstr(None))
        assert parsed is None

    def test_seven_digit_fraction_in_lifetime(self):
        body = rstr(datetime(2030, 5, 1, 8, 30, tzinfo=timezone.utc)).replace(b"00.000Z", b"00.1234567Z")
        _, parsed = adfs.parse_issue_response(body)
        assert parsed == datetime(2030, 5, 1, 8, 30, 0, 123456, tzinfo=timezone.utc)

    def test_unparseable_lifetime(self):
        body = rstr(datetime(2030, 5, 1, 8, 30, tzinfo=timezone.utc)).replace(b"2030-05-01T08:30:00.000Z", b"next tuesday")
        with pytest.raises(AdfsAuthenticationError, match="Unparseable token lifetime"):
            adfs.parse_issue_response(body)

    def test_fault_raises(self):
        with pytest.raises(AdfsAuthenticationError, match="ID3242"):
            adfs.parse_issue_response(FAULT)

    def test_missing_token_raises(self):
        body = f'<s:Envelope xmlns:s="{adfs.NS["s"]}"><s:Body/></s:Envelope>'.encode()
        with pytest.raises(AdfsAuthenticationError, match="RequestedSecurityToken"):
            adfs.parse_issue_response(body)

    def test_malformed_xml(self):
        with pytest.raises(AdfsAuthenticationError, match="Malformed"):
            adfs.parse_issue_response(b"<not-xml")


class TestTokenProvider:
    def _stub_post(self, monkeypatch, responses):
        calls = []

        def fake_post(url, data=None, headers=None, timeout=None, verify=True):
            calls.append(SimpleNamespace(url=url, data=data, headers=headers, verify=verify))
            return responses.pop(0)

        monkeypatch.setattr(requests, "post", fake_post)
        return calls

    def test_requires_adfs_url(self):
        with pytest.raises(ConfigurationError, match="ADFS URL"):
            adfs.AdfsTokenProvider(make_settings(adfs_url=""), relying_party=RELYING_PARTY)

    def test_requires_relying_party(self):
        with pytest.raises(ConfigurationError, match="relying party"):
            adfs.AdfsTokenProvider(make_settings())

    def test_configured_relying_party_wins(self):
        provider = adfs.AdfsTokenProvider(
            make_settings(adfs_relying_party="urn:tridion"), relying_party=RELYING_PARTY
        )
        assert provider.relying_party == "urn:tridion"

    def test_token_is_cached_until_expiry(self, monkeypatch):
        expires = datetime.now(timezone.utc) + timedelta(hours=1)
        calls = self._stub_post(monkeypatch, [SimpleNamespace(status_code=200, content=rstr(expires))])
        provider = adfs.AdfsTokenProvider(make_settings(), relying_party=RELYING_PARTY)

        first = provider.get_token()
        second = provider.get_token()

        assert first is second
        assert len(calls) == 1
        assert calls[0].url == "https://adfs.example.com/adfs/services/trust/13/usernamemixed"
        assert calls[0].headers["Content-Type"].startswith("application/soap+xml")

    def test_token_refreshed_when_expiring(self, monkeypatch):
        soon = datetime.now(timezone.utc) + timedelta(seconds=30)
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        calls = self._stub_post(monkeypatch, [
            SimpleNamespace(status_code=200, content=rstr(soon, "_first")),
            SimpleNamespace(status_code=200, content=rstr(later, "_second")),
        ])
        provider = adfs.AdfsTokenProvider(make_settings(), relying_party=RELYING_PARTY)

        provider.get_token()
        token = provider.get_token()

        assert token.get("ID") == "_second"
        assert len(calls) == 2

    def test_http_error_without_fault(self, monkeypatch):
        self._stub_post(monkeypatch, [SimpleNamespace(status_code=503, content=b"Service Unavailable")])
        provider = adfs.AdfsTokenProvider(make_settings(), relying_party=RELYING_PARTY)
        with pytest.raises(AdfsAuthenticationError) as excinfo:
            provider.get_token()
        assert excinfo.value.status_code == 503

    def test_fault_with_http_500(self, monkeypatch):
        self._stub_post(monkeypatch, [SimpleNamespace(status_code=500, content=FAULT)])
        provider = adfs.AdfsTokenProvider(make_settings(), relying_party=RELYING_PARTY)
        with pytest.raises(AdfsAuthenticationError, match="could not be authenticated") as excinfo:
            provider.get_token()
        assert excinfo.value.status_code == 500

    def test_unreachable_server(self, monkeypatch):
        def fake_post(*args, **kwargs):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "post", fake_post)
        provider = adfs.AdfsTokenProvider(make_settings(), relying_party=RELYING_PARTY)
        with pytest.raises(AdfsAuthenticationError, match="Could not reach"):
            provider.get_token()


def test_issued_token_header_injects_assertion():
    soap_ns = "http://schemas.xmlsoap.org/soap/envelope/"
    envelope = etree.Element("{%s}Envelope" % soap_ns, nsmap={"soap-env": soap_ns})
    etree.SubElement(envelope, "{%s}Header" % soap_ns)
    etree.SubElement(envelope, "{%s}Body" % soap_ns)

    assertion = etree.fromstring(b'<Assertion xmlns="urn:oasis:names:tc:SAML:2.0:assertion" ID="_x"/>')
    provider = SimpleNamespace(get_token=lambda: assertion)

    result, headers = adfs.IssuedTokenHeader(provider).apply(envelope, {"SOAPAction": "x"})

    security = result.find(".//{%s}Security" % adfs.NS["o"])
    assert security is not None
    assert security[0].get("ID") == "_x"
    assert headers == {"SOAPAction": "x"}
