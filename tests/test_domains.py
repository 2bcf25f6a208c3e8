"""Root domain and provider detection, record filtering and the domain check."""

import dns.exception
import pytest

from arnor.domains import (
    check,
    detect_provider,
    filter_records,
    matching_records,
    root_domain,
    split_domain,
    www_name,
)
from arnor.errors import NotFoundError, ProviderAPIError
from arnor.types import Config, DNSRecord, Environment, Project, Server

from .conftest import SERVER_IP, FakeDNSProvider, fake_ns_lookup


def test_root_domain_walks_up_to_delegated_suffix():
    assert root_domain("myapp.angmar.dev", fake_ns_lookup) == "angmar.dev"
    assert root_domain("a.b.example.com", fake_ns_lookup) == "example.com"
    assert root_domain("example.com", fake_ns_lookup) == "example.com"


def test_root_domain_prefers_delegated_subdomain():
    lookup = {"shop.example.com": ["ns1.porkbun.com"], "example.com": ["ns1.cloudflare.com"]}.get
    assert root_domain("shop.example.com", lambda n: lookup(n, [])) == "shop.example.com"


def test_root_domain_without_nameservers():
    with pytest.raises(NotFoundError, match="no NS records"):
        root_domain("nowhere.invalid", fake_ns_lookup)


def test_detect_provider():
    assert detect_provider("myapp.example.com", fake_ns_lookup) == "porkbun"
    assert detect_provider("www.cf-example.org", fake_ns_lookup) == "cloudflare"


def test_detect_provider_unrecognized():
    with pytest.raises(NotFoundError, match="unrecognized nameservers for example.net"):
        detect_provider("example.net", lambda n: ["ns1.registrar.net"] if n == "example.net" else [])


def test_split_domain():
    assert split_domain("example.com", "example.com") == ""
    assert split_domain("myapp.angmar.dev", "angmar.dev") == "myapp"
    assert www_name("") == "www"
    assert www_name("myapp") == "www.myapp"


def test_matching_records_exact_name_and_types():
    records = [
        DNSRecord("1", "myapp.example.com", "A", "1.1.1.1"),
        DNSRecord("2", "myapp.example.com.", "CNAME", "other.example.com"),
        DNSRecord("3", "myapp.example.com", "ALIAS", "lb.example.com"),
        DNSRecord("4", "myapp.example.com", "TXT", "v=spf1"),
        DNSRecord("5", "www.myapp.example.com", "CNAME", "myapp.example.com"),
    ]
    assert [r.id for r in matching_records(records, "myapp.example.com")] == ["1", "2", "3"]


def test_filter_records_keeps_related_a_and_cname():
    records = [
        DNSRecord("1", "example.com", "A", SERVER_IP),
        DNSRecord("2", "www.example.com", "CNAME", "example.com"),
        DNSRecord("3", "api.example.com", "A", SERVER_IP),
        DNSRecord("4", "example.com", "MX", "mail.example.com"),
        DNSRecord("5", "other.org", "A", SERVER_IP),
    ]
    assert [r.id for r in filter_records(records, "example.com")] == ["1", "2", "3"]


def _config(domain: str) -> Config:
    return Config(
        servers=[Server("web-1", SERVER_IP)],
        projects=[
            Project(
                "myapp",
                "acme/myapp",
                "web-1",
                {"prod": Environment(domain, "porkbun", "main", "/opt/myapp", "myapp-deploy", 3000)},
            )
        ],
    )


def test_check_pass():
    provider = FakeDNSProvider(records=[DNSRecord("1", "example.com", "A", SERVER_IP)])
    result = check(
        _config("example.com"),
        "example.com",
        provider,
        ns_lookup=fake_ns_lookup,
        host_lookup=lambda name: [SERVER_IP],
    )
    assert result.summary == "PASS"
    assert result.context.project == "myapp"
    assert result.context.env_name == "prod"
    assert result.resolution.expected_ip == SERVER_IP
    assert [r.id for r in result.records] == ["1"]


def test_check_wrong_ip_fails():
    result = check(
        _config("example.com"),
        "example.com",
        ns_lookup=fake_ns_lookup,
        host_lookup=lambda name: ["198.51.100.1"],
    )
    assert result.resolution.status == "FAIL"
    assert result.summary == "FAIL"


def test_check_unknown_domain_warns():
    result = check(
        Config(), "example.com", ns_lookup=fake_ns_lookup, host_lookup=lambda name: [SERVER_IP]
    )
    assert result.context is None
    assert result.resolution.status == "SKIP"
    assert result.summary == "WARN"


def test_check_resolution_error_fails():
    def nxdomain(name):
        raise dns.exception.DNSException("NXDOMAIN")

    result = check(_config("example.com"), "example.com", ns_lookup=fake_ns_lookup, host_lookup=nxdomain)
    assert result.resolution.error == "NXDOMAIN"
    assert result.summary == "FAIL"


def test_check_provider_error_is_reported_not_raised():
    class Broken(FakeDNSProvider):
        def list_records(self, root):
            raise ProviderAPIError("porkbun", "invalid api key")

    result = check(
        _config("example.com"),
        "example.com",
        Broken(),
        ns_lookup=fake_ns_lookup,
        host_lookup=lambda name: [SERVER_IP],
    )
    assert "invalid api key" in result.records_error
    assert result.summary == "PASS"
