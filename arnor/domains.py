"""Domain helpers: root domain and DNS provider detection, record filtering, health check."""

from dataclasses import dataclass, field
from typing import Callable

import dns.exception
import dns.resolver

from .errors import NotFoundError, ProviderAPIError
from .types import CheckStatus, Config, DNSRecord

NSLookup = Callable[[str], list[str]]
HostLookup = Callable[[str], list[str]]

KNOWN_PROVIDERS = ("porkbun", "cloudflare")


def lookup_ns(name: str) -> list[str]:
    """:return: Nameserver host names for ``name``, empty if it has none"""
    try:
        answer = dns.resolver.resolve(name, "NS")
    except dns.exception.DNSException:
        return []
    return [str(rr.target).rstrip(".") for rr in answer]


def lookup_host(name: str) -> list[str]:
    """Resolve A records for ``name``.

    :raises dns.exception.DNSException: If resolution fails
    """
    answer = dns.resolver.resolve(name, "A")
    return [str(rr) for rr in answer]


def _walk_suffixes(domain: str):
    """Yield ``domain`` and then each parent suffix that still contains a dot."""
    candidate = domain
    while True:
        yield candidate
        idx = candidate.find(".")
        if idx < 0 or idx == len(candidate) - 1:
            return
        candidate = candidate[idx + 1 :]
        if "." not in candidate:
            return


def _first_with_ns(domain: str, lookup: NSLookup | None) -> tuple[str, list[str]]:
    lookup = lookup or lookup_ns
    for candidate in _walk_suffixes(domain):
        nameservers = lookup(candidate)
        if nameservers:
            return candidate, nameservers
    raise NotFoundError(f"looking up nameservers for {domain}: no NS records found")


def root_domain(domain: str, lookup: NSLookup | None = None) -> str:
    """Find the closest suffix of ``domain`` that carries NS records.

    ``sub.example.com`` returns ``example.com`` unless ``sub.example.com`` is
    itself delegated.

    :param domain: Fully qualified domain name
    :param lookup: NS lookup function, dnspython by default
    :raises NotFoundError: If no suffix down to two labels has nameservers
    """
    candidate, _ = _first_with_ns(domain, lookup)
    return candidate


def detect_provider(domain: str, lookup: NSLookup | None = None) -> str:
    """Infer the DNS provider name from the nameservers of ``domain`` or a parent.

    :raises NotFoundError: If no nameservers are found or none is recognised
    """
    candidate, nameservers = _first_with_ns(domain, lookup)
    return match_provider(candidate, nameservers)


def match_provider(domain: str, nameservers: list[str]) -> str:
    for host in nameservers:
        host = host.lower()
        for provider in KNOWN_PROVIDERS:
            if provider in host:
                return provider
    raise NotFoundError(
        f"unrecognized nameservers for {domain}: {', '.join(nameservers)}"
    )


def split_domain(domain: str, root: str) -> str:
    """:return: Record name of ``domain`` relative to ``root``, empty for the apex"""
    if domain == root:
        return ""
    return domain.removesuffix("." + root)


def www_name(subname: str) -> str:
    return f"www.{subname}" if subname else "www"


def filter_records(records: list[DNSRecord], domain: str) -> list[DNSRecord]:
    """Keep the A and CNAME records relevant to ``domain``.

    Both providers list fully qualified names; the bare "" and "www" forms are
    kept as well for records entered by hand as short names.
    """
    kept = []
    for r in records:
        if r.type not in ("A", "CNAME"):
            continue
        name = r.name.rstrip(".")
        if (
            name in (domain, "www." + domain, "", "www")
            or name.endswith("." + domain)
        ):
            kept.append(r)
    return kept


def matching_records(records: list[DNSRecord], domain: str) -> list[DNSRecord]:
    """:return: A, CNAME and ALIAS records named exactly ``domain``"""
    return [
        r
        for r in records
        if r.type in ("A", "CNAME", "ALIAS") and r.name.rstrip(".") == domain
    ]


@dataclass
class DomainContext:
    """Project environment that owns a domain."""

    project: str
    env_name: str
    server: str
    expected_ip: str = ""
    port: int = 0


@dataclass
class Resolution:
    status: CheckStatus = "SKIP"
    resolved_ips: list[str] = field(default_factory=list)
    expected_ip: str = ""
    error: str = ""


@dataclass
class CheckResult:
    domain: str
    root_domain: str
    provider_name: str = ""
    context: DomainContext | None = None
    resolution: Resolution = field(default_factory=Resolution)
    records: list[DNSRecord] = field(default_factory=list)
    records_error: str = ""
    summary: CheckStatus = "WARN"


def lookup_context(config: Config | None, domain: str) -> DomainContext | None:
    if config is None:
        return None
    for project in config.projects:
        for env_name, env in project.environments.items():
            if env.domain != domain:
                continue
            ctx = DomainContext(
                project=project.name,
                env_name=env_name,
                server=project.server,
                port=env.port,
            )
            server = config.find_server(project.server)
            if server is not None:
                ctx.expected_ip = server.ip
            return ctx
    return None


def resolve(domain: str, ctx: DomainContext | None, lookup: HostLookup | None = None) -> Resolution:
    """Resolve ``domain`` and compare against the IP of its server, if known."""
    lookup = lookup or lookup_host
    try:
        ips = lookup(domain)
    except (dns.exception.DNSException, OSError) as e:
        return Resolution(status="FAIL", error=str(e))

    result = Resolution(resolved_ips=ips)
    if ctx is None or not ctx.expected_ip:
        return result
    result.expected_ip = ctx.expected_ip
    result.status = "PASS" if ctx.expected_ip in ips else "FAIL"
    return result


def compute_summary(result: CheckResult) -> CheckStatus:
    if result.resolution.status == "FAIL":
        return "FAIL"
    if result.context is None:
        return "WARN"
    if result.resolution.status == "PASS":
        return "PASS"
    return "WARN"


def check(
    config: Config | None,
    domain: str,
    provider=None,
    *,
    ns_lookup: NSLookup | None = None,
    host_lookup: HostLookup | None = None,
) -> CheckResult:
    """Run a domain health check.

    :param config: Loaded config, used to find the owning project
    :param domain: Domain to check
    :param provider: DNS provider for the domain, or None if it could not be resolved
    :param ns_lookup: NS lookup function
    :param host_lookup: A record lookup function
    :raises NotFoundError: If the root domain cannot be determined
    """
    result = CheckResult(domain=domain, root_domain=root_domain(domain, ns_lookup))
    result.context = lookup_context(config, domain)
    if provider is not None:
        result.provider_name = provider.name
    result.resolution = resolve(domain, result.context, host_lookup)

    if provider is not None:
        try:
            records = provider.list_records(result.root_domain)
        except ProviderAPIError as e:
            result.records_error = str(e)
        else:
            result.records = filter_records(records, domain)

    result.summary = compute_summary(result)
    return result
