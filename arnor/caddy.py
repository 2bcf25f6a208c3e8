"""Caddy reverse proxy: site rendering, remote deploy and installation."""

import logging
from textwrap import dedent

from .config import dev_domain
from .errors import RemoteExecutionError
from .pipeline import Pipeline, ProgressFunc, Step
from .remote import RemoteSession

logger = logging.getLogger("arnor.caddy")

CONF_DIR = "/etc/caddy/conf.d"
CADDYFILE = "/etc/caddy/Caddyfile"

CADDY_DOWNLOAD_URL = (
    "https://caddyserver.com/api/download?os=linux&arch=amd64&p=github.com/caddy-dns/cloudflare"
)

SERVICE_UNIT = dedent("""\
    [Unit]
    Description=Caddy
    Documentation=https://caddyserver.com/docs/
    After=network.target network-online.target
    Requires=network-online.target

    [Service]
    Type=notify
    User=caddy
    Group=caddy
    ExecStart=/usr/bin/caddy run --environ --config /etc/caddy/Caddyfile
    ExecReload=/usr/bin/caddy reload --config /etc/caddy/Caddyfile --force
    TimeoutStopSec=5s
    LimitNOFILE=1048576
    LimitNPROC=512
    PrivateTmp=true
    ProtectSystem=full
    AmbientCapabilities=CAP_NET_BIND_SERVICE

    [Install]
    WantedBy=multi-user.target
""")

ROOT_CADDYFILE = (
    "{\n"
    "\tlog {\n"
    "\t\toutput file /var/log/caddy/access.log\n"
    "\t}\n"
    "}\n"
    "\n"
    "import conf.d/*\n"
)

CF_OVERRIDE = '[Service]\nEnvironment="CF_API_TOKEN={token}"\n'


def is_dev_domain(domain: str, suffix: str | None = None) -> bool:
    suffix = suffix or dev_domain()
    return len(domain) > len(suffix) and domain.endswith(suffix)


def _tls_block(dns_provider: str) -> str:
    if dns_provider == "cloudflare":
        return "\n\ttls {\n\t\tdns cloudflare {env.CF_API_TOKEN}\n\t}"
    return ""


def render_site(domain: str, port: int, dns_provider: str = "", dev_suffix: str | None = None) -> str:
    """Render the Caddy site block for a domain.

    Production domains also get a ``www`` redirect block. Cloudflare domains
    use the DNS-01 challenge through the caddy-dns/cloudflare module.

    :param domain: Site domain
    :param port: Local port to reverse proxy to
    :param dns_provider: DNS provider name of the domain
    :param dev_suffix: Domain suffix treated as dev (no ``www`` redirect)
    """
    tls = _tls_block(dns_provider)
    block = f"{domain} {{{tls}\n\treverse_proxy localhost:{port}\n}}\n"
    if not is_dev_domain(domain, dev_suffix):
        block += f"\nwww.{domain} {{{tls}\n\tredir https://{domain}{{uri}} permanent\n}}\n"
    return block


def site_path(domain: str) -> str:
    return f"{CONF_DIR}/{domain}.caddy"


def deploy_site(session: RemoteSession, domain: str, content: str) -> None:
    """Upload a site config, validate the full Caddy config and reload.

    :raises RemoteExecutionError: If validation or reload fails; a failed
        reload carries the last journal lines of the caddy unit
    """
    session.run(f"sudo mkdir -p {CONF_DIR}")
    session.write_file(site_path(domain), content)
    try:
        session.output(f"sudo caddy validate --config {CADDYFILE} 2>&1")
    except RemoteExecutionError as e:
        raise RemoteExecutionError(
            e.command, f"caddy config validation failed: {e.stdout.strip() or e}"
        ) from e
    try:
        session.run("sudo systemctl reload caddy")
    except RemoteExecutionError as e:
        try:
            journal = session.output("sudo journalctl -u caddy -n 20 --no-pager 2>&1")
        except RemoteExecutionError as journal_error:
            journal = f"(journal unavailable: {journal_error})"
        raise RemoteExecutionError(
            e.command, f"reloading caddy: {e}\njournal output:\n{journal.strip()}"
        ) from e


def _write_unit_if_missing(session: RemoteSession) -> None:
    try:
        session.run(
            "test -f /etc/systemd/system/caddy.service || test -f /lib/systemd/system/caddy.service"
        )
    except RemoteExecutionError:
        session.write_file("/etc/systemd/system/caddy.service", SERVICE_UNIT)


def _write_caddyfile(session: RemoteSession) -> None:
    session.run(f"sudo mkdir -p {CONF_DIR}")
    existing = session.output(f"cat {CADDYFILE} 2>/dev/null || true")
    if "import conf.d/*" not in existing:
        session.write_file(CADDYFILE, ROOT_CADDYFILE)


def _write_cf_override(session: RemoteSession, cf_token: str) -> None:
    if not cf_token:
        logger.info("No Cloudflare token, skipping systemd override")
        return
    session.run("sudo mkdir -p /etc/systemd/system/caddy.service.d")
    session.write_file(
        "/etc/systemd/system/caddy.service.d/cloudflare.conf",
        CF_OVERRIDE.format(token=cf_token),
    )


def _run_all(session: RemoteSession, *cmds: str) -> None:
    for cmd in cmds:
        session.run(cmd)


def install_pipeline(session: RemoteSession, cf_token: str = "") -> Pipeline:
    """Eight steps installing Caddy with the Cloudflare DNS module as a systemd service."""
    return Pipeline(
        [
            Step(
                "Downloaded Caddy with cloudflare module",
                lambda _: session.run(f"curl -fsSL -o /tmp/caddy '{CADDY_DOWNLOAD_URL}'"),
                context="downloading caddy",
            ),
            Step(
                "Created caddy user",
                lambda _: session.run(
                    "id caddy >/dev/null 2>&1 || sudo useradd --system --home /var/lib/caddy "
                    "--shell /usr/sbin/nologin caddy"
                ),
                context="creating caddy user",
            ),
            Step(
                "Installed Caddy binary",
                lambda _: _run_all(
                    session,
                    "sudo systemctl stop caddy 2>/dev/null || true",
                    "sudo mv /tmp/caddy /usr/bin/caddy",
                    "sudo chmod 755 /usr/bin/caddy",
                ),
                context="installing caddy binary",
            ),
            Step(
                "Set up systemd service",
                lambda _: _write_unit_if_missing(session),
                context="writing caddy.service",
            ),
            Step(
                "Wrote Caddyfile",
                lambda _: _write_caddyfile(session),
                context="writing Caddyfile",
            ),
            Step(
                "Created log directory",
                lambda _: session.run(
                    "sudo mkdir -p /var/log/caddy && sudo chown caddy:caddy /var/log/caddy"
                ),
                context="creating log dir",
            ),
            Step(
                "Configured Cloudflare token",
                lambda _: _write_cf_override(session, cf_token),
                context="writing cloudflare override",
            ),
            Step(
                "Started Caddy",
                lambda _: _run_all(
                    session,
                    "sudo systemctl daemon-reload",
                    "sudo systemctl enable caddy",
                    "sudo systemctl restart caddy",
                ),
                context="starting caddy",
            ),
        ]
    )


def install(session: RemoteSession, cf_token: str = "", on_progress: ProgressFunc | None = None) -> None:
    """Install Caddy on the host behind ``session``.

    :param cf_token: Cloudflare API token for DNS-01, empty to skip the override
    :raises StepError: On the first failing step
    """
    install_pipeline(session, cf_token).run(None, on_progress)
