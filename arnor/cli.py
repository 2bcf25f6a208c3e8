#!/usr/bin/env python3
"""Provision and deploy web projects onto Hetzner Cloud servers.

Prerequisites: gh CLI authenticated, Hetzner/Porkbun/Cloudflare/DockerHub
credentials stored with 'arnor config'.

Usage: arnor <noun> <verb> [options]

Examples:
    arnor config init
    arnor server init web-1
    arnor project create
    arnor deploy myapp --env dev
    arnor domain check myapp.example.com
"""

from pathlib import Path
from typing import Annotated

import cyclopts
from cyclopts import Parameter
from rich import print
from rich.markup import escape
from rich.prompt import Confirm, Prompt

from . import caddy, peon, wizard
from .config import CREDENTIAL_FIELDS, db_path, load_env, log_level
from .dns_providers import CloudflareProvider, PorkbunProvider, provider_for_domain
from .dockerhub import DockerHubClient
from .domains import check as check_domain
from .errors import ArnorError, InputCancelled, NotFoundError, ValidationError
from .github import GitHubCLI, repo_slug, workflow_file
from .hetzner import HetznerClient, HetznerManager
from .pipeline import BackgroundRun, best_effort
from .ports import get_used_ports, suggest_port
from .project import new_run, setup_pipeline
from .remote import open_session
from .service import DeployParams, deploy as deploy_service
from .store import SQLiteStore
from .types import Server
from .utils import error, log, setup_logging, warn

app = cyclopts.App(
    name="arnor", help="Provision and deploy projects to Hetzner servers", sort_key=None
)

config_app = cyclopts.App(name="config", help="Manage credentials and inventory", sort_key=1)
server_app = cyclopts.App(name="server", help="Manage Hetzner Cloud servers", sort_key=2)
ssh_app = cyclopts.App(name="ssh", help="Manage Hetzner Cloud SSH keys", sort_key=3)
dns_app = cyclopts.App(name="dns", help="Manage DNS records (Porkbun or Cloudflare)", sort_key=4)
domain_app = cyclopts.App(name="domain", help="Domain diagnostics", sort_key=5)
project_app = cyclopts.App(name="project", help="Manage projects", sort_key=6)
service_app = cyclopts.App(name="service", help="Manage Docker Compose services", sort_key=7)
caddy_app = cyclopts.App(name="caddy", help="Manage the Caddy reverse proxy", sort_key=8)

app.command(config_app)
app.command(server_app)
app.command(ssh_app)
app.command(dns_app)
app.command(domain_app)
app.command(project_app)
app.command(service_app)
app.command(caddy_app)

CONTAINER_TABLE = "docker ps --format 'table {{.Names}}\\t{{.Image}}\\t{{.Status}}\\t{{.Ports}}'"

# Supplied by the launcher, never parsed from the command line.
Store = Annotated[SQLiteStore, Parameter(parse=False)]


class ConsolePrompt:
    """InputRequest answered on the terminal."""

    def prompt(self, label: str, secret: bool = False) -> str:
        try:
            return Prompt.ask(label, password=secret)
        except (KeyboardInterrupt, EOFError):
            raise InputCancelled(f"{label}: cancelled") from None


def print_table(headers: list[str], rows: list[list], indent: str = "  ") -> None:
    """Print left-aligned columns with a dashed rule under the header."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(str(cell)))
    print(indent + "  ".join(h.ljust(w) for h, w in zip(headers, widths)))
    print(indent + "  ".join("-" * w for w in widths))
    for row in rows:
        print(indent + "  ".join(str(c).ljust(w) for c, w in zip(row, widths)))


def print_progress(step: int, total: int, message: str) -> None:
    print(f"[green]Step {step}/{total}:[/green] {message}")


def print_warnings(warnings: list[str]) -> None:
    for message in warnings:
        warn(message)


def resolve_host(store: SQLiteStore, target: str) -> tuple[str, str]:
    """Map a server name or host to ``(name, ip)``.

    Inventory first, then Hetzner; anything else is taken as a literal host.
    """
    server = store.load_config().find_server(target)
    if server is not None:
        return server.name, server.ip
    try:
        cloud = HetznerManager.from_store(store).get_server(target)
    except NotFoundError:
        return target, target
    return cloud.name, cloud.ip


def peon_session(store: SQLiteStore, target: str):
    name, ip = resolve_host(store, target)
    try:
        key = store.get_peon_key(ip)
    except NotFoundError as e:
        raise NotFoundError(f"{e} (run 'arnor server init {name}' first)") from e
    return open_session(ip, key, prompt=ConsolePrompt())


def image_name(store: SQLiteStore, project: str) -> str:
    return f"{store.get_credential('dockerhub', 'default', 'username')}/{project}"


def verify_credentials(store: SQLiteStore, service: str, name: str) -> bool:
    """Check a complete credential set against its service.

    :return: False while keys the check needs are still missing
    :raises ValidationError: If the service rejects the credentials
    """
    values = {c.key: c.value for c in store.list_credentials(service) if c.name == name}
    try:
        if service == "porkbun" and {"api_key", "secret_key"} <= values.keys():
            PorkbunProvider(values["api_key"], values["secret_key"]).ping()
        elif service == "cloudflare" and {"account_id", "api_token"} <= values.keys():
            status = CloudflareProvider(values["api_token"]).verify_token(values["account_id"])
            if status != "active":
                raise ValidationError(f"token status is '{status or 'unknown'}'")
        elif service == "dockerhub" and {"username", "password"} <= values.keys():
            DockerHubClient(values["username"], values["password"]).ping()
        elif service == "hetzner" and "api_token" in values:
            HetznerClient(values["api_token"], project=name).ping()
        else:
            return False
    except ArnorError as e:
        raise ValidationError(f"{service}/{name} credentials rejected: {e}") from e
    return True


# --- config ---


@config_app.command(name="init")
def config_init(*, store: Store):
    """Add a Hetzner project token and import its servers into the inventory."""
    alias = Prompt.ask("Hetzner project alias", default="default")
    token = Prompt.ask("Hetzner API token", password=True).strip()
    if not token:
        raise ValidationError("token is required")

    client = HetznerClient(token, project=alias)
    client.ping()
    log("Token validated")
    store.set_credential("hetzner", alias, "api_token", token)

    config = store.load_config()
    servers = client.list_servers()
    for s in servers:
        if config.find_server(s.name) is None:
            config.upsert_server(
                Server(name=s.name, ip=s.ip, provider_project=alias, provider_id=s.id)
            )
    store.save_config(config)
    print(f"Discovered {len(servers)} server(s) in '{alias}'")
    print("Use 'arnor config add' to set Porkbun, Cloudflare or DockerHub credentials.")


@config_app.command(name="view")
def config_view(*, store: Store):
    """Print inventory, projects and stored credential names."""
    config = store.load_config()

    if config.provider_projects:
        print("[bold]Hetzner projects[/bold]")
        for alias in config.provider_projects:
            print(f"  - {alias}")
    if config.servers:
        print("[bold]Servers[/bold]")
        for s in config.servers:
            print(f"  - {s.name} ({s.ip}) \\[{s.provider_project or '-'}]")
    if config.projects:
        print("[bold]Projects[/bold]")
        for p in config.projects:
            print(f"  - {p.name} ({p.repo or '-'}) on {p.server}")
            for env_name, env in sorted(p.environments.items()):
                print(f"      \\[{env_name}] {env.domain} port:{env.port} branch:{env.branch or '-'}")
    for service in CREDENTIAL_FIELDS:
        if service == "hetzner":
            continue
        creds = store.list_credentials(service)
        if creds:
            print(f"[bold]{service} credentials[/bold]")
            for c in creds:
                print(f"  - {c.name}/{c.key}: ***")

    if not (config.provider_projects or config.servers or config.projects):
        print("No configuration found. Run 'arnor config init' to get started.")


@config_app.command(name="add")
def config_add(service: str, name: str, key: str, value: str, *, store: Store):
    """Store a credential, e.g. 'arnor config add porkbun default api_key pk1_xxx'.

    Once every key a service needs is stored, the set is checked against the
    service and rejected credentials fail the command.

    :param service: Service (hetzner, porkbun, cloudflare, dockerhub)
    :param name: Credential name, 'default' or a Hetzner project alias
    :param key: Credential key
    :param value: Credential value
    """
    known = CREDENTIAL_FIELDS.get(service)
    if known is not None and key not in known:
        warn(f"'{key}' is not a known {service} key (expected: {', '.join(known)})")
    store.set_credential(service, name, key, value)
    print(f"Stored {service}/{name}/{key}")
    if verify_credentials(store, service, name):
        print(f"[green]{service}/{name} credentials verified[/green]")


@config_app.command(name="delete")
def config_delete(service: str, name: str, *, store: Store):
    """Delete every key stored under a service and name.

    :param service: Service (hetzner, porkbun, cloudflare, dockerhub)
    :param name: Credential name
    """
    store.delete_credential(service, name)
    print(f"Deleted {service}/{name}")


@config_app.command(name="list")
def config_list(service: str | None = None, *, store: Store):
    """List stored credential keys (values are never printed).

    :param service: Only list this service
    """
    services = [service] if service else list(CREDENTIAL_FIELDS)
    rows = [
        [c.service, c.name, c.key]
        for s in services
        for c in store.list_credentials(s)
    ]
    if not rows:
        print("No credentials stored.")
        return
    print_table(["SERVICE", "NAME", "KEY"], rows)


# --- server ---


@server_app.command(name="list")
def list_servers(*, store: Store):
    """List servers across all Hetzner projects."""
    servers = HetznerManager.from_store(store).list_servers()
    if not servers:
        print("No servers found.")
        return
    print_table(
        ["NAME", "IP", "STATUS", "TYPE", "LOCATION", "PROJECT"],
        [[s.name, s.ip, s.status, s.server_type, s.location, s.project] for s in servers],
    )


@server_app.command(name="view")
def view_server(name: str, *, store: Store):
    """Show server details from Hetzner.

    :param name: Server name
    """
    s = HetznerManager.from_store(store).get_server(name)
    print(f"Name:       {s.name}")
    print(f"ID:         {s.id}")
    print(f"Status:     {s.status}")
    print(f"IPv4:       {s.ip}")
    print(f"Type:       {s.server_type}")
    print(f"Datacenter: {s.datacenter}")
    print(f"Location:   {s.location}")
    print(f"Project:    {s.project}")
    print(f"Created:    {s.created}")


@server_app.command(name="init")
def init_server(
    target: str,
    *,
    user: str = "root",
    sudo_password: bool = False,
    store: Store,
):
    """Bootstrap the peon deploy user on a server and store its key.

    Installs Docker, creates the peon user with passwordless sudo and saves
    the generated private key to ~/.ssh/peon_ed25519_<host>.

    :param target: Server name, IP, or host:port
    :param user: Login user with root or sudo rights
    :param sudo_password: Ask for the sudo password when user is not root
    """
    host_name, _, port = target.partition(":")
    name, ip = resolve_host(store, host_name)
    host = f"{ip}:{port}" if port else ip

    password = ""
    if user != "root" and sudo_password:
        password = ConsolePrompt().prompt(f"sudo password for {user}@{ip}", secret=True)

    log(f"Bootstrapping peon on {user}@{host}...")
    key = peon.run_bootstrap(host, user=user, sudo_password=password, prompt=ConsolePrompt())
    path = peon.save_peon_key(store, host, key)
    print(f"[green]Server '{name}' ready[/green]; peon key saved to {path}")


@server_app.command(name="ports")
def server_ports(target: str, *, store: Store):
    """Show host ports bound by containers and the next free port.

    :param target: Server name or IP
    """
    name, ip = resolve_host(store, target)
    try:
        key = store.get_peon_key(ip)
    except NotFoundError as e:
        raise NotFoundError(f"{e} (run 'arnor server init {name}' first)") from e
    used = get_used_ports(ip, key)
    print(f"Used ports on {name}: {', '.join(map(str, used)) or '(none)'}")
    print(f"Suggested port: {suggest_port(used)}")


@server_app.command(name="ps")
def server_ps(target: str, *, store: Store):
    """List running containers on a server.

    :param target: Server name or IP
    """
    with peon_session(store, target) as session:
        output = session.output(CONTAINER_TABLE)
    print(escape(output.rstrip()))


@server_app.command(name="forget")
def forget_server(name: str, *, store: Store):
    """Remove a server from the local inventory (the VM is left running).

    :param name: Server name
    """
    if store.load_config().find_server(name) is None:
        raise NotFoundError(f"server not in inventory: {name}")
    store.delete_server(name)
    print(f"Removed server '{name}' from inventory")


# --- ssh ---


@ssh_app.command(name="list")
def list_ssh_keys(*, store: Store):
    """List SSH keys across all Hetzner projects."""
    keys = HetznerManager.from_store(store).list_ssh_keys()
    if not keys:
        print("No SSH keys found.")
        return
    print_table(
        ["ID", "NAME", "FINGERPRINT", "PROJECT"],
        [[k.id, k.name, k.fingerprint, k.project] for k in keys],
    )


@ssh_app.command(name="add")
def add_ssh_key(*, name: str, key: Path, project: str, store: Store):
    """Upload a public key to a Hetzner project.

    :param name: Name for the key in Hetzner
    :param key: Path to the public key file
    :param project: Hetzner project alias
    """
    client = HetznerManager.from_store(store).client(project)
    try:
        public_key = key.expanduser().read_text().strip()
    except OSError as e:
        raise ValidationError(f"reading key file {key}: {e}") from e
    created = client.add_ssh_key(name, public_key)
    print(
        f"Created SSH key '{created.name}' (ID: {created.id}, "
        f"Fingerprint: {created.fingerprint}) in project {project}"
    )


# --- dns ---


def _dns_provider(store: SQLiteStore, domain: str):
    return provider_for_domain(domain, store.load_config(), store)


@dns_app.command(name="list")
def list_records(*, domain: str, store: Store):
    """List DNS records for a root domain.

    :param domain: Root domain (e.g. example.com)
    """
    provider = _dns_provider(store, domain)
    records = provider.list_records(domain)
    if not records:
        print(f"No records found for {domain}")
        return
    print(f"Provider: {provider.name}\n")
    print_table(
        ["ID", "TYPE", "NAME", "CONTENT", "TTL"],
        [[r.id, r.type, r.name, r.content, r.ttl] for r in records],
    )


@dns_app.command(name="create")
def create_record(
    *,
    domain: str,
    type: str,
    content: str,
    name: str = "",
    ttl: str = "600",
    store: Store,
):
    """Create a DNS record.

    :param domain: Root domain (e.g. example.com)
    :param type: Record type (A, CNAME, TXT, ...)
    :param content: Record content (e.g. an IP address)
    :param name: Subdomain, empty for the apex
    :param ttl: Time to live in seconds
    """
    provider = _dns_provider(store, domain)
    record_id = provider.create_record(domain, name, type, content, ttl)
    print(f"Created {type} record via {provider.name} (ID: {record_id})")


@dns_app.command(name="delete")
def delete_record(*, domain: str, id: str, store: Store):
    """Delete a DNS record by id.

    :param domain: Root domain (e.g. example.com)
    :param id: Record id
    """
    provider = _dns_provider(store, domain)
    provider.delete_record(domain, id)
    print(f"Deleted record {id} from {domain} via {provider.name}")


# --- domain ---


@domain_app.command(name="check")
def domain_check(domain: str, *, all_records: bool = False, store: Store):
    """Verify that a domain resolves to the server it is deployed on.

    :param domain: Domain to check
    :param all_records: Show every A/CNAME record of the root domain
    """
    config = store.load_config()
    try:
        provider = provider_for_domain(domain, config, store)
    except NotFoundError as e:
        warn(f"DNS provider unavailable: {e}")
        provider = None
    result = check_domain(config, domain, provider)

    print(f"Domain:   {result.domain}")
    if result.provider_name:
        print(f"Provider: {result.provider_name}")
    if result.context is not None:
        print(f"Project:  {result.context.project} ({result.context.env_name})")
        print(f"Server:   {result.context.server}")

    res = result.resolution
    print("\n[bold]DNS resolution[/bold]")
    if res.error:
        print(f"  Error: {res.error}")
    elif res.resolved_ips:
        print(f"  A record resolves to: {', '.join(res.resolved_ips)}")
    if res.expected_ip:
        print(f"  Expected server IP:   {res.expected_ip}")
    print(f"  Status: {res.status}")

    records = result.records
    if all_records and provider is not None and not result.records_error:
        records = [
            r for r in provider.list_records(result.root_domain) if r.type in ("A", "CNAME")
        ]
    if result.records_error:
        print(f"\n[bold]DNS records[/bold]\n  Error: {result.records_error}")
    elif records:
        print("\n[bold]DNS records[/bold]")
        print_table(
            ["ID", "TYPE", "NAME", "CONTENT", "TTL"],
            [[r.id, r.type, r.name, r.content, r.ttl] for r in records],
        )

    print()
    if result.summary == "PASS":
        print("[green]Summary: all checks passed[/green]")
    elif result.summary == "FAIL":
        print("[red]Summary: DNS check failed[/red]")
    elif result.context is None:
        print("[yellow]Summary: domain not found in config, skipped IP comparison[/yellow]")
    else:
        print("[yellow]Summary: check completed with warnings[/yellow]")


# --- project ---


@project_app.command(name="list")
def list_projects(*, store: Store):
    """List configured projects."""
    config = store.load_config()
    if not config.projects:
        print("No projects configured.")
        return
    rows = []
    for p in config.projects:
        dev = p.environments.get("dev")
        prod = p.environments.get("prod")
        rows.append(
            [p.name, p.repo or "-", p.server, dev.domain if dev else "-", prod.domain if prod else "-"]
        )
    print_table(["NAME", "REPO", "SERVER", "DEV DOMAIN", "PROD DOMAIN"], rows)


@project_app.command(name="view")
def view_project(name: str, *, store: Store):
    """Show project details.

    :param name: Project name
    """
    project = store.load_config().find_project(name)
    if project is None:
        raise NotFoundError(f"project not found: {name}")
    print(f"Name:   {project.name}")
    print(f"Repo:   {project.repo or '-'}")
    print(f"Server: {project.server}")
    for env_name, env in sorted(project.environments.items()):
        print(f"\n\\[{env_name}]")
        print(f"  Domain:       {env.domain}")
        print(f"  DNS provider: {env.dns_provider}")
        print(f"  Branch:       {env.branch or '-'}")
        print(f"  Deploy path:  {env.deploy_path}")
        print(f"  Deploy user:  {env.deploy_user}")
        print(f"  Port:         {env.port}")


def _ask_repo(state: wizard.WizardState, repos: list) -> wizard.WizardState:
    for i, repo in enumerate(repos, start=1):
        print(f"  {i:>2}. {repo.name_with_owner}")
    answer = Prompt.ask("Repository (number or owner/name, 'q' to quit)").strip()
    if answer == "q":
        return wizard.back(state)
    if answer.isdigit() and 1 <= int(answer) <= len(repos):
        repo = repos[int(answer) - 1]
        return wizard.choose_repo(state, repo.name, repo.name_with_owner)
    slug = repo_slug(answer)
    if "/" not in slug:
        raise ValidationError(f"not a repository: {answer}")
    return wizard.choose_repo(state, slug.split("/", 1)[1], slug)


def _ask_server(state: wizard.WizardState, store: SQLiteStore) -> wizard.WizardState:
    servers = store.load_config().servers
    for i, s in enumerate(servers, start=1):
        print(f"  {i:>2}. {s.name} ({s.ip})")
    answer = Prompt.ask("Server (number or name, '<' to go back)").strip()
    if answer == "<":
        return wizard.back(state)
    if answer.isdigit() and 1 <= int(answer) <= len(servers):
        name, ip = servers[int(answer) - 1].name, servers[int(answer) - 1].ip
    else:
        name, ip = resolve_host(store, answer)
    try:
        key = store.get_peon_key(ip)
    except NotFoundError:
        key = None
    return wizard.choose_server(state, name, ip, key)


def _ask_port(state: wizard.WizardState) -> wizard.WizardState:
    if not state.suggested_port:
        try:
            used = get_used_ports(state.server_ip, state.peon_key)
        except ArnorError as e:
            warn(f"could not scan ports on {state.server}: {e}")
        else:
            state = wizard.suggest(state, suggest_port(used))
    default = str(state.suggested_port) if state.suggested_port else None
    answer = Prompt.ask(f"Port for {state.env_name} ('<' to go back)", default=default)
    answer = (answer or "").strip()
    if answer == "<":
        return wizard.back(state)
    return wizard.enter_port(state, answer)


def _wizard_step(state: wizard.WizardState, store: SQLiteStore, repos: list) -> wizard.WizardState:
    phase = state.phase
    if phase is wizard.Phase.SELECT_REPO:
        return _ask_repo(state, repos)
    if phase is wizard.Phase.SELECT_SERVER:
        return _ask_server(state, store)
    if phase is wizard.Phase.SELECT_ENV:
        answer = Prompt.ask("Environment", choices=[*wizard.ENV_CHOICES, "<"])
        return wizard.back(state) if answer == "<" else wizard.choose_env(state, answer)
    if phase is wizard.Phase.DOMAIN:
        default = wizard.default_domain(state) or None
        answer = Prompt.ask("Domain ('<' to go back)", default=default) or ""
        return wizard.back(state) if answer == "<" else wizard.enter_domain(state, answer)
    if phase is wizard.Phase.PORT:
        return _ask_port(state)
    if phase is wizard.Phase.CONFIRM:
        print(
            f"\n  Project: {state.project} ({state.repo})\n"
            f"  Server:  {state.server} ({state.server_ip})\n"
            f"  Env:     {state.env_name}\n"
            f"  Domain:  {state.domain}\n"
            f"  Port:    {state.port}\n"
        )
        return wizard.confirm(state, Confirm.ask("Set up this environment?", default=True))
    raise ValueError(f"no prompt for phase {phase.name}")


def _run_setup(state: wizard.WizardState, store: SQLiteStore) -> wizard.WizardState:
    """Run project setup on a worker thread, answering its prompts here."""
    background = BackgroundRun(setup_pipeline())
    run = new_run(wizard.to_params(state), store, prompt=background.prompt)
    failure = None
    try:
        for event in background.start(run):
            if event.prompt:
                try:
                    event.answer(ConsolePrompt().prompt(event.prompt, secret=event.secret))
                except InputCancelled:
                    event.cancel()
            elif event.done:
                failure = event.error
                if event.result is not None:
                    print_warnings(event.result.warnings + run.warnings)
            else:
                print_progress(event.step, event.total, event.message)
    finally:
        run.close()
    return wizard.finish(state, failure)


@project_app.command(name="create")
def create_project(*, store: Store):
    """Interactive wizard to set up one environment of a GitHub project."""
    repos = GitHubCLI().list_repos()
    state = wizard.WizardState()
    while state.phase not in (wizard.Phase.RUNNING, wizard.Phase.DONE):
        try:
            state = _wizard_step(state, store, repos)
        except ValidationError as e:
            warn(str(e))

    if state.phase is wizard.Phase.RUNNING:
        state = _run_setup(state, store)
    if state.error:
        error(f"{state.env_name or 'project'} setup failed: {state.error}")
    print(f"[green]{state.project} ({state.env_name}) is set up at https://{state.domain}[/green]")


@project_app.command(name="delete")
def delete_project(name: str, *, yes: bool = False, store: Store):
    """Remove a project and its environments from the local config.

    Servers, DNS records and GitHub secrets are left in place.

    :param name: Project name
    :param yes: Skip confirmation
    """
    if store.load_config().find_project(name) is None:
        raise NotFoundError(f"project not found: {name}")
    if not yes and not Confirm.ask(f"Delete project '{name}' from config?"):
        log("Cancelled")
        return
    store.delete_project(name)
    print(f"Deleted project '{name}'")


# --- service ---


@service_app.command(name="deploy")
def deploy_compose_service(
    name: str,
    *,
    server: str,
    domain: str,
    port: int | None = None,
    compose_file: Path = Path("docker-compose.yml"),
    store: Store,
):
    """Deploy a docker-compose service behind Caddy with DNS.

    :param name: Service name, deployed to /opt/<name>
    :param server: Server name
    :param domain: Domain for the service (e.g. status.example.com)
    :param port: Host port the service listens on (default: next free port)
    :param compose_file: Local docker-compose.yml
    """
    if port is None:
        _, ip = resolve_host(store, server)
        port = suggest_port(get_used_ports(ip, store.get_peon_key(ip)))
        log(f"Using port {port}")

    result = deploy_service(
        DeployParams(
            service=name,
            server=server,
            domain=domain,
            port=port,
            compose_file=str(compose_file),
        ),
        store,
        on_progress=print_progress,
        prompt=ConsolePrompt(),
    )
    print_warnings(result.warnings)
    print(f"[green]{name} deployed at https://{domain}[/green]")


# --- caddy ---


@caddy_app.command(name="install")
def install_caddy(target: str, *, store: Store):
    """Install Caddy with the Cloudflare DNS module as a systemd service.

    :param target: Server name or IP (bootstrapped with 'arnor server init')
    """
    try:
        cf_token = store.get_credential("cloudflare", "default", "api_token")
    except NotFoundError:
        cf_token = ""
        log("No Cloudflare token stored, skipping DNS-01 environment override")
    with peon_session(store, target) as session:
        caddy.install(session, cf_token, on_progress=print_progress)
    print("[green]Caddy installed[/green]")


# --- deploy ---


@app.command(name="deploy", sort_key=9)
def trigger_deploy(project: str, *, env: str, store: Store):
    """Trigger a deploy of one environment through GitHub Actions.

    :param project: Project name
    :param env: Environment to deploy (dev or prod)
    """
    p = store.load_config().find_project(project)
    if p is None:
        raise NotFoundError(f"project not found: {project}")
    environment = p.environments.get(env)
    if environment is None:
        raise NotFoundError(f"environment '{env}' not configured for project {project}")
    if not p.repo:
        raise ValidationError(f"project {project} has no repository (deployed as a service?)")

    github = GitHubCLI()
    repo = repo_slug(p.repo)
    file = workflow_file(env)
    log("Ensuring workflow supports manual dispatch...")
    status = github.ensure_workflow_dispatch(repo, env, image_name(store, p.name))
    log(f"Workflow {file}: {status}")
    ref = github.trigger_workflow(repo, file, environment.branch)
    print(f"[green]Dispatched {env} deploy for {repo} on '{ref}'[/green]")

    runs = best_effort("listing workflow runs", github.list_runs, repo, file, 1)
    if runs:
        latest = runs[0]
        state = latest.get("conclusion") or latest.get("status") or "unknown"
        print(f"Latest run on {latest.get('headBranch', '-')}: {state}")
        if latest.get("url"):
            print(f"  {latest['url']}")


@app.meta.default
def launcher(
    *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
    verbose: bool = False,
):
    """Provision and deploy projects to Hetzner servers.

    :param verbose: Log debug output, including remote command output
    """
    setup_logging("DEBUG" if verbose else log_level())
    command, bound, ignored = app.parse_args(tokens)
    if "store" not in ignored:
        return command(*bound.args, **bound.kwargs)
    with SQLiteStore(db_path()) as store:
        return command(*bound.args, **bound.kwargs, store=store)


def main():
    load_env()
    try:
        app.meta()
    except InputCancelled:
        error("Cancelled")
    except ArnorError as e:
        error(str(e))


if __name__ == "__main__":
    main()
