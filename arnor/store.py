"""SQLite-backed store for credentials, servers, projects and peon keys."""

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from .errors import NotFoundError, StorageError
from .types import Config, Credential, Environment, Project, Server

logger = logging.getLogger("arnor.store")

SCHEMA_VERSION = 1

_SCHEMA = [
    "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)",
    """CREATE TABLE IF NOT EXISTS credentials (
        id      INTEGER PRIMARY KEY AUTOINCREMENT,
        service TEXT NOT NULL,
        name    TEXT NOT NULL,
        key     TEXT NOT NULL,
        value   TEXT NOT NULL,
        UNIQUE(service, name, key)
    )""",
    """CREATE TABLE IF NOT EXISTS servers (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        name             TEXT NOT NULL UNIQUE,
        ip               TEXT NOT NULL,
        provider_project TEXT NOT NULL,
        provider_id      INTEGER NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS peon_keys (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        server_ip   TEXT NOT NULL UNIQUE,
        private_key TEXT NOT NULL,
        key_path    TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS projects (
        id     INTEGER PRIMARY KEY AUTOINCREMENT,
        name   TEXT NOT NULL UNIQUE,
        repo   TEXT NOT NULL,
        server TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS environments (
        id           INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id   INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        env_name     TEXT NOT NULL,
        domain       TEXT NOT NULL,
        dns_provider TEXT NOT NULL,
        branch       TEXT NOT NULL,
        deploy_path  TEXT NOT NULL,
        deploy_user  TEXT NOT NULL,
        port         INTEGER NOT NULL,
        UNIQUE(project_id, env_name)
    )""",
]

# Credentials under this service+key pair name the cloud provider projects.
PROVIDER_PROJECT_SERVICE = "hetzner"
PROVIDER_PROJECT_KEY = "api_token"


class SQLiteStore:
    """Credential and configuration store.

    Holds a single connection in autocommit mode, so every mutation is durable
    when the call returns. ``save_config`` and ``load_config`` wrap their
    statements in one explicit transaction.

    The connection may be used from a background run's worker thread; the
    foreground does not touch the store while that run is in progress.
    """

    def __init__(self, path: str | Path):
        self.path = str(path)
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                self.path, isolation_level=None, check_same_thread=False
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            for stmt in _SCHEMA:
                self._conn.execute(stmt)
            (count,) = self._conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()
            if count == 0:
                self._conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
                )
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"opening store '{self.path}': {e}") from e

        if self.path != ":memory:":
            try:
                os.chmod(self.path, 0o600)
            except OSError as e:
                logger.debug("Could not restrict permissions on '%s': %s", self.path, e)

    def __enter__(self) -> "SQLiteStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    def _execute(self, context: str, query: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(query, params)
        except sqlite3.Error as e:
            raise StorageError(f"{context}: {e}") from e

    @contextmanager
    def _transaction(self, context: str):
        try:
            self._conn.execute("BEGIN")
        except sqlite3.Error as e:
            raise StorageError(f"{context}: {e}") from e
        try:
            yield self._conn
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._conn.execute("ROLLBACK")
            raise StorageError(f"{context}: {e}") from e

    # --- Credentials ---

    def get_credential(self, service: str, name: str, key: str) -> str:
        """:raises NotFoundError: If no value is stored for the triple"""
        row = self._execute(
            "querying credential",
            "SELECT value FROM credentials WHERE service = ? AND name = ? AND key = ?",
            (service, name, key),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"credential not found: {service}/{name}/{key}")
        return row[0]

    def set_credential(self, service: str, name: str, key: str, value: str) -> None:
        self._execute(
            "setting credential",
            "INSERT INTO credentials (service, name, key, value) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(service, name, key) DO UPDATE SET value = excluded.value",
            (service, name, key, value),
        )

    def list_credentials(self, service: str) -> list[Credential]:
        rows = self._execute(
            "listing credentials",
            "SELECT service, name, key, value FROM credentials "
            "WHERE service = ? ORDER BY name, key",
            (service,),
        ).fetchall()
        return [Credential(*row) for row in rows]

    def delete_credential(self, service: str, name: str) -> None:
        """Remove every key stored under ``service``/``name``."""
        self._execute(
            "deleting credential",
            "DELETE FROM credentials WHERE service = ? AND name = ?",
            (service, name),
        )

    # --- Peon keys ---

    def get_peon_key(self, server_ip: str) -> str:
        """:raises NotFoundError: If the host was never bootstrapped"""
        row = self._execute(
            "querying peon key",
            "SELECT private_key FROM peon_keys WHERE server_ip = ?",
            (server_ip,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"peon key not found for {server_ip}")
        return row[0]

    def set_peon_key(self, server_ip: str, private_key: str, key_path: str) -> None:
        self._execute(
            "setting peon key",
            "INSERT INTO peon_keys (server_ip, private_key, key_path) VALUES (?, ?, ?) "
            "ON CONFLICT(server_ip) DO UPDATE SET "
            "private_key = excluded.private_key, key_path = excluded.key_path",
            (server_ip, private_key, key_path),
        )

    # --- Provider projects ---

    def list_provider_projects(self) -> list[str]:
        rows = self._execute(
            "listing provider projects",
            "SELECT DISTINCT name FROM credentials WHERE service = ? AND key = ? ORDER BY name",
            (PROVIDER_PROJECT_SERVICE, PROVIDER_PROJECT_KEY),
        ).fetchall()
        return [row[0] for row in rows]

    # --- Config ---

    def load_config(self) -> Config:
        """Read servers, projects and environments as one snapshot."""
        with self._transaction("loading config") as conn:
            try:
                projects = [
                    row[0]
                    for row in conn.execute(
                        "SELECT DISTINCT name FROM credentials "
                        "WHERE service = ? AND key = ? ORDER BY name",
                        (PROVIDER_PROJECT_SERVICE, PROVIDER_PROJECT_KEY),
                    )
                ]
                servers = [
                    Server(name=name, ip=ip, provider_project=alias, provider_id=pid)
                    for name, ip, alias, pid in conn.execute(
                        "SELECT name, ip, provider_project, provider_id "
                        "FROM servers ORDER BY name"
                    )
                ]
                rows = conn.execute(
                    "SELECT p.name, p.repo, p.server, e.env_name, e.domain, "
                    "e.dns_provider, e.branch, e.deploy_path, e.deploy_user, e.port "
                    "FROM projects p LEFT JOIN environments e ON e.project_id = p.id "
                    "ORDER BY p.name, e.env_name"
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"loading config: {e}") from e

        by_name: dict[str, Project] = {}
        for name, repo, server, env_name, *env_fields in rows:
            project = by_name.get(name)
            if project is None:
                project = by_name[name] = Project(name=name, repo=repo, server=server)
            if env_name is not None:
                domain, dns_provider, branch, deploy_path, deploy_user, port = env_fields
                project.environments[env_name] = Environment(
                    domain=domain,
                    dns_provider=dns_provider,
                    branch=branch,
                    deploy_path=deploy_path,
                    deploy_user=deploy_user,
                    port=port,
                )

        return Config(
            provider_projects=projects,
            servers=servers,
            projects=list(by_name.values()),
        )

    def save_config(self, config: Config) -> None:
        """Upsert every server, project and environment in ``config``.

        Rows absent from ``config`` are kept. Either every upsert lands or none.
        """
        with self._transaction("saving config") as conn:
            for srv in config.servers:
                try:
                    conn.execute(
                        "INSERT INTO servers (name, ip, provider_project, provider_id) "
                        "VALUES (?, ?, ?, ?) ON CONFLICT(name) DO UPDATE SET "
                        "ip = excluded.ip, provider_project = excluded.provider_project, "
                        "provider_id = excluded.provider_id",
                        (srv.name, srv.ip, srv.provider_project, srv.provider_id),
                    )
                except sqlite3.Error as e:
                    raise StorageError(f"upserting server {srv.name}: {e}") from e

            for project in config.projects:
                try:
                    conn.execute(
                        "INSERT INTO projects (name, repo, server) VALUES (?, ?, ?) "
                        "ON CONFLICT(name) DO UPDATE SET "
                        "repo = excluded.repo, server = excluded.server",
                        (project.name, project.repo, project.server),
                    )
                    (project_id,) = conn.execute(
                        "SELECT id FROM projects WHERE name = ?", (project.name,)
                    ).fetchone()
                except sqlite3.Error as e:
                    raise StorageError(f"upserting project {project.name}: {e}") from e

                for env_name, env in project.environments.items():
                    try:
                        conn.execute(
                            "INSERT INTO environments (project_id, env_name, domain, "
                            "dns_provider, branch, deploy_path, deploy_user, port) "
                            "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                            "ON CONFLICT(project_id, env_name) DO UPDATE SET "
                            "domain = excluded.domain, "
                            "dns_provider = excluded.dns_provider, "
                            "branch = excluded.branch, "
                            "deploy_path = excluded.deploy_path, "
                            "deploy_user = excluded.deploy_user, "
                            "port = excluded.port",
                            (
                                project_id,
                                env_name,
                                env.domain,
                                env.dns_provider,
                                env.branch,
                                env.deploy_path,
                                env.deploy_user,
                                env.port,
                            ),
                        )
                    except sqlite3.Error as e:
                        raise StorageError(
                            f"upserting environment {project.name}/{env_name}: {e}"
                        ) from e

    def delete_server(self, name: str) -> None:
        self._execute("deleting server", "DELETE FROM servers WHERE name = ?", (name,))

    def delete_project(self, name: str) -> None:
        """Delete a project and, by cascade, all of its environments."""
        self._execute("deleting project", "DELETE FROM projects WHERE name = ?", (name,))
