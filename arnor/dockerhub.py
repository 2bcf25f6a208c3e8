"""DockerHub registry client."""

import logging

import httpx

from .errors import NotFoundError, ProviderAPIError
from .utils import request_json

logger = logging.getLogger("arnor.dockerhub")

DOCKERHUB_API = "https://hub.docker.com/v2"
HTTP_TIMEOUT = 30.0


class DockerHubClient:
    def __init__(self, username: str, password: str, transport: httpx.BaseTransport | None = None):
        self.username = username
        self._password = password
        self._token: str | None = None
        self._client = httpx.Client(
            base_url=DOCKERHUB_API, timeout=HTTP_TIMEOUT, transport=transport
        )

    @classmethod
    def from_store(cls, store) -> "DockerHubClient":
        return cls(
            store.get_credential("dockerhub", "default", "username"),
            store.get_credential("dockerhub", "default", "password"),
        )

    def _login(self) -> str:
        if self._token is None:
            data = request_json(
                self._client,
                "dockerhub",
                "POST",
                "/users/login",
                json={"username": self.username, "password": self._password},
            )
            self._token = data.get("token") or ""
            if not self._token:
                raise ProviderAPIError("dockerhub", "login returned no token")
        return self._token

    def ping(self) -> None:
        """Check the credentials by logging in.

        :raises ProviderAPIError: If the login is rejected
        """
        self._token = None
        self._login()

    def repo_exists(self, namespace: str, name: str) -> bool:
        headers = {"Authorization": f"Bearer {self._login()}"}
        try:
            request_json(
                self._client,
                "dockerhub",
                "GET",
                f"/repositories/{namespace}/{name}/",
                headers=headers,
            )
        except ProviderAPIError as e:
            if e.status == 404:
                return False
            raise
        return True

    def ensure_repo(self, namespace: str, name: str) -> None:
        """Create a public repository unless it already exists.

        :param namespace: DockerHub user or organisation
        :param name: Repository name
        :raises ProviderAPIError: On authentication or creation failure
        """
        if self.repo_exists(namespace, name):
            logger.debug("DockerHub repo %s/%s already exists", namespace, name)
            return
        try:
            request_json(
                self._client,
                "dockerhub",
                "POST",
                "/repositories/",
                headers={"Authorization": f"Bearer {self._login()}"},
                json={"namespace": namespace, "name": name, "is_private": False},
            )
        except ProviderAPIError as e:
            if "already exists" in str(e):
                return
            raise
        logger.info("Created DockerHub repo %s/%s", namespace, name)


def ci_token(store) -> str:
    """:return: DockerHub token for CI, falling back to the account password"""
    try:
        return store.get_credential("dockerhub", "default", "token")
    except NotFoundError:
        return store.get_credential("dockerhub", "default", "password")
