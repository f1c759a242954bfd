"""
Elasticsearch security API client

Thin wrapper around the /_security endpoints used by the controller. Roles and
users are always written as full replacements; GETs and DELETEs normalize 404
to "absent" instead of raising.
"""

import logging
from importlib.metadata import PackageNotFoundError, version
from typing import Optional
from urllib.parse import quote

import httpx

from .models import Role, User

logger = logging.getLogger("es-user-controller.elasticsearch")

try:
    VERSION = version("es-user-controller")
except PackageNotFoundError:
    VERSION = "0.0.0"


# ============================================================================
# ERRORS
# ============================================================================

class ElasticError(Exception):
    """Base class for errors talking to Elasticsearch"""


class WrongCredentials(ElasticError):
    def __init__(self):
        super().__init__("The provided credentials have been declined by ElasticSearch")


class NotSuperuser(ElasticError):
    def __init__(self):
        super().__init__("The provided login does work, but the user is missing the superuser credentials.")


class ElasticRequestError(ElasticError):
    """Elasticsearch answered with an unexpected status code"""

    def __init__(self, message: str, status_code: int, body: str):
        super().__init__(f"{message} (HTTP {status_code}): {body}")
        self.status_code = status_code
        self.body = body


class ElasticTransportError(ElasticError):
    """The request never got an answer (connection error, timeout, TLS)"""


# ============================================================================
# CLIENT
# ============================================================================

class ElasticAdmin:
    """Handles all Elasticsearch API interactions, authenticated as an admin"""

    def __init__(self, url: str, username: str, password: str, skip_verify: bool = False,
                 timeout: float = 5.0, transport: Optional[httpx.BaseTransport] = None):
        self.url = url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.url,
            auth=(username, password),
            verify=not skip_verify,
            timeout=timeout,
            headers={
                "Content-Type": "application/json",
                "User-Agent": f"ext-elasticsearch-operator/{VERSION}",
            },
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ElasticTransportError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _path(kind: str, name: str) -> str:
        return f"/_security/{kind}/{quote(name, safe='')}"

    def authenticate_as(self, username: str, password: str) -> dict:
        """
        Ask Elasticsearch who the given credentials belong to

        Raises:
            WrongCredentials: if Elasticsearch rejects the credentials
        """
        res = self._request("GET", "/_security/_authenticate", auth=(username, password))
        if res.status_code == 401:
            raise WrongCredentials()
        if not res.is_success:
            raise ElasticRequestError(f"Error authenticating as {username}", res.status_code, res.text)
        return res.json()

    def get_self(self) -> dict:
        """Identity of the admin login"""
        res = self._request("GET", "/_security/_authenticate")
        if res.status_code == 401:
            raise WrongCredentials()
        if not res.is_success:
            raise ElasticRequestError("Error authenticating", res.status_code, res.text)
        return res.json()

    def connection_ok(self):
        """
        Check that the admin login works and has the superuser role

        Raises:
            WrongCredentials: if the admin credentials are rejected
            NotSuperuser: if the admin is missing the superuser role
        """
        identity = self.get_self()
        if "superuser" not in (identity.get("roles") or []):
            raise NotSuperuser()

    def get_role(self, name: str) -> Optional[Role]:
        res = self._request("GET", self._path("role", name))
        if res.status_code == 404:
            return None
        if not res.is_success:
            raise ElasticRequestError(f"Error getting role {name}", res.status_code, res.text)
        body = res.json()
        if name not in body:
            raise ElasticError(
                f"Unexpected response: Got role {name} successfully, but response did not contain role."
            )
        return Role.from_body(body[name])

    def put_role(self, name: str, role: Role):
        """
        Create a role, or overwrite it completely if it already exists

        Args:
            name: Role name
            role: Full role definition
        """
        res = self._request("PUT", self._path("role", name), json=role.to_body())
        logger.debug(f"Status code creating role {name}: {res.status_code}")
        if not res.is_success:
            raise ElasticRequestError(f"Error creating role {name}", res.status_code, res.text)

    def delete_role(self, name: str) -> bool:
        """
        Delete a role

        Returns:
            True if the role was deleted, False if it did not exist
        """
        res = self._request("DELETE", self._path("role", name))
        logger.debug(f"Status code of deleting role {name}: {res.status_code}")
        if res.status_code == 404:
            return False
        if not res.is_success:
            raise ElasticRequestError(f"Error deleting role {name}", res.status_code, res.text)
        return True

    def get_user(self, username: str) -> Optional[User]:
        res = self._request("GET", self._path("user", username))
        if res.status_code == 404:
            return None
        if not res.is_success:
            raise ElasticRequestError(f"Error getting user {username}", res.status_code, res.text)
        body = res.json()
        if username not in body:
            raise ElasticError(
                f"Unexpected response: Got user {username} successfully, but response did not contain user."
            )
        return User.from_body(body[username])

    def put_user(self, username: str, user: User):
        """Create a user, or overwrite it completely (password included)"""
        res = self._request("PUT", self._path("user", username), json=user.to_body())
        logger.debug(f"Status code creating user {username}: {res.status_code}")
        if not res.is_success:
            raise ElasticRequestError(f"Error creating user {username}", res.status_code, res.text)

    def delete_user(self, username: str) -> bool:
        """
        Delete a user

        Returns:
            True if the user was deleted, False if it did not exist
        """
        res = self._request("DELETE", self._path("user", username))
        logger.debug(f"Status code of deleting user {username}: {res.status_code}")
        if res.status_code == 404:
            return False
        if not res.is_success:
            raise ElasticRequestError(f"Error deleting user {username}", res.status_code, res.text)
        return True

    def close(self):
        self.client.close()
