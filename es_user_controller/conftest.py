"""In-memory stand-ins for Elasticsearch and the Kubernetes API"""

from typing import Dict, Optional

import pytest

from .elasticsearch_client import WrongCredentials
from .models import ManagedUser, PermissionTier, Role, User

STORE_URL = "https://elastic.example:9200"


class FakeElastic:
    """Behaves like ElasticAdmin against an empty cluster"""

    def __init__(self, url: str = STORE_URL):
        self.url = url
        self.roles: Dict[str, Role] = {}
        self.users: Dict[str, User] = {}
        self.passwords: Dict[str, str] = {}
        self.calls = []

    def get_role(self, name: str) -> Optional[Role]:
        self.calls.append(("get_role", name))
        return self.roles.get(name)

    def put_role(self, name: str, role: Role):
        self.calls.append(("put_role", name))
        self.roles[name] = role

    def delete_role(self, name: str) -> bool:
        self.calls.append(("delete_role", name))
        return self.roles.pop(name, None) is not None

    def get_user(self, username: str) -> Optional[User]:
        self.calls.append(("get_user", username))
        user = self.users.get(username)
        if user is None:
            return None
        return User(roles=list(user.roles), full_name=user.full_name, email=user.email,
                    metadata=dict(user.metadata))

    def put_user(self, username: str, user: User):
        self.calls.append(("put_user", username))
        self.users[username] = user
        self.passwords[username] = user.password

    def delete_user(self, username: str) -> bool:
        self.calls.append(("delete_user", username))
        self.passwords.pop(username, None)
        return self.users.pop(username, None) is not None

    def authenticate_as(self, username: str, password: str) -> dict:
        self.calls.append(("authenticate_as", username))
        if username not in self.users or self.passwords.get(username) != password:
            raise WrongCredentials()
        return {"username": username, "roles": list(self.users[username].roles)}

    def count(self, verb: str) -> int:
        return sum(1 for call in self.calls if call[0] == verb)

    def close(self):
        pass


class FakeKubernetes:
    """Secrets, status writes and annotations kept in dicts"""

    def __init__(self):
        self.secrets: Dict[str, Dict[str, bytes]] = {}
        self.owners: Dict[str, dict] = {}
        self.statuses = {}
        self.objects: Dict[str, dict] = {}
        self.annotations: Dict[str, dict] = {}
        self.calls = []

    def get_secret(self, name, namespace):
        self.calls.append(("get_secret", name))
        data = self.secrets.get(name)
        return None if data is None else dict(data)

    def create_secret(self, name, namespace, data, owner=None):
        self.calls.append(("create_secret", name))
        self.secrets[name] = {k: v.encode() for k, v in data.items()}
        self.owners[name] = owner

    def patch_secret(self, name, namespace, data):
        self.calls.append(("patch_secret", name))
        self.secrets[name].update({k: v.encode() for k, v in data.items()})

    def patch_status(self, user, status):
        self.calls.append(("patch_status", user.name))
        self.statuses[user.name] = status

    def get_user(self, name, namespace):
        return self.objects.get(name)

    def annotate_user(self, name, namespace, key, value):
        self.calls.append(("annotate_user", name))
        self.annotations.setdefault(name, {})[key] = value

    def count(self, verb: str) -> int:
        return sum(1 for call in self.calls if call[0] == verb)


def make_user(**overrides) -> ManagedUser:
    values = dict(
        name="alice-user",
        namespace="default",
        secret_ref="s1",
        username="alice",
        prefixes=["logs"],
        permissions=PermissionTier.WRITE,
        uid="0b5c6d2e-1111-2222-3333-444455556666",
    )
    values.update(overrides)
    return ManagedUser(**values)


def make_object(name="alice-user", username="alice", permissions="Write", generation=1, **metadata) -> dict:
    return {
        "apiVersion": "eeops.io/v1",
        "kind": "ElasticsearchUser",
        "metadata": {"name": name, "namespace": "default", "uid": f"uid-{name}",
                     "generation": generation, **metadata},
        "spec": {"secretRef": f"{name}-credentials", "username": username,
                 "prefixes": ["logs"], "permissions": permissions},
    }


@pytest.fixture
def elastic():
    return FakeElastic()


@pytest.fixture
def k8s():
    return FakeKubernetes()
