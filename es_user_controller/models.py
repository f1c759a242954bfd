"""
Data models shared by the reconciliation components

Declared resources come from the Kubernetes API as plain dicts and are parsed
into ManagedUser. Roles and users mirror the Elasticsearch security API bodies.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from .config import Config


def role_name_for(username: str) -> str:
    """Deterministic name of the role backing a managed user"""
    return f"role-{username}"


# ============================================================================
# DECLARED RESOURCE
# ============================================================================

class PermissionTier(str, Enum):
    """Privilege tiers a managed user can be granted"""
    READ = "Read"
    WRITE = "Write"
    CREATE = "Create"


class LifecycleState(Enum):
    """Where a declared resource is in the finalizer protocol"""
    ACTIVE = "Active"
    CLEANING_UP = "CleaningUp"
    FINALIZED = "Finalized"


@dataclass
class ManagedUser:
    """An ElasticsearchUser custom resource"""
    name: str
    namespace: str
    secret_ref: str
    username: str
    prefixes: List[str]
    permissions: PermissionTier
    uid: Optional[str] = None
    annotations: Dict[str, str] = field(default_factory=dict)
    finalizers: List[str] = field(default_factory=list)
    deletion_timestamp: Optional[str] = None

    @classmethod
    def from_object(cls, obj: dict) -> "ManagedUser":
        """
        Build a ManagedUser from a custom object as returned by the API

        Raises:
            ValueError: if the spec is missing fields or names an unknown tier
        """
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        try:
            return cls(
                name=metadata["name"],
                namespace=metadata.get("namespace", Config.NAMESPACE),
                secret_ref=spec["secretRef"],
                username=spec["username"],
                prefixes=list(spec.get("prefixes") or []),
                permissions=PermissionTier(spec["permissions"]),
                uid=metadata.get("uid"),
                annotations=dict(metadata.get("annotations") or {}),
                finalizers=list(metadata.get("finalizers") or []),
                deletion_timestamp=metadata.get("deletionTimestamp"),
            )
        except KeyError as e:
            raise ValueError(f"ElasticsearchUser is missing field {e}") from e

    @property
    def role_name(self) -> str:
        return role_name_for(self.username)

    @property
    def state(self) -> LifecycleState:
        if self.deletion_timestamp is None:
            return LifecycleState.ACTIVE
        if Config.FINALIZER in self.finalizers:
            return LifecycleState.CLEANING_UP
        return LifecycleState.FINALIZED

    def owner_reference(self) -> dict:
        return {
            "apiVersion": f"{Config.GROUP}/{Config.VERSION}",
            "kind": Config.KIND,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
        }


@dataclass
class UserStatus:
    """Outcome of the last Apply, written to the status subresource"""
    ok: bool
    error_message: Optional[str] = None

    @classmethod
    def success(cls) -> "UserStatus":
        return cls(ok=True)

    @classmethod
    def failure(cls, error) -> "UserStatus":
        return cls(ok=False, error_message=str(error))

    def to_dict(self) -> dict:
        return {"ok": self.ok, "errorMessage": self.error_message}


# ============================================================================
# ELASTICSEARCH SECURITY OBJECTS
# ============================================================================

UNMANAGED_SETTINGS = "<unmanaged role settings>"
UNMANAGED_ROLE_KEYS = ("cluster", "run_as", "applications", "global")
UNMANAGED_INDEX_KEYS = ("allow_restricted_indices", "field_security", "query")


@dataclass(frozen=True)
class Role:
    """A role granting one privilege set on a list of index patterns"""
    index_patterns: List[str]
    privileges: FrozenSet[str]

    def to_body(self) -> dict:
        order = ["read", "write", "create"]
        privileges = sorted(self.privileges, key=lambda p: (order.index(p) if p in order else len(order), p))
        return {"indices": [{"names": list(self.index_patterns), "privileges": privileges}]}

    @classmethod
    def from_body(cls, body: dict) -> "Role":
        """
        Parse a role as returned by GET /_security/role/<name>

        Anything a managed role never carries (several index entries, cluster,
        run_as, application or global privileges, restricted indices, field or
        document level security) adds a marker privilege, so such a role
        compares unequal to any managed role and gets overwritten.
        """
        indices = body.get("indices") or []
        names = []
        privileges = set()
        for entry in indices:
            names.extend(entry.get("names") or [])
            privileges.update(entry.get("privileges") or [])
            if any(entry.get(key) for key in UNMANAGED_INDEX_KEYS):
                privileges.add(UNMANAGED_SETTINGS)
        if len(indices) > 1 or any(body.get(key) for key in UNMANAGED_ROLE_KEYS):
            privileges.add(UNMANAGED_SETTINGS)
        return cls(names, frozenset(privileges))


@dataclass
class User:
    """
    An Elasticsearch native realm user

    The password is write-only in the security API, so it never takes part in
    comparisons.
    """
    roles: List[str]
    password: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    COMPARED_FIELDS = ("roles", "full_name", "email", "metadata")

    def __eq__(self, other):
        if not isinstance(other, User):
            return NotImplemented
        return all(getattr(self, f) == getattr(other, f) for f in self.COMPARED_FIELDS)

    def to_body(self) -> dict:
        body = {
            "password": self.password,
            "roles": list(self.roles),
            "full_name": self.full_name,
            "email": self.email,
        }
        if self.metadata:
            body["metadata"] = dict(self.metadata)
        return body

    @classmethod
    def from_body(cls, body: dict) -> "User":
        metadata = {
            k: v for k, v in (body.get("metadata") or {}).items()
            if not k.startswith("_")
        }
        return cls(
            roles=list(body.get("roles") or []),
            full_name=body.get("full_name"),
            email=body.get("email"),
            metadata=metadata,
        )

    def describe_changes(self, observed: "User") -> str:
        """Human-readable delta from an observed user to this one"""
        changes = []
        for name in self.COMPARED_FIELDS:
            before, after = getattr(observed, name), getattr(self, name)
            if before != after:
                changes.append(f"{name}: {before!r} -> {after!r}")
        return ", ".join(changes) or "attributes"


# ============================================================================
# CONVERGENCE REPORT
# ============================================================================

class ChangeKind(Enum):
    NOOP = "noop"
    CREATED = "created"
    UPDATED = "updated"


@dataclass(frozen=True)
class Change:
    kind: ChangeKind
    reason: Optional[str] = None

    @classmethod
    def noop(cls) -> "Change":
        return cls(ChangeKind.NOOP)

    @classmethod
    def created(cls) -> "Change":
        return cls(ChangeKind.CREATED)

    @classmethod
    def updated(cls, reason: str) -> "Change":
        return cls(ChangeKind.UPDATED, reason)

    def describe(self, subject: str) -> str:
        if self.kind is ChangeKind.NOOP:
            return f"{subject} was already configured correctly"
        if self.kind is ChangeKind.CREATED:
            return f"{subject} has been newly created"
        return f"{subject} has been updated ({self.reason})"


@dataclass
class ConvergenceReport:
    role: Change
    user: Change

    def was_noop(self) -> bool:
        return self.role.kind is ChangeKind.NOOP and self.user.kind is ChangeKind.NOOP

    def __str__(self):
        return f"{self.role.describe('Role')}, {self.user.describe('User')}"
