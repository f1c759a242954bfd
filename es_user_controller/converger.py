"""
Drift detection and convergence of Elasticsearch roles and users

The desired role and user are computed from the declared resource and the
credential secret, compared against what Elasticsearch reports, and pushed as
full replacements only when they differ.
"""

import logging

from .elasticsearch_client import ElasticAdmin
from .models import Change, ConvergenceReport, ManagedUser, Role, User, role_name_for
from .privileges import target_role

logger = logging.getLogger("es-user-controller.converger")

MANAGED_METADATA = {"created-by": "K8s Operator eeops"}


def target_user(username: str, password: str) -> User:
    return User(
        roles=[role_name_for(username)],
        password=password,
        metadata=dict(MANAGED_METADATA),
    )


class Converger:
    """Drives the role and user of a managed user towards the declared state"""

    def __init__(self, elastic: ElasticAdmin):
        self.elastic = elastic

    def converge_role(self, name: str, target: Role) -> Change:
        observed = self.elastic.get_role(name)
        if observed is None:
            self.elastic.put_role(name, target)
            return Change.created()
        if observed == target:
            return Change.noop()
        logger.debug(f"Role {name} drifted: {observed} -> {target}")
        self.elastic.put_role(name, target)
        return Change.updated("attributes")

    def converge_user(self, username: str, target: User) -> Change:
        observed = self.elastic.get_user(username)
        if observed is None:
            self.elastic.put_user(username, target)
            return Change.created()
        if observed == target:
            return Change.noop()
        delta = target.describe_changes(observed)
        logger.info(f"User {username} drifted: {delta}")
        self.elastic.put_user(username, target)
        return Change.updated("attributes")

    def converge(self, user: ManagedUser, username: str, password: str) -> ConvergenceReport:
        """
        Make the role and user in Elasticsearch match the managed user

        The role is converged first so that the user never references a role
        that does not exist yet.

        Args:
            user: The managed user
            username: Username from the credential secret
            password: Password from the credential secret

        Returns:
            ConvergenceReport describing what changed
        """
        role = self.converge_role(role_name_for(username), target_role(user.prefixes, user.permissions))
        account = self.converge_user(username, target_user(username, password))
        return ConvergenceReport(role=role, user=account)
