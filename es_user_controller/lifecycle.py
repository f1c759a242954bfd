"""
Per-resource lifecycle: Apply and Cleanup

Apply provisions and corrects the credential secret, role and user of a live
ElasticsearchUser. Cleanup removes the Elasticsearch user and role of one
that is being deleted; the finalizer holding the deletion until Cleanup
succeeds is managed by kopf.
"""

import logging

from .config import Config, YELLOW, RESET, as_bool
from .converger import Converger
from .elasticsearch_client import ElasticAdmin
from .kubernetes_client import KubernetesClient
from .models import Change, ConvergenceReport, ManagedUser, UserStatus
from .secret_manager import SecretManager
from .verifier import CredentialVerifier, Verification

logger = logging.getLogger("es-user-controller.lifecycle")


class ReconciliationError(Exception):
    """Apply or Cleanup of a single resource failed and has to be retried"""

    def __init__(self, name: str, cause: Exception):
        super().__init__(f"Reconciling ElasticsearchUser {name} failed: {cause}")
        self.name = name
        self.cause = cause


def should_keep(user: ManagedUser) -> bool:
    """
    Whether the Elasticsearch user and role must survive deletion of the resource

    A keep annotation that cannot be parsed keeps them, so that a typo never
    deletes live credentials.
    """
    value = user.annotations.get(Config.KEEP_ANNOTATION)
    if value is None:
        return False
    keep = as_bool(value)
    if keep is None:
        logger.warning(f'Annotation {Config.KEEP_ANNOTATION}="{value}" on {user.name} is not a boolean, '
                       f'keeping Elasticsearch user {user.username}')
        return True
    return keep


class LifecycleController:
    """Runs Apply or Cleanup for a single ElasticsearchUser"""

    def __init__(self, k8s_client: KubernetesClient, elastic: ElasticAdmin):
        self.k8s_client = k8s_client
        self.elastic = elastic
        self.secrets = SecretManager(k8s_client)
        self.converger = Converger(elastic)
        self.verifier = CredentialVerifier(elastic)

    def apply(self, user: ManagedUser) -> ConvergenceReport:
        """
        Ensure secret, role and user, verify the credentials and record the status

        Partial progress is kept on failure; every step is safe to repeat.

        Raises:
            ReconciliationError: if any step failed; the resource should be retried
        """
        try:
            username, password = self.secrets.ensure_secret(user, self.elastic.url)
            report = self.converger.converge(user, username, password)
            if self.verifier.verify(username, password) is Verification.PASSWORD_STALE:
                report.user = Change.updated("password")
        except Exception as e:
            logger.error(f"Failed to apply ElasticsearchUser {user.name}: {e}")
            try:
                self.k8s_client.patch_status(user, UserStatus.failure(e))
            except Exception as status_error:
                logger.error(f"Failed to write status of {user.name}: {status_error}")
            raise ReconciliationError(user.name, e) from e

        if report.was_noop():
            logger.debug(f"{user.name}: {report}")
        else:
            logger.info(f"{YELLOW}{user.name}: {report}{RESET}")

        try:
            self.k8s_client.patch_status(user, UserStatus.success())
        except Exception as e:
            raise ReconciliationError(user.name, e) from e
        return report

    def cleanup(self, user: ManagedUser) -> bool:
        """
        Delete the Elasticsearch user, then its role

        Returns:
            False if the keep annotation left them in place, True otherwise

        Raises:
            ReconciliationError: if a deletion failed; the finalizer must stay
        """
        if should_keep(user):
            logger.info(f"Keeping Elasticsearch user {user.username} of deleted {user.name}")
            return False

        try:
            if not self.elastic.delete_user(user.username):
                logger.debug(f"User {user.username} was already absent")
            if not self.elastic.delete_role(user.role_name):
                logger.debug(f"Role {user.role_name} was already absent")
        except Exception as e:
            logger.error(f"Failed to clean up ElasticsearchUser {user.name}: {e}")
            raise ReconciliationError(user.name, e) from e

        logger.info(f"Deleted Elasticsearch user {user.username} and role {user.role_name}")
        return True
