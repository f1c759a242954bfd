"""
Elasticsearch User Controller for Kubernetes

This controller keeps users and roles in Elasticsearch in sync with
ElasticsearchUser custom resources, and hands out their credentials through
Kubernetes Secrets. Watching, finalizers and retry scheduling are done by kopf.

Features:
- Credential Secret creation and drift correction
- Role and user drift detection with full-replacement updates
- Detection of passwords changed outside the controller
- Finalizer-guarded cleanup of Elasticsearch users and roles
- Reconciliation on resource changes, on owned Secret changes and on a timer
- Exponential backoff retry of failed resources
- Structured logging with severity levels
"""

import sys
import logging
from typing import Optional

import kopf

from .config import Config, GREEN, RESET, setup_logging
from .elasticsearch_client import ElasticAdmin, ElasticError
from .kubernetes_client import KubernetesClient
from .lifecycle import LifecycleController, ReconciliationError
from .models import LifecycleState, ManagedUser

logger = logging.getLogger("es-user-controller")


def retry_delay(retry: int) -> float:
    """Backoff before the next attempt of a failed handler"""
    return min(Config.RETRY_BACKOFF_BASE ** retry, Config.RETRY_BACKOFF_MAX)


def parse_user(body) -> ManagedUser:
    try:
        return ManagedUser.from_object(body)
    except ValueError as e:
        raise kopf.PermanentError(f"Invalid ElasticsearchUser: {e}") from e


# ============================================================================
# KOPF SETTINGS
# ============================================================================

@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_):
    settings.persistence.finalizer = Config.FINALIZER
    settings.posting.level = logging.WARNING
    settings.watching.server_timeout = Config.WATCH_TIMEOUT
    logger.info(f"{GREEN}Controller started (namespace={Config.NAMESPACE}){RESET}")
    logger.info(f"Resync interval: {Config.REQUEUE_SECONDS}s")


# ============================================================================
# ELASTICSEARCHUSER HANDLERS
# ============================================================================

@kopf.on.create(Config.GROUP, Config.VERSION, Config.PLURAL, retries=Config.MAX_RETRIES)
@kopf.on.update(Config.GROUP, Config.VERSION, Config.PLURAL, retries=Config.MAX_RETRIES)
@kopf.on.resume(Config.GROUP, Config.VERSION, Config.PLURAL, retries=Config.MAX_RETRIES)
def apply_user(body, memo: kopf.Memo, retry: int = 0, **_):
    """Apply an ElasticsearchUser; kopf adds the finalizer before the first run"""
    user = parse_user(body)
    try:
        memo.lifecycle.apply(user)
    except ReconciliationError as e:
        raise kopf.TemporaryError(str(e), delay=retry_delay(retry)) from e


@kopf.timer(Config.GROUP, Config.VERSION, Config.PLURAL,
            interval=Config.REQUEUE_SECONDS, initial_delay=Config.REQUEUE_SECONDS)
def resync_user(body, memo: kopf.Memo, retry: int = 0, **_):
    """Periodic full re-apply, catching drift made directly in Elasticsearch"""
    user = parse_user(body)
    if user.state is not LifecycleState.ACTIVE:
        return
    try:
        memo.lifecycle.apply(user)
    except ReconciliationError as e:
        raise kopf.TemporaryError(str(e), delay=retry_delay(retry)) from e


@kopf.on.delete(Config.GROUP, Config.VERSION, Config.PLURAL)
def cleanup_user(body, memo: kopf.Memo, retry: int = 0, **_):
    """
    Remove the Elasticsearch user and role of a deleted ElasticsearchUser

    Retried until it succeeds; kopf only releases the finalizer afterwards.
    """
    user = parse_user(body)
    try:
        memo.lifecycle.cleanup(user)
    except ReconciliationError as e:
        raise kopf.TemporaryError(str(e), delay=retry_delay(retry)) from e


# ============================================================================
# OWNED SECRET HANDLER
# ============================================================================

def owner_name(body) -> Optional[str]:
    """Name of the ElasticsearchUser owning a Secret, if any"""
    api_version = f"{Config.GROUP}/{Config.VERSION}"
    for ref in (body.get("metadata") or {}).get("ownerReferences") or []:
        if ref.get("kind") == Config.KIND and ref.get("apiVersion") == api_version:
            return ref.get("name")
    return None


def is_owned_secret(body, **_) -> bool:
    return owner_name(body) is not None


@kopf.on.event("v1", "secrets", when=is_owned_secret)
def secret_changed(event, body, memo: kopf.Memo, **_):
    """
    Re-apply the owner of a credential Secret that was changed or deleted

    The owner is only annotated with the Secret's version, so the re-apply runs
    through its own update handler and never overlaps another reconciliation
    of the same ElasticsearchUser.
    """
    if event.get("type") is None:
        return
    metadata = body.get("metadata") or {}
    name = owner_name(body)
    namespace = metadata.get("namespace", Config.NAMESPACE)

    obj = memo.k8s_client.get_user(name, namespace)
    if obj is None or (obj.get("metadata") or {}).get("deletionTimestamp"):
        return

    version = metadata.get("resourceVersion", "")
    if event["type"] == "DELETED":
        version = f"deleted-{version}"
    logger.info(f"Secret {metadata.get('name')} of {name} changed ({event['type']}), re-applying")
    memo.k8s_client.annotate_user(name, namespace, Config.SECRET_VERSION_ANNOTATION, version)


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def connect_elasticsearch() -> ElasticAdmin:
    """Build the admin client and check its credentials, exiting on failure"""
    problems = Config.validate()
    if problems:
        for problem in problems:
            logger.error(f"Error loading environment: {problem}")
        sys.exit(1)

    logger.info("Starting External Elasticsearch Controller.")
    elastic = ElasticAdmin(
        Config.ELASTIC_URL,
        Config.ELASTIC_USERNAME,
        Config.ELASTIC_PASSWORD,
        skip_verify=Config.ELASTIC_SKIP_VERIFY,
        timeout=Config.REQUEST_TIMEOUT,
    )
    try:
        elastic.connection_ok()
    except ElasticError as e:
        logger.error(f"Error while checking ElasticSearch connection: {e}.")
        elastic.close()
        sys.exit(1)
    logger.info("Connection to Elasticsearch established, credentials for superuser are working.")
    return elastic


def main():
    """Main entry point"""
    setup_logging()
    elastic = connect_elasticsearch()
    try:
        k8s_client = KubernetesClient()
        logger.info("Connection to Kubernetes API established.")
        if Config.REGISTER_CRD:
            k8s_client.ensure_crd(Config.CRD_MANIFEST)

        memo = kopf.Memo(k8s_client=k8s_client, lifecycle=LifecycleController(k8s_client, elastic))
        # kopf stops gracefully on SIGINT and SIGTERM, letting running handlers finish
        kopf.run(standalone=True, namespaces=[Config.NAMESPACE], memo=memo)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        logger.info("Shutting down controller...")
        elastic.close()


if __name__ == "__main__":
    main()
