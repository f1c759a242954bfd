"""
Kubernetes API access for the controller

Covers the credential secrets, reads and status writes of ElasticsearchUser
resources, and the CRD itself. Watching and finalizers are left to kopf.
"""

import base64
import logging
from typing import Dict, Optional

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .config import Config
from .models import ManagedUser, UserStatus

logger = logging.getLogger("es-user-controller.kubernetes")


def encode_data(data: Dict[str, str]) -> Dict[str, str]:
    return {key: base64.b64encode(value.encode()).decode() for key, value in data.items()}


def decode_data(data: Optional[Dict[str, str]]) -> Dict[str, bytes]:
    return {key: base64.b64decode(value) for key, value in (data or {}).items()}


class KubernetesClient:
    """Handles all Kubernetes API interactions"""

    def __init__(self):
        try:
            config.load_incluster_config()
        except config.ConfigException:
            logger.warning("Failed to load in-cluster config, trying local kubeconfig")
            config.load_kube_config()

        self.v1 = client.CoreV1Api()
        self.custom = client.CustomObjectsApi()
        self.extensions = client.ApiextensionsV1Api()
        self.timeout = Config.REQUEST_TIMEOUT

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def get_secret(self, name: str, namespace: str) -> Optional[Dict[str, bytes]]:
        """
        Fetch the data of a Secret

        Returns:
            Decoded secret data, or None if the Secret does not exist
        """
        try:
            secret = self.v1.read_namespaced_secret(name, namespace, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return decode_data(secret.data)

    def create_secret(self, name: str, namespace: str, data: Dict[str, str], owner: Optional[dict] = None):
        """
        Create a Secret, optionally owned by another resource

        Args:
            name: Secret name
            namespace: Kubernetes namespace
            data: Plain-text values, base64-encoded before sending
            owner: Owner reference so the Secret is garbage-collected with its owner
        """
        owner_references = None
        if owner and owner.get("uid"):
            owner_references = [client.V1OwnerReference(
                api_version=owner["apiVersion"],
                kind=owner["kind"],
                name=owner["name"],
                uid=owner["uid"],
                controller=owner.get("controller", False),
            )]
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(name=name, owner_references=owner_references),
            data=encode_data(data),
        )
        self.v1.create_namespaced_secret(namespace, body, _request_timeout=self.timeout)

    def patch_secret(self, name: str, namespace: str, data: Dict[str, str]):
        """Overwrite the given keys of a Secret, leaving other keys untouched"""
        self.v1.patch_namespaced_secret(
            name, namespace, {"data": encode_data(data)},
            field_manager=Config.FIELD_MANAGER, _request_timeout=self.timeout
        )

    # ------------------------------------------------------------------
    # ElasticsearchUser resources
    # ------------------------------------------------------------------

    def get_user(self, name: str, namespace: str) -> Optional[dict]:
        try:
            return self.custom.get_namespaced_custom_object(
                Config.GROUP, Config.VERSION, namespace, Config.PLURAL, name,
                _request_timeout=self.timeout
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def annotate_user(self, name: str, namespace: str, key: str, value: str):
        """Set one annotation on an ElasticsearchUser, ignoring a vanished resource"""
        try:
            self.custom.patch_namespaced_custom_object(
                Config.GROUP, Config.VERSION, namespace, Config.PLURAL, name,
                {"metadata": {"annotations": {key: value}}},
                field_manager=Config.FIELD_MANAGER, _request_timeout=self.timeout
            )
        except ApiException as e:
            if e.status != 404:
                raise
            logger.debug(f"ElasticsearchUser {namespace}/{name} is gone, not annotating")

    def patch_status(self, user: ManagedUser, status: UserStatus):
        self.custom.patch_namespaced_custom_object_status(
            Config.GROUP, Config.VERSION, user.namespace, Config.PLURAL, user.name,
            {"status": status.to_dict()},
            _request_timeout=self.timeout
        )

    # ------------------------------------------------------------------
    # CRD
    # ------------------------------------------------------------------

    def ensure_crd(self, manifest_path: str):
        """
        Create the ElasticsearchUser CRD, or patch it if it already exists

        Raises:
            ApiException: if the CRD can neither be created nor already exists
        """
        with open(manifest_path, "r") as f:
            manifest = yaml.safe_load(f)
        name = manifest["metadata"]["name"]

        try:
            self.extensions.create_custom_resource_definition(manifest, _request_timeout=self.timeout)
            logger.info(f"CRD {name} created successfully")
            return
        except ApiException as e:
            if e.status != 409:
                raise

        try:
            self.extensions.patch_custom_resource_definition(
                name, manifest, field_manager=Config.FIELD_MANAGER, _request_timeout=self.timeout
            )
            logger.info(f"Successfully patched existing CRD {name}")
        except ApiException as e:
            logger.warning(f"Could not patch already existing CRD {name}: {e.reason}")
            logger.warning("If problems persist, consider deleting the CRD and restarting this controller.")
