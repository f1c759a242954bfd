"""
Credential secret management

Each ElasticsearchUser has a Secret holding the username, password and URL
other workloads use to reach Elasticsearch. Username and URL always follow
the controller; the password is generated once and only replaced when it is
missing.
"""

import logging
import secrets
import string
from typing import Dict, Optional, Tuple

from .config import Config
from .kubernetes_client import KubernetesClient
from .models import ManagedUser

logger = logging.getLogger("es-user-controller.secrets")

PASSWORD_CLASSES = (string.ascii_lowercase, string.ascii_uppercase, string.digits)

_random = secrets.SystemRandom()


def generate_password(length: int = Config.PASSWORD_LENGTH) -> str:
    """Random alphanumeric password with at least one lowercase, uppercase and digit"""
    alphabet = "".join(PASSWORD_CLASSES)
    chars = [secrets.choice(cls) for cls in PASSWORD_CLASSES]
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    _random.shuffle(chars)
    return "".join(chars)


def _text(value: Optional[bytes]) -> Optional[str]:
    if value is None:
        return None
    try:
        return value.decode()
    except UnicodeDecodeError:
        return None


def _shown(value: Optional[bytes]) -> str:
    if value is None:
        return "<undefined>"
    text = _text(value)
    return "<binary>" if text is None else text


class SecretManager:
    """Ensures the credential Secret of a managed user exists and is consistent"""

    def __init__(self, k8s_client: KubernetesClient):
        self.k8s_client = k8s_client

    def ensure_secret(self, user: ManagedUser, store_url: str) -> Tuple[str, str]:
        """
        Create or correct the credential Secret referenced by a managed user

        Args:
            user: The managed user
            store_url: Elasticsearch URL the controller is configured with

        Returns:
            Tuple of (username, password) as stored in the Secret
        """
        data = self.k8s_client.get_secret(user.secret_ref, user.namespace)

        if data is None:
            logger.debug(f"Secret {user.secret_ref} does not exist, create.")
            password = generate_password()
            self.k8s_client.create_secret(
                user.secret_ref,
                user.namespace,
                {
                    Config.SECRET_USER: user.username,
                    Config.SECRET_PASS: password,
                    Config.SECRET_URL: store_url,
                },
                owner=user.owner_reference(),
            )
            return user.username, password

        changes: Dict[str, str] = {}

        if _text(data.get(Config.SECRET_URL)) != store_url:
            logger.info(f"Secret {user.secret_ref} had URL {_shown(data.get(Config.SECRET_URL))}. "
                        f"Set to {store_url}, as configured in the controller.")
            changes[Config.SECRET_URL] = store_url

        if _text(data.get(Config.SECRET_USER)) != user.username:
            logger.info(f"Secret {user.secret_ref} had user {_shown(data.get(Config.SECRET_USER))}. "
                        f"Set to {user.username}, as specified in CR {user.name}.")
            changes[Config.SECRET_USER] = user.username

        password = _text(data.get(Config.SECRET_PASS))
        if not password:
            logger.info(f"Secret {user.secret_ref} was missing a password. Set a random one. (CR {user.name}).")
            password = generate_password()
            changes[Config.SECRET_PASS] = password

        if changes:
            self.k8s_client.patch_secret(user.secret_ref, user.namespace, changes)

        return user.username, password
