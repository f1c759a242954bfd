"""
Credential verification

Password hashes cannot be read back from Elasticsearch, so a password changed
behind the controller's back is only visible by trying to log in with the one
stored in the credential secret.
"""

import logging
from enum import Enum

from .converger import target_user
from .elasticsearch_client import ElasticAdmin, WrongCredentials

logger = logging.getLogger("es-user-controller.verifier")


class Verification(Enum):
    OK = "ok"
    PASSWORD_STALE = "password-stale"


class CredentialVerifier:

    def __init__(self, elastic: ElasticAdmin):
        self.elastic = elastic

    def verify(self, username: str, password: str) -> Verification:
        """
        Log in as the managed user and push the password again if it is rejected

        Any error other than rejected credentials propagates unchanged.
        """
        try:
            self.elastic.authenticate_as(username, password)
        except WrongCredentials:
            logger.info(f"Password of user {username} was rejected, pushing the one from its secret")
            self.elastic.put_user(username, target_user(username, password))
            return Verification.PASSWORD_STALE
        return Verification.OK
