"""
Controller configuration and logging setup

All settings are read from environment variables once, at import time.
Required settings are checked by Config.validate() at startup.
"""

import os
import sys
import logging
from pathlib import Path
from typing import List, Optional

# ANSI color codes
BLUE = "\033[94m"
RED = "\033[91m"
WHITE = "\033[97m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RESET = "\033[0m"

LOGGER_NAME = "es-user-controller"

SERVICE_ACCOUNT_NAMESPACE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")

LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def as_bool(value: str) -> Optional[bool]:
    """Parse a boolean-ish string, returning None when it cannot be parsed"""
    value = value.strip().lower()
    if value in ("1", "true", "t", "yes", "y"):
        return True
    if value in ("0", "false", "f", "no", "n"):
        return False
    return None


def _default_namespace() -> str:
    try:
        return SERVICE_ACCOUNT_NAMESPACE.read_text().strip() or "default"
    except OSError:
        return "default"


# ============================================================================
# CONFIGURATION
# ============================================================================

class Config:
    """Controller configuration loaded from environment variables"""

    # Elasticsearch settings
    ELASTIC_URL = os.getenv("ELASTIC_URL", "").rstrip("/")
    ELASTIC_USERNAME = os.getenv("ELASTIC_USERNAME", "")
    ELASTIC_PASSWORD = os.getenv("ELASTIC_PASSWORD", "")
    ELASTIC_SKIP_VERIFY_RAW = os.getenv("ELASTIC_SKIP_VERIFY", "false")
    ELASTIC_SKIP_VERIFY = bool(as_bool(ELASTIC_SKIP_VERIFY_RAW))
    REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "5.0"))

    # Kubernetes settings
    NAMESPACE = os.getenv("NAMESPACE") or _default_namespace()
    REGISTER_CRD = as_bool(os.getenv("REGISTER_CRD", "true")) is not False
    CRD_MANIFEST = os.getenv("CRD_MANIFEST", str(Path(__file__).with_name("crd.yaml")))

    # Controller settings
    LOGLEVEL = os.getenv("LOGLEVEL", "")
    REQUEUE_SECONDS = int(os.getenv("REQUEUE_SECONDS", "900"))
    WATCH_TIMEOUT = int(os.getenv("WATCH_TIMEOUT", "60"))
    MAX_RETRIES = int(os.getenv("MAX_RETRIES", "5"))
    RETRY_BACKOFF_BASE = float(os.getenv("RETRY_BACKOFF_BASE", "2.0"))
    RETRY_BACKOFF_MAX = float(os.getenv("RETRY_BACKOFF_MAX", "300"))

    # Custom resource settings
    GROUP = "eeops.io"
    VERSION = "v1"
    PLURAL = "elasticsearchusers"
    KIND = "ElasticsearchUser"
    FINALIZER = "ExtElasticOp"
    KEEP_ANNOTATION = "eeops.io/keep"
    SECRET_VERSION_ANNOTATION = "eeops.io/secret-version"
    FIELD_MANAGER = "eeops_field_manager"

    # Credential secret settings
    PASSWORD_LENGTH = 24
    SECRET_USER = "ELASTICSEARCH_USERNAME"
    SECRET_PASS = "ELASTICSEARCH_PASSWORD"
    SECRET_URL = "ELASTICSEARCH_URL"

    @classmethod
    def validate(cls) -> List[str]:
        """
        Check that every required setting is present and parseable

        Returns:
            List of human-readable problems, empty when the configuration is usable
        """
        problems = []
        for name in ("ELASTIC_URL", "ELASTIC_USERNAME", "ELASTIC_PASSWORD"):
            if not getattr(cls, name):
                problems.append(f"{name} undefined")
        if as_bool(cls.ELASTIC_SKIP_VERIFY_RAW) is None:
            problems.append("ELASTIC_SKIP_VERIFY must be undefined, true or false.")
        return problems


# ============================================================================
# LOGGING
# ============================================================================

def resolve_log_level(value: str):
    """
    Map a LOGLEVEL value to a logging level

    Returns:
        Tuple of (level, known) where known is False for empty or unknown values
    """
    level = LOG_LEVELS.get(value.strip().lower())
    if level is None:
        return logging.DEBUG, False
    return level, True


def setup_logging(value: str = None) -> logging.Logger:
    """Configure structured logging for the whole controller"""
    value = Config.LOGLEVEL if value is None else value
    level, known = resolve_log_level(value)

    logging.basicConfig(
        level=logging.WARNING,
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if known:
        logger.info(f"Loglevel set to {logging.getLevelName(level)}.")
    elif not value:
        logger.info("LOGLEVEL not set, fall back to debug.")
    else:
        logger.warning(f'Loglevel "{value}" unknown [trace, debug, info, warn, error]. Fall back to debug.')
    return logger
