"""Translation of permission tiers into Elasticsearch index privileges"""

from typing import FrozenSet, List

from .models import PermissionTier, Role

READ = "read"
WRITE = "write"
CREATE = "create"

TIER_PRIVILEGES = {
    PermissionTier.READ: frozenset({READ}),
    PermissionTier.WRITE: frozenset({READ, WRITE}),
    PermissionTier.CREATE: frozenset({READ, WRITE, CREATE}),
}


def map_tier(tier: PermissionTier) -> FrozenSet[str]:
    """Privilege set granted by a tier; each tier includes the ones below it"""
    return TIER_PRIVILEGES[PermissionTier(tier)]


def index_patterns(prefixes: List[str]) -> List[str]:
    """Expand index prefixes to wildcard patterns, keeping their order"""
    return [f"{prefix}*" for prefix in prefixes]


def target_role(prefixes: List[str], tier: PermissionTier) -> Role:
    return Role(index_patterns(prefixes), map_tier(tier))
