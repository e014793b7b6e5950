# services/authorization.py - Politique d'accès (propriétaire ou administrateur)

import enum
from dataclasses import dataclass
from typing import Optional


class ObjectPermission(str, enum.Enum):
    READ = "read"
    WRITE = "write"


class Visibility(str, enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class AclPolicy:
    """Propriétaire d'une ressource et sa visibilité. Les devis sont toujours privés."""
    owner: str
    visibility: Visibility = Visibility.PRIVATE


def can_access(
    requester_id: Optional[str],
    policy: AclPolicy,
    requester_is_admin: bool = False,
    permission: ObjectPermission = ObjectPermission.READ,
) -> bool:
    """
    Décide si le demandeur peut effectuer `permission` sur la ressource.

    Règles, dans l'ordre:
    1. ressource publique + lecture -> autorisé, même sans identité
    2. pas d'identité -> refusé
    3. propriétaire -> toute action
    4. administrateur -> toute action
    5. sinon refusé
    """
    if policy.visibility == Visibility.PUBLIC and permission == ObjectPermission.READ:
        return True

    if not requester_id:
        return False

    if policy.owner == requester_id:
        return True

    if requester_is_admin:
        return True

    return False
