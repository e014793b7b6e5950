# services/object_registry.py - Propriétaires des clés de stockage téléversées

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import StoredObject, utcnow

logger = logging.getLogger(__name__)


class ObjectRegistry:
    """
    Table `stored_objects`: une ligne par clé réservée.

    Une clé appartient au premier utilisateur qui la réserve, soit en émettant
    un handle (POST /api/objects/upload), soit par un premier PUT sur un
    identifiant choisi par le client. Le registre ne décide pas des accès: les
    routes comparent le propriétaire via can_access().
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, object_path: str) -> Optional[StoredObject]:
        return self.db.get(StoredObject, object_path)

    def get_owner(self, object_path: str) -> Optional[str]:
        record = self.get(object_path)
        return record.owner_user_id if record is not None else None

    def claim(self, object_path: str, owner_user_id: str) -> StoredObject:
        """
        Réserve la clé pour `owner_user_id` si elle est libre.

        Retourne la ligne existante sans la modifier si la clé est déjà
        réservée; l'appelant compare alors `owner_user_id`.
        """
        record = self.get(object_path)
        if record is not None:
            return record

        record = StoredObject(object_path=object_path, owner_user_id=owner_user_id)
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            # Réservation concurrente de la même clé: le premier l'emporte
            self.db.rollback()
            return self.get(object_path)
        self.db.refresh(record)
        logger.info("Clé réservée: %s (user %s)", object_path, owner_user_id)
        return record

    def record_upload(self, object_path: str, size: int) -> StoredObject:
        """Marque les octets comme reçus (taille, date). La clé doit être réservée."""
        record = self.get(object_path)
        if record is None:
            raise LookupError(f"Unclaimed object: {object_path}")
        record.size = size
        record.uploaded_at = utcnow()
        self.db.commit()
        self.db.refresh(record)
        return record
