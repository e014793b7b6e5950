"""
Session Store - FABQUOTE
Persistance serveur des sessions authentifiées.

Une session associe un identifiant opaque (cookie) à un utilisateur, avec une
expiration glissante: chaque lecture réussie repousse l'échéance de `ttl`.
Les sessions expirées sont purgées à la lecture et à chaque création (pas de
tâche de fond).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from core.security import generate_session_id
from db.models import AuthSession, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = timedelta(days=7)


def _as_utc(value: datetime) -> datetime:
    # SQLite renvoie des datetimes naïfs
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionStore:
    """
    Store de sessions adossé à la table `sessions`.

    Workflow :
    1. create(user_id) -> AuthSession (sid à poser en cookie)
    2. get(sid) -> AuthSession | None (expire glissant)
    3. destroy(sid) à la déconnexion
    """

    def __init__(self, db: Session, ttl: timedelta = DEFAULT_SESSION_TTL):
        self.db = db
        self.ttl = ttl

    def create(self, user_id: str, data: Optional[Dict[str, Any]] = None) -> AuthSession:
        self.prune_expired()
        auth_session = AuthSession(
            sid=generate_session_id(),
            user_id=user_id,
            data=data or {},
            expire=utcnow() + self.ttl,
        )
        self.db.add(auth_session)
        self.db.commit()
        self.db.refresh(auth_session)
        return auth_session

    def get(self, sid: Optional[str]) -> Optional[AuthSession]:
        if not sid:
            return None

        auth_session = self.db.get(AuthSession, sid)
        if auth_session is None:
            return None

        now = utcnow()
        if _as_utc(auth_session.expire) <= now:
            logger.info("Session expirée supprimée (user %s)", auth_session.user_id)
            self.db.delete(auth_session)
            self.db.commit()
            return None

        auth_session.expire = now + self.ttl
        self.db.commit()
        return auth_session

    def destroy(self, sid: Optional[str]) -> bool:
        if not sid:
            return False
        auth_session = self.db.get(AuthSession, sid)
        if auth_session is None:
            return False
        self.db.delete(auth_session)
        self.db.commit()
        return True

    def prune_expired(self) -> int:
        """Supprime les sessions expirées, retourne le nombre de lignes supprimées."""
        deleted = (
            self.db.query(AuthSession)
            .filter(AuthSession.expire <= utcnow())
            .delete(synchronize_session=False)
        )
        if deleted:
            self.db.commit()
            logger.info("Nettoyage sessions: %d sessions expirées supprimées", deleted)
        return deleted
