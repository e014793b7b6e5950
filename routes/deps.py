# routes/deps.py - Dépendances FastAPI: services injectés, identité, contrôle de rôle

import enum
import logging
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from core.config import Settings, get_settings
from core.errors import ForbiddenError, UnauthenticatedError
from core.logging import log_audit_event
from core.security import get_client_ip
from db.models import Quote, User
from db.session import get_db
from services.authorization import AclPolicy, ObjectPermission, can_access
from services.object_registry import ObjectRegistry
from services.object_storage import ObjectStorageService, get_object_storage_service
from services.quote_lifecycle import QuoteLifecycleEngine
from services.session_store import SessionStore
from services.user_service import UserService

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


def user_has_role(user: User, role: Role) -> bool:
    if role == Role.ADMIN:
        return bool(user.is_admin)
    return True


# === Services ===

def get_session_store(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> SessionStore:
    return SessionStore(db, ttl=timedelta(days=settings.session_ttl_days))


def get_user_service(db: Session = Depends(get_db)) -> UserService:
    return UserService(db)


def get_quote_engine(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> QuoteLifecycleEngine:
    return QuoteLifecycleEngine(db, transition_mode=settings.status_transition_mode)


def get_object_storage(settings: Settings = Depends(get_settings)) -> ObjectStorageService:
    return get_object_storage_service(settings)


def get_object_registry(db: Session = Depends(get_db)) -> ObjectRegistry:
    return ObjectRegistry(db)


def set_session_cookie(response: Response, sid: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=sid,
        max_age=settings.session_ttl_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


# === Identité ===

async def get_current_user_optional(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    store: SessionStore = Depends(get_session_store),
    users: UserService = Depends(get_user_service),
) -> Optional[User]:
    """Résout cookie -> session -> utilisateur, ou None."""
    sid = request.cookies.get(settings.session_cookie_name)
    auth_session = store.get(sid)
    if auth_session is None:
        return None

    user = users.get_user(auth_session.user_id)
    if user is None:
        store.destroy(sid)
        return None

    # Expiration glissante côté client aussi
    set_session_cookie(response, sid, settings)
    request.state.user_id = user.id
    return user


async def require_user(user: Optional[User] = Depends(get_current_user_optional)) -> User:
    if user is None:
        raise UnauthenticatedError("Not authenticated")
    return user


def require_role(role: Role):
    """
    Fabrique la dépendance de contrôle de rôle (401 sans session, 403 sans le rôle).

    Usage:
        router = APIRouter(dependencies=[Depends(require_role(Role.ADMIN))])
    """
    async def dependency(request: Request, user: User = Depends(require_user)) -> User:
        if not user_has_role(user, role):
            log_audit_event(
                "access_denied",
                user_id=user.id,
                result="denied",
                ip_address=get_client_ip(request),
                extra_data={"required_role": role.value, "path": request.url.path},
            )
            raise ForbiddenError()
        return user

    return dependency


require_admin = require_role(Role.ADMIN)


# === Contrôle propriétaire ===

def ensure_quote_access(
    quote: Quote,
    user: User,
    request: Request,
    permission: ObjectPermission = ObjectPermission.READ,
) -> None:
    """Autorise le propriétaire et les administrateurs, 403 sinon."""
    policy = AclPolicy(owner=quote.user_id)
    if not can_access(user.id, policy, requester_is_admin=bool(user.is_admin), permission=permission):
        log_audit_event(
            "access_denied",
            user_id=user.id,
            quote_id=quote.id,
            result="denied",
            ip_address=get_client_ip(request),
        )
        raise ForbiddenError()


def ensure_object_write(
    object_path: str,
    owner_user_id: Optional[str],
    user: User,
    request: Request,
    message: str = "Forbidden",
    field: Optional[str] = None,
) -> None:
    """
    Autorise l'écriture ou le rattachement d'une clé de stockage.

    Clé réservée: propriétaire et administrateurs. Clé sans propriétaire
    connu (déposée hors API): administrateurs uniquement.
    """
    is_admin = bool(user.is_admin)
    if owner_user_id is None:
        allowed = is_admin
    else:
        policy = AclPolicy(owner=owner_user_id)
        allowed = can_access(user.id, policy, requester_is_admin=is_admin, permission=ObjectPermission.WRITE)

    if not allowed:
        log_audit_event(
            "access_denied",
            user_id=user.id,
            result="denied",
            ip_address=get_client_ip(request),
            extra_data={"object_path": object_path, "permission": ObjectPermission.WRITE.value},
        )
        details = [{"field": field, "message": message}] if field else None
        raise ForbiddenError(message, details=details)
