"""
Routes d'authentification
Inscription, connexion, déconnexion et profil courant (sessions serveur)
"""

from fastapi import APIRouter, Depends, Request, Response

from core.config import Settings, get_settings
from core.errors import UnauthenticatedError
from core.logging import log_audit_event
from core.rate_limit import rate_limit_dependency
from core.security import get_client_ip, get_user_agent
from db.models import User
from models.schemas import LoginRequest, MessageOut, RegisterRequest, UserOut
from routes.deps import (
    get_session_store,
    get_user_service,
    require_user,
    set_session_cookie,
)
from services.session_store import SessionStore
from services.user_service import UserService

router = APIRouter(prefix="/api", tags=["Authentification"])


@router.post(
    "/register",
    response_model=UserOut,
    dependencies=[Depends(rate_limit_dependency("register"))],
)
async def register(
    payload: RegisterRequest,
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    users: UserService = Depends(get_user_service),
    store: SessionStore = Depends(get_session_store),
):
    """
    Crée un compte puis ouvre directement une session.

    Raises:
        400: validation ou email déjà enregistré
    """
    user = users.create_user(
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        profile_image_url=payload.profile_image_url,
    )

    auth_session = store.create(user.id)
    set_session_cookie(response, auth_session.sid, settings)

    log_audit_event("user_registered", user_id=user.id, ip_address=get_client_ip(request))
    return user


@router.post(
    "/login",
    response_model=UserOut,
    dependencies=[Depends(rate_limit_dependency("login"))],
)
async def login(
    credentials: LoginRequest,
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    users: UserService = Depends(get_user_service),
    store: SessionStore = Depends(get_session_store),
):
    """
    Authentification par email/mot de passe.

    Raises:
        400: requête invalide
        401: credentials invalides
    """
    user = users.authenticate(credentials.email, credentials.password)
    if user is None:
        log_audit_event(
            "login",
            result="failure",
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        )
        raise UnauthenticatedError("Invalid email or password")

    # Remplace une éventuelle session précédente
    store.destroy(request.cookies.get(settings.session_cookie_name))
    auth_session = store.create(user.id)
    set_session_cookie(response, auth_session.sid, settings)

    log_audit_event(
        "login",
        user_id=user.id,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return user


@router.post("/logout", response_model=MessageOut)
async def logout(
    request: Request,
    response: Response,
    user: User = Depends(require_user),
    settings: Settings = Depends(get_settings),
    store: SessionStore = Depends(get_session_store),
):
    """Détruit la session serveur et efface le cookie."""
    store.destroy(request.cookies.get(settings.session_cookie_name))
    response.delete_cookie(settings.session_cookie_name)

    log_audit_event("logout", user_id=user.id, ip_address=get_client_ip(request))
    return MessageOut(message="Logged out successfully")


@router.get("/auth/user", response_model=UserOut)
async def get_current_user_info(user: User = Depends(require_user)):
    """Profil de l'utilisateur connecté (sans mot de passe)."""
    return user
