# core/security.py - Mots de passe (bcrypt via passlib), identifiants de session, contexte client

import secrets
from typing import Optional, Sequence

from fastapi import Request
from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# 32 octets aléatoires -> 43 caractères urlsafe
SESSION_ID_BYTES = 32


# === Mots de passe ===

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """False si le compte n'a pas de hash (aucune comparaison n'est faite)."""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


# === Sessions ===

def generate_session_id() -> str:
    return secrets.token_urlsafe(SESSION_ID_BYTES)


# === Contexte de la requête (journal d'audit, clés de rate limit) ===

def get_client_ip(request: Request) -> str:
    """Premier hop de X-Forwarded-For derrière un reverse proxy, sinon l'adresse du pair."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_rate_limit_ip(request: Request, trusted_proxies: Sequence[str] = ()) -> str:
    """
    Adresse servant de clé au rate limiter.

    X-Forwarded-For est fourni par le client: il n'est lu que si le pair TCP
    est un reverse proxy déclaré dans TRUSTED_PROXIES. Sinon un attaquant
    changerait de clé à chaque requête.
    """
    peer = request.client.host if request.client else "unknown"
    if peer not in trusted_proxies:
        return peer
    forwarded_for = request.headers.get("X-Forwarded-For")
    if not forwarded_for:
        return peer
    # Hop le plus à droite qui n'est pas un proxy de confiance
    for hop in reversed([h.strip() for h in forwarded_for.split(",") if h.strip()]):
        if hop not in trusted_proxies:
            return hop
    return peer


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "unknown")
