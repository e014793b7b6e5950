# core/config.py - Configuration centralisée (variables d'environnement + .env)

import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_extensions(name: str, default: str) -> List[str]:
    return [item.lower().lstrip(".") for item in _env_list(name, default)]


class Settings(BaseModel):
    """
    Paramètres de l'application.

    Les valeurs par défaut sont lues dans l'environnement (et le .env) une
    seule fois, à l'import du module. get_settings() en garde une instance;
    les tests construisent leurs propres Settings(...) avec des valeurs
    explicites et les injectent via dependency_overrides.
    """
    app_name: str = os.getenv("APP_NAME", "FabQuote - Plateforme de devis de fabrication")
    environment: str = os.getenv("ENVIRONMENT", "dev")
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./fabquote.db")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    audit_log_file: Optional[str] = os.getenv("AUDIT_LOG_FILE") or None

    # Sessions
    session_cookie_name: str = os.getenv("SESSION_COOKIE_NAME", "sid")
    session_ttl_days: int = int(os.getenv("SESSION_TTL_DAYS", "7"))
    session_cookie_secure: bool = _env_bool("SESSION_COOKIE_SECURE")

    # Stockage objet
    storage_backend: str = os.getenv("STORAGE_BACKEND", "local")
    # Préfixe des clés ({base}/{id}), commun aux deux backends
    storage_base_path: str = os.getenv("STORAGE_BASE_PATH", "uploads")
    local_storage_dir: str = os.getenv("LOCAL_STORAGE_DIR", "./data/objects")
    nextcloud_url: str = os.getenv("NEXTCLOUD_URL", "")
    nextcloud_user: str = os.getenv("NEXTCLOUD_USER", "")
    nextcloud_pass: str = os.getenv("NEXTCLOUD_PASS", "")
    storage_timeout_seconds: float = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "30"))

    # Limites d'upload
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(100 * 1024 * 1024)))
    max_files_per_quote: int = int(os.getenv("MAX_FILES_PER_QUOTE", "5"))
    allowed_cad_extensions: List[str] = _env_extensions("ALLOWED_CAD_EXTENSIONS", "step,stp,stl,dxf,dwg")

    # Cycle de vie des devis: permissive | forward | adjacent
    status_transition_mode: str = os.getenv("STATUS_TRANSITION_MODE", "permissive")

    # Anti-bruteforce login/register
    login_rate_limit: int = int(os.getenv("LOGIN_RATE_LIMIT", "10"))
    login_rate_window_seconds: int = int(os.getenv("LOGIN_RATE_WINDOW_SECONDS", "60"))
    # Adresses des reverse proxies dont X-Forwarded-For est pris en compte
    trusted_proxies: List[str] = _env_list("TRUSTED_PROXIES")


@lru_cache()
def get_settings() -> Settings:
    """Instance unique des paramètres (surchargée via dependency_overrides en test)."""
    return Settings()
