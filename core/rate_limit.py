# core/rate_limit.py - Limitation de débit en mémoire (inscription / connexion)

import math
import threading
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Optional, Tuple

from fastapi import Depends, Request

from core.config import Settings, get_settings
from core.errors import AppError
from core.security import get_rate_limit_ip


class RateLimitExceeded(AppError):
    """429, le handler de main.py ajoute l'en-tête Retry-After."""
    status_code = 429
    default_message = "Too many requests, please try again later"

    def __init__(self, message: Optional[str] = None, retry_after: int = 60):
        super().__init__(message)
        self.retry_after = retry_after


class InMemoryRateLimiter:
    """
    Fenêtre glissante par clé, en mémoire du process.

    Suffisant pour un déploiement mono-process; les compteurs sont perdus au
    redémarrage. Les routes sync tournant dans un threadpool, l'accès est
    protégé par un verrou.
    """

    def __init__(self):
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(self, key: str, max_requests: int, window_seconds: int) -> Tuple[bool, int]:
        """
        Enregistre une requête pour `key` si la limite le permet.

        Returns:
            (limited, retry_after): retry_after = secondes avant qu'une place se libère
        """
        now = time.monotonic()
        with self._lock:
            hits = self._hits[key]
            while hits and hits[0] <= now - window_seconds:
                hits.popleft()

            if len(hits) >= max_requests:
                retry_after = max(1, math.ceil(hits[0] + window_seconds - now))
                return True, retry_after

            hits.append(now)
            return False, 0

    def reset(self, key: str) -> None:
        with self._lock:
            self._hits.pop(key, None)

    def reset_all(self) -> None:
        with self._lock:
            self._hits.clear()


_rate_limiter = InMemoryRateLimiter()


def get_rate_limiter() -> InMemoryRateLimiter:
    return _rate_limiter


def check_rate_limit(
    key: str,
    max_requests: int,
    window_seconds: int,
    limiter: Optional[InMemoryRateLimiter] = None,
) -> None:
    """
    Lève RateLimitExceeded si `key` a dépassé `max_requests` sur la fenêtre.

    Usage:
        check_rate_limit(f"login:{client_ip}", max_requests=10, window_seconds=60)
    """
    limited, retry_after = (limiter or _rate_limiter).hit(key, max_requests, window_seconds)
    if not limited:
        return

    from core.logging import log_audit_event
    log_audit_event(
        "rate_limit_exceeded",
        result="rate_limited",
        extra_data={"key": key, "retry_after": retry_after},
    )
    raise RateLimitExceeded(
        f"Too many requests. Max {max_requests} per {window_seconds}s.",
        retry_after=retry_after,
    )


def rate_limit_dependency(key_prefix: str):
    """
    Dépendance FastAPI, une clé par (préfixe, adresse du pair). Limites lues dans Settings.

    Usage:
        @router.post("/login", dependencies=[Depends(rate_limit_dependency("login"))])
    """
    async def dependency(
        request: Request,
        settings: Settings = Depends(get_settings),
        limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
    ) -> None:
        check_rate_limit(
            f"{key_prefix}:{get_rate_limit_ip(request, settings.trusted_proxies)}",
            max_requests=settings.login_rate_limit,
            window_seconds=settings.login_rate_window_seconds,
            limiter=limiter,
        )

    return dependency
