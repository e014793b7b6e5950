# core/logging.py - Journal d'audit JSON (authentification, accès refusés, cycle de vie des devis)

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

AUDIT_LOGGER_NAME = "fabquote.audit"

# Attributs posés via extra={} et recopiés tels quels dans la ligne JSON
AUDIT_FIELDS = (
    "audit_event",
    "result",
    "user_id",
    "quote_id",
    "ip_address",
    "user_agent",
)

# Niveau de log selon le résultat de l'événement
RESULT_LEVELS = {
    "failure": logging.WARNING,
    "denied": logging.WARNING,
    "error": logging.WARNING,
    "rate_limited": logging.ERROR,
}


class AuditJSONFormatter(logging.Formatter):
    """Une ligne JSON par événement (ingérable par ELK / Loki sans parsing)."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({f: getattr(record, f) for f in AUDIT_FIELDS if hasattr(record, f)})
        entry.update(getattr(record, "extra_data", None) or {})

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_audit_logger(name: str = AUDIT_LOGGER_NAME, log_file: Optional[str] = None) -> logging.Logger:
    """
    Branche le logger d'audit sur stdout (et sur AUDIT_LOG_FILE si défini).

    Idempotent: un second appel ne rajoute pas de handlers. Le logger ne
    propage pas vers la racine, les lignes JSON restent séparées des logs
    applicatifs texte.
    """
    audit = logging.getLogger(name)
    if audit.handlers:
        return audit

    audit.setLevel(logging.INFO)
    audit.propagate = False

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(AuditJSONFormatter())
        audit.addHandler(handler)
    return audit


audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)


def log_audit_event(
    event: str,
    user_id: Optional[str] = None,
    quote_id: Optional[str] = None,
    result: str = "success",
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Trace un événement d'audit.

    Args:
        event: login, logout, user_registered, access_denied, upload_stored,
            upload_failed, quote_created, quote_status_changed, quote_price_set,
            quote_document_attached, rate_limit_exceeded
        result: success | failure | denied | error | rate_limited
        extra_data: contexte additionnel, jamais de secret (mot de passe, sid)

    Exemple:
        log_audit_event("access_denied", user_id=user.id, quote_id=quote.id, result="denied")
    """
    fields = {
        "audit_event": event,
        "result": result,
        "user_id": user_id,
        "quote_id": quote_id,
        "ip_address": ip_address,
        "user_agent": user_agent,
    }
    extra = {key: value for key, value in fields.items() if value is not None}
    if extra_data:
        extra["extra_data"] = {key: value for key, value in extra_data.items() if value is not None}

    audit_logger.log(RESULT_LEVELS.get(result, logging.INFO), "audit: %s", event, extra=extra)
