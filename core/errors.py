# core/errors.py - Taxonomie des erreurs applicatives

from typing import Any, Dict, List, Optional


class AppError(Exception):
    """
    Erreur applicative de base.

    Chaque sous-classe porte le code HTTP vers lequel elle est traduite par
    les handlers enregistrés dans main.py. Les services lèvent ces erreurs,
    les routes ne les interceptent pas.
    """
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[List[Dict[str, Any]]] = None):
        self.message = message or self.default_message
        self.details = details or []
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    """Entrée mal formée ou hors énumération (400)."""
    status_code = 400
    default_message = "Validation error"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls("Validation error", details=[{"field": field, "message": message}])


class UnauthenticatedError(AppError):
    status_code = 401
    default_message = "Not authenticated"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ObjectNotFoundError(NotFoundError):
    default_message = "Object not found"


class UpstreamStorageError(AppError):
    """Stockage objet injoignable ou écriture refusée (500, loggée pour relance manuelle)."""
    status_code = 500
    default_message = "Storage backend error"


def details_from_pydantic(errors) -> List[Dict[str, Any]]:
    """Convertit les erreurs pydantic/FastAPI en liste {field, message}."""
    details = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        details.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return details
