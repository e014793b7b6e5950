"""
Routes des devis côté client
Création (avec fichiers CAO déjà téléversés), liste et détail
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request

from core.config import Settings, get_settings
from core.errors import NotFoundError, ValidationError
from core.logging import log_audit_event
from core.security import get_client_ip
from db.models import User
from models.schemas import (
    FileUpload,
    QuoteCreateRequest,
    QuoteDetailOut,
    QuoteOut,
    StoredFileRef,
)
from routes.deps import (
    ensure_object_write,
    ensure_quote_access,
    get_object_registry,
    get_object_storage,
    get_quote_engine,
    require_user,
)
from services.object_registry import ObjectRegistry
from services.object_storage import ObjectStorageService
from services.quote_lifecycle import QuoteLifecycleEngine, file_type_from_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/quotes", tags=["Devis"])


def resolve_stored_object(
    storage: ObjectStorageService,
    registry: ObjectRegistry,
    user: User,
    request: Request,
    reference: str,
    field: str,
    label: str,
) -> str:
    """
    Référence client -> clé de stockage.

    Vérifie que les octets existent (400) puis que l'appelant peut rattacher
    la clé: il doit l'avoir téléversée, sauf administrateur (403).
    """
    try:
        key = storage.resolve_reference(reference)
    except ValidationError:
        raise ValidationError.for_field(field, f"Invalid file reference for {label}")
    if not storage.exists(key):
        raise ValidationError.for_field(field, f"File not found in storage: {label}")
    ensure_object_write(
        key,
        registry.get_owner(key),
        user,
        request,
        f"File was not uploaded by you: {label}",
        field=field,
    )
    return key


def _check_file(index: int, upload: FileUpload, settings: Settings) -> None:
    extension = file_type_from_name(upload.name)
    if extension not in settings.allowed_cad_extensions:
        raise ValidationError.for_field(
            f"files.{index}.name",
            f"File type not allowed: {upload.name} "
            f"(allowed: {', '.join(settings.allowed_cad_extensions)})",
        )
    if upload.size is not None and upload.size > settings.max_upload_bytes:
        raise ValidationError.for_field(
            f"files.{index}.size",
            f"File too large: {upload.name} (max {settings.max_upload_bytes} bytes)",
        )


@router.post("", response_model=QuoteDetailOut)
async def create_quote(
    payload: QuoteCreateRequest,
    request: Request,
    user: User = Depends(require_user),
    settings: Settings = Depends(get_settings),
    storage: ObjectStorageService = Depends(get_object_storage),
    registry: ObjectRegistry = Depends(get_object_registry),
    engine: QuoteLifecycleEngine = Depends(get_quote_engine),
):
    """
    Crée un devis pour l'utilisateur connecté.

    Chaque fichier doit avoir été téléversé au préalable (PUT sur son uploadURL).

    Raises:
        400: champ invalide, aucun fichier, type/taille refusé, fichier absent du stockage
        401: pas de session
        403: fichier téléversé par un autre utilisateur
    """
    if len(payload.files) > settings.max_files_per_quote:
        raise ValidationError.for_field(
            "files", f"Too many files (max {settings.max_files_per_quote})"
        )

    stored_files = []
    for index, upload in enumerate(payload.files):
        _check_file(index, upload, settings)
        key = resolve_stored_object(
            storage, registry, user, request,
            upload.upload_url, f"files.{index}.uploadURL", upload.name,
        )
        stored_files.append(StoredFileRef(file_name=upload.name, storage_key=key, size=upload.size))

    fields = payload
    if payload.technical_drawing_path:
        drawing_key = resolve_stored_object(
            storage, registry, user, request,
            payload.technical_drawing_path, "technicalDrawingPath", "technical drawing",
        )
        fields = fields.model_copy(update={"technical_drawing_path": drawing_key})

    quote = engine.create_quote(user.id, fields, stored_files)

    log_audit_event(
        "quote_created",
        user_id=user.id,
        quote_id=quote.id,
        ip_address=get_client_ip(request),
        extra_data={"files": len(stored_files), "service": quote.service},
    )
    return quote


@router.get("", response_model=List[QuoteOut])
async def list_my_quotes(
    user: User = Depends(require_user),
    engine: QuoteLifecycleEngine = Depends(get_quote_engine),
):
    """Devis de l'utilisateur connecté, plus récents d'abord."""
    return engine.list_quotes_for_user(user.id)


@router.get("/{quote_id}", response_model=QuoteDetailOut)
async def get_quote(
    quote_id: str,
    request: Request,
    user: User = Depends(require_user),
    engine: QuoteLifecycleEngine = Depends(get_quote_engine),
):
    """
    Détail d'un devis (propriétaire ou administrateur).

    Raises:
        403: devis d'un autre utilisateur
        404: devis inexistant
    """
    quote = engine.get_quote(quote_id)
    if quote is None:
        raise NotFoundError("Quote not found")
    ensure_quote_access(quote, user, request)
    return quote
