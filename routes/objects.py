"""
Routes de stockage objet
Handles d'upload, réception des octets et téléchargement des fichiers référencés
"""

import logging
from typing import Optional
from urllib.parse import quote as url_quote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from core.config import Settings, get_settings
from core.errors import ForbiddenError, UpstreamStorageError, ValidationError
from core.logging import log_audit_event
from core.security import get_client_ip
from db.models import User
from models.schemas import UploadHandleOut, UploadResultOut
from routes.deps import (
    ensure_object_write,
    ensure_quote_access,
    get_object_registry,
    get_object_storage,
    get_quote_engine,
    require_user,
)
from services.authorization import AclPolicy, ObjectPermission, can_access
from services.object_registry import ObjectRegistry
from services.object_storage import ObjectStorageService
from services.quote_lifecycle import QuoteLifecycleEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Stockage objet"])


def _content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "ignore").decode().replace('"', "") or "download"
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{url_quote(filename)}"


@router.post("/api/objects/upload", response_model=UploadHandleOut)
async def create_upload_handle(
    user: User = Depends(require_user),
    storage: ObjectStorageService = Depends(get_object_storage),
    registry: ObjectRegistry = Depends(get_object_registry),
):
    """Émet un identifiant d'upload réservé à l'appelant; le client envoie ensuite les octets en PUT."""
    handle = storage.mint_upload_handle()
    registry.claim(handle.object_path, user.id)
    return UploadHandleOut(upload_url=handle.upload_url, object_path=handle.object_path)


@router.put("/api/objects/upload/{object_id}", response_model=UploadResultOut)
async def upload_object(
    object_id: str,
    request: Request,
    user: User = Depends(require_user),
    settings: Settings = Depends(get_settings),
    storage: ObjectStorageService = Depends(get_object_storage),
    registry: ObjectRegistry = Depends(get_object_registry),
    engine: QuoteLifecycleEngine = Depends(get_quote_engine),
):
    """
    Reçoit le corps brut de la requête et le transmet au stockage.

    Un identifiant jamais émis est réservé par son premier PUT. Une clé
    réservée n'accepte que son propriétaire (ou un administrateur), et une
    clé déjà rattachée à un devis n'est plus remplaçable.

    Raises:
        400: identifiant invalide, fichier vide ou trop lourd
        403: clé d'un autre utilisateur ou rattachée à un devis
        500: stockage indisponible (aucune référence n'est créée)
    """
    object_path = storage.object_path_for(object_id)

    if engine.find_quotes_by_object_path(object_path):
        log_audit_event(
            "access_denied",
            user_id=user.id,
            result="denied",
            ip_address=get_client_ip(request),
            extra_data={"object_path": object_path, "reason": "attached"},
        )
        raise ForbiddenError("File is attached to a quote and cannot be replaced")

    owner_user_id = registry.get_owner(object_path)
    if owner_user_id is not None:
        ensure_object_write(object_path, owner_user_id, user, request, "File belongs to another user")

    chunks = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > settings.max_upload_bytes:
            raise ValidationError.for_field(
                "file", f"File too large (max {settings.max_upload_bytes} bytes)"
            )
        chunks.append(chunk)

    data = b"".join(chunks)
    if not data:
        raise ValidationError("Empty file")

    # Réservation avant écriture: un PUT concurrent d'un autre utilisateur perd
    record = registry.claim(object_path, user.id)
    ensure_object_write(object_path, record.owner_user_id, user, request, "File belongs to another user")

    try:
        remote_path = await run_in_threadpool(storage.put, object_id, data)
    except UpstreamStorageError:
        log_audit_event(
            "upload_failed",
            user_id=user.id,
            result="error",
            ip_address=get_client_ip(request),
            extra_data={"object_id": object_id, "size": len(data)},
        )
        raise

    registry.record_upload(object_path, len(data))
    log_audit_event(
        "upload_stored",
        user_id=user.id,
        extra_data={"object_path": remote_path, "size": len(data)},
    )
    return UploadResultOut(message="File uploaded", remote_path=remote_path)


async def _download(
    object_path: str,
    request: Request,
    user: User,
    storage: ObjectStorageService,
    engine: QuoteLifecycleEngine,
    filename: Optional[str] = None,
) -> Response:
    # Objet rattaché à des devis: lisible si l'un d'eux est accessible
    quotes = engine.find_quotes_by_object_path(object_path)
    readable = [
        q for q in quotes
        if can_access(user.id, AclPolicy(owner=q.user_id), bool(user.is_admin), ObjectPermission.READ)
    ]
    if quotes and not readable:
        ensure_quote_access(quotes[0], user, request)

    data = await run_in_threadpool(storage.get, object_path)

    headers = {}
    if filename:
        headers["Content-Disposition"] = _content_disposition(filename)
    return Response(content=data, media_type="application/octet-stream", headers=headers)


@router.get("/uploads/{object_id}")
async def download_upload(
    object_id: str,
    request: Request,
    filename: Optional[str] = Query(None),
    user: User = Depends(require_user),
    storage: ObjectStorageService = Depends(get_object_storage),
    engine: QuoteLifecycleEngine = Depends(get_quote_engine),
):
    """Télécharge un fichier téléversé ({base}/{id})."""
    object_path = storage.object_path_for(object_id)
    return await _download(object_path, request, user, storage, engine, filename)


@router.get("/objects/{object_path:path}")
async def download_object(
    object_path: str,
    request: Request,
    filename: Optional[str] = Query(None),
    user: User = Depends(require_user),
    storage: ObjectStorageService = Depends(get_object_storage),
    engine: QuoteLifecycleEngine = Depends(get_quote_engine),
):
    """Télécharge un objet par sa clé de stockage complète."""
    object_path = storage.validate_path(object_path)
    return await _download(object_path, request, user, storage, engine, filename)
