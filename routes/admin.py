"""
Routes d'administration des devis
Toutes les routes exigent une session administrateur (401 sans session, 403 sans le rôle)
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request

from core.logging import log_audit_event
from core.security import get_client_ip
from db.models import User
from models.schemas import (
    DocumentAttachRequest,
    PriceUpdateRequest,
    QuoteDetailOut,
    QuoteOut,
    StatusUpdateRequest,
)
from routes.deps import get_object_registry, get_object_storage, get_quote_engine, require_admin
from routes.quotes import resolve_stored_object
from services.object_registry import ObjectRegistry
from services.object_storage import ObjectStorageService
from services.quote_lifecycle import QuoteLifecycleEngine

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/quotes",
    tags=["Administration"],
    dependencies=[Depends(require_admin)],
)


@router.get("", response_model=List[QuoteDetailOut])
async def list_all_quotes(engine: QuoteLifecycleEngine = Depends(get_quote_engine)):
    """Tous les devis, avec fichiers, historique et client."""
    return engine.list_all_quotes()


@router.put("/{quote_id}/status", response_model=QuoteOut)
async def update_quote_status(
    quote_id: str,
    payload: StatusUpdateRequest,
    request: Request,
    admin: User = Depends(require_admin),
    engine: QuoteLifecycleEngine = Depends(get_quote_engine),
):
    """
    Change le statut et ajoute une entrée à l'historique.

    Raises:
        400: statut hors énumération ou transition refusée
        404: devis inexistant
    """
    quote = engine.update_status(quote_id, payload.status, payload.notes)
    log_audit_event(
        "quote_status_changed",
        user_id=admin.id,
        quote_id=quote_id,
        ip_address=get_client_ip(request),
        extra_data={"status": quote.status},
    )
    return quote


@router.put("/{quote_id}/price", response_model=QuoteOut)
async def update_quote_price(
    quote_id: str,
    payload: PriceUpdateRequest,
    request: Request,
    admin: User = Depends(require_admin),
    engine: QuoteLifecycleEngine = Depends(get_quote_engine),
):
    """Fixe le prix final (le statut et l'historique ne changent pas)."""
    quote = engine.update_price(quote_id, payload.final_price)
    log_audit_event(
        "quote_price_set",
        user_id=admin.id,
        quote_id=quote_id,
        ip_address=get_client_ip(request),
        extra_data={"final_price": str(quote.final_price)},
    )
    return quote


@router.put("/{quote_id}/document", response_model=QuoteOut)
async def attach_quote_document(
    quote_id: str,
    payload: DocumentAttachRequest,
    request: Request,
    admin: User = Depends(require_admin),
    storage: ObjectStorageService = Depends(get_object_storage),
    registry: ObjectRegistry = Depends(get_object_registry),
    engine: QuoteLifecycleEngine = Depends(get_quote_engine),
):
    """Associe le PDF de devis, préalablement téléversé."""
    document_key = resolve_stored_object(
        storage, registry, admin, request,
        payload.document_path, "documentPath", "quote document",
    )
    quote = engine.attach_quote_document(quote_id, document_key)
    log_audit_event(
        "quote_document_attached",
        user_id=admin.id,
        quote_id=quote_id,
        ip_address=get_client_ip(request),
        extra_data={"object_path": document_key},
    )
    return quote
