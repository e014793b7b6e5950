# models/schemas.py
"""
Contrats d'entrée/sortie de l'API (pydantic v2).

Les noms de champs sont en snake_case côté Python et en camelCase sur le fil
(alias générés), ce qui garde la compatibilité avec le client web existant.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from db.models import (
    FinishType,
    ManufacturingService,
    Material,
    OrderStatus,
    QualityStandard,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# === Authentification ===

class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128, description="8 caractères minimum")
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    profile_image_url: Optional[str] = Field(None, max_length=500)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class UserOut(CamelModel):
    """Profil public (jamais de hash de mot de passe)."""
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    is_admin: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MessageOut(CamelModel):
    message: str


# === Stockage objet ===

class UploadHandleOut(CamelModel):
    upload_url: str = Field(..., alias="uploadURL")
    object_path: str


class UploadResultOut(CamelModel):
    message: str
    remote_path: str


# === Devis ===

class QuoteFields(CamelModel):
    """Champs d'un devis saisis par le client (validés par le moteur)."""
    part_name: str = Field(..., min_length=1, max_length=255)
    service: ManufacturingService
    material: Optional[Material] = None
    quantity: int = Field(..., gt=0, strict=True)
    finish_types: Optional[List[FinishType]] = None
    quality_standard: Optional[QualityStandard] = None
    notes: Optional[str] = None
    target_price: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    technical_drawing_path: Optional[str] = Field(None, max_length=500)

    # Tags libres, non contrôlés
    measurement_reports: Optional[List[str]] = None
    material_certificates: Optional[List[str]] = None
    printing_processes: Optional[List[str]] = None
    coatings: Optional[List[str]] = None
    metal_plating: Optional[List[str]] = None
    heat_treatment: Optional[List[str]] = None


class FileUpload(CamelModel):
    """Fichier déjà téléversé, référencé par son URL d'upload."""
    name: str = Field(..., min_length=1, max_length=255)
    upload_url: str = Field(..., alias="uploadURL", min_length=1)
    size: Optional[int] = Field(None, ge=0)


class QuoteCreateRequest(QuoteFields):
    files: List[FileUpload] = Field(..., min_length=1, description="Au moins un fichier CAO")


class StoredFileRef(BaseModel):
    """Référence résolue par la frontière HTTP: (nom, clé de stockage, taille)."""
    file_name: str
    storage_key: str
    size: Optional[int] = None


class StatusUpdateRequest(CamelModel):
    status: OrderStatus
    notes: Optional[str] = None


class PriceUpdateRequest(CamelModel):
    final_price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)


class DocumentAttachRequest(CamelModel):
    document_path: str = Field(..., min_length=1, max_length=500)


class QuoteFileOut(CamelModel):
    id: str
    quote_id: str
    file_name: str
    file_path: str
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    created_at: Optional[datetime] = None


class StatusHistoryOut(CamelModel):
    id: str
    quote_id: str
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class QuoteOut(CamelModel):
    """Projection légère (listes)."""
    id: str
    user_id: str
    part_name: Optional[str] = None
    service: str
    material: Optional[str] = None
    quantity: int
    finish_types: Optional[List[str]] = None
    quality_standard: Optional[str] = None
    notes: Optional[str] = None
    technical_drawing_path: Optional[str] = None
    measurement_reports: Optional[List[str]] = None
    material_certificates: Optional[List[str]] = None
    printing_processes: Optional[List[str]] = None
    coatings: Optional[List[str]] = None
    metal_plating: Optional[List[str]] = None
    heat_treatment: Optional[List[str]] = None
    estimated_price: Optional[Decimal] = None
    final_price: Optional[Decimal] = None
    target_price: Optional[Decimal] = None
    status: str
    quote_document_path: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class QuoteDetailOut(QuoteOut):
    """Devis complet: fichiers, historique (plus récent d'abord) et profil du propriétaire."""
    files: List[QuoteFileOut] = []
    status_history: List[StatusHistoryOut] = []
    user: Optional[UserOut] = None
