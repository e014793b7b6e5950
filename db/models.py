# db/models.py

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import declarative_base, relationship, validates

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# === Énumérations métier (valeurs échangées telles quelles avec les clients) ===

class ManufacturingService(str, enum.Enum):
    CNC_MACHINING = "cnc_machining"
    LASER_CUTTING = "laser_cutting"
    PRINTING_3D = "3d_printing"
    SHEET_METAL_FORMING = "sheet_metal_forming"
    INJECTION_MOLDING = "injection_molding"
    WELDED_FABRICATION = "welded_fabrication"
    TIG_WELDING = "tig_welding"
    MIG_MAG_WELDING = "mig_mag_welding"
    LASER_WELDING = "laser_welding"
    SPOT_WELDING = "spot_welding"
    ARC_WELDING = "arc_welding"


class Material(str, enum.Enum):
    ALUMINUM_6061 = "aluminum_6061"
    ALUMINUM_7075 = "aluminum_7075"
    STEEL_1040 = "steel_1040"
    STEEL_1045 = "steel_1045"
    STAINLESS_STEEL_304 = "stainless_steel_304"
    STAINLESS_STEEL_316 = "stainless_steel_316"
    BRASS = "brass"
    COPPER = "copper"
    TITANIUM = "titanium"
    ABS = "abs"
    PLA = "pla"
    PETG = "petg"
    NYLON = "nylon"
    POLYCARBONATE = "polycarbonate"


class QualityStandard(str, enum.Enum):
    """Classes de tolérances générales ISO 2768."""
    FINE = "fine"
    MEDIUM = "medium"
    COARSE = "coarse"
    VERY_COARSE = "very_coarse"


class FinishType(str, enum.Enum):
    AS_MACHINED = "as_machined"
    ANODIZED = "anodized"
    POWDER_COATED = "powder_coated"
    ELECTROPLATED = "electroplated"
    BRUSHED = "brushed"
    POLISHED = "polished"
    SANDBLASTED = "sandblasted"
    PAINTED = "painted"


class OrderStatus(str, enum.Enum):
    """États du cycle de vie d'un devis, dans l'ordre d'avancement prévu."""
    QUOTE_REQUESTED = "quote_requested"
    QUOTE_PROVIDED = "quote_provided"
    ORDER_CONFIRMED = "order_confirmed"
    IN_PRODUCTION = "in_production"
    QUALITY_CHECK = "quality_check"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


STATUS_ORDER = [s.value for s in OrderStatus]
INITIAL_STATUS = OrderStatus.QUOTE_REQUESTED.value


# === Utilisateurs et sessions ===

class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    profile_image_url = Column(String(500), nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    quotes = relationship("Quote", back_populates="user")

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', is_admin={self.is_admin})>"


class AuthSession(Base):
    """Session serveur (cookie opaque -> utilisateur), expiration glissante."""
    __tablename__ = "sessions"

    sid = Column(String(128), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    data = Column(JSON, nullable=True)
    expire = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("IDX_session_expire", "expire"),)


# === Devis ===

class Quote(Base):
    __tablename__ = "quotes"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    part_name = Column(String(255), nullable=True)
    service = Column(String(50), nullable=False)
    material = Column(String(100), nullable=True)
    quantity = Column(Integer, nullable=False)
    finish_types = Column(JSON, nullable=True)
    quality_standard = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    technical_drawing_path = Column(String(500), nullable=True)

    # Options libres (tags non contrôlés)
    measurement_reports = Column(JSON, nullable=True)
    material_certificates = Column(JSON, nullable=True)
    printing_processes = Column(JSON, nullable=True)
    coatings = Column(JSON, nullable=True)
    metal_plating = Column(JSON, nullable=True)
    heat_treatment = Column(JSON, nullable=True)

    estimated_price = Column(Numeric(10, 2), nullable=True)
    final_price = Column(Numeric(10, 2), nullable=True)
    target_price = Column(Numeric(10, 2), nullable=True)

    # Projection du dernier statut de l'historique (écrite uniquement par le moteur)
    status = Column(String(50), nullable=False, default=INITIAL_STATUS, index=True)

    quote_document_path = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    user = relationship("User", back_populates="quotes")
    files = relationship(
        "QuoteFile",
        back_populates="quote",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="QuoteFile.created_at",
    )
    status_history = relationship(
        "QuoteStatusHistory",
        back_populates="quote",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="QuoteStatusHistory.created_at.desc()",
    )

    @validates("user_id")
    def _validate_owner(self, key, value):
        if self.user_id is not None and value != self.user_id:
            raise ValueError("Quote owner is immutable")
        return value

    def __repr__(self):
        return f"<Quote(id={self.id}, service='{self.service}', status='{self.status}')>"


class QuoteFile(Base):
    __tablename__ = "quote_files"

    id = Column(String(36), primary_key=True, default=new_id)
    quote_id = Column(String(36), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True)

    file_name = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=False)
    file_size = Column(Integer, nullable=True)
    file_type = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    quote = relationship("Quote", back_populates="files")

    @validates("quote_id")
    def _validate_parent(self, key, value):
        if self.quote_id is not None and value != self.quote_id:
            raise ValueError("QuoteFile parent is immutable")
        return value


class QuoteStatusHistory(Base):
    """Journal d'audit append-only des changements de statut."""
    __tablename__ = "quote_status_history"

    id = Column(String(36), primary_key=True, default=new_id)
    quote_id = Column(String(36), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(50), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    quote = relationship("Quote", back_populates="status_history")


# === Objets téléversés ===

class StoredObject(Base):
    """
    Clé de stockage et utilisateur qui l'a réservée (handle émis ou premier PUT).

    Seul ce propriétaire (ou un administrateur) peut écrire sur la clé ou la
    rattacher à un devis.
    """
    __tablename__ = "stored_objects"

    object_path = Column(String(500), primary_key=True)
    owner_user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    size = Column(Integer, nullable=True)
    # NULL tant que les octets n'ont pas été reçus
    uploaded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @validates("owner_user_id")
    def _validate_owner(self, key, value):
        if self.owner_user_id is not None and value != self.owner_user_id:
            raise ValueError("StoredObject owner is immutable")
        return value

    def __repr__(self):
        return f"<StoredObject(object_path='{self.object_path}', owner_user_id={self.owner_user_id})>"


@event.listens_for(QuoteStatusHistory, "before_update")
def _history_is_append_only(mapper, connection, target):
    raise ValueError("QuoteStatusHistory rows are immutable")
