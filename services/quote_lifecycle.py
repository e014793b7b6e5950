"""
Moteur de cycle de vie des devis.

Responsabilités:
- Création atomique d'un devis avec ses fichiers et sa première entrée d'historique
- Transitions de statut (historique append-only + projection `Quote.status`)
- Mise à jour du prix final et du document de devis
- Lectures (détail, liste par utilisateur, liste globale)

Le moteur ne vérifie PAS les rôles: la politique d'accès est appliquée par la
couche API (routes/), qui compose les contrôles avant chaque appel.
"""

import enum
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from core.errors import NotFoundError, ValidationError, details_from_pydantic
from db.models import (
    INITIAL_STATUS,
    STATUS_ORDER,
    Quote,
    QuoteFile,
    QuoteStatusHistory,
    User,
    new_id,
    utcnow,
)
from models.schemas import QuoteFields, StoredFileRef

logger = logging.getLogger(__name__)


class TransitionMode(str, enum.Enum):
    """
    permissive: n'importe quel statut depuis n'importe quel statut (défaut)
    forward: uniquement vers un statut plus avancé
    adjacent: uniquement vers le statut suivant
    """
    PERMISSIVE = "permissive"
    FORWARD = "forward"
    ADJACENT = "adjacent"


def file_type_from_name(file_name: str) -> str:
    """Extension du fichier (sans le point, en minuscules), vide si absente."""
    base = file_name.rsplit("/", 1)[-1]
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[-1].lower()


class QuoteLifecycleEngine:

    def __init__(self, db: Session, transition_mode: Union[TransitionMode, str] = TransitionMode.PERMISSIVE):
        self.db = db
        try:
            self.transition_mode = TransitionMode(transition_mode)
        except ValueError:
            raise ValueError(f"Unknown status transition mode: {transition_mode}")

    # ----------------------------------------------------------
    # Création
    # ----------------------------------------------------------

    def create_quote(
        self,
        owner_user_id: str,
        fields: Union[QuoteFields, Mapping[str, Any]],
        files: Sequence[Union[StoredFileRef, Mapping[str, Any]]],
    ) -> Quote:
        """
        Crée un devis, ses fichiers et l'entrée d'historique initiale dans une
        seule transaction.

        Raises:
            ValidationError: aucun fichier, champ invalide ou hors énumération
            NotFoundError: propriétaire inconnu
        """
        if not files:
            raise ValidationError.for_field("files", "At least one file is required")

        data = self._validate_fields(fields)
        file_refs = [self._validate_file(index, f) for index, f in enumerate(files)]

        if self.db.get(User, owner_user_id) is None:
            raise NotFoundError("User not found")

        now = utcnow()
        quote = Quote(
            id=new_id(),
            user_id=owner_user_id,
            part_name=data.part_name,
            service=data.service.value,
            material=data.material.value if data.material else None,
            quantity=data.quantity,
            finish_types=[f.value for f in data.finish_types] if data.finish_types is not None else None,
            quality_standard=data.quality_standard.value if data.quality_standard else None,
            notes=data.notes,
            technical_drawing_path=data.technical_drawing_path,
            measurement_reports=data.measurement_reports,
            material_certificates=data.material_certificates,
            printing_processes=data.printing_processes,
            coatings=data.coatings,
            metal_plating=data.metal_plating,
            heat_treatment=data.heat_treatment,
            target_price=data.target_price,
            created_at=now,
            updated_at=now,
        )

        try:
            self.db.add(quote)
            for ref in file_refs:
                quote.files.append(QuoteFile(
                    file_name=ref.file_name,
                    file_path=ref.storage_key,
                    file_size=ref.size,
                    file_type=file_type_from_name(ref.file_name),
                    created_at=now,
                ))
            self._append_status(quote, INITIAL_STATUS, None, now)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Création du devis annulée (owner %s)", owner_user_id)
            raise

        logger.info("Devis %s créé (%d fichiers) pour %s", quote.id, len(file_refs), owner_user_id)
        return self.get_quote(quote.id)

    # ----------------------------------------------------------
    # Lectures
    # ----------------------------------------------------------

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        """Devis + fichiers + historique (plus récent d'abord) + propriétaire."""
        return self.db.execute(
            select(Quote)
            .where(Quote.id == quote_id)
            .options(
                selectinload(Quote.files),
                selectinload(Quote.status_history),
                selectinload(Quote.user),
            )
        ).scalar_one_or_none()

    def list_quotes_for_user(self, user_id: str) -> List[Quote]:
        return list(self.db.execute(
            select(Quote)
            .where(Quote.user_id == user_id)
            .order_by(Quote.created_at.desc())
        ).scalars().all())

    def list_all_quotes(self) -> List[Quote]:
        return list(self.db.execute(
            select(Quote)
            .options(
                selectinload(Quote.files),
                selectinload(Quote.status_history),
                selectinload(Quote.user),
            )
            .order_by(Quote.created_at.desc())
        ).scalars().all())

    def find_quotes_by_object_path(self, object_path: str) -> List[Quote]:
        """Devis qui référencent cette clé de stockage (fichier, plan ou document)."""
        by_file = select(QuoteFile.quote_id).where(QuoteFile.file_path == object_path)
        return list(self.db.execute(
            select(Quote)
            .where(or_(
                Quote.id.in_(by_file),
                Quote.technical_drawing_path == object_path,
                Quote.quote_document_path == object_path,
            ))
            .order_by(Quote.created_at)
        ).scalars().all())

    def get_status_history(self, quote_id: str) -> List[QuoteStatusHistory]:
        return list(self.db.execute(
            select(QuoteStatusHistory)
            .where(QuoteStatusHistory.quote_id == quote_id)
            .order_by(QuoteStatusHistory.created_at.desc())
        ).scalars().all())

    # ----------------------------------------------------------
    # Mutations (réservées aux administrateurs, contrôlé par l'API)
    # ----------------------------------------------------------

    def update_status(self, quote_id: str, new_status: Any, notes: Optional[str] = None) -> Quote:
        status = self._validate_status(new_status)
        quote = self._get_for_update(quote_id)
        self._check_transition(quote.status, status)

        now = utcnow()
        try:
            self._append_status(quote, status, notes, now)
            quote.updated_at = now
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Changement de statut annulé pour le devis %s", quote_id)
            raise

        self.db.refresh(quote)
        logger.info("Devis %s -> %s", quote_id, status)
        return quote

    def update_price(self, quote_id: str, final_price: Any) -> Quote:
        """Met à jour le prix final. N'ajoute aucune entrée d'historique."""
        price = self._validate_price(final_price)
        quote = self._get_for_update(quote_id)

        quote.final_price = price
        quote.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(quote)
        logger.info("Devis %s: prix final %s", quote_id, price)
        return quote

    def attach_quote_document(self, quote_id: str, document_path: str) -> Quote:
        """Associe le document de devis (PDF fourni par un administrateur)."""
        if not document_path or not document_path.strip():
            raise ValidationError.for_field("documentPath", "Document path is required")
        quote = self._get_for_update(quote_id)

        quote.quote_document_path = document_path.strip()
        quote.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(quote)
        logger.info("Devis %s: document %s associé", quote_id, quote.quote_document_path)
        return quote

    # ----------------------------------------------------------
    # Helpers
    # ----------------------------------------------------------

    def _append_status(self, quote: Quote, status: str, notes: Optional[str], now) -> QuoteStatusHistory:
        """Seul point d'écriture du statut: entrée d'historique + projection, même transaction."""
        entry = QuoteStatusHistory(quote_id=quote.id, status=status, notes=notes, created_at=now)
        self.db.add(entry)
        quote.status = status
        return entry

    def _get_for_update(self, quote_id: str) -> Quote:
        quote = self.db.execute(
            select(Quote).where(Quote.id == quote_id).with_for_update()
        ).scalar_one_or_none()
        if quote is None:
            raise NotFoundError("Quote not found")
        return quote

    @staticmethod
    def _validate_fields(fields: Union[QuoteFields, Mapping[str, Any]]) -> QuoteFields:
        if isinstance(fields, QuoteFields):
            return fields
        try:
            return QuoteFields.model_validate(dict(fields))
        except PydanticValidationError as exc:
            raise ValidationError("Validation error", details=details_from_pydantic(exc.errors()))

    @staticmethod
    def _validate_file(index: int, file_ref: Union[StoredFileRef, Mapping[str, Any]]) -> StoredFileRef:
        try:
            ref = file_ref if isinstance(file_ref, StoredFileRef) else StoredFileRef.model_validate(dict(file_ref))
        except PydanticValidationError as exc:
            details = details_from_pydantic(exc.errors())
            for detail in details:
                detail["field"] = f"files.{index}.{detail['field']}"
            raise ValidationError("Validation error", details=details)
        if not ref.file_name.strip():
            raise ValidationError.for_field(f"files.{index}.name", "File name is required")
        if not ref.storage_key.strip():
            raise ValidationError.for_field(f"files.{index}.uploadURL", "File reference is required")
        if ref.size is not None and ref.size < 0:
            raise ValidationError.for_field(f"files.{index}.size", "File size must be positive")
        return ref

    @staticmethod
    def _validate_status(new_status: Any) -> str:
        value = getattr(new_status, "value", new_status)
        if value not in STATUS_ORDER:
            raise ValidationError.for_field("status", f"Invalid status: {value}")
        return value

    @staticmethod
    def _validate_price(final_price: Any) -> Decimal:
        if isinstance(final_price, bool):
            raise ValidationError.for_field("finalPrice", "Price must be a number")
        try:
            price = Decimal(str(final_price))
        except (InvalidOperation, ValueError):
            raise ValidationError.for_field("finalPrice", "Price must be a number")
        if not price.is_finite() or price <= 0:
            raise ValidationError.for_field("finalPrice", "Price must be positive")
        if price.as_tuple().exponent < -2:
            raise ValidationError.for_field("finalPrice", "Price must have at most 2 decimal places")
        return price

    def _check_transition(self, current: str, target: str) -> None:
        if self.transition_mode == TransitionMode.PERMISSIVE:
            return

        current_index = STATUS_ORDER.index(current) if current in STATUS_ORDER else -1
        target_index = STATUS_ORDER.index(target)

        if self.transition_mode == TransitionMode.FORWARD:
            allowed = target_index > current_index
        else:
            allowed = target_index == current_index + 1

        if not allowed:
            raise ValidationError.for_field(
                "status",
                f"Transition {current} -> {target} not allowed ({self.transition_mode.value} mode)",
            )
